from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from planner.database import get_db
from planner.models import User
from planner.schemas import AdminUserRead, GrowthPoint
from planner.services import admin as admin_service
from planner.utils import require_admin_user

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/users", response_model=list[AdminUserRead])
async def admin_list_users(admin: User = Depends(require_admin_user), db: AsyncSession = Depends(get_db)):
    return await admin_service.list_users(db)


@router.post("/users/{user_id}/approve", response_model=AdminUserRead)
async def admin_approve_user(user_id: int, admin: User = Depends(require_admin_user), db: AsyncSession = Depends(get_db)):
    target = await admin_service.approve_user(db, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    return admin_service.user_summary(target)


@router.get("/users/{user_id}")
async def admin_view_user(user_id: int, admin: User = Depends(require_admin_user), db: AsyncSession = Depends(get_db)):
    data = await admin_service.view_user(db, user_id)
    if data is None:
        raise HTTPException(status_code=404, detail="User not found")
    return data


@router.delete("/users/{user_id}")
async def admin_delete_user(
    user_id: int,
    request: Request,
    admin: User = Depends(require_admin_user),
    db: AsyncSession = Depends(get_db),
):
    if admin.id == user_id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account from admin.")
    deleted = await admin_service.delete_user(db, user_id)
    if deleted:
        request.app.state.engines.discard(user_id)
    # deleting twice is not an error
    return {"ok": True, "deleted": deleted}


@router.get("/growth", response_model=list[GrowthPoint])
async def admin_growth(admin: User = Depends(require_admin_user), db: AsyncSession = Depends(get_db)):
    return await admin_service.signup_growth(db)


@router.get("/unread")
async def admin_unread(admin: User = Depends(require_admin_user), db: AsyncSession = Depends(get_db)):
    """Unread messages per sender for the signed-in admin."""
    return await admin_service.unread_counts(db, admin.id)


__all__ = ["router"]
