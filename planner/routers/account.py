from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from planner.models import User
from planner.schemas import ApprovalStatus, SettingsRead, SettingsUpdate, UserRead
from planner.services.gateway import PersistenceGateway
from planner.services.session import SessionStore
from planner.users import cookie_transport, fastapi_users
from planner.utils import require_authenticated_user

router = APIRouter(tags=["account"])
logger = logging.getLogger(__name__)

optional_user = fastapi_users.current_user(optional=True)


def _store(request: Request, user) -> SessionStore:
    store = SessionStore(request.app.state.engines)
    store.set_identity(user)
    return store


@router.get("/api/me", response_model=UserRead)
async def me(user: User = Depends(require_authenticated_user)):
    return user


@router.get("/api/me/approval", response_model=ApprovalStatus)
async def approval_status(request: Request, user=Depends(optional_user)):
    """Polled by the waiting screen until an admin approves the account."""
    store = _store(request, user)
    return ApprovalStatus(state=store.state, is_admin=store.is_admin, is_approved=store.is_approved)


@router.get("/api/me/settings", response_model=SettingsRead)
async def get_settings(request: Request, user: User = Depends(require_authenticated_user)):
    row = await PersistenceGateway(request.app.state.session_maker, user.id).get_settings()
    if row is None:
        return SettingsRead()
    return row


@router.put("/api/me/settings", response_model=SettingsRead)
async def update_settings(
    payload: SettingsUpdate,
    request: Request,
    user: User = Depends(require_authenticated_user),
):
    fields = payload.model_dump(exclude_none=True)
    gateway = PersistenceGateway(request.app.state.session_maker, user.id)
    if not fields:
        row = await gateway.get_settings()
        return row if row is not None else SettingsRead()
    return await gateway.upsert_settings(**fields)


@router.post("/logout")
async def logout(request: Request, user=Depends(optional_user)):
    store = _store(request, user)
    store.sign_out()
    response = JSONResponse({"ok": True})
    response.delete_cookie(
        cookie_transport.cookie_name,
        path=cookie_transport.cookie_path,
        domain=cookie_transport.cookie_domain,
    )
    return response


__all__ = ["router"]
