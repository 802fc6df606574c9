# planner/services/admin.py
"""Administrator tier: user listing, approval, inspection and deletion."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import date, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from planner.errors import PersistenceError
from planner.models import (
    CompletedModule,
    Message,
    Module,
    ModuleProgress,
    Question,
    User,
    UserResponse,
    UserSettings,
)
from planner.services.messages import MessageService

logger = logging.getLogger(__name__)


def user_summary(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "is_admin": bool(u.is_superuser),
        "is_approved": bool(u.is_approved),
        "is_active": bool(u.is_active),
        "created_at": u.created_at,
        "last_login_at": u.last_login_at,
    }


async def list_users(db: AsyncSession) -> list[dict]:
    rows = (await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))).scalars().all()
    return [user_summary(u) for u in rows]


async def approve_user(db: AsyncSession, user_id: int) -> Optional[User]:
    u = await db.get(User, user_id)
    if not u:
        return None
    if not u.is_approved:
        u.is_approved = True
        await db.commit()
        logger.info("User %s approved", user_id)
    return u


async def view_user(db: AsyncSession, user_id: int) -> Optional[dict]:
    """Everything an admin sees for one user: modules, questions per module, answers, report."""
    u = await db.get(User, user_id)
    if not u:
        return None
    modules = (await db.execute(select(Module).order_by(Module.order))).scalars().all()
    questions = (await db.execute(select(Question).order_by(Question.module_id, Question.order, Question.id))).scalars().all()
    responses = (await db.execute(
        select(UserResponse).where(UserResponse.user_id == user_id).order_by(UserResponse.updated_at, UserResponse.id)
    )).scalars().all()
    settings_row = (await db.execute(select(UserSettings).where(UserSettings.user_id == user_id))).scalars().first()

    by_module: dict[int, list[dict]] = {m.id: [] for m in modules}
    for q in questions:
        by_module.setdefault(q.module_id, []).append({"id": q.id, "content": q.content, "order": q.order})

    return {
        "user": user_summary(u),
        "modules": [{"id": m.id, "title": m.title, "slug": m.slug, "order": m.order} for m in modules],
        "questions": by_module,
        # later rows win if duplicates slipped in
        "responses": {r.question_id: r.content for r in responses},
        "final_report": settings_row.final_report if settings_row else None,
        "selected_practice": settings_row.selected_practice if settings_row else None,
        "selected_niche": settings_row.selected_niche if settings_row else None,
    }


async def purge_user_rows(db: AsyncSession, user_id: int) -> None:
    """Remove every row that references the user, leaving the identity row. Does not commit."""
    await db.execute(update(User).where(User.id == user_id).values(is_superuser=False))
    await db.execute(delete(UserResponse).where(UserResponse.user_id == user_id))
    await db.execute(delete(UserSettings).where(UserSettings.user_id == user_id))
    await db.execute(delete(Message).where(or_(Message.sender_id == user_id, Message.receiver_id == user_id)))
    await db.execute(delete(ModuleProgress).where(ModuleProgress.user_id == user_id))
    await db.execute(delete(CompletedModule).where(CompletedModule.user_id == user_id))


async def delete_user(db: AsyncSession, user_id: int) -> bool:
    """Cascade-delete a user. Unknown ids are a no-op and return False."""
    u = await db.get(User, user_id)
    if not u:
        return False
    try:
        await purge_user_rows(db, user_id)
        await db.delete(u)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Failed to delete user {user_id}: {e}") from e
    logger.info("User %s deleted with all their data", user_id)
    return True


def growth_series(users: Iterable[Any]) -> list[dict]:
    """Cumulative non-admin signups per day."""
    per_day: Counter = Counter()
    for u in users:
        created = getattr(u, "created_at", None)
        if created is None or getattr(u, "is_superuser", False):
            continue
        per_day[created.date() if hasattr(created, "date") else created] += 1
    if not per_day:
        return []

    series = []
    total = 0
    for day in sorted(per_day):
        total += per_day[day]
        series.append({"date": day.isoformat(), "count": total})
    if len(series) == 1:
        # a line needs two points
        nxt: date = date.fromisoformat(series[0]["date"]) + timedelta(days=1)
        series.append({"date": nxt.isoformat(), "count": total})
    return series


async def signup_growth(db: AsyncSession) -> list[dict]:
    rows = (await db.execute(select(User))).scalars().all()
    return growth_series(rows)


async def unread_counts(db: AsyncSession, admin_id: int) -> dict[int, int]:
    """Unread messages addressed to the admin, per sender."""
    return await MessageService(db).unread_by_sender(admin_id)


__all__ = [
    "approve_user",
    "delete_user",
    "growth_series",
    "list_users",
    "purge_user_rows",
    "signup_growth",
    "unread_counts",
    "user_summary",
    "view_user",
]
