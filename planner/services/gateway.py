"""User-scoped access to the questionnaire tables.

Every per-user query is filtered by the gateway's ``user_id``; module and
question reference data are shared. Each call opens its own session so a
gateway can outlive the request that created it.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from planner.errors import PersistenceError
from planner.models import (
    CompletedModule,
    FINAL_REPORT_SLUG,
    Module,
    ModuleProgress,
    Question,
    UserResponse,
    UserSettings,
)

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = {"selected_practice", "selected_niche", "chat_notifications", "chat_sounds", "final_report"}


class PersistenceGateway:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], user_id: int):
        self._session_maker = session_maker
        self.user_id = user_id

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Database error: {exc}") from exc

    # ------------------------------------------------------------------
    # reference data
    # ------------------------------------------------------------------
    async def list_modules(self) -> list[Module]:
        async with self._session() as db:
            return list((await db.execute(select(Module).order_by(Module.order))).scalars().all())

    async def get_module_by_slug(self, slug: str) -> Optional[Module]:
        async with self._session() as db:
            return (await db.execute(select(Module).where(Module.slug == slug))).scalar_one_or_none()

    async def list_questions(self, module_id: int) -> list[Question]:
        async with self._session() as db:
            rows = await db.execute(
                select(Question)
                .where(Question.module_id == module_id)
                .order_by(Question.order, Question.id)
            )
            return list(rows.scalars().all())

    # ------------------------------------------------------------------
    # responses
    # ------------------------------------------------------------------
    async def fetch_responses(self, question_ids: Iterable[int]) -> dict[int, str]:
        ids = list(question_ids)
        if not ids:
            return {}
        async with self._session() as db:
            rows = await db.execute(
                select(UserResponse.question_id, UserResponse.content)
                .where(UserResponse.user_id == self.user_id, UserResponse.question_id.in_(ids))
                .order_by(UserResponse.id.asc())
            )
            # duplicates from concurrent first saves: the newest row wins, as in save_response
            return {qid: content or "" for qid, content in rows.all()}

    async def fetch_response(self, question_id: int) -> Optional[str]:
        async with self._session() as db:
            row = (
                await db.execute(
                    select(UserResponse)
                    .where(UserResponse.user_id == self.user_id, UserResponse.question_id == question_id)
                    .order_by(UserResponse.id.desc())
                    .limit(1)
                )
            ).scalars().first()
            return row.content if row else None

    async def save_response(self, question_id: int, content: str) -> None:
        """Select-then-update-or-insert on the newest row, the one every read returns.

        Not atomic: concurrent first saves can leave duplicate rows; last write wins.
        """
        async with self._session() as db:
            existing = (
                await db.execute(
                    select(UserResponse)
                    .where(UserResponse.user_id == self.user_id, UserResponse.question_id == question_id)
                    .order_by(UserResponse.id.desc())
                    .limit(1)
                )
            ).scalars().first()
            if existing:
                existing.content = content
            else:
                db.add(UserResponse(user_id=self.user_id, question_id=question_id, content=content))
            await db.commit()

    # ------------------------------------------------------------------
    # progress
    # ------------------------------------------------------------------
    async def fetch_progress(self) -> list[ModuleProgress]:
        async with self._session() as db:
            rows = await db.execute(select(ModuleProgress).where(ModuleProgress.user_id == self.user_id))
            return list(rows.scalars().all())

    async def fetch_completed_ids(self) -> list[int]:
        async with self._session() as db:
            rows = await db.execute(
                select(CompletedModule.module_id).where(CompletedModule.user_id == self.user_id)
            )
            return list(rows.scalars().all())

    async def insert_progress_if_missing(self, module_id: int, current_question: Optional[int]) -> bool:
        """Create an unlocked, incomplete progress row. Returns False if one already existed."""
        async with self._session() as db:
            existing = (
                await db.execute(
                    select(ModuleProgress.id).where(
                        ModuleProgress.user_id == self.user_id,
                        ModuleProgress.module_id == module_id,
                    )
                )
            ).first()
            if existing:
                return False
            db.add(
                ModuleProgress(
                    user_id=self.user_id,
                    module_id=module_id,
                    completed=False,
                    current_question=current_question,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                # another session inserted it between our select and insert
                await db.rollback()
                return False
            return True

    async def save_bookmark(self, module_id: int, current_question: Optional[int]) -> None:
        """Remember the question the user is on; completion is left untouched."""
        async with self._session() as db:
            row = (
                await db.execute(
                    select(ModuleProgress).where(
                        ModuleProgress.user_id == self.user_id,
                        ModuleProgress.module_id == module_id,
                    )
                )
            ).scalar_one_or_none()
            if row:
                row.current_question = current_question
            else:
                db.add(
                    ModuleProgress(
                        user_id=self.user_id,
                        module_id=module_id,
                        current_question=current_question,
                        completed=False,
                    )
                )
            await db.commit()

    async def mark_completed(self, module_id: int) -> None:
        """Set ModuleProgress.completed and the CompletedModule marker together."""
        async with self._session() as db:
            row = (
                await db.execute(
                    select(ModuleProgress).where(
                        ModuleProgress.user_id == self.user_id,
                        ModuleProgress.module_id == module_id,
                    )
                )
            ).scalar_one_or_none()
            if row:
                row.completed = True
            else:
                db.add(ModuleProgress(user_id=self.user_id, module_id=module_id, completed=True))
            marker = (
                await db.execute(
                    select(CompletedModule.id).where(
                        CompletedModule.user_id == self.user_id,
                        CompletedModule.module_id == module_id,
                    )
                )
            ).first()
            if not marker:
                db.add(CompletedModule(user_id=self.user_id, module_id=module_id))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info("Completion for user %s module %s already recorded", self.user_id, module_id)

    # ------------------------------------------------------------------
    # settings
    # ------------------------------------------------------------------
    async def get_settings(self) -> Optional[UserSettings]:
        async with self._session() as db:
            return (
                await db.execute(select(UserSettings).where(UserSettings.user_id == self.user_id))
            ).scalar_one_or_none()

    async def upsert_settings(self, **fields: Any) -> UserSettings:
        unknown = set(fields) - SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings fields: {sorted(unknown)}")
        async with self._session() as db:
            row = await self._settings_row(db)
            for key, value in fields.items():
                setattr(row, key, value)
            await db.commit()
            return row

    async def save_analysis(self, slug: str, result: dict) -> None:
        async with self._session() as db:
            row = await self._settings_row(db)
            analyses = dict(row.analyses or {})
            analyses[slug] = result
            row.analyses = analyses
            if slug == FINAL_REPORT_SLUG:
                row.final_report = result
            await db.commit()

    async def _settings_row(self, db: AsyncSession) -> UserSettings:
        row = (
            await db.execute(select(UserSettings).where(UserSettings.user_id == self.user_id))
        ).scalar_one_or_none()
        if row:
            return row
        row = UserSettings(user_id=self.user_id, analyses={})
        db.add(row)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            row = (
                await db.execute(select(UserSettings).where(UserSettings.user_id == self.user_id))
            ).scalar_one()
        return row


__all__ = ["PersistenceGateway", "SETTINGS_FIELDS"]
