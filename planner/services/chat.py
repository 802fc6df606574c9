"""A user's live view of their messages.

Three refreshers run at a fixed interval (one second by default, no backoff):
the unread badge, the conversation list and the open conversation. A bus
signal triggers the same refresh path immediately. Whenever a refreshed value
differs from the last one, ``on_change(kind, value)`` is awaited.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from planner.background import spawn
from planner.services import scheduler
from planner.services.messages import MessageBus, MessageService, message_dict

logger = logging.getLogger(__name__)

UNREAD = "unread"
CONVERSATIONS = "conversations"
ACTIVE = "active"

ChangeFn = Callable[[str, Any], Awaitable[None]]

_ids = itertools.count(1)


class ChatSession:
    def __init__(self, user_id: int, session_maker: async_sessionmaker[AsyncSession],
                 bus: Optional[MessageBus] = None, *, on_change: Optional[ChangeFn] = None,
                 interval: float = 1.0):
        self.user_id = user_id
        self.session_maker = session_maker
        self.bus = bus
        self.on_change = on_change
        self.interval = interval
        self.key = f"chat:{user_id}:{next(_ids)}"

        self.unread: Optional[int] = None
        self.conversations: Optional[list[dict]] = None
        self.active_with: Optional[int] = None
        self.active_messages: Optional[list[dict]] = None

        self._queue: Optional[asyncio.Queue] = None
        self._listener: Optional[asyncio.Task] = None
        self.running = False

    @property
    def job_ids(self) -> list[str]:
        return [f"{self.key}:{kind}" for kind in (UNREAD, CONVERSATIONS, ACTIVE)]

    def start(self) -> None:
        if self.running:
            return
        scheduler.add_poll_job(f"{self.key}:{UNREAD}", self.refresh_unread, self.interval)
        scheduler.add_poll_job(f"{self.key}:{CONVERSATIONS}", self.refresh_conversations, self.interval)
        scheduler.add_poll_job(f"{self.key}:{ACTIVE}", self.refresh_active, self.interval)
        if self.bus is not None:
            self._queue = self.bus.subscribe(self.user_id)
            self._listener = spawn(self._listen(), name=f"{self.key}:bus")
        self.running = True
        logger.debug("Chat session %s started", self.key)

    def stop(self) -> None:
        for job_id in self.job_ids:
            scheduler.remove_job(job_id)
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None
        if self.bus is not None and self._queue is not None:
            self.bus.unsubscribe(self.user_id, self._queue)
            self._queue = None
        self.running = False
        logger.debug("Chat session %s stopped", self.key)

    async def open_conversation(self, other_id: Optional[int]) -> None:
        self.active_with = other_id
        self.active_messages = None
        await self.refresh_active()

    async def refresh_all(self) -> None:
        await self.refresh_unread()
        await self.refresh_conversations()
        await self.refresh_active()

    async def refresh_unread(self) -> None:
        async with self.session_maker() as db:
            value = await MessageService(db).unread_count(self.user_id)
        await self._set(UNREAD, value)

    async def refresh_conversations(self) -> None:
        async with self.session_maker() as db:
            value = await MessageService(db).conversations(self.user_id)
        await self._set(CONVERSATIONS, value)

    async def refresh_active(self) -> None:
        other = self.active_with
        if other is None:
            return
        async with self.session_maker() as db:
            rows = await MessageService(db).conversation(self.user_id, other)
        if other != self.active_with:
            # switched while loading
            return
        await self._set(ACTIVE, [message_dict(m) for m in rows])

    async def _set(self, kind: str, value: Any) -> None:
        attr = "active_messages" if kind == ACTIVE else kind
        if getattr(self, attr) == value:
            return
        setattr(self, attr, value)
        if self.on_change is not None:
            await self.on_change(kind, value)

    async def _listen(self) -> None:
        while True:
            await self._queue.get()
            try:
                await self.refresh_all()
            except Exception:
                logger.exception("Chat refresh after signal failed for %s", self.key)


__all__ = ["ACTIVE", "CONVERSATIONS", "UNREAD", "ChatSession"]
