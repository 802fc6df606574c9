"""Debounced answer persistence.

Every edit restarts a quiet-period timer; when it expires the latest text is
written if it is non-blank. Switching questions cancels the pending timer.
A write that already started is left to finish. Failures are logged and kept
in ``last_error`` and never roll back the in-memory answer.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from planner.background import spawn
from planner.errors import PersistenceError

logger = logging.getLogger(__name__)

SaveFn = Callable[[int, str], Awaitable[None]]


class Autosaver:
    def __init__(self, save: SaveFn, delay: float = 1.0):
        self._save = save
        self.delay = delay
        self._timer: Optional[asyncio.Task[Any]] = None
        self._timer_question: Optional[int] = None
        self._inflight: Set[asyncio.Task[Any]] = set()
        self.last_error: Optional[str] = None

    @property
    def pending_question(self) -> Optional[int]:
        if self._timer and not self._timer.done():
            return self._timer_question
        return None

    def schedule(self, question_id: int, text: str) -> None:
        self.cancel()
        self._timer_question = question_id
        self._timer = spawn(self._wait_then_save(question_id, text), name=f"autosave:{question_id}")

    def cancel(self) -> None:
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self._timer_question = None

    async def flush(self) -> None:
        """Wait for the pending timer (if any) and every in-flight write."""
        waiting = [t for t in (self._timer, *self._inflight) if t is not None]
        if waiting:
            await asyncio.gather(*waiting, return_exceptions=True)
        # a timer that fired during the gather may have started a write
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _wait_then_save(self, question_id: int, text: str) -> None:
        await asyncio.sleep(self.delay)
        if not text.strip():
            return
        # detach from the timer so cancel() no longer reaches the write
        write = spawn(self._write(question_id, text), name=f"autosave-write:{question_id}")
        self._inflight.add(write)
        write.add_done_callback(self._inflight.discard)

    async def _write(self, question_id: int, text: str) -> None:
        try:
            await self._save(question_id, text)
        except PersistenceError as exc:
            self.last_error = str(exc)
            logger.warning("Autosave for question %s failed: %s", question_id, exc)
        else:
            self.last_error = None
            logger.debug("Autosaved question %s", question_id)


__all__ = ["Autosaver"]
