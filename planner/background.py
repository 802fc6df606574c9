"""Supervision for fire-and-forget asyncio tasks (autosave timers, refreshes).

Tasks are tracked so they are not garbage collected mid-flight, failures are
logged instead of vanishing, and everything still pending can be cancelled
when the application shuts down.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

_background_tasks: Set[asyncio.Task[Any]] = set()


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None,
          on_error: Optional[Callable[[BaseException], None]] = None) -> asyncio.Task[Any]:
    """Create and supervise a background task.

    Args:
        coro: Awaitable coroutine to run in the background.
        name: Optional task name, used in log lines.
        on_error: Optional callback invoked with the exception if the task raises.
    """
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _background_tasks.add(task)

    def _finished(t: asyncio.Task[Any]) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            logger.debug("Background task %s cancelled", name or t)
            return
        exc = t.exception()
        if exc is None:
            return
        if on_error:
            try:
                on_error(exc)
            except Exception:  # noqa: BLE001
                logger.exception("Error in on_error callback for task %s", name or t)
        logger.error("Background task %s failed", name or t, exc_info=exc)

    task.add_done_callback(_finished)
    return task


async def shutdown(timeout: float = 5.0) -> None:
    """Cancel every supervised task and wait for them to unwind."""
    tasks = [t for t in _background_tasks if not t.done()]
    if not tasks:
        return
    for t in tasks:
        t.cancel()
    done, still_running = await asyncio.wait(tasks, timeout=timeout)
    if still_running:
        logger.warning("%d background task(s) did not stop within %.1fs", len(still_running), timeout)
    logger.info("Cancelled %d background task(s)", len(done))


__all__ = ["spawn", "shutdown"]
