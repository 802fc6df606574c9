"""Current identity plus the two flags derived from it.

States: anonymous -> authenticated (unapproved) -> authenticated (approved);
signing out from either authenticated state returns to anonymous and drops
the user's cached questionnaire state.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from planner.errors import AuthError
from planner.services.progress import EngineRegistry

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"
UNAPPROVED = "unapproved"
APPROVED = "approved"

UserLoader = Callable[[int], Awaitable[Optional[Any]]]


class SessionStore:
    def __init__(self, registry: Optional[EngineRegistry] = None):
        self.registry = registry
        self.identity: Optional[Any] = None
        self.is_admin = False
        self.is_approved = False

    def set_identity(self, user: Optional[Any]) -> None:
        self.identity = user
        self.is_admin = bool(getattr(user, "is_superuser", False))
        self.is_approved = bool(getattr(user, "is_approved", False))

    @property
    def state(self) -> str:
        if self.identity is None:
            return ANONYMOUS
        return APPROVED if self.is_approved else UNAPPROVED

    def sign_out(self) -> None:
        user = self.identity
        if user is not None and self.registry is not None:
            self.registry.discard(user.id)
        self.set_identity(None)
        if user is not None:
            logger.info("User %s signed out", user.id)

    async def refresh(self, loader: UserLoader) -> str:
        """Re-read the identity (the admin may have approved it meanwhile)."""
        if self.identity is None:
            return ANONYMOUS
        fresh = await loader(self.identity.id)
        if fresh is None or not getattr(fresh, "is_active", True):
            self.sign_out()
            raise AuthError("Account no longer exists")
        self.set_identity(fresh)
        return self.state

    async def wait_for_approval(self, loader: UserLoader, *, interval: float = 1.0,
                                timeout: Optional[float] = None) -> bool:
        """Poll every ``interval`` seconds until approved. ``timeout=None`` waits forever."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if await self.refresh(loader) == APPROVED:
                return True
            if deadline is not None and time.monotonic() + interval > deadline:
                return False
            await asyncio.sleep(interval)


__all__ = ["ANONYMOUS", "APPROVED", "UNAPPROVED", "SessionStore"]
