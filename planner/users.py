import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, Request, Response
from fastapi_users import FastAPIUsers
from fastapi_users.manager import BaseUserManager, IntegerIDMixin
from fastapi_users.authentication import (
    AuthenticationBackend,
    BearerTransport,
    CookieTransport,
    JWTStrategy,
    Strategy,
)
from fastapi_users.db import SQLAlchemyUserDatabase
from .models import User
from .database import get_db
from .settings.config import settings
from .services.admin import purge_user_rows


logger = logging.getLogger(__name__)


SECRET = (settings.SECRET or "").strip()
if not SECRET or SECRET == "CHANGE_ME_SECRET":
    raise RuntimeError(
        "SECRET environment variable must be set to a strong value; the default placeholder is not allowed."
    )

# -------------------------
# Database Dependency
# -------------------------
async def get_user_db(session=Depends(get_db)):
    yield SQLAlchemyUserDatabase(session, User)

# -------------------------
# User Manager
# -------------------------
class UserManager(IntegerIDMixin, BaseUserManager[User, int]):
    reset_password_token_secret = SECRET
    verification_token_secret = SECRET

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info("User %s registered (awaiting approval)", user.id)

    async def on_after_login(self, user: User, request: Optional[Request] = None,
                             response: Optional[Response] = None):
        await self.user_db.update(user, {"last_login_at": datetime.now(timezone.utc)})
        logger.info("User %s logged in", user.id)

    async def on_after_forgot_password(self, user: User, token: str, request: Optional[Request] = None):
        logger.info("Password reset requested for user %s", user.id)

    async def on_after_reset_password(self, user: User, request: Optional[Request] = None):
        logger.info("Password reset for user %s", user.id)

    async def on_after_request_verify(self, user: User, token: str, request: Optional[Request] = None):
        logger.info("Verification email requested for user %s", user.id)

    async def on_before_delete(self, user: User, request: Optional[Request] = None):
        # same cascade as the admin delete; committed together with the user row
        await purge_user_rows(self.user_db.session, user.id)
        logger.info("Purged data for user %s before delete", user.id)

async def get_user_manager(user_db=Depends(get_user_db)):
    yield UserManager(user_db)

# -------------------------
# Authentication Backends
# -------------------------
cookie_transport = CookieTransport(
    cookie_name="session",
    cookie_max_age=3600 * 24,
    cookie_secure=settings.COOKIE_SECURE,
    cookie_httponly=True,
)

bearer_transport = BearerTransport(tokenUrl="auth/bearer/login")

def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=SECRET, lifetime_seconds=3600 * 24)


# called with the user id after any backend logs a user out
logout_listeners: list[Callable[[int], None]] = []


def on_logout(listener: Callable[[int], None]) -> Callable[[int], None]:
    logout_listeners.append(listener)
    return listener


class SignOutBackend(AuthenticationBackend):
    async def logout(self, strategy: Strategy, user: User, token: str) -> Response:
        response = await super().logout(strategy, user, token)
        for listener in logout_listeners:
            listener(user.id)
        logger.info("User %s logged out via %s", user.id, self.name)
        return response


auth_backend = SignOutBackend(
    name="jwt",
    transport=cookie_transport,
    get_strategy=get_jwt_strategy,
)

bearer_backend = SignOutBackend(
    name="bearer",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

# -------------------------
# FastAPI Users instance
# -------------------------
fastapi_users = FastAPIUsers[User, int](
    get_user_manager,
    [auth_backend, bearer_backend],
)

# Dependency to get currently active user
current_active_user = fastapi_users.current_user(active=True)
