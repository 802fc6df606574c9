from fastapi import Depends, HTTPException, Request, status
from fastapi_users import models
import logging

from .models import User
from .services.progress import ModuleProgressEngine
from .users import fastapi_users

logger = logging.getLogger(__name__)


# Dependency to enforce authentication (unapproved users are OK)
async def require_authenticated_user(
    user: models.UP = Depends(fastapi_users.current_user(active=True)),
):
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


# Questionnaire and messaging; admins are always let through
async def require_approved_user(
    user: models.UP = Depends(require_authenticated_user),
):
    if not (getattr(user, "is_approved", False) or getattr(user, "is_superuser", False)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="approval pending")
    return user


async def require_admin_user(
    user: models.UP = Depends(fastapi_users.current_user(active=True)),
):
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if not getattr(user, "is_superuser", False):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


async def get_engine(
    request: Request,
    user: User = Depends(require_approved_user),
) -> ModuleProgressEngine:
    """The signed-in user's progress engine, hydrated on first use."""
    engine = request.app.state.engines.get(user.id)
    if not engine.hydrated:
        await engine.hydrate()
    return engine
