from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from planner.database import get_db
from planner.models import User
from planner.schemas import ConversationRead, MessageCreate, MessageRead
from planner.services.chat import ChatSession
from planner.services.messages import MessageService
from planner.settings.config import settings
from planner.utils import require_approved_user

router = APIRouter(prefix="/api/messages", tags=["messages"])
logger = logging.getLogger(__name__)


def _service(request: Request, db: AsyncSession) -> MessageService:
    return MessageService(db, request.app.state.message_bus)


@router.post("", response_model=MessageRead, status_code=201)
async def send_message(
    payload: MessageCreate,
    request: Request,
    user: User = Depends(require_approved_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await _service(request, db).send(user.id, payload.receiver_id, payload.content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/conversations", response_model=list[ConversationRead])
async def list_conversations(
    request: Request,
    user: User = Depends(require_approved_user),
    db: AsyncSession = Depends(get_db),
):
    return await _service(request, db).conversations(user.id)


@router.get("/unread")
async def unread(
    request: Request,
    user: User = Depends(require_approved_user),
    db: AsyncSession = Depends(get_db),
):
    svc = _service(request, db)
    return {"count": await svc.unread_count(user.id), "by_sender": await svc.unread_by_sender(user.id)}


async def chat_event_stream(chat: ChatSession, events: asyncio.Queue) -> AsyncIterator[str]:
    """SSE frames for one chat session; its poll jobs live as long as the stream."""
    chat.start()
    try:
        await chat.refresh_all()
        while True:
            kind, value = await events.get()
            yield f"event: {kind}\ndata: {json.dumps(jsonable_encoder(value), default=str)}\n\n"
    finally:
        chat.stop()
        logger.debug("Chat stream closed for user %s", chat.user_id)


@router.get("/stream")
async def stream_messages(
    request: Request,
    other_id: Optional[int] = Query(None, alias="with"),
    user: User = Depends(require_approved_user),
):
    """Pushes ``unread``, ``conversations`` and ``active`` events whenever a value changes.

    ``?with=<user id>`` keeps that conversation open; reconnect to switch.
    """
    events: asyncio.Queue = asyncio.Queue()

    async def push(kind: str, value: Any) -> None:
        await events.put((kind, value))

    state = request.app.state
    chat = ChatSession(
        user.id,
        state.session_maker,
        state.message_bus,
        on_change=push,
        interval=settings.POLL_INTERVAL_SECONDS,
    )
    if other_id is not None:
        await chat.open_conversation(other_id)
    return StreamingResponse(
        chat_event_stream(chat, events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{other_id}", response_model=list[MessageRead])
async def conversation(
    other_id: int,
    request: Request,
    user: User = Depends(require_approved_user),
    db: AsyncSession = Depends(get_db),
):
    return await _service(request, db).conversation(user.id, other_id)


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    request: Request,
    user: User = Depends(require_approved_user),
    db: AsyncSession = Depends(get_db),
):
    if not await _service(request, db).delete(message_id, user.id):
        raise HTTPException(status_code=404, detail="Message not found")
    return {"ok": True}


__all__ = ["router"]
