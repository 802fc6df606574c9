"""Direct messages between users, plus an in-process invalidation bus.

The bus never carries message content: subscribers are only told that the
conversation between two users changed and re-read through ``MessageService``.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from planner.errors import NotFoundError
from planner.models import Message, User

logger = logging.getLogger(__name__)


class MessageBus:
    def __init__(self) -> None:
        self._subscribers: dict[int, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, user_id: int) -> asyncio.Queue:
        # one pending signal is enough; it only means "something changed"
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._subscribers[user_id].add(queue)
        return queue

    def unsubscribe(self, user_id: int, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(user_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: int) -> int:
        return len(self._subscribers.get(user_id, ()))

    def publish(self, message: Message) -> None:
        participants = (message.sender_id, message.receiver_id)
        signal = {"participants": list(participants)}
        for user_id in set(participants):
            for queue in list(self._subscribers.get(user_id, ())):
                try:
                    queue.put_nowait(signal)
                except asyncio.QueueFull:
                    pass


def message_dict(m: Message) -> dict:
    return {
        "id": m.id,
        "sender_id": m.sender_id,
        "receiver_id": m.receiver_id,
        "content": m.content,
        "read": m.read,
        "created_at": m.created_at,
    }


class MessageService:
    def __init__(self, db: AsyncSession, bus: Optional[MessageBus] = None):
        self.db = db
        self.bus = bus

    async def send(self, sender_id: int, receiver_id: int, content: str) -> Message:
        text = (content or "").strip()
        if not text:
            raise ValueError("Message is empty")
        if sender_id == receiver_id:
            raise ValueError("Cannot message yourself")
        if await self.db.get(User, receiver_id) is None:
            raise NotFoundError("Recipient not found")

        msg = Message(sender_id=sender_id, receiver_id=receiver_id, content=text, read=False)
        self.db.add(msg)
        await self.db.commit()
        await self.db.refresh(msg)
        logger.info("Message %s sent from %s to %s", msg.id, sender_id, receiver_id)
        if self.bus is not None:
            self.bus.publish(msg)
        return msg

    async def conversation(self, user_id: int, other_id: int) -> list[Message]:
        """Both directions, oldest first. Marks what ``user_id`` received as read."""
        await self.db.execute(
            update(Message)
            .where(
                Message.sender_id == other_id,
                Message.receiver_id == user_id,
                Message.read.is_(False),
            )
            .values(read=True)
        )
        await self.db.commit()
        rows = await self.db.execute(
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == user_id, Message.receiver_id == other_id),
                    and_(Message.sender_id == other_id, Message.receiver_id == user_id),
                )
            )
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        return list(rows.scalars().all())

    async def conversations(self, user_id: int) -> list[dict]:
        """Latest message per participant, newest conversation first."""
        rows = (await self.db.execute(
            select(Message)
            .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
        )).scalars().all()

        latest: dict[int, Message] = {}
        for m in rows:
            other = m.receiver_id if m.sender_id == user_id else m.sender_id
            latest.setdefault(other, m)
        if not latest:
            return []

        emails = dict((await self.db.execute(
            select(User.id, User.email).where(User.id.in_(list(latest)))
        )).all())
        unread = await self.unread_by_sender(user_id)
        return [
            {
                "participant_id": other,
                "participant_email": emails.get(other),
                "last_message": message_dict(m),
                "unread": unread.get(other, 0),
            }
            for other, m in latest.items()
        ]

    async def unread_count(self, user_id: int) -> int:
        n = await self.db.scalar(
            select(func.count(Message.id)).where(Message.receiver_id == user_id, Message.read.is_(False))
        )
        return int(n or 0)

    async def unread_by_sender(self, user_id: int) -> dict[int, int]:
        rows = await self.db.execute(
            select(Message.sender_id, func.count(Message.id))
            .where(Message.receiver_id == user_id, Message.read.is_(False))
            .group_by(Message.sender_id)
        )
        return {sender: int(n) for sender, n in rows.all()}

    async def delete(self, message_id: int, user_id: int) -> bool:
        msg = await self.db.get(Message, message_id)
        if msg is None or user_id not in (msg.sender_id, msg.receiver_id):
            return False
        await self.db.delete(msg)
        await self.db.commit()
        if self.bus is not None:
            self.bus.publish(msg)
        return True


__all__ = ["MessageBus", "MessageService", "message_dict"]
