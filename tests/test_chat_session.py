import asyncio

from planner.services import scheduler
from planner.services.chat import ACTIVE, CONVERSATIONS, UNREAD, ChatSession
from planner.services.messages import MessageBus, MessageService


class Pushes:
    def __init__(self):
        self.events: list[tuple[str, object]] = []

    async def __call__(self, kind, value):
        self.events.append((kind, value))

    def kinds(self):
        return [k for k, _ in self.events]


async def test_start_registers_three_poll_jobs_and_stop_removes_them(session_maker, make_user):
    user = await make_user("poller@example.com")
    chat = ChatSession(user.id, session_maker, interval=1.0)

    chat.start()
    assert set(chat.job_ids) <= set(scheduler.job_ids())
    assert len(chat.job_ids) == 3

    chat.stop()
    assert not set(chat.job_ids) & set(scheduler.job_ids())


async def test_refresh_pushes_only_changes(session_maker, make_user):
    alice = await make_user("alice@example.com")
    bob = await make_user("bob@example.com")
    pushes = Pushes()
    chat = ChatSession(bob.id, session_maker, on_change=pushes)

    await chat.refresh_all()
    assert pushes.kinds() == [UNREAD, CONVERSATIONS]
    assert chat.unread == 0

    await chat.refresh_all()
    assert pushes.kinds() == [UNREAD, CONVERSATIONS]

    async with session_maker() as db:
        await MessageService(db).send(alice.id, bob.id, "ping")
    await chat.refresh_all()
    assert chat.unread == 1
    assert chat.conversations[0]["participant_id"] == alice.id


async def test_opening_a_conversation_reads_it(session_maker, make_user):
    alice = await make_user("alice@example.com")
    bob = await make_user("bob@example.com")
    async with session_maker() as db:
        await MessageService(db).send(alice.id, bob.id, "ping")

    pushes = Pushes()
    chat = ChatSession(bob.id, session_maker, on_change=pushes)
    await chat.open_conversation(alice.id)
    await chat.refresh_unread()

    assert [m["content"] for m in chat.active_messages] == ["ping"]
    assert chat.unread == 0
    assert ACTIVE in pushes.kinds()


async def test_bus_signal_triggers_refresh(session_maker, make_user):
    alice = await make_user("alice@example.com")
    bob = await make_user("bob@example.com")
    bus = MessageBus()
    got_unread = asyncio.Event()

    async def on_change(kind, value):
        if kind == UNREAD and value == 1:
            got_unread.set()

    # a long interval so only the signal can deliver within the test
    chat = ChatSession(bob.id, session_maker, bus, on_change=on_change, interval=60)
    chat.start()
    try:
        async with session_maker() as db:
            await MessageService(db, bus).send(alice.id, bob.id, "ping")
        await asyncio.wait_for(got_unread.wait(), timeout=2)
    finally:
        chat.stop()
    assert bus.subscriber_count(bob.id) == 0


async def test_poll_jobs_fire_every_interval(session_maker, make_user):
    alice = await make_user("alice@example.com")
    bob = await make_user("bob@example.com")
    seen = asyncio.Event()

    async def on_change(kind, value):
        if kind == UNREAD and value == 1:
            seen.set()

    chat = ChatSession(bob.id, session_maker, on_change=on_change, interval=0.1)
    chat.start()
    try:
        async with session_maker() as db:
            await MessageService(db).send(alice.id, bob.id, "ping")
        await asyncio.wait_for(seen.wait(), timeout=3)
    finally:
        chat.stop()


async def test_event_stream_frames_and_cleanup(session_maker, make_user):
    from planner.routers.messages import chat_event_stream

    alice = await make_user("alice@example.com")
    bob = await make_user("bob@example.com")
    bus = MessageBus()
    events: asyncio.Queue = asyncio.Queue()

    async def push(kind, value):
        await events.put((kind, value))

    chat = ChatSession(bob.id, session_maker, bus, on_change=push, interval=60)
    stream = chat_event_stream(chat, events)

    assert await stream.__anext__() == "event: unread\ndata: 0\n\n"
    assert await stream.__anext__() == "event: conversations\ndata: []\n\n"
    assert len(chat.job_ids) == 3

    async with session_maker() as db:
        await MessageService(db, bus).send(alice.id, bob.id, "ping")
    frame = await asyncio.wait_for(stream.__anext__(), timeout=2)
    assert frame == "event: unread\ndata: 1\n\n"

    await stream.aclose()
    assert not set(chat.job_ids) & set(scheduler.job_ids())
    assert bus.subscriber_count(bob.id) == 0
