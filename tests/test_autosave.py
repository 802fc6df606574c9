import asyncio

from planner.errors import PersistenceError
from planner.services.autosave import Autosaver
from planner.services.gateway import PersistenceGateway


class RecordingSave:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple[int, str]] = []
        self.fail = fail

    async def __call__(self, question_id: int, text: str) -> None:
        self.calls.append((question_id, text))
        if self.fail:
            raise PersistenceError("write rejected")


async def test_only_last_edit_in_window_is_written():
    save = RecordingSave()
    saver = Autosaver(save, delay=0.05)

    for text in ("H", "He", "Hel", "Hello"):
        saver.schedule(1, text)
        await asyncio.sleep(0.01)
    await saver.flush()

    assert save.calls == [(1, "Hello")]


async def test_blank_text_is_never_written():
    save = RecordingSave()
    saver = Autosaver(save, delay=0.01)
    saver.schedule(1, "   ")
    await saver.flush()
    assert save.calls == []


async def test_cancel_drops_pending_write():
    save = RecordingSave()
    saver = Autosaver(save, delay=0.05)
    saver.schedule(1, "draft")
    assert saver.pending_question == 1

    saver.cancel()
    await asyncio.sleep(0.08)

    assert saver.pending_question is None
    assert save.calls == []


async def test_failure_is_recorded_not_raised():
    save = RecordingSave(fail=True)
    saver = Autosaver(save, delay=0.01)
    saver.schedule(7, "text")
    await saver.flush()

    assert save.calls == [(7, "text")]
    assert saver.last_error == "write rejected"

    save.fail = False
    saver.schedule(7, "text again")
    await saver.flush()
    assert saver.last_error is None


async def test_engine_cache_survives_failed_autosave(registry, seeded, make_user, monkeypatch):
    user = await make_user("tabs@example.com")
    engine = registry.get(user.id)
    await engine.load("practice-overview")
    qid = engine.current_question.id

    async def broken(*args):
        raise PersistenceError("db down")

    monkeypatch.setattr(engine.autosaver, "_save", broken)
    engine.set_answer(qid, "typed while offline")
    await engine.autosaver.flush()

    assert engine.answer_for(qid) == "typed while offline"
    assert engine.autosaver.last_error == "db down"


async def test_two_tabs_last_timer_wins(session_maker, seeded, make_user):
    user = await make_user("two-tabs@example.com")
    qid = seeded["practice-overview"]["questions"][0]
    tab_a = Autosaver(PersistenceGateway(session_maker, user.id).save_response, delay=0.02)
    tab_b = Autosaver(PersistenceGateway(session_maker, user.id).save_response, delay=0.06)

    tab_b.schedule(qid, "from tab B")
    tab_a.schedule(qid, "from tab A")
    await tab_a.flush()
    await tab_b.flush()

    assert await PersistenceGateway(session_maker, user.id).fetch_response(qid) == "from tab B"
