import pytest
from sqlalchemy import func, select

from planner.errors import NotFoundError, PersistenceError
from planner.models import Module, ModuleProgress, Question
from planner.services.gateway import PersistenceGateway
from planner.services.progress import ModuleProgressEngine


@pytest.fixture
async def user(make_user):
    return await make_user("engine@example.com")


@pytest.fixture
def engine(registry, user) -> ModuleProgressEngine:
    return registry.get(user.id)


async def _answer_all(engine, texts):
    for text in texts:
        engine.set_answer(engine.current_question.id, text)
        result = await engine.advance("next")
    return result


class TestUnlocking:
    async def test_implicit_modules_are_unlocked_without_progress_rows(self, engine, seeded):
        await engine.hydrate()
        assert engine.is_unlocked(seeded["practice-overview"]["id"])
        assert engine.is_unlocked(seeded["capabilities-inventory"]["id"])
        assert not engine.is_unlocked(seeded["strategy-framework"]["id"])
        assert not engine.is_unlocked(seeded["opportunity-map"]["id"])

    async def test_module_locked_until_previous_analysis_succeeds(self, engine, seeded, fake_llm):
        strategy = seeded["strategy-framework"]["id"]
        await engine.load("capabilities-inventory")
        assert not engine.is_unlocked(strategy)

        await _answer_all(engine, ["I do X", "I do Y", "I do Z"])

        assert engine.is_unlocked(strategy)
        assert engine.is_completed(seeded["capabilities-inventory"]["id"])
        assert len(fake_llm.prompts) == 1

    async def test_failed_analysis_keeps_next_module_locked(self, engine, seeded, fake_llm):
        from planner.errors import AnalysisError
        from planner.llm_client import LLMError

        fake_llm.error = LLMError("timeout")
        await engine.load("capabilities-inventory")
        engine.set_answer(seeded["capabilities-inventory"]["questions"][0], "a")
        await engine.advance("next")
        engine.set_answer(seeded["capabilities-inventory"]["questions"][1], "b")
        await engine.advance("next")

        with pytest.raises(AnalysisError, match="Failed to analyze responses"):
            await engine.advance("next")
        assert not engine.is_unlocked(seeded["strategy-framework"]["id"])

    async def test_unlock_next_twice_keeps_one_row_and_bookmark(self, engine, seeded, session_maker, user):
        strategy = seeded["strategy-framework"]
        await engine.hydrate()
        await engine.unlock_next(seeded["capabilities-inventory"]["id"])
        # the user moved on inside the unlocked module
        await engine.gateway.save_bookmark(strategy["id"], strategy["questions"][1])

        await engine.unlock_next(seeded["capabilities-inventory"]["id"])

        async with session_maker() as db:
            rows = (await db.execute(
                select(ModuleProgress).where(ModuleProgress.user_id == user.id, ModuleProgress.module_id == strategy["id"])
            )).scalars().all()
        assert len(rows) == 1
        assert rows[0].current_question == strategy["questions"][1]
        assert rows[0].completed is False

    async def test_unlock_next_of_last_module_is_noop(self, engine, seeded, session_maker):
        await engine.hydrate()
        assert await engine.unlock_next(seeded["final-report"]["id"]) is None
        async with session_maker() as db:
            assert await db.scalar(select(func.count(ModuleProgress.id))) == 0

    async def test_unlock_survives_persistence_failure(self, engine, seeded, monkeypatch):
        await engine.hydrate()

        async def broken(*args, **kwargs):
            raise PersistenceError("db down")

        monkeypatch.setattr(engine.gateway, "insert_progress_if_missing", broken)
        nxt = await engine.unlock_next(seeded["capabilities-inventory"]["id"])
        assert nxt.slug == "strategy-framework"
        assert engine.is_unlocked(nxt.id)

    async def test_hydrate_reads_progress_and_markers(self, registry, engine, seeded, user):
        await engine.load("capabilities-inventory")
        await _answer_all(engine, ["x", "y", "z"])
        registry.discard(user.id)

        fresh = registry.get(user.id)
        await fresh.hydrate()
        assert fresh.is_completed(seeded["capabilities-inventory"]["id"])
        assert fresh.is_unlocked(seeded["strategy-framework"]["id"])


class TestLoad:
    async def test_unknown_slug_raises(self, engine, seeded):
        with pytest.raises(NotFoundError):
            await engine.load("does-not-exist")

    async def test_introduction_is_a_sentinel(self, engine, seeded):
        assert await engine.load("introduction") is None
        assert engine.active_module is None
        assert engine.questions == []

    async def test_questions_are_fetched_once(self, engine, seeded, monkeypatch):
        calls = []
        original = engine.gateway.list_questions

        async def counting(module_id):
            calls.append(module_id)
            return await original(module_id)

        monkeypatch.setattr(engine.gateway, "list_questions", counting)
        await engine.load("final-report")
        await engine.load("final-report")
        await engine.load("practice-overview")
        await engine.load("practice-overview")
        # the empty question list of final-report is cached too
        assert calls == [seeded["final-report"]["id"], seeded["practice-overview"]["id"]]

    async def test_load_merges_answers_of_other_modules(self, engine, seeded):
        first = seeded["practice-overview"]["questions"][0]
        await engine.gateway.save_response(seeded["capabilities-inventory"]["questions"][0], "skills")
        await engine.load("practice-overview")
        engine.set_answer(first, "cached")

        await engine.load("capabilities-inventory")

        assert engine.answer_for(first) == "cached"
        assert engine.answer_for(seeded["capabilities-inventory"]["questions"][0]) == "skills"
        assert engine.active_index == 0

    async def test_saved_answer_round_trips_after_cache_reset(self, registry, engine, seeded, user):
        qid = seeded["practice-overview"]["questions"][0]
        await engine.load("practice-overview")
        engine.set_answer(qid, "  We advise retailers  ")
        await engine.advance("next")

        registry.discard(user.id)
        fresh = registry.get(user.id)
        await fresh.load("practice-overview")
        assert fresh.answer_for(qid) == "  We advise retailers  "
        assert fresh.answer_for(qid).strip() == "We advise retailers"

    async def test_reload_keeps_unsaved_edits_and_refreshes_saved_ones(
        self, engine, seeded, session_maker, user, monkeypatch
    ):
        q0, q1 = seeded["practice-overview"]["questions"]
        await engine.load("practice-overview")
        engine.set_answer(q1, "saved here")
        await engine.autosaver.flush()

        async def broken(*args):
            raise PersistenceError("db down")

        monkeypatch.setattr(engine.gateway, "save_response", broken)
        engine.set_answer(q0, "typed while offline")
        await engine.autosaver.flush()
        monkeypatch.undo()

        other_tab = PersistenceGateway(session_maker, user.id)
        await other_tab.save_response(q0, "other tab q0")
        await other_tab.save_response(q1, "other tab q1")

        await engine.load("practice-overview")
        assert engine.answer_for(q0) == "typed while offline"
        assert engine.answer_for(q1) == "other tab q1"

        answers = await engine.load_all_answers()
        assert answers[q0] == "typed while offline"
        assert answers[q1] == "other tab q1"


class TestAdvance:
    async def test_blank_answer_blocks_non_last_question(self, engine, seeded):
        await engine.load("practice-overview")
        engine.set_answer(engine.current_question.id, "   ")
        assert not engine.can_advance()
        with pytest.raises(ValueError):
            await engine.advance("next")
        assert engine.active_index == 0

    async def test_last_question_may_stay_blank(self, engine, seeded, fake_llm):
        await engine.load("practice-overview")
        engine.set_answer(engine.current_question.id, "retail")
        await engine.advance("next")

        assert engine.is_last_question
        assert engine.can_advance()
        result = await engine.advance("next")

        assert result.analysis == fake_llm.result
        assert engine.is_completed(seeded["practice-overview"]["id"])

    async def test_next_saves_answer_and_moves_cursor(self, engine, seeded):
        qid = seeded["practice-overview"]["questions"][0]
        await engine.load("practice-overview")
        engine.set_answer(qid, "answer")

        result = await engine.advance("next")

        assert result.index == 1
        assert result.question_id == seeded["practice-overview"]["questions"][1]
        assert result.warning is None
        assert engine.autosaver.pending_question is None
        assert await engine.gateway.fetch_response(qid) == "answer"

    async def test_explicit_save_failure_is_a_warning(self, engine, seeded, monkeypatch):
        qid = seeded["practice-overview"]["questions"][0]
        await engine.load("practice-overview")

        async def broken(*args):
            raise PersistenceError("db down")

        monkeypatch.setattr(engine.gateway, "save_response", broken)
        engine.set_answer(qid, "kept locally")
        result = await engine.advance("next")

        assert result.warning and "db down" in result.warning
        assert result.index == 1
        assert engine.answer_for(qid) == "kept locally"

    async def test_module_without_questions_goes_straight_to_analysis(self, engine, seeded, fake_llm):
        await engine.load("final-report")
        assert engine.can_advance()
        result = await engine.advance("next")
        assert result.analysis == fake_llm.result

    async def test_prev_walks_back_through_modules(self, engine, seeded):
        await engine.load("capabilities-inventory")
        engine.set_answer(engine.current_question.id, "x")
        await engine.advance("next")

        back = await engine.advance("prev")
        assert (back.module_slug, back.index, back.moved_module) == ("capabilities-inventory", 0, False)

        back = await engine.advance("prev")
        assert (back.module_slug, back.index, back.moved_module) == ("practice-overview", 0, True)

        back = await engine.advance("prev")
        assert back.module_slug == "introduction"
        assert engine.active_module is None

    async def test_prev_steps_over_locked_modules(self, registry, session_maker, user):
        async with session_maker() as db:
            ids = {}
            for order, slug in enumerate(["welcome", "locked-one", "capabilities-inventory"]):
                m = Module(title=slug.title(), slug=slug, order=order)
                db.add(m)
                await db.flush()
                db.add(Question(module_id=m.id, content=f"About {slug}?", order=0))
                ids[slug] = m.id
            await db.commit()

        engine = registry.get(user.id)
        await engine.load("capabilities-inventory")
        back = await engine.advance("prev")

        assert (back.module_slug, back.index, back.moved_module) == ("welcome", 0, True)
        assert not engine.is_unlocked(ids["locked-one"])

    async def test_next_persists_the_bookmark(self, engine, seeded):
        q0, q1 = seeded["practice-overview"]["questions"]
        await engine.load("practice-overview")
        engine.set_answer(q0, "retail")
        await engine.advance("next")

        [row] = await engine.gateway.fetch_progress()
        assert row.module_id == seeded["practice-overview"]["id"]
        assert row.current_question == q1
        assert row.completed is False

    async def test_bookmark_failure_does_not_block(self, engine, seeded, monkeypatch):
        async def broken(*args):
            raise PersistenceError("db down")

        monkeypatch.setattr(engine.gateway, "save_bookmark", broken)
        await engine.load("practice-overview")
        engine.set_answer(engine.current_question.id, "retail")
        result = await engine.advance("next")
        assert result.index == 1

    async def test_unknown_direction(self, engine, seeded):
        await engine.load("practice-overview")
        with pytest.raises(ValueError):
            await engine.advance("sideways")


class TestSelectionAndReset:
    async def test_selection_is_persisted(self, registry, engine, seeded, user):
        await engine.hydrate()
        assert await engine.set_selected_practice("Ops Consulting") is None
        assert await engine.set_selected_niche("Logistics") is None

        registry.discard(user.id)
        fresh = registry.get(user.id)
        await fresh.hydrate()
        assert (fresh.selected_practice, fresh.selected_niche) == ("Ops Consulting", "Logistics")

    async def test_selection_failure_is_reported_not_raised(self, engine, seeded, monkeypatch):
        async def broken(**fields):
            raise PersistenceError("db down")

        monkeypatch.setattr(engine.gateway, "upsert_settings", broken)
        warning = await engine.set_selected_practice("Ops Consulting")
        assert "db down" in warning
        assert engine.selected_practice == "Ops Consulting"

    async def test_reset_forgets_everything(self, engine, seeded):
        await engine.load("practice-overview")
        engine.set_answer(engine.current_question.id, "secret")
        await engine.set_selected_practice("Ops")

        engine.reset()

        assert engine.answers == {}
        assert engine.selected_practice is None
        assert engine.active_module is None
        assert not engine.hydrated
        assert engine.autosaver.pending_question is None

    async def test_snapshot_restore(self, engine, seeded):
        await engine.hydrate()
        await engine.mark_completed(seeded["practice-overview"]["id"])
        engine.selected_practice = "Ops"
        data = engine.snapshot()

        engine.reset()
        engine.restore(data)

        assert engine.selected_practice == "Ops"
        assert engine.is_completed(seeded["practice-overview"]["id"])

    async def test_fetch_single_response(self, engine, seeded):
        qid = seeded["practice-overview"]["questions"][1]
        await engine.gateway.save_response(qid, "from another tab")
        assert await engine.fetch_single_response(qid) == "from another tab"
        assert engine.answer_for(qid) == "from another tab"
