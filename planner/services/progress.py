"""Module progress engine.

Per-user, in-memory view of the questionnaire: which modules are unlocked or
completed, each module's questions (read-through cache), the user's answers,
and a cursor over the active module's questions. Modules unlock strictly in
``order``: module N+1 opens only after module N's analysis succeeds. The
module at order 0 and the capabilities inventory are always open.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from planner.errors import NotFoundError, PersistenceError
from planner.models import CAPABILITIES_SLUG, INTRODUCTION_SLUG
from planner.services.autosave import Autosaver
from planner.services.gateway import PersistenceGateway

if TYPE_CHECKING:
    from planner.services.analysis import AnalysisOrchestrator

logger = logging.getLogger(__name__)

NEXT = "next"
PREV = "prev"


@dataclass(frozen=True)
class ModuleInfo:
    id: int
    title: str
    slug: str
    order: int

    @classmethod
    def from_row(cls, row: Any) -> "ModuleInfo":
        return cls(id=row.id, title=row.title, slug=row.slug, order=row.order)


@dataclass(frozen=True)
class QuestionInfo:
    id: int
    module_id: int
    content: str
    order: int

    @classmethod
    def from_row(cls, row: Any) -> "QuestionInfo":
        return cls(id=row.id, module_id=row.module_id, content=row.content, order=row.order)


@dataclass
class ProgressState:
    unlocked: bool = False
    completed: bool = False
    current_question: Optional[int] = None


@dataclass
class ModuleState:
    questions: list[QuestionInfo] = field(default_factory=list)
    # an empty question list is a valid, cached result
    populated: bool = False
    progress: ProgressState = field(default_factory=ProgressState)


@dataclass
class AdvanceResult:
    module_slug: Optional[str]
    index: int
    question_id: Optional[int]
    moved_module: bool = False
    warning: Optional[str] = None
    analysis: Optional[dict] = None


def is_implicitly_unlocked(module: ModuleInfo) -> bool:
    return module.order == 0 or module.slug == CAPABILITIES_SLUG


class ModuleProgressEngine:
    def __init__(self, gateway: PersistenceGateway, *, autosave_delay: float = 1.0,
                 orchestrator: Optional["AnalysisOrchestrator"] = None):
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.autosaver = Autosaver(self._persist_answer, delay=autosave_delay)
        self.reset()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def reset(self) -> None:
        """Forget everything about the current user."""
        self.autosaver.cancel()
        self.modules: list[ModuleInfo] = []
        self.states: dict[int, ModuleState] = {}
        self.answers: dict[int, str] = {}
        # question ids whose latest edit has not reached the database
        self.unsaved: set[int] = set()
        self.completed_modules: set[int] = set()
        self.selected_practice: Optional[str] = None
        self.selected_niche: Optional[str] = None
        self.active_module: Optional[ModuleInfo] = None
        self.active_index = 0
        self.has_typed = False
        self.hydrated = False

    async def hydrate(self) -> None:
        modules = await self.gateway.list_modules()
        self.modules = [ModuleInfo.from_row(m) for m in modules]
        for m in self.modules:
            self._state(m.id)

        for row in await self.gateway.fetch_progress():
            state = self._state(row.module_id)
            state.progress = ProgressState(
                unlocked=True,
                completed=bool(row.completed),
                current_question=row.current_question,
            )
            if row.completed:
                self.completed_modules.add(row.module_id)

        for module_id in await self.gateway.fetch_completed_ids():
            self.completed_modules.add(module_id)
            progress = self._state(module_id).progress
            progress.unlocked = True
            progress.completed = True

        settings = await self.gateway.get_settings()
        if settings:
            self.selected_practice = settings.selected_practice or self.selected_practice
            self.selected_niche = settings.selected_niche or self.selected_niche

        for m in self.modules:
            if is_implicitly_unlocked(m):
                self._state(m.id).progress.unlocked = True
        self.hydrated = True
        logger.debug("Hydrated %d modules for user %s", len(self.modules), self.gateway.user_id)

    def snapshot(self) -> dict:
        """The subset of state that survives a restart of the client."""
        return {
            "selected_practice": self.selected_practice,
            "selected_niche": self.selected_niche,
            "completed_modules": sorted(self.completed_modules),
        }

    def restore(self, data: dict) -> None:
        self.selected_practice = data.get("selected_practice")
        self.selected_niche = data.get("selected_niche")
        for module_id in data.get("completed_modules") or []:
            self.completed_modules.add(module_id)
            progress = self._state(module_id).progress
            progress.unlocked = True
            progress.completed = True

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def _state(self, module_id: int) -> ModuleState:
        state = self.states.get(module_id)
        if state is None:
            state = self.states[module_id] = ModuleState()
        return state

    def module_by_slug(self, slug: str) -> Optional[ModuleInfo]:
        return next((m for m in self.modules if m.slug == slug), None)

    def module_by_id(self, module_id: int) -> Optional[ModuleInfo]:
        return next((m for m in self.modules if m.id == module_id), None)

    def questions_for(self, module_id: int) -> list[QuestionInfo]:
        return list(self._state(module_id).questions)

    def is_unlocked(self, module_id: int) -> bool:
        module = self.module_by_id(module_id)
        if module is not None and is_implicitly_unlocked(module):
            return True
        state = self.states.get(module_id)
        return module_id in self.completed_modules or bool(state and state.progress.unlocked)

    def is_completed(self, module_id: int) -> bool:
        state = self.states.get(module_id)
        return module_id in self.completed_modules or bool(state and state.progress.completed)

    def unlocked_ids(self) -> set[int]:
        return {m.id for m in self.modules if self.is_unlocked(m.id)}

    def module_summaries(self) -> list[dict]:
        return [
            {
                "id": m.id,
                "title": m.title,
                "slug": m.slug,
                "order": m.order,
                "unlocked": self.is_unlocked(m.id),
                "completed": self.is_completed(m.id),
            }
            for m in self.modules
        ]

    # ------------------------------------------------------------------
    # cursor
    # ------------------------------------------------------------------
    @property
    def questions(self) -> list[QuestionInfo]:
        if self.active_module is None:
            return []
        return self._state(self.active_module.id).questions

    @property
    def current_question(self) -> Optional[QuestionInfo]:
        qs = self.questions
        if 0 <= self.active_index < len(qs):
            return qs[self.active_index]
        return None

    @property
    def is_last_question(self) -> bool:
        return self.active_index >= len(self.questions) - 1

    def answer_for(self, question_id: int) -> str:
        return self.answers.get(question_id) or ""

    def can_advance(self) -> bool:
        """Non-terminal questions need a non-blank answer; the last one may stay empty."""
        if self.active_module is None:
            return False
        q = self.current_question
        if q is None or self.is_last_question:
            return True
        return bool(self.answer_for(q.id).strip())

    def position(self) -> dict:
        q = self.current_question
        return {
            "module": self.active_module.slug if self.active_module else INTRODUCTION_SLUG,
            "index": self.active_index,
            "question_id": q.id if q else None,
            "total": len(self.questions),
            "can_advance": self.can_advance(),
        }

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    async def load(self, slug: str) -> Optional[ModuleInfo]:
        if not self.hydrated:
            await self.hydrate()

        self.autosaver.cancel()
        self.has_typed = False
        self.active_index = 0

        if slug == INTRODUCTION_SLUG:
            # static content only
            self.active_module = None
            return None

        module = self.module_by_slug(slug)
        if module is None:
            row = await self.gateway.get_module_by_slug(slug)
            if row is None:
                raise NotFoundError(f"Module '{slug}' not found")
            module = ModuleInfo.from_row(row)
            self.modules = sorted([*self.modules, module], key=lambda m: m.order)

        state = self._state(module.id)
        if is_implicitly_unlocked(module):
            state.progress.unlocked = True

        await self._ensure_questions(module.id)
        fetched = await self.gateway.fetch_responses(q.id for q in state.questions)
        # answers for other modules stay cached
        self._merge_answers(fetched)

        self.active_module = module
        return module

    async def _ensure_questions(self, module_id: int) -> list[QuestionInfo]:
        state = self._state(module_id)
        if not state.populated:
            rows = await self.gateway.list_questions(module_id)
            state.questions = [QuestionInfo.from_row(r) for r in rows]
            state.populated = True
        return state.questions

    async def load_all_answers(self) -> dict[int, str]:
        """Populate questions and answers for every module (final report input)."""
        if not self.hydrated:
            await self.hydrate()
        ids: list[int] = []
        for m in self.modules:
            ids.extend(q.id for q in await self._ensure_questions(m.id))
        self._merge_answers(await self.gateway.fetch_responses(ids))
        return dict(self.answers)

    def _merge_answers(self, fetched: dict[int, str]) -> None:
        # persisted text wins unless this session holds an edit that never got saved
        for qid, content in fetched.items():
            if qid not in self.unsaved:
                self.answers[qid] = content

    async def _persist_answer(self, question_id: int, text: str) -> None:
        await self.gateway.save_response(question_id, text)
        if self.answers.get(question_id) == text:
            self.unsaved.discard(question_id)

    def set_answer(self, question_id: int, text: str) -> None:
        self.answers[question_id] = text
        self.unsaved.add(question_id)
        q = self.current_question
        if q is not None and q.id == question_id:
            self.has_typed = True
        self.autosaver.schedule(question_id, text)

    async def advance(self, direction: str) -> AdvanceResult:
        if direction == NEXT:
            return await self._next()
        if direction == PREV:
            return await self._prev()
        raise ValueError(f"Unknown direction: {direction!r}")

    def _result(self, **kw: Any) -> AdvanceResult:
        q = self.current_question
        return AdvanceResult(
            module_slug=self.active_module.slug if self.active_module else INTRODUCTION_SLUG,
            index=self.active_index,
            question_id=q.id if q else None,
            **kw,
        )

    async def _next(self) -> AdvanceResult:
        module = self.active_module
        if module is None:
            raise NotFoundError("No active module")
        if not self.can_advance():
            raise ValueError("An answer is required before moving on")

        warning = None
        q = self.current_question
        if q is not None:
            text = self.answer_for(q.id)
            if text.strip():
                self.autosaver.cancel()
                try:
                    await self._persist_answer(q.id, text)
                except PersistenceError as exc:
                    logger.warning("Explicit save of question %s failed: %s", q.id, exc)
                    warning = f"Failed to save your answer - it will stay only in this session. {exc}"

        if q is None or self.is_last_question:
            if self.orchestrator is None:
                raise RuntimeError("No analysis orchestrator attached")
            analysis = await self.orchestrator.generate(self, module)
            return self._result(warning=warning, analysis=analysis)

        self.active_index += 1
        self.has_typed = False
        progress = self._state(module.id).progress
        progress.current_question = self.current_question.id if self.current_question else None
        try:
            await self.gateway.save_bookmark(module.id, progress.current_question)
        except PersistenceError:
            logger.exception("Could not save position in module %s", module.slug)
        return self._result(warning=warning)

    async def _prev(self) -> AdvanceResult:
        module = self.active_module
        if module is None:
            return self._result()
        if self.active_index > 0:
            self.autosaver.cancel()
            self.active_index -= 1
            self.has_typed = False
            return self._result()

        idx = self.modules.index(module) if module in self.modules else 0
        # step over locked modules; with none unlocked before us we land on the introduction
        earlier = [m for m in self.modules[:idx] if self.is_unlocked(m.id)]
        target = earlier[-1].slug if earlier else INTRODUCTION_SLUG
        await self.load(target)
        return self._result(moved_module=True)

    async def unlock_next(self, module_id: int) -> Optional[ModuleInfo]:
        current = self.module_by_id(module_id)
        if current is None:
            await self.hydrate()
            current = self.module_by_id(module_id)
            if current is None:
                return None
        nxt = next((m for m in self.modules if m.order == current.order + 1), None)
        if nxt is None:
            return None

        questions = await self._ensure_questions(nxt.id)
        first = questions[0].id if questions else None

        progress = self._state(nxt.id).progress
        progress.unlocked = True
        if progress.current_question is None:
            progress.current_question = first

        try:
            created = await self.gateway.insert_progress_if_missing(nxt.id, first)
        except PersistenceError:
            logger.exception("Could not persist unlock of module %s", nxt.slug)
        else:
            logger.info("Module %s %s for user %s", nxt.slug,
                        "unlocked" if created else "already unlocked", self.gateway.user_id)
        return nxt

    async def mark_completed(self, module_id: int) -> None:
        self.completed_modules.add(module_id)
        progress = self._state(module_id).progress
        progress.unlocked = True
        progress.completed = True
        try:
            await self.gateway.mark_completed(module_id)
        except PersistenceError:
            logger.exception("Could not persist completion of module %s", module_id)

    async def set_selected_practice(self, practice: Optional[str]) -> Optional[str]:
        """Returns a warning if the choice could not be saved."""
        self.selected_practice = practice
        if practice:
            try:
                await self.gateway.upsert_settings(selected_practice=practice)
            except PersistenceError as exc:
                logger.warning("Saving selected practice failed: %s", exc)
                return str(exc)
        return None

    async def set_selected_niche(self, niche: Optional[str]) -> Optional[str]:
        self.selected_niche = niche
        if niche:
            try:
                await self.gateway.upsert_settings(selected_niche=niche)
            except PersistenceError as exc:
                logger.warning("Saving selected niche failed: %s", exc)
                return str(exc)
        return None

    async def fetch_single_response(self, question_id: int) -> str:
        try:
            content = await self.gateway.fetch_response(question_id) or ""
        except PersistenceError:
            logger.exception("Fetching response for question %s failed", question_id)
            return ""
        self.answers[question_id] = content
        self.unsaved.discard(question_id)
        return content


class EngineRegistry:
    """One engine per signed-in user, owned by the application."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], *,
                 generate: Optional[Callable[[str], Awaitable[dict]]] = None,
                 autosave_delay: float = 1.0):
        self.session_maker = session_maker
        self._generate = generate
        self.autosave_delay = autosave_delay
        self._engines: dict[int, ModuleProgressEngine] = {}

    def get(self, user_id: int) -> ModuleProgressEngine:
        engine = self._engines.get(user_id)
        if engine is None:
            from planner.services.analysis import AnalysisOrchestrator

            orchestrator = AnalysisOrchestrator(generate=self._generate) if self._generate else AnalysisOrchestrator()
            engine = ModuleProgressEngine(
                PersistenceGateway(self.session_maker, user_id),
                autosave_delay=self.autosave_delay,
                orchestrator=orchestrator,
            )
            self._engines[user_id] = engine
        return engine

    def discard(self, user_id: int) -> None:
        engine = self._engines.pop(user_id, None)
        if engine is not None:
            engine.reset()

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._engines

    def __len__(self) -> int:
        return len(self._engines)


__all__ = [
    "AdvanceResult",
    "EngineRegistry",
    "ModuleInfo",
    "ModuleProgressEngine",
    "NEXT",
    "PREV",
    "QuestionInfo",
    "is_implicitly_unlocked",
]
