from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from planner.errors import NotFoundError
from planner.models import INTRODUCTION_SLUG
from planner.schemas import (
    AdvanceIn,
    AdvanceOut,
    AnswerIn,
    AnswerOut,
    ModuleSummary,
    ModuleView,
    QuestionRead,
    SelectionIn,
    SelectionOut,
)
from planner.services.progress import ModuleInfo, ModuleProgressEngine
from planner.utils import get_engine

router = APIRouter(prefix="/api", tags=["modules"])
logger = logging.getLogger(__name__)


def _summary(engine: ModuleProgressEngine, m: ModuleInfo) -> ModuleSummary:
    return ModuleSummary(
        id=m.id, title=m.title, slug=m.slug, order=m.order,
        unlocked=engine.is_unlocked(m.id), completed=engine.is_completed(m.id),
    )


async def _cached_analysis(engine: ModuleProgressEngine, slug: str) -> Optional[dict]:
    row = await engine.gateway.get_settings()
    if not row or not row.analyses:
        return None
    return row.analyses.get(slug)


async def _load_unlocked(engine: ModuleProgressEngine, slug: str) -> Optional[ModuleInfo]:
    known = engine.module_by_slug(slug)
    if known is not None and not engine.is_unlocked(known.id):
        raise HTTPException(status_code=403, detail="Module is locked")
    module = await engine.load(slug)
    if module is not None and not engine.is_unlocked(module.id):
        await engine.load(INTRODUCTION_SLUG)
        raise HTTPException(status_code=403, detail="Module is locked")
    return module


async def _activate(engine: ModuleProgressEngine, slug: str) -> Optional[ModuleInfo]:
    """Make ``slug`` the active module unless it already is (keeps the cursor)."""
    if slug == INTRODUCTION_SLUG:
        if engine.active_module is not None:
            await engine.load(slug)
        return None
    active = engine.active_module
    if active is not None and active.slug == slug and engine.is_unlocked(active.id):
        return active
    return await _load_unlocked(engine, slug)


async def _view(engine: ModuleProgressEngine, module: Optional[ModuleInfo]) -> ModuleView:
    if module is None:
        return ModuleView(position=engine.position())
    return ModuleView(
        module=_summary(engine, module),
        questions=[
            QuestionRead(id=q.id, content=q.content, order=q.order, answer=engine.answer_for(q.id))
            for q in engine.questions_for(module.id)
        ],
        position=engine.position(),
        analysis=await _cached_analysis(engine, module.slug),
    )


@router.get("/modules", response_model=list[ModuleSummary])
async def list_modules(engine: ModuleProgressEngine = Depends(get_engine)):
    return [_summary(engine, m) for m in engine.modules]


@router.get("/modules/{slug}", response_model=ModuleView)
async def load_module(slug: str, engine: ModuleProgressEngine = Depends(get_engine)):
    # always a fresh load: resets the cursor to the first question
    module = await _load_unlocked(engine, slug)
    return await _view(engine, module)


@router.put("/modules/{slug}/answers/{question_id}", response_model=AnswerOut)
async def set_answer(
    slug: str,
    question_id: int,
    payload: AnswerIn,
    engine: ModuleProgressEngine = Depends(get_engine),
):
    module = await _activate(engine, slug)
    if module is None or question_id not in {q.id for q in engine.questions_for(module.id)}:
        raise HTTPException(status_code=404, detail="Question not found in this module")
    engine.set_answer(question_id, payload.text)
    return AnswerOut(
        question_id=question_id,
        pending=engine.autosaver.pending_question == question_id,
        last_error=engine.autosaver.last_error,
    )


@router.post("/modules/{slug}/advance", response_model=AdvanceOut)
async def advance(
    slug: str,
    payload: AdvanceIn,
    engine: ModuleProgressEngine = Depends(get_engine),
):
    module = await _activate(engine, slug)
    if module is None and payload.direction == "next":
        # leaving the introduction opens the first module
        if not engine.modules:
            raise NotFoundError("No modules configured")
        await engine.load(engine.modules[0].slug)
        return AdvanceOut(position=engine.position(), moved_module=True)
    try:
        result = await engine.advance(payload.direction)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AdvanceOut(
        position=engine.position(),
        moved_module=result.moved_module,
        warning=result.warning,
        analysis=result.analysis,
    )


@router.post("/modules/{slug}/analysis")
async def run_analysis(slug: str, engine: ModuleProgressEngine = Depends(get_engine)):
    module = await _activate(engine, slug)
    if module is None:
        raise HTTPException(status_code=404, detail="Nothing to analyze")
    await engine.autosaver.flush()
    result = await engine.orchestrator.generate(engine, module)
    return {"slug": module.slug, "analysis": result}


@router.get("/modules/{slug}/analysis")
async def get_analysis(slug: str, engine: ModuleProgressEngine = Depends(get_engine)):
    result = await _cached_analysis(engine, slug)
    if result is None:
        raise HTTPException(status_code=404, detail="No analysis yet")
    return {"slug": slug, "analysis": result}


@router.put("/selection/practice", response_model=SelectionOut)
async def select_practice(payload: SelectionIn, engine: ModuleProgressEngine = Depends(get_engine)):
    warning = await engine.set_selected_practice(payload.value)
    return SelectionOut(
        selected_practice=engine.selected_practice,
        selected_niche=engine.selected_niche,
        warning=warning,
    )


@router.put("/selection/niche", response_model=SelectionOut)
async def select_niche(payload: SelectionIn, engine: ModuleProgressEngine = Depends(get_engine)):
    warning = await engine.set_selected_niche(payload.value)
    return SelectionOut(
        selected_practice=engine.selected_practice,
        selected_niche=engine.selected_niche,
        warning=warning,
    )


@router.get("/responses/{question_id}")
async def fetch_response(question_id: int, engine: ModuleProgressEngine = Depends(get_engine)):
    return {"question_id": question_id, "content": await engine.fetch_single_response(question_id)}


__all__ = ["router"]
