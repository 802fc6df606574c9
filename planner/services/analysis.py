"""Turn a module's answers into a structured analysis and advance progress."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from planner import llm_client
from planner.errors import AnalysisError, PersistenceError
from planner.models import FINAL_REPORT_SLUG
from planner.services.prompts import PRACTICE_CONTEXT_SLUGS, build_prompt

if TYPE_CHECKING:
    from planner.services.progress import ModuleInfo, ModuleProgressEngine

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str], Awaitable[dict]]


class AnalysisOrchestrator:
    def __init__(self, generate: Optional[GenerateFn] = None):
        self._generate = generate or llm_client.complete_json

    async def collect_answers(self, engine: "ModuleProgressEngine", module: "ModuleInfo") -> list[str]:
        if module.slug == FINAL_REPORT_SLUG:
            # the report synthesizes every module
            answers = await engine.load_all_answers()
            return list(answers.values())
        return [engine.answer_for(q.id) for q in engine.questions_for(module.id)]

    async def generate(self, engine: "ModuleProgressEngine", module: "ModuleInfo") -> dict:
        """
        Build the module prompt, call the model, store the result and unlock
        the next module. Re-running with the same answers is safe.
        """
        answers = await self.collect_answers(engine, module)
        practice = engine.selected_practice if module.slug in PRACTICE_CONTEXT_SLUGS else None
        prompt = build_prompt(module.slug, answers, practice)

        try:
            result = await self._generate(prompt)
        except llm_client.LLMError as e:
            raise AnalysisError(f"Failed to analyze responses: {e}") from e
        if not isinstance(result, dict):
            raise AnalysisError("Failed to analyze responses: model did not return a JSON object")

        try:
            await engine.gateway.save_analysis(module.slug, result)
        except PersistenceError:
            # the user still sees the result; retrying re-saves it
            logger.exception("Saving analysis for %s failed", module.slug)

        await engine.mark_completed(module.id)
        await engine.unlock_next(module.id)
        logger.info("Analysis for module %s generated for user %s", module.slug, engine.gateway.user_id)
        return result


__all__ = ["AnalysisOrchestrator"]
