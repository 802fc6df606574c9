import json
import logging
import re
from typing import Any, Optional

import httpx

from planner.settings.config import settings

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    pass


def _extract_json_text(out: str) -> str:
    """Unwrap code fences and surrounding chatter around a JSON object."""
    s = (out or "").strip()
    # Prefer content inside triple backticks if present
    m = re.search(r"```(?:json)?\s*([\s\S]*?)```", s)
    if m and m.group(1).strip():
        s = m.group(1).strip()
    if s.startswith("{"):
        return s
    m = re.search(r"\{.*\}", s, re.S)
    return m.group(0) if m else s


def parse_json_object(raw: str) -> dict:
    try:
        data = json.loads(_extract_json_text(raw))
    except (TypeError, ValueError) as e:
        raise LLMError(f"Model returned non-JSON: {(raw or '')[:200]}") from e
    if not isinstance(data, dict):
        raise LLMError(f"Model returned {type(data).__name__}, expected a JSON object")
    return data


async def complete_json(prompt: str, *, model: Optional[str] = None,
                        timeout: Optional[float] = None) -> dict[str, Any]:
    """
    Send a single user prompt to the chat-completions endpoint in JSON mode
    and return the parsed object. No streaming, no tools.
    """
    if not settings.OPENAI_API_KEY:
        raise LLMError("OPENAI_API_KEY is not configured")

    url = f"{settings.OPENAI_BASE_URL.rstrip('/')}/chat/completions"
    payload = {
        "model": model or settings.OPENAI_MODEL,
        "messages": [{"role": "user", "content": prompt}],
        "response_format": {"type": "json_object"},
    }
    headers = {"Authorization": f"Bearer {settings.OPENAI_API_KEY}"}

    try:
        async with httpx.AsyncClient(timeout=timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS) as client:
            r = await client.post(url, json=payload, headers=headers)
            r.raise_for_status()
            data = r.json()
    except Exception as e:
        raise LLMError(f"LLM request failed: {e}") from e

    try:
        content = data["choices"][0]["message"]["content"] or "{}"
    except (KeyError, IndexError, TypeError) as e:
        raise LLMError("Malformed completion payload") from e
    logger.debug("LLM returned %d chars", len(content))
    return parse_json_object(content)


__all__ = ["LLMError", "complete_json", "parse_json_object"]
