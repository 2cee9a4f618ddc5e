"""
Completion service backed by ChatOpenAI.

Two calls are exposed to the pipeline:
  complete(messages)            → plain text
  complete_with_json(messages)  → parsed JSON (code fences stripped)

Both raise CompletionError; call sites decide whether that is fatal.
Any object with the same two coroutines can stand in (see tests/conftest.py).
"""

from __future__ import annotations

import json
import os
import re
from typing import Any

from langchain_openai import ChatOpenAI

from deep_research.errors import CompletionError, describe_error

_FENCE_OPEN = re.compile(r"```(?:json)?\s*")
_FENCE_CLOSE = re.compile(r"```\s*$")


def _openai_llm(**kwargs) -> ChatOpenAI:
    base_url = os.getenv("OPENAI_BASE_URL")
    if base_url:
        kwargs.setdefault("base_url", base_url)
    return ChatOpenAI(api_key=os.getenv("OPENAI_API_KEY"), **kwargs)


def message_text(content: Any) -> str:
    """Flatten a chat message's content (str or list of content blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


def parse_json_response(text: str) -> Any:
    """Parse a JSON completion, tolerating markdown code fences."""
    cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text.strip())).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise CompletionError(f"Malformed JSON completion: {exc.msg}") from exc


class CompletionService:
    """Thin async wrapper over a LangChain chat model."""

    def __init__(
        self,
        model_name: str = "gpt-4o-mini",
        temperature: float = 0.0,
        llm: Any = None,
    ):
        self.model_name = model_name
        self._llm = llm if llm is not None else _openai_llm(
            model=model_name, temperature=temperature
        )

    async def complete(self, messages: list[dict]) -> str:
        try:
            response = await self._llm.ainvoke(messages)
        except Exception as exc:
            raise CompletionError(
                f"Completion failed ({self.model_name}): {describe_error(exc)}"
            ) from exc
        return message_text(response.content).strip()

    async def complete_with_json(self, messages: list[dict]) -> Any:
        return parse_json_response(await self.complete(messages))
