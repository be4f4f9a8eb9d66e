"""Streaming access to the language model.

This module turns a conversation (a list of {"role", "content"} turns) into
an async stream of text deltas from Claude. The system prompt, which embeds
the whole tool catalog, is prepended here so callers never deal with it.

The stream is an async generator: calling aclose() on it stops reading and
closes the underlying HTTP response, which ends generation server-side.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import SecretStr

from clinic_agent.config import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_MODEL,
    LLM_MAX_TOKENS,
    LLM_TEMPERATURE,
)
from clinic_agent.tools.definitions import tool_catalog

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = f"""\
You are a helpful healthcare assistant for a FHIR-based clinic management system.
You can help with:
- Understanding patient records and medical data
- Explaining FHIR resources and healthcare terminology
- Creating and managing patients and practitioners
- Scheduling and updating appointments
- Recording encounters, vital signs and lab observations
- Documenting conditions and prescribing medications

Always be professional, accurate, and helpful. Never invent record ids: look
records up with a tool first. If you're unsure about something medical,
recommend consulting a healthcare professional.

{tool_catalog()}"""

_model: ChatAnthropic | None = None


def _get_model() -> ChatAnthropic:
    """Create the chat model lazily so importing needs no API key."""
    global _model  # noqa: PLW0603
    if _model is None:
        _model = ChatAnthropic(
            model_name=ANTHROPIC_MODEL,  # type: ignore[call-arg]
            anthropic_api_key=SecretStr(ANTHROPIC_API_KEY),  # type: ignore[call-arg]
            temperature=LLM_TEMPERATURE,
            max_tokens=LLM_MAX_TOKENS,  # type: ignore[call-arg]
            streaming=True,
        )
    return _model


def to_langchain_messages(turns: list[dict[str, str]]) -> list[BaseMessage]:
    """Map {"role", "content"} turns onto LangChain messages, system first."""
    messages: list[BaseMessage] = [SystemMessage(content=SYSTEM_PROMPT)]
    for turn in turns:
        if turn["role"] == "assistant":
            messages.append(AIMessage(content=turn["content"]))
        elif turn["role"] == "user":
            messages.append(HumanMessage(content=turn["content"]))
        else:
            logger.debug("Dropping turn with role %r", turn["role"])
    return messages


def _chunk_text(content: Any) -> str:
    """Text from an AIMessageChunk's content (a str, or a list of parts)."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


async def stream_chat(turns: list[dict[str, str]]) -> AsyncIterator[str]:
    """Stream the model's reply to a conversation as text deltas.

    When ANTHROPIC_API_KEY is not set (e.g., in CI), yields a single
    placeholder delta so the rest of the system still works end to end.
    """
    if not ANTHROPIC_API_KEY:
        last_user = next((t["content"] for t in reversed(turns) if t["role"] == "user"), "")
        yield f"[Assistant placeholder: no API key configured] You asked: {last_user}"
        return

    model = _get_model()
    # Closing this generator closes the model response with it
    async with aclosing(model.astream(to_langchain_messages(turns))) as stream:
        async for chunk in stream:
            text = _chunk_text(chunk.content)
            if text:
                yield text
