"""Consuming model output as a stream, cut short at the first tool block.

A stream source is any callable that takes the conversation turns and
returns an async iterator of text deltas. Two are provided:

- clinic_agent.llm.stream_chat talks to the model directly.
- SSEChatTransport reads the server's POST /api/ai/chat event stream,
  the way a remote client would.

StreamConsumer reads deltas into a buffer and feeds a BlockScanner as it
goes. The moment a tool block closes it closes the stream (tearing down the
HTTP response) instead of draining it: whatever the model writes after a
tool request is wasted until the tool's result is known.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from clinic_agent.config import CHAT_API_URL, REQUEST_TIMEOUT
from clinic_agent.parser import BlockScanner

logger = logging.getLogger(__name__)

StreamSource = Callable[[list[dict[str, str]]], AsyncIterator[str]]
DeltaCallback = Callable[[str], Awaitable[None] | None]


class StreamTransportError(Exception):
    """The model stream failed (connection, HTTP status, backend error)."""


class StreamCancelled(Exception):
    """Raised by a transport that is read after its consumer cancelled it."""


@dataclass
class StreamResult:
    """What one pass over a model stream produced."""

    text: str
    stopped_for_block: bool
    chunks_read: int = 0


async def _close_stream(stream: Any) -> None:
    close = getattr(stream, "aclose", None)
    if close is not None:
        await close()


class StreamConsumer:
    """Reads one model stream, stopping early when a tool block closes.

    Args:
        source: Produces the delta stream for a list of turns.
    """

    def __init__(self, source: StreamSource) -> None:
        self._source = source

    async def consume(
        self,
        history: list[dict[str, str]],
        on_delta: DeltaCallback | None = None,
    ) -> StreamResult:
        """Stream a reply to history.

        on_delta is called with the whole buffer after every delta, before
        any block has necessarily been recognised, so a UI can render token
        by token.

        Raises:
            Whatever the source raises, except the cancellation errors of a
            stream this consumer closed itself.
        """
        scanner = BlockScanner()
        buffer = ""
        chunks_read = 0
        cancelled = False

        stream = self._source(history)
        try:
            async for delta in stream:
                chunks_read += 1
                buffer += delta

                if on_delta is not None:
                    maybe_awaitable = on_delta(buffer)
                    if inspect.isawaitable(maybe_awaitable):
                        await maybe_awaitable

                scanner.feed(delta)
                if scanner.block_closed:
                    cancelled = True
                    logger.info("Tool block closed after %d chunks; cancelling stream", chunks_read)
                    await _close_stream(stream)
                    break
        except (StreamCancelled, httpx.StreamClosed):
            if not cancelled:
                raise
            logger.debug("Ignoring cancellation error from a stream we closed")
        finally:
            if not cancelled:
                await _close_stream(stream)

        return StreamResult(text=buffer, stopped_for_block=cancelled, chunks_read=chunks_read)


class SSEChatTransport:
    """Stream source backed by the /api/ai/chat server-sent-events endpoint.

    The endpoint sends `data: {"content": "..."}` frames and finishes with
    `data: [DONE]`. Blank lines and frames that aren't valid JSON are
    skipped.

    The server's own /agent/chat loop reads the model directly; this
    source is for clients running the loop in another process against a
    deployed server, e.g. Orchestrator(SSEChatTransport(url), registry).
    """

    def __init__(
        self,
        url: str = CHAT_API_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport

    async def __call__(self, history: list[dict[str, str]]) -> AsyncIterator[str]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as http:
            try:
                async with http.stream("POST", self.url, json={"messages": history}) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise StreamTransportError(
                            f"Chat endpoint returned HTTP {response.status_code}: {response.text}"
                        )

                    async for line in response.aiter_lines():
                        line = line.strip()
                        if not line:
                            continue
                        if line == "data: [DONE]":
                            return
                        if not line.startswith("data: "):
                            continue
                        try:
                            data = json.loads(line[len("data: "):])
                        except json.JSONDecodeError:
                            logger.debug("Skipping malformed SSE frame: %.200s", line)
                            continue
                        content = data.get("content") if isinstance(data, dict) else None
                        if content:
                            yield content
            except httpx.HTTPError as exc:
                raise StreamTransportError(f"Chat stream request failed: {exc}") from exc
