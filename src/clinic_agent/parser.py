"""Tool block parsing.

The model asks for a tool by writing a block like this in its reply:

    <tool_block>
    <params>
    {"tool": "create_patient", "firstName": "Jane", ...}
    </params>
    </tool_block>

Two kinds of parsing happen on that text:

- Batch: parse_tool_blocks() takes a finished buffer and returns every
  well-formed block in order. A block whose params aren't a JSON object is
  skipped (logged, never raised) and parsing carries on.
- Incremental: BlockScanner is fed each streamed delta and tracks whether
  a block is open, so the stream can be cut the moment one closes. An open
  block with no closing marker yet is a normal state, not an error.

Markers are matched case-insensitively.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

from clinic_agent.tools.common import ToolResult
from clinic_agent.tools.registry import action_name

logger = logging.getLogger(__name__)

BLOCK_OPEN = "<tool_block>"
BLOCK_CLOSE = "</tool_block>"
PARAMS_OPEN = "<params>"
PARAMS_CLOSE = "</params>"

_BLOCK_RE = re.compile(r"<tool_block>(.*?)</tool_block>", re.IGNORECASE | re.DOTALL)
_PARAMS_RE = re.compile(r"<params>(.*?)</params>", re.IGNORECASE | re.DOTALL)
_OPEN_RE = re.compile(re.escape(BLOCK_OPEN), re.IGNORECASE)
_CLOSE_RE = re.compile(re.escape(BLOCK_CLOSE), re.IGNORECASE)
_MARKER_RE = re.compile(r"<(/?)(tool_block|params)>", re.IGNORECASE)
_NAME_RE = re.compile(r'"(?:tool|action)"\s*:\s*"([^"]+)"')


@dataclass(frozen=True)
class ParsedBlock:
    """One well-formed tool block found in model output."""

    id: str
    action_name: str
    parameters: dict[str, Any]
    raw_text: str


def parse_tool_blocks(text: str) -> list[ParsedBlock]:
    """Extract every well-formed tool block from text, left to right.

    Each block gets a fresh id. Blocks without a <params> section, or whose
    params aren't a JSON object, are left out.
    """
    blocks: list[ParsedBlock] = []
    for match in _BLOCK_RE.finditer(text):
        params_match = _PARAMS_RE.search(match.group(1))
        if not params_match:
            logger.warning("Tool block without <params> skipped")
            continue

        raw_params = params_match.group(1).strip()
        try:
            params = json.loads(raw_params)
        except json.JSONDecodeError as e:
            logger.warning("Skipping tool block with malformed params (%s): %.200s", e, raw_params)
            continue
        if not isinstance(params, dict):
            logger.warning("Skipping tool block whose params are not an object: %.200s", raw_params)
            continue

        blocks.append(
            ParsedBlock(
                id=str(uuid.uuid4()),
                action_name=action_name(params),
                parameters=params,
                raw_text=match.group(0),
            )
        )
    return blocks


def has_incomplete_tool_block(text: str) -> bool:
    """True while more blocks have been opened than closed (still streaming)."""
    return len(_OPEN_RE.findall(text)) > len(_CLOSE_RE.findall(text))


def pending_action_name(text: str) -> str | None:
    """Best-effort tool name from a block that hasn't closed yet.

    Lets a UI say "calling create_patient..." before the block is complete.
    """
    if not has_incomplete_tool_block(text):
        return None
    opens = list(_OPEN_RE.finditer(text))
    match = _NAME_RE.search(text, opens[-1].end())
    return match.group(1) if match else None


def remove_tool_blocks(text: str) -> str:
    """Strip complete tool blocks, leaving the prose around them."""
    return _BLOCK_RE.sub("", text).strip()


def content_before_tool_block(text: str) -> str:
    """Everything the model wrote before its first tool block."""
    match = _OPEN_RE.search(text)
    if not match:
        return text
    return text[: match.start()].strip()


def _neutralise_markers(text: str) -> str:
    # [tool_block] reads the same to a person but is not a marker
    return _MARKER_RE.sub(lambda m: f"[{m.group(1)}{m.group(2)}]", text)


def format_tool_result(name: str, result: ToolResult) -> str:
    """Format a tool result as the text sent back to the model.

    The output is plain text and never contains a tool block, even when a
    stored record happens to contain marker text.
    """
    if result.succeeded:
        # "<" only ever appears inside JSON strings, where < is an
        # equivalent escape
        body = json.dumps(result.payload, indent=2, default=str).replace("<", "\\u003c")
        return f"[Tool Result: {name}]\n{body}"
    message = _neutralise_markers(result.error_message or "Unknown error occurred")
    return f"[Tool Error: {name}]\n{message}"


# --- Incremental scanning ---


class ScannerState(str, Enum):
    OUTSIDE_BLOCK = "outside_block"
    IN_BLOCK = "in_block"
    IN_PARAMS = "in_params"


_TRANSITIONS: dict[ScannerState, list[tuple[str, ScannerState]]] = {
    ScannerState.OUTSIDE_BLOCK: [(BLOCK_OPEN, ScannerState.IN_BLOCK)],
    ScannerState.IN_BLOCK: [
        (PARAMS_OPEN, ScannerState.IN_PARAMS),
        (BLOCK_CLOSE, ScannerState.OUTSIDE_BLOCK),
    ],
    # A block closes at the first </tool_block> even if </params> never came
    ScannerState.IN_PARAMS: [
        (PARAMS_CLOSE, ScannerState.IN_BLOCK),
        (BLOCK_CLOSE, ScannerState.OUTSIDE_BLOCK),
    ],
}

_WINDOW = max(len(BLOCK_OPEN), len(BLOCK_CLOSE), len(PARAMS_OPEN), len(PARAMS_CLOSE))


class BlockScanner:
    """Tracks tool block markers across streamed deltas.

    Only a marker-sized window of recent characters is kept, so each delta
    is scanned once instead of re-scanning the whole buffer. Markers split
    across deltas are still recognised.
    """

    def __init__(self) -> None:
        self.state = ScannerState.OUTSIDE_BLOCK
        self.closed_blocks = 0
        self._window = ""
        self._open_block_text: list[str] = []

    @property
    def in_block(self) -> bool:
        """An opening marker has been seen without its closing marker."""
        return self.state is not ScannerState.OUTSIDE_BLOCK

    @property
    def block_closed(self) -> bool:
        return self.closed_blocks > 0

    def feed(self, delta: str) -> ScannerState:
        for char in delta:
            self._window = (self._window + char.lower())[-_WINDOW:]
            if self.in_block:
                self._open_block_text.append(char)

            for marker, next_state in _TRANSITIONS[self.state]:
                if self._window.endswith(marker):
                    self._enter(next_state)
                    break
        return self.state

    def _enter(self, next_state: ScannerState) -> None:
        if self.state is ScannerState.OUTSIDE_BLOCK:
            self._open_block_text = []
        elif next_state is ScannerState.OUTSIDE_BLOCK:
            self.closed_blocks += 1
            logger.debug("Tool block %d closed", self.closed_blocks)
        self.state = next_state
        # A marker's characters can't also start the next marker
        self._window = ""

    def pending_action_name(self) -> str | None:
        """Tool name from the block currently open, if it can be read yet."""
        if not self.in_block:
            return None
        match = _NAME_RE.search("".join(self._open_block_text))
        return match.group(1) if match else None
