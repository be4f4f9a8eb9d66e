"""The tool-calling orchestration loop.

One call to Orchestrator.submit() handles one user message from start to
finish:

    user turn -> stream reply -> tool block closed? -> run the tools in
    order -> send their results back as a user turn -> stream again -> ...

and stops when a reply contains no (usable) tool block, when the iteration
ceiling is hit, or when the model stream fails.

State lives in an explicit ConversationState that is passed in and handed
back; nothing here is global. The UI follows along through the on_update
callback, which receives the state after every visible change (each
streamed delta, each action status change, each new turn).

Only one submit() may run per ConversationState at a time; the caller is
expected to block new input while state.is_loading is true.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from clinic_agent.config import MAX_TOOL_ITERATIONS
from clinic_agent.parser import format_tool_result, parse_tool_blocks
from clinic_agent.streaming import StreamConsumer, StreamSource
from clinic_agent.tools.common import ToolResult
from clinic_agent.tools.registry import ActionRegistry

logger = logging.getLogger(__name__)

MAX_ITERATIONS_NOTICE = (
    "\n\n---\n\n*Maximum tool iterations reached. "
    "Please send a follow-up message if you need more actions.*"
)
ERROR_APOLOGY = "Sorry, I encountered an error. Please try again."


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ActionStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    SUCCESS = "success"
    ERROR = "error"


class ActionRecord(BaseModel):
    """One tool call requested in an assistant turn.

    Status only moves forward: pending -> executing -> success | error.
    """

    id: str
    name: str
    parameters: dict[str, Any]
    status: ActionStatus = ActionStatus.PENDING
    result: ToolResult | None = None

    def start(self) -> None:
        if self.status is not ActionStatus.PENDING:
            raise ValueError(f"Action {self.id} cannot start from {self.status.value}")
        self.status = ActionStatus.EXECUTING

    def finish(self, result: ToolResult) -> None:
        if self.status is not ActionStatus.EXECUTING:
            raise ValueError(f"Action {self.id} cannot finish from {self.status.value}")
        self.result = result
        self.status = ActionStatus.SUCCESS if result.succeeded else ActionStatus.ERROR

    def abort(self, message: str) -> None:
        """Fail an action that was interrupted before it could finish."""
        if self.status in (ActionStatus.SUCCESS, ActionStatus.ERROR):
            return
        self.result = ToolResult.fail(message)
        self.status = ActionStatus.ERROR


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One message in the conversation.

    Tool results go back to the model as user turns; is_tool_result marks
    them so a UI can hide them.
    """

    id: str = Field(default_factory=_new_id)
    role: Role
    text: str = ""
    timestamp: datetime = Field(default_factory=_now)
    actions: list[ActionRecord] = Field(default_factory=list)
    is_tool_result: bool = False


class Phase(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    BLOCK_DETECTED = "block_detected"
    EXECUTING = "executing"
    RESUBMITTING = "resubmitting"
    DONE = "done"
    ABORTED = "aborted"


class ConversationState(BaseModel):
    """Everything one conversation needs: its turns plus where the loop is."""

    turns: list[Turn] = Field(default_factory=list)
    phase: Phase = Phase.IDLE
    iterations: int = 0
    is_loading: bool = False

    def history(self) -> list[dict[str, str]]:
        """The turns as the model sees them, in order."""
        return [{"role": t.role.value, "content": t.text} for t in self.turns]

    def last_assistant_text(self) -> str:
        for turn in reversed(self.turns):
            if turn.role is Role.ASSISTANT:
                return turn.text
        return ""


UpdateCallback = Callable[[ConversationState], Awaitable[None] | None]


class Orchestrator:
    """Runs the stream -> execute -> resubmit loop for one conversation turn.

    Args:
        source: Model stream source (see clinic_agent.streaming).
        registry: Tools the model may call.
        max_iterations: Most tool rounds one submit() will execute. A
            safety valve, not an expected bound.
        on_update: Called with the state after every visible change.
    """

    def __init__(
        self,
        source: StreamSource,
        registry: ActionRegistry,
        max_iterations: int = MAX_TOOL_ITERATIONS,
        on_update: UpdateCallback | None = None,
    ) -> None:
        self._consumer = StreamConsumer(source)
        self._registry = registry
        self.max_iterations = max_iterations
        self._on_update = on_update

    async def _emit(self, state: ConversationState) -> None:
        if self._on_update is None:
            return
        maybe_awaitable = self._on_update(state)
        if inspect.isawaitable(maybe_awaitable):
            await maybe_awaitable

    @staticmethod
    def _start_assistant_turn(state: ConversationState) -> Turn:
        turn = Turn(role=Role.ASSISTANT)
        state.turns.append(turn)
        return turn

    async def submit(self, state: ConversationState, text: str) -> ConversationState:
        """Process one user message, updating and returning state."""
        state.turns.append(Turn(role=Role.USER, text=text))
        state.iterations = 0
        state.is_loading = True

        # The history never includes the assistant turn being streamed into
        history = state.history()
        assistant = self._start_assistant_turn(state)

        async def on_delta(buffer: str) -> None:
            assistant.text = buffer
            await self._emit(state)

        try:
            while True:
                state.phase = Phase.STREAMING
                await self._emit(state)

                result = await self._consumer.consume(history, on_delta=on_delta)
                assistant.text = result.text

                if not result.stopped_for_block:
                    state.phase = Phase.DONE
                    break

                state.phase = Phase.BLOCK_DETECTED
                if state.iterations >= self.max_iterations:
                    logger.warning("Maximum tool iterations (%d) reached", self.max_iterations)
                    assistant.text += MAX_ITERATIONS_NOTICE
                    state.phase = Phase.ABORTED
                    break

                blocks = parse_tool_blocks(result.text)
                if not blocks:
                    # A block closed but nothing in it was usable: nothing to run
                    logger.info("Tool block closed but no valid actions parsed; stopping")
                    state.phase = Phase.DONE
                    break

                state.phase = Phase.EXECUTING
                assistant.actions = [
                    ActionRecord(id=b.id, name=b.action_name, parameters=b.parameters)
                    for b in blocks
                ]
                results_text = await self._execute_actions(state, assistant.actions)

                state.phase = Phase.RESUBMITTING
                state.turns.append(Turn(role=Role.USER, text=results_text, is_tool_result=True))
                state.iterations += 1
                logger.info("Tool round %d complete; resubmitting", state.iterations)

                history = state.history()
                assistant = self._start_assistant_turn(state)
        except Exception:
            logger.exception("Conversation turn failed")
            for action in assistant.actions:
                action.abort("Interrupted before completion")
            assistant.text = ERROR_APOLOGY
            state.phase = Phase.ABORTED
        finally:
            state.is_loading = False
            await self._emit(state)

        return state

    async def _execute_actions(
        self,
        state: ConversationState,
        actions: list[ActionRecord],
    ) -> str:
        """Run actions one at a time, in order, and format their results.

        Later actions may depend on what earlier ones created, so nothing
        runs concurrently.
        """
        await self._emit(state)

        sections = []
        for action in actions:
            action.start()
            await self._emit(state)

            result = await self._registry.execute(action.parameters)
            action.finish(result)
            logger.info("Tool %s finished: %s", action.name, action.status.value)
            await self._emit(state)

            sections.append(format_tool_result(action.name, result))

        return "\n\n".join(sections)
