"""Action registry: tool name -> executor.

The registry is built once from the plain executor functions, keyed by
each function's __name__, which is exactly the name the model writes in a
tool block's "tool" field. Adding a tool means writing the function and
listing it in _DEFAULT_EXECUTORS; dispatch never grows a branch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from clinic_agent.tools.clinical import (
    create_condition,
    create_medication_request,
    create_observation,
    update_condition,
    update_medication_request,
)
from clinic_agent.tools.common import ToolResult
from clinic_agent.tools.encounters import create_encounter, update_encounter
from clinic_agent.tools.patient import create_patient
from clinic_agent.tools.records import (
    delete_resource,
    list_resources,
    query_fhir,
    read_resource,
)
from clinic_agent.tools.scheduling import (
    create_appointment,
    create_practitioner,
    update_appointment,
)

logger = logging.getLogger(__name__)

Executor = Callable[[dict[str, Any]], Coroutine[Any, Any, ToolResult]]

_DEFAULT_EXECUTORS: list[Executor] = [
    create_patient,
    query_fhir,
    create_practitioner,
    create_appointment,
    update_appointment,
    create_encounter,
    update_encounter,
    create_observation,
    create_condition,
    update_condition,
    create_medication_request,
    update_medication_request,
    delete_resource,
    read_resource,
    list_resources,
]


def action_name(params: dict[str, Any]) -> str:
    """The tool a parameter payload asks for ("tool", else "action")."""
    name = params.get("tool") or params.get("action")
    return str(name) if name else "unknown"


class ActionRegistry:
    """Dispatch table from action name to executor."""

    def __init__(self, executors: Iterable[Executor] = ()) -> None:
        self._executors: dict[str, Executor] = {}
        for fn in executors:
            self.register(fn.__name__, fn)

    def register(self, name: str, executor: Executor) -> None:
        if name in self._executors:
            raise ValueError(f"Tool already registered: {name}")
        self._executors[name] = executor

    def get(self, name: str) -> Executor | None:
        return self._executors.get(name)

    def names(self) -> list[str]:
        return list(self._executors)

    def __contains__(self, name: object) -> bool:
        return name in self._executors

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        """Run the executor named by the payload.

        Unknown names come back as a failure result, so the model sees the
        mistake and can correct itself. An executor that raises anyway is
        logged and reported the same way.
        """
        name = action_name(params)
        executor = self._executors.get(name)
        if executor is None:
            logger.warning("Unknown tool requested: %s", name)
            return ToolResult.fail(f"Unknown tool: {name}")

        logger.info("Executing tool %s", name)
        try:
            return await executor(params)
        except Exception as e:
            logger.exception("Tool %s raised", name)
            return ToolResult.fail(f"Tool {name} failed: {e}")


_registry: ActionRegistry | None = None


def get_registry() -> ActionRegistry:
    """The shared registry holding every built-in tool."""
    global _registry  # noqa: PLW0603
    if _registry is None:
        _registry = ActionRegistry(_DEFAULT_EXECUTORS)
    return _registry
