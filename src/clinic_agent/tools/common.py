"""Pieces every tool executor shares.

Executors never raise. Whatever happens (a missing parameter, a record that
doesn't exist, the record API being down) they hand back a ToolResult, which
the orchestration loop formats and feeds back to the model so it can try
again or explain the problem to the user.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from clinic_agent.fhir import UNKNOWN_DISPLAY, VALID_RESOURCES, ResourceKind
from clinic_agent.record_client import RecordStoreClient, RecordStoreError

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """Uniform output of every tool executor."""

    succeeded: bool
    payload: Any = None
    error_message: str | None = None

    @classmethod
    def ok(cls, payload: Any = None) -> ToolResult:
        return cls(succeeded=True, payload=payload)

    @classmethod
    def fail(cls, message: str) -> ToolResult:
        return cls(succeeded=False, error_message=message)


def first_missing(params: dict[str, Any], *fields: str) -> str | None:
    """Return the first required field that is absent or empty, if any."""
    for field in fields:
        value = params.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            return field
    return None


def require(params: dict[str, Any], *fields: str) -> ToolResult | None:
    """Failure result naming the first missing field, or None if all present."""
    missing = first_missing(params, *fields)
    if missing:
        return ToolResult.fail(f"{missing} is required")
    return None


def invalid_resource_type(value: Any) -> ToolResult:
    return ToolResult.fail(
        f"Invalid resource type: {value}. Valid types are: {', '.join(VALID_RESOURCES)}"
    )


def not_found(kind: ResourceKind, resource_id: str) -> ToolResult:
    return ToolResult.fail(f"{kind.value} with id '{resource_id}' not found")


async def lookup_label(
    client: RecordStoreClient,
    kind: ResourceKind,
    resource_id: str,
    formatter: Callable[[dict[str, Any]], str],
) -> str:
    """Best-effort display label for a referenced record.

    Falls back to "Unknown" when the record is absent or the lookup fails;
    a missing label never stops the calling tool.
    """
    try:
        resource = await client.get(kind, resource_id)
    except RecordStoreError as e:
        logger.warning("Label lookup for %s/%s failed: %s", kind.value, resource_id, e.detail)
        return UNKNOWN_DISPLAY
    if not resource:
        return UNKNOWN_DISPLAY
    return formatter(resource)


def store_failure(action: str, error: RecordStoreError) -> ToolResult:
    """Convert a record API error into a failure result."""
    logger.warning("%s failed: %s", action, error)
    return ToolResult.fail(f"Failed to {action}: {error.detail}")
