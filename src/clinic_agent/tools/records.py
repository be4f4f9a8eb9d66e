"""Generic record tools that work on any resource kind.

These take the kind as a parameter ("patients", "medication-requests", ...)
rather than being tied to one record type:

- query_fhir:      everything of a kind, or one record by id
- read_resource:   one record by id (not found is a failure)
- list_resources:  everything of a kind, filtered client-side
- delete_resource: remove one record
"""

from __future__ import annotations

from typing import Any

from clinic_agent.fhir import ResourceKind, parse_resource_kind, strip_reference
from clinic_agent.record_client import RecordStoreError, get_client
from clinic_agent.tools.common import (
    ToolResult,
    invalid_resource_type,
    not_found,
    require,
    store_failure,
)

# Which kinds each list_resources filter applies to. A filter given for a
# kind outside its set is ignored rather than rejected.
PATIENT_FILTERABLE = {
    ResourceKind.APPOINTMENTS,
    ResourceKind.ENCOUNTERS,
    ResourceKind.OBSERVATIONS,
    ResourceKind.CONDITIONS,
    ResourceKind.MEDICATION_REQUESTS,
}
PRACTITIONER_FILTERABLE = {
    ResourceKind.APPOINTMENTS,
    ResourceKind.ENCOUNTERS,
    ResourceKind.MEDICATION_REQUESTS,
}
STATUS_FILTERABLE = {
    ResourceKind.APPOINTMENTS,
    ResourceKind.ENCOUNTERS,
    ResourceKind.CONDITIONS,
    ResourceKind.MEDICATION_REQUESTS,
}


async def query_fhir(params: dict[str, Any]) -> ToolResult:
    """Fetch every record of a kind, or a single one when "id" is given."""
    failure = require(params, "resource")
    if failure:
        return failure
    kind = parse_resource_kind(params["resource"])
    if kind is None:
        return invalid_resource_type(params["resource"])

    client = await get_client()
    try:
        if params.get("id"):
            record = await client.get(kind, params["id"])
            if record is None:
                return not_found(kind, params["id"])
            results: Any = record
            count = 1
        else:
            results = await client.list(kind)
            count = len(results)
    except RecordStoreError as e:
        return store_failure(f"query {kind.value}", e)

    return ToolResult.ok({"resource": kind.value, "count": count, "results": results})


async def read_resource(params: dict[str, Any]) -> ToolResult:
    """Fetch a single record by kind and id."""
    failure = require(params, "resourceType", "id")
    if failure:
        return failure
    kind = parse_resource_kind(params["resourceType"])
    if kind is None:
        return invalid_resource_type(params["resourceType"])

    client = await get_client()
    try:
        record = await client.get(kind, params["id"])
    except RecordStoreError as e:
        return store_failure(f"read {kind.value}", e)

    if record is None:
        return not_found(kind, params["id"])

    return ToolResult.ok({"resourceType": kind.value, "resource": record})


async def delete_resource(params: dict[str, Any]) -> ToolResult:
    """Delete a single record by kind and id."""
    failure = require(params, "resourceType", "id")
    if failure:
        return failure
    kind = parse_resource_kind(params["resourceType"])
    if kind is None:
        return invalid_resource_type(params["resourceType"])

    client = await get_client()
    try:
        deleted = await client.delete(kind, params["id"])
    except RecordStoreError as e:
        return store_failure(f"delete {kind.value}", e)

    if not deleted:
        return not_found(kind, params["id"])

    return ToolResult.ok(
        {"message": f"Successfully deleted {kind.value} with ID {params['id']}"}
    )


# --- list_resources filtering ---


def _actor_references(resource: dict[str, Any]) -> list[str]:
    refs = []
    for participant in resource.get("participant") or []:
        for key in ("actor", "individual"):
            ref = (participant.get(key) or {}).get("reference")
            if ref:
                refs.append(ref)
    return refs


def extract_patient_id(resource: dict[str, Any]) -> str | None:
    """Patient id from subject (observations, conditions, encounters,
    medication requests), patient, or a Patient participant (appointments)."""
    for key in ("subject", "patient"):
        ref = (resource.get(key) or {}).get("reference")
        if ref:
            return strip_reference(ref, "Patient")
    for ref in _actor_references(resource):
        if ref.startswith("Patient/"):
            return strip_reference(ref, "Patient")
    return None


def extract_practitioner_id(resource: dict[str, Any]) -> str | None:
    """Practitioner id from a participant (appointments, encounters) or the
    requester (medication requests)."""
    for ref in _actor_references(resource):
        if ref.startswith("Practitioner/"):
            return strip_reference(ref, "Practitioner")
    ref = (resource.get("requester") or {}).get("reference")
    if ref:
        return strip_reference(ref, "Practitioner")
    return None


def extract_status(resource: dict[str, Any]) -> str | None:
    if resource.get("status"):
        return resource["status"]
    # Conditions keep their status in clinicalStatus.coding[0].code
    coding = (resource.get("clinicalStatus") or {}).get("coding") or []
    if coding and coding[0].get("code"):
        return coding[0]["code"]
    return None


def apply_filters(
    resources: list[dict[str, Any]],
    kind: ResourceKind,
    patient_id: str | None = None,
    practitioner_id: str | None = None,
    status: str | None = None,
) -> list[dict[str, Any]]:
    """Return the subset of resources matching every applicable filter.

    The input list is left untouched.
    """
    filtered = list(resources)

    if patient_id and kind in PATIENT_FILTERABLE:
        wanted = strip_reference(patient_id, "Patient")
        filtered = [r for r in filtered if extract_patient_id(r) == wanted]

    if practitioner_id and kind in PRACTITIONER_FILTERABLE:
        wanted = strip_reference(practitioner_id, "Practitioner")
        filtered = [r for r in filtered if extract_practitioner_id(r) == wanted]

    if status and kind in STATUS_FILTERABLE:
        filtered = [r for r in filtered if extract_status(r) == status]

    return filtered


def _parse_limit(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def list_resources(params: dict[str, Any]) -> ToolResult:
    """List records of a kind, optionally filtered by patientId,
    practitionerId or status, and capped at limit."""
    failure = require(params, "resourceType")
    if failure:
        return failure
    kind = parse_resource_kind(params["resourceType"])
    if kind is None:
        return invalid_resource_type(params["resourceType"])

    client = await get_client()
    try:
        resources = await client.list(kind)
    except RecordStoreError as e:
        return store_failure(f"list {kind.value}", e)

    filtered = apply_filters(
        resources,
        kind,
        patient_id=params.get("patientId"),
        practitioner_id=params.get("practitionerId"),
        status=params.get("status"),
    )

    limit = _parse_limit(params.get("limit"))
    if limit is not None and limit > 0:
        filtered = filtered[:limit]

    return ToolResult.ok(
        {
            "resourceType": kind.value,
            "totalCount": len(resources),
            "filteredCount": len(filtered),
            "resources": filtered,
        }
    )
