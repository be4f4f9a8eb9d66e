"""Encounter tools.

Encounters represent individual visits to the clinic. Observations can be
attached to one via its encounter ID.

API endpoints used:
- GET  /api/patients/{id}, /api/practitioners/{id}  - Labels
- POST /api/encounters                              - Open an encounter
- PUT  /api/encounters/{id}                         - Change status / close
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from clinic_agent.fhir import (
    ResourceKind,
    make_reference,
    patient_display_name,
    practitioner_display_name,
)
from clinic_agent.record_client import RecordStoreError, get_client
from clinic_agent.tools.common import (
    ToolResult,
    lookup_label,
    not_found,
    require,
    store_failure,
)

_ACT_CODE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ActCode"

ENCOUNTER_CLASSES: dict[str, dict[str, str]] = {
    "ambulatory": {"system": _ACT_CODE_SYSTEM, "code": "AMB", "display": "ambulatory"},
    "emergency": {"system": _ACT_CODE_SYSTEM, "code": "EMER", "display": "emergency"},
    "inpatient": {"system": _ACT_CODE_SYSTEM, "code": "IMP", "display": "inpatient encounter"},
    "virtual": {"system": _ACT_CODE_SYSTEM, "code": "VR", "display": "virtual"},
}

ENCOUNTER_STATUSES = (
    "planned",
    "arrived",
    "triaged",
    "in-progress",
    "onleave",
    "finished",
    "cancelled",
)


async def create_encounter(params: dict[str, Any]) -> ToolResult:
    """Open a clinical encounter (visit) for a patient with a practitioner.

    Args:
        params: patientId and practitionerId are required. encounterClass
            (ambulatory, emergency, inpatient, virtual; default ambulatory),
            type, reasonCode and status (default "in-progress") are optional.

    Returns:
        The created Encounter on success.
    """
    failure = require(params, "patientId", "practitionerId")
    if failure:
        return failure

    encounter_class = params.get("encounterClass") or "ambulatory"
    status = params.get("status") or "in-progress"
    if status not in ENCOUNTER_STATUSES:
        return ToolResult.fail(f"Invalid encounter status: {status}")

    client = await get_client()
    patient_label = await lookup_label(
        client, ResourceKind.PATIENTS, params["patientId"], patient_display_name
    )
    practitioner_label = await lookup_label(
        client, ResourceKind.PRACTITIONERS, params["practitionerId"], practitioner_display_name
    )

    encounter: dict[str, Any] = {
        "resourceType": "Encounter",
        "status": status,
        # Unrecognised classes fall back to ambulatory
        "class": ENCOUNTER_CLASSES.get(encounter_class, ENCOUNTER_CLASSES["ambulatory"]),
        "subject": make_reference("Patient", params["patientId"], patient_label),
        "participant": [
            {
                "individual": make_reference(
                    "Practitioner", params["practitionerId"], practitioner_label
                ),
            }
        ],
        "period": {"start": datetime.now(timezone.utc).isoformat()},
    }
    if params.get("type"):
        encounter["type"] = [{"text": params["type"]}]
    if params.get("reasonCode"):
        encounter["reasonCode"] = [{"text": params["reasonCode"]}]

    try:
        created = await client.create(ResourceKind.ENCOUNTERS, encounter)
    except RecordStoreError as e:
        return store_failure("create encounter", e)

    return ToolResult.ok(
        {
            "message": f"Successfully created {encounter_class} encounter",
            "encounter": created,
        }
    )


async def update_encounter(params: dict[str, Any]) -> ToolResult:
    """Change an encounter's status and/or record when it ended."""
    failure = require(params, "id")
    if failure:
        return failure

    updates: dict[str, Any] = {}
    if params.get("status"):
        if params["status"] not in ENCOUNTER_STATUSES:
            return ToolResult.fail(f"Invalid encounter status: {params['status']}")
        updates["status"] = params["status"]

    if not updates and not params.get("endDate"):
        return ToolResult.fail("No update fields provided")

    client = await get_client()
    try:
        if params.get("endDate"):
            # Updates are shallow, so the existing period start has to be
            # carried over by hand.
            existing = await client.get(ResourceKind.ENCOUNTERS, params["id"])
            if existing is None:
                return not_found(ResourceKind.ENCOUNTERS, params["id"])
            updates["period"] = {**(existing.get("period") or {}), "end": params["endDate"]}

        updated = await client.update(ResourceKind.ENCOUNTERS, params["id"], updates)
    except RecordStoreError as e:
        return store_failure("update encounter", e)

    if updated is None:
        return not_found(ResourceKind.ENCOUNTERS, params["id"])

    return ToolResult.ok(
        {
            "message": f"Successfully updated encounter {params['id']}",
            "encounter": updated,
        }
    )
