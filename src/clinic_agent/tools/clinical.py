"""Clinical data tools: observations, conditions, medication requests.

API endpoints used:
- GET  /api/patients/{id}, /api/practitioners/{id}  - Labels
- POST /api/observations                            - Record a vital/lab
- POST /api/conditions, PUT /api/conditions/{id}    - Diagnoses
- POST /api/medication-requests,
  PUT  /api/medication-requests/{id}                - Prescriptions
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

_OBSERVATION_CATEGORY_SYSTEM = "http://terminology.hl7.org/CodeSystem/observation-category"
_CONDITION_CLINICAL_SYSTEM = "http://terminology.hl7.org/CodeSystem/condition-clinical"
_CONDITION_VERIFICATION_SYSTEM = "http://terminology.hl7.org/CodeSystem/condition-ver-status"

OBSERVATION_CATEGORIES: dict[str, str] = {
    "vital-signs": "Vital Signs",
    "laboratory": "Laboratory",
    "imaging": "Imaging",
    "procedure": "Procedure",
    "exam": "Exam",
}

CLINICAL_STATUSES: dict[str, str] = {
    "active": "Active",
    "recurrence": "Recurrence",
    "relapse": "Relapse",
    "inactive": "Inactive",
    "remission": "Remission",
    "resolved": "Resolved",
}

VERIFICATION_STATUSES: dict[str, str] = {
    "unconfirmed": "Unconfirmed",
    "provisional": "Provisional",
    "differential": "Differential",
    "confirmed": "Confirmed",
    "refuted": "Refuted",
    "entered-in-error": "Entered in Error",
}

MEDICATION_STATUSES = ("active", "on-hold", "cancelled", "completed", "stopped", "draft")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coded(code: str, display: str) -> dict[str, Any]:
    return {"coding": [{"code": code, "display": display}], "text": display}


# --- Observations ---


async def create_observation(params: dict[str, Any]) -> ToolResult:
    """Record an observation (vital sign, lab result, exam finding).

    Args:
        params: patientId, code, codeDisplay and category are required.
            encounterId, valueQuantity {value, unit}, valueString and
            component [{code, codeDisplay, value, unit}] are optional.
            valueQuantity wins over valueString when both are given.

    Returns:
        The created Observation on success.
    """
    failure = require(params, "patientId", "code", "codeDisplay", "category")
    if failure:
        return failure

    category = params["category"]
    if category not in OBSERVATION_CATEGORIES:
        return ToolResult.fail(
            f"Invalid category: {category}. "
            f"Must be one of: {', '.join(OBSERVATION_CATEGORIES)}"
        )

    client = await get_client()
    patient_label = await lookup_label(
        client, ResourceKind.PATIENTS, params["patientId"], patient_display_name
    )

    observation: dict[str, Any] = {
        "resourceType": "Observation",
        "status": "final",
        "category": [
            {
                "coding": [
                    {
                        "system": _OBSERVATION_CATEGORY_SYSTEM,
                        "code": category,
                        "display": OBSERVATION_CATEGORIES[category],
                    }
                ]
            }
        ],
        "code": _coded(params["code"], params["codeDisplay"]),
        "subject": make_reference("Patient", params["patientId"], patient_label),
        "effectiveDateTime": _now(),
    }

    if params.get("encounterId"):
        observation["encounter"] = make_reference("Encounter", params["encounterId"])

    quantity = params.get("valueQuantity")
    if isinstance(quantity, dict):
        observation["valueQuantity"] = {
            "value": quantity.get("value"),
            "unit": quantity.get("unit"),
        }
    elif params.get("valueString"):
        observation["valueString"] = params["valueString"]

    components = params.get("component")
    if isinstance(components, list) and components:
        observation["component"] = [
            {
                "code": _coded(comp.get("code", ""), comp.get("codeDisplay", "")),
                "valueQuantity": {"value": comp.get("value"), "unit": comp.get("unit")},
            }
            for comp in components
            if isinstance(comp, dict)
        ]

    try:
        created = await client.create(ResourceKind.OBSERVATIONS, observation)
    except RecordStoreError as e:
        return store_failure("create observation", e)

    return ToolResult.ok(
        {
            "message": f"Successfully recorded {params['codeDisplay']} observation",
            "observation": created,
        }
    )


# --- Conditions ---


async def create_condition(params: dict[str, Any]) -> ToolResult:
    """Document a condition (diagnosis) for a patient.

    Args:
        params: patientId, code, codeDisplay and clinicalStatus are
            required. verificationStatus (default "confirmed"), severity,
            onsetDate and note are optional.
    """
    failure = require(params, "patientId", "code", "codeDisplay", "clinicalStatus")
    if failure:
        return failure

    clinical_status = params["clinicalStatus"]
    if clinical_status not in CLINICAL_STATUSES:
        return ToolResult.fail(f"Invalid clinical status: {clinical_status}")
    verification_status = params.get("verificationStatus") or "confirmed"

    client = await get_client()
    patient_label = await lookup_label(
        client, ResourceKind.PATIENTS, params["patientId"], patient_display_name
    )

    condition: dict[str, Any] = {
        "resourceType": "Condition",
        "clinicalStatus": {
            "coding": [
                {
                    "system": _CONDITION_CLINICAL_SYSTEM,
                    "code": clinical_status,
                    "display": CLINICAL_STATUSES[clinical_status],
                }
            ]
        },
        "verificationStatus": {
            "coding": [
                {
                    "system": _CONDITION_VERIFICATION_SYSTEM,
                    "code": verification_status,
                    "display": VERIFICATION_STATUSES.get(
                        verification_status, verification_status
                    ),
                }
            ]
        },
        "code": _coded(params["code"], params["codeDisplay"]),
        "subject": make_reference("Patient", params["patientId"], patient_label),
        "recordedDate": _now(),
    }

    if params.get("severity"):
        condition["severity"] = {
            "coding": [
                {
                    "system": "http://snomed.info/sct",
                    "code": params["severity"],
                    "display": params["severity"],
                }
            ]
        }
    if params.get("onsetDate"):
        condition["onsetDateTime"] = params["onsetDate"]
    if params.get("note"):
        condition["note"] = [{"text": params["note"]}]

    try:
        created = await client.create(ResourceKind.CONDITIONS, condition)
    except RecordStoreError as e:
        return store_failure("create condition", e)

    return ToolResult.ok(
        {
            "message": f"Successfully recorded condition: {params['codeDisplay']}",
            "condition": created,
        }
    )


async def update_condition(params: dict[str, Any]) -> ToolResult:
    """Change a condition's clinical status, abatement date or note."""
    failure = require(params, "id")
    if failure:
        return failure

    updates: dict[str, Any] = {}
    if params.get("clinicalStatus"):
        status = params["clinicalStatus"]
        if status not in CLINICAL_STATUSES:
            return ToolResult.fail(f"Invalid clinical status: {status}")
        updates["clinicalStatus"] = {
            "coding": [
                {
                    "system": _CONDITION_CLINICAL_SYSTEM,
                    "code": status,
                    "display": CLINICAL_STATUSES[status],
                }
            ]
        }
    if params.get("abatementDate"):
        updates["abatementDateTime"] = params["abatementDate"]
    if params.get("note"):
        updates["note"] = [{"text": params["note"]}]

    if not updates:
        return ToolResult.fail("No update fields provided")

    client = await get_client()
    try:
        updated = await client.update(ResourceKind.CONDITIONS, params["id"], updates)
    except RecordStoreError as e:
        return store_failure("update condition", e)

    if updated is None:
        return not_found(ResourceKind.CONDITIONS, params["id"])

    return ToolResult.ok(
        {
            "message": f"Successfully updated condition {params['id']}",
            "condition": updated,
        }
    )


# --- Medication requests ---


async def create_medication_request(params: dict[str, Any]) -> ToolResult:
    """Prescribe a medication.

    Args:
        params: patientId, practitionerId, medicationName and
            dosageInstruction are required. intent (default "order"),
            priority (default "routine") and status (default "active")
            are optional.
    """
    failure = require(
        params, "patientId", "practitionerId", "medicationName", "dosageInstruction"
    )
    if failure:
        return failure

    status = params.get("status") or "active"
    if status not in MEDICATION_STATUSES:
        return ToolResult.fail(f"Invalid medication request status: {status}")

    client = await get_client()
    patient_label = await lookup_label(
        client, ResourceKind.PATIENTS, params["patientId"], patient_display_name
    )
    practitioner_label = await lookup_label(
        client, ResourceKind.PRACTITIONERS, params["practitionerId"], practitioner_display_name
    )

    medication_request = {
        "resourceType": "MedicationRequest",
        "status": status,
        "intent": params.get("intent") or "order",
        "priority": params.get("priority") or "routine",
        "medicationCodeableConcept": {"text": params["medicationName"]},
        "subject": make_reference("Patient", params["patientId"], patient_label),
        "requester": make_reference(
            "Practitioner", params["practitionerId"], practitioner_label
        ),
        "dosageInstruction": [{"text": params["dosageInstruction"]}],
        "authoredOn": _now(),
    }

    try:
        created = await client.create(ResourceKind.MEDICATION_REQUESTS, medication_request)
    except RecordStoreError as e:
        return store_failure("create medication request", e)

    return ToolResult.ok(
        {
            "message": f"Successfully prescribed {params['medicationName']}",
            "medicationRequest": created,
        }
    )


async def update_medication_request(params: dict[str, Any]) -> ToolResult:
    """Change a prescription's status (e.g. stop or put on hold)."""
    failure = require(params, "id")
    if failure:
        return failure

    if not params.get("status"):
        return ToolResult.fail("No update fields provided")
    if params["status"] not in MEDICATION_STATUSES:
        return ToolResult.fail(f"Invalid medication request status: {params['status']}")

    client = await get_client()
    try:
        updated = await client.update(
            ResourceKind.MEDICATION_REQUESTS, params["id"], {"status": params["status"]}
        )
    except RecordStoreError as e:
        return store_failure("update medication request", e)

    if updated is None:
        return not_found(ResourceKind.MEDICATION_REQUESTS, params["id"])

    return ToolResult.ok(
        {
            "message": f"Successfully updated medication request {params['id']}",
            "medicationRequest": updated,
        }
    )
