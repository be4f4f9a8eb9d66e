"""Scheduling tools: practitioners and appointments.

API endpoints used:
- POST /api/practitioners         - Create a practitioner
- GET  /api/patients/{id}         - Patient label for the appointment
- GET  /api/practitioners/{id}    - Practitioner label for the appointment
- POST /api/appointments          - Book an appointment
- PUT  /api/appointments/{id}     - Change status, times or description
"""

from __future__ import annotations

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
from clinic_agent.tools.patient import VALID_GENDERS

APPOINTMENT_STATUSES = (
    "proposed",
    "pending",
    "booked",
    "arrived",
    "fulfilled",
    "cancelled",
    "noshow",
)


async def create_practitioner(params: dict[str, Any]) -> ToolResult:
    """Create a new practitioner (doctor, nurse, etc.) record.

    Args:
        params: firstName, lastName and gender are required; specialty,
            phone and email are optional.

    Returns:
        The created Practitioner on success.
    """
    failure = require(params, "firstName", "lastName", "gender")
    if failure:
        return failure
    if params["gender"] not in VALID_GENDERS:
        return ToolResult.fail(
            f"Invalid gender: {params['gender']}. Must be one of: {', '.join(VALID_GENDERS)}"
        )

    telecom: list[dict[str, str]] = []
    if params.get("phone"):
        telecom.append({"system": "phone", "value": params["phone"], "use": "work"})
    if params.get("email"):
        telecom.append({"system": "email", "value": params["email"], "use": "work"})

    practitioner = {
        "resourceType": "Practitioner",
        "active": True,
        "name": [
            {
                "use": "official",
                "family": params["lastName"],
                "given": [params["firstName"]],
            }
        ],
        "gender": params["gender"],
        "telecom": telecom,
        "qualification": (
            [{"code": {"text": params["specialty"]}}] if params.get("specialty") else []
        ),
    }

    client = await get_client()
    try:
        created = await client.create(ResourceKind.PRACTITIONERS, practitioner)
    except RecordStoreError as e:
        return store_failure("create practitioner", e)

    return ToolResult.ok(
        {
            "message": (
                f"Successfully created practitioner record for "
                f"Dr. {params['firstName']} {params['lastName']}"
            ),
            "practitioner": created,
        }
    )


async def create_appointment(params: dict[str, Any]) -> ToolResult:
    """Book an appointment between a patient and a practitioner.

    Args:
        params: patientId, practitionerId, start and end (ISO 8601) are
            required; description, status (default "booked") and
            serviceType are optional.

    Returns:
        The created Appointment on success.
    """
    failure = require(params, "patientId", "practitionerId", "start", "end")
    if failure:
        return failure
    status = params.get("status") or "booked"
    if status not in APPOINTMENT_STATUSES:
        return ToolResult.fail(f"Invalid appointment status: {status}")

    client = await get_client()

    # Labels are looked up one after the other, never concurrently
    patient_label = await lookup_label(
        client, ResourceKind.PATIENTS, params["patientId"], patient_display_name
    )
    practitioner_label = await lookup_label(
        client, ResourceKind.PRACTITIONERS, params["practitionerId"], practitioner_display_name
    )

    appointment: dict[str, Any] = {
        "resourceType": "Appointment",
        "status": status,
        "description": params.get("description") or "",
        "start": params["start"],
        "end": params["end"],
        "participant": [
            {
                "actor": make_reference("Patient", params["patientId"], patient_label),
                "status": "accepted",
            },
            {
                "actor": make_reference(
                    "Practitioner", params["practitionerId"], practitioner_label
                ),
                "status": "accepted",
            },
        ],
    }
    if params.get("serviceType"):
        appointment["serviceType"] = [{"text": params["serviceType"]}]

    try:
        created = await client.create(ResourceKind.APPOINTMENTS, appointment)
    except RecordStoreError as e:
        return store_failure("create appointment", e)

    return ToolResult.ok(
        {
            "message": f"Successfully created appointment for {params['start']}",
            "appointment": created,
        }
    )


async def update_appointment(params: dict[str, Any]) -> ToolResult:
    """Update an appointment's status, times or description.

    At least one of status, start, end or description must be given.
    """
    failure = require(params, "id")
    if failure:
        return failure

    updates: dict[str, Any] = {}
    if params.get("status"):
        if params["status"] not in APPOINTMENT_STATUSES:
            return ToolResult.fail(f"Invalid appointment status: {params['status']}")
        updates["status"] = params["status"]
    if params.get("start"):
        updates["start"] = params["start"]
    if params.get("end"):
        updates["end"] = params["end"]
    # An empty description is a legitimate way to clear it
    if params.get("description") is not None:
        updates["description"] = params["description"]

    if not updates:
        return ToolResult.fail("No update fields provided")

    client = await get_client()
    try:
        updated = await client.update(ResourceKind.APPOINTMENTS, params["id"], updates)
    except RecordStoreError as e:
        return store_failure("update appointment", e)

    if updated is None:
        return not_found(ResourceKind.APPOINTMENTS, params["id"])

    return ToolResult.ok(
        {
            "message": f"Successfully updated appointment {params['id']}",
            "appointment": updated,
        }
    )
