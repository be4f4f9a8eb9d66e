"""Natural-language tool catalog for the system prompt.

The model doesn't get a JSON schema; it gets prose describing each tool,
its parameters and a ready-to-copy tool block. tool_catalog() renders the
ToolSpec entries below into that prose.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from clinic_agent.fhir import VALID_RESOURCES

_KINDS = ", ".join(f'"{k}"' for k in VALID_RESOURCES)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    example: dict[str, Any]
    required: list[str] = field(default_factory=list)
    optional: list[str] = field(default_factory=list)
    at_least_one_optional: bool = False


TOOL_SPECS: list[ToolSpec] = [
    ToolSpec(
        name="create_patient",
        description="Create a new patient record.",
        example={
            "firstName": "John",
            "lastName": "Doe",
            "birthDate": "1990-05-15",
            "gender": "male",
            "phone": "555-123-4567",
            "address": {"line": "123 Main Street", "city": "Springfield", "state": "IL"},
        },
        required=[
            "firstName: Patient's first name",
            "lastName: Patient's last name",
            "birthDate: Date of birth, YYYY-MM-DD",
            'gender: One of "male", "female", "other", "unknown"',
        ],
        optional=[
            "phone: Phone number",
            "email: Email address",
            "address: Object with line, city, state, postalCode, country",
        ],
    ),
    ToolSpec(
        name="query_fhir",
        description="Fetch every record of a kind, or one record by id.",
        example={"resource": "patients"},
        required=[f"resource: One of {_KINDS}"],
        optional=["id: Specific record id to fetch"],
    ),
    ToolSpec(
        name="create_practitioner",
        description="Create a new practitioner/doctor record.",
        example={
            "firstName": "Jane",
            "lastName": "Smith",
            "gender": "female",
            "specialty": "General Practice",
        },
        required=[
            "firstName: Practitioner's first name",
            "lastName: Practitioner's last name",
            'gender: One of "male", "female", "other", "unknown"',
        ],
        optional=["specialty: Medical specialty", "phone: Work phone", "email: Work email"],
    ),
    ToolSpec(
        name="create_appointment",
        description="Book an appointment between a patient and a practitioner.",
        example={
            "patientId": "pat-123",
            "practitionerId": "pra-456",
            "start": "2024-01-15T09:00:00Z",
            "end": "2024-01-15T09:30:00Z",
            "description": "Annual checkup",
        },
        required=[
            "patientId: The patient's id",
            "practitionerId: The practitioner's id",
            "start: Start datetime, ISO 8601",
            "end: End datetime, ISO 8601",
        ],
        optional=[
            "description: What the appointment is for",
            'status: One of "proposed", "pending", "booked", "arrived", "fulfilled", '
            '"cancelled", "noshow" (default "booked")',
            "serviceType: Type of service",
        ],
    ),
    ToolSpec(
        name="update_appointment",
        description="Change an appointment's status, times or description.",
        example={"id": "app-123", "status": "fulfilled"},
        required=["id: The appointment id"],
        optional=["status", "start", "end", "description"],
        at_least_one_optional=True,
    ),
    ToolSpec(
        name="create_encounter",
        description="Open a clinical encounter (visit).",
        example={
            "patientId": "pat-123",
            "practitionerId": "pra-456",
            "encounterClass": "ambulatory",
            "reasonCode": "Annual physical",
        },
        required=["patientId: The patient's id", "practitionerId: The practitioner's id"],
        optional=[
            'encounterClass: One of "ambulatory", "emergency", "inpatient", "virtual" '
            '(default "ambulatory")',
            "type: Type of encounter",
            "reasonCode: Reason for the visit",
            'status: One of "planned", "arrived", "triaged", "in-progress", "onleave", '
            '"finished", "cancelled" (default "in-progress")',
        ],
    ),
    ToolSpec(
        name="update_encounter",
        description="Change an encounter's status or record its end time.",
        example={"id": "enc-123", "status": "finished", "endDate": "2024-01-15T10:00:00Z"},
        required=["id: The encounter id"],
        optional=["status", "endDate: End datetime, ISO 8601"],
        at_least_one_optional=True,
    ),
    ToolSpec(
        name="create_observation",
        description="Record a vital sign, lab result or exam finding.",
        example={
            "patientId": "pat-123",
            "code": "8867-4",
            "codeDisplay": "Heart rate",
            "category": "vital-signs",
            "valueQuantity": {"value": 72, "unit": "beats/min"},
        },
        required=[
            "patientId: The patient's id",
            "code: LOINC or other standard code",
            "codeDisplay: Human-readable name",
            'category: One of "vital-signs", "laboratory", "imaging", "procedure", "exam"',
        ],
        optional=[
            "encounterId: Associated encounter id",
            "valueQuantity: Object with value (number) and unit",
            "valueString: Text value",
            "component: List of {code, codeDisplay, value, unit} (e.g. blood pressure)",
        ],
    ),
    ToolSpec(
        name="create_condition",
        description="Document a condition or diagnosis.",
        example={
            "patientId": "pat-123",
            "code": "E11.9",
            "codeDisplay": "Type 2 diabetes mellitus",
            "clinicalStatus": "active",
        },
        required=[
            "patientId: The patient's id",
            "code: ICD-10 or SNOMED code",
            "codeDisplay: Human-readable name",
            'clinicalStatus: One of "active", "recurrence", "relapse", "inactive", '
            '"remission", "resolved"',
        ],
        optional=[
            'verificationStatus: default "confirmed"',
            'severity: One of "mild", "moderate", "severe"',
            "onsetDate: YYYY-MM-DD",
            "note: Free-text note",
        ],
    ),
    ToolSpec(
        name="update_condition",
        description="Change a condition's clinical status, abatement date or note.",
        example={"id": "con-123", "clinicalStatus": "resolved", "abatementDate": "2024-03-01"},
        required=["id: The condition id"],
        optional=["clinicalStatus", "abatementDate: YYYY-MM-DD", "note"],
        at_least_one_optional=True,
    ),
    ToolSpec(
        name="create_medication_request",
        description="Prescribe a medication.",
        example={
            "patientId": "pat-123",
            "practitionerId": "pra-456",
            "medicationName": "Lisinopril 10mg",
            "dosageInstruction": "Take 1 tablet by mouth once daily",
        },
        required=[
            "patientId: The patient's id",
            "practitionerId: The prescriber's id",
            "medicationName: Name and strength",
            "dosageInstruction: How to take it",
        ],
        optional=[
            'intent: default "order"',
            'priority: One of "routine", "urgent", "asap", "stat" (default "routine")',
            'status: One of "active", "on-hold", "cancelled", "completed", "stopped", '
            '"draft" (default "active")',
        ],
    ),
    ToolSpec(
        name="update_medication_request",
        description="Change a prescription's status.",
        example={"id": "med-123", "status": "stopped"},
        required=["id: The medication request id"],
        optional=["status"],
        at_least_one_optional=True,
    ),
    ToolSpec(
        name="delete_resource",
        description="Delete a record.",
        example={"resourceType": "patients", "id": "pat-123"},
        required=[f"resourceType: One of {_KINDS}", "id: The record id"],
    ),
    ToolSpec(
        name="read_resource",
        description="Read one record by id.",
        example={"resourceType": "practitioners", "id": "pra-456"},
        required=[f"resourceType: One of {_KINDS}", "id: The record id"],
    ),
    ToolSpec(
        name="list_resources",
        description="List records of a kind with optional filters.",
        example={"resourceType": "appointments", "patientId": "pat-123", "limit": 10},
        required=[f"resourceType: One of {_KINDS}"],
        optional=[
            "limit: Maximum number of results",
            "patientId: appointments, encounters, observations, conditions, "
            "medication-requests",
            "practitionerId: appointments, encounters, medication-requests",
            "status: appointments, encounters, conditions, medication-requests",
        ],
    ),
]


def render_tool(spec: ToolSpec) -> str:
    payload = json.dumps({"tool": spec.name, **spec.example}, indent=2)
    lines = [
        f"### {spec.name}",
        spec.description,
        "",
        "**Usage:**",
        "<tool_block>",
        "<params>",
        payload,
        "</params>",
        "</tool_block>",
    ]
    if spec.required:
        lines += ["", "**Required parameters:**"]
        lines += [f"- {p}" for p in spec.required]
    if spec.optional:
        heading = (
            "**Optional parameters (at least one required):**"
            if spec.at_least_one_optional
            else "**Optional parameters:**"
        )
        lines += ["", heading]
        lines += [f"- {p}" for p in spec.optional]
    return "\n".join(lines)


def tool_catalog() -> str:
    """The full catalog section of the system prompt."""
    intro = (
        "## Available Tools\n\n"
        "You can read and change the clinic database with the tools below. To "
        "use one, write a tool_block containing a JSON object in <params>. "
        "Stop writing after </tool_block>: the result will be sent back to you "
        "as the next message, starting with [Tool Result: name] or "
        "[Tool Error: name]."
    )
    return "\n\n".join([intro, *(render_tool(spec) for spec in TOOL_SPECS)])
