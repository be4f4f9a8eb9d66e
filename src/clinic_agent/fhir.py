"""FHIR vocabulary shared by the record API, the store and the tools.

Only the small slice of FHIR the clinic actually uses lives here: the seven
resource kinds, their reference prefixes, and helpers that turn a stored
Patient/Practitioner into a human-readable label.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ResourceKind(str, Enum):
    """The seven record categories, named as they appear in API paths."""

    PATIENTS = "patients"
    PRACTITIONERS = "practitioners"
    APPOINTMENTS = "appointments"
    ENCOUNTERS = "encounters"
    OBSERVATIONS = "observations"
    CONDITIONS = "conditions"
    MEDICATION_REQUESTS = "medication-requests"


RESOURCE_TYPES: dict[ResourceKind, str] = {
    ResourceKind.PATIENTS: "Patient",
    ResourceKind.PRACTITIONERS: "Practitioner",
    ResourceKind.APPOINTMENTS: "Appointment",
    ResourceKind.ENCOUNTERS: "Encounter",
    ResourceKind.OBSERVATIONS: "Observation",
    ResourceKind.CONDITIONS: "Condition",
    ResourceKind.MEDICATION_REQUESTS: "MedicationRequest",
}

VALID_RESOURCES: list[str] = [kind.value for kind in ResourceKind]

UNKNOWN_DISPLAY = "Unknown"


def parse_resource_kind(value: Any) -> ResourceKind | None:
    """Return the ResourceKind for an API name, or None if it isn't one."""
    try:
        return ResourceKind(value)
    except ValueError:
        return None


def id_prefix(kind: ResourceKind) -> str:
    """Prefix for generated ids: the first three letters of the kind."""
    return kind.value[:3]


# --- Names ---


def primary_name(names: list[dict[str, Any]] | None) -> dict[str, Any] | None:
    """Pick the official name if there is one, else the first."""
    if not names:
        return None
    for name in names:
        if name.get("use") == "official":
            return name
    return names[0]


def format_human_name(name: dict[str, Any] | None) -> str:
    """Format a FHIR HumanName as "prefix given family suffix"."""
    if not name:
        return UNKNOWN_DISPLAY

    parts: list[str] = []
    if name.get("prefix"):
        parts.append(" ".join(name["prefix"]))
    if name.get("given"):
        parts.append(" ".join(name["given"]))
    if name.get("family"):
        parts.append(name["family"])
    if name.get("suffix"):
        parts.append(" ".join(name["suffix"]))

    if parts:
        return " ".join(parts)
    return name.get("text") or UNKNOWN_DISPLAY


def patient_display_name(patient: dict[str, Any]) -> str:
    return format_human_name(primary_name(patient.get("name")))


def practitioner_display_name(practitioner: dict[str, Any]) -> str:
    return format_human_name(primary_name(practitioner.get("name")))


# --- References ---


def make_reference(resource_type: str, resource_id: str, display: str | None = None) -> dict[str, Any]:
    """Build a FHIR Reference like {"reference": "Patient/pat-1", ...}."""
    ref: dict[str, Any] = {
        "reference": f"{resource_type}/{resource_id}",
        "type": resource_type,
    }
    if display is not None:
        ref["display"] = display
    return ref


def strip_reference(reference: str, resource_type: str) -> str:
    """"Patient/pat-1" -> "pat-1"; references without the prefix pass through."""
    prefix = f"{resource_type}/"
    if reference.startswith(prefix):
        return reference[len(prefix):]
    return reference
