"""Patient tools.

API endpoints used:
- POST /api/patients  - Create a patient record
"""

from __future__ import annotations

from typing import Any

from clinic_agent.fhir import ResourceKind
from clinic_agent.record_client import RecordStoreError, get_client
from clinic_agent.tools.common import ToolResult, require, store_failure

VALID_GENDERS = ("male", "female", "other", "unknown")

_ADDRESS_FIELDS = ("city", "state", "postalCode", "country")


def _build_address(address: dict[str, Any]) -> dict[str, Any]:
    entry: dict[str, Any] = {"use": "home", "type": "physical"}
    if address.get("line"):
        entry["line"] = [address["line"]]
    for field in _ADDRESS_FIELDS:
        if address.get(field):
            entry[field] = address[field]
    return entry


async def create_patient(params: dict[str, Any]) -> ToolResult:
    """Create a new patient record.

    Args:
        params: firstName, lastName, birthDate (YYYY-MM-DD) and gender are
            required; phone, email and address are optional.

    Returns:
        The created Patient on success.
    """
    failure = require(params, "firstName", "lastName", "birthDate", "gender")
    if failure:
        return failure
    if params["gender"] not in VALID_GENDERS:
        return ToolResult.fail(
            f"Invalid gender: {params['gender']}. Must be one of: {', '.join(VALID_GENDERS)}"
        )

    telecom: list[dict[str, str]] = []
    if params.get("phone"):
        telecom.append({"system": "phone", "value": params["phone"], "use": "mobile"})
    if params.get("email"):
        telecom.append({"system": "email", "value": params["email"], "use": "home"})

    address = params.get("address")
    patient = {
        "resourceType": "Patient",
        "active": True,
        "name": [
            {
                "use": "official",
                "family": params["lastName"],
                "given": [params["firstName"]],
            }
        ],
        "gender": params["gender"],
        "birthDate": params["birthDate"],
        "telecom": telecom,
        "address": [_build_address(address)] if isinstance(address, dict) else [],
    }

    client = await get_client()
    try:
        created = await client.create(ResourceKind.PATIENTS, patient)
    except RecordStoreError as e:
        return store_failure("create patient", e)

    return ToolResult.ok(
        {
            "message": (
                f"Successfully created patient record for "
                f"{params['firstName']} {params['lastName']}"
            ),
            "patient": created,
        }
    )
