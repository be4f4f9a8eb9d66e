"""Tests for the tool executors.

Each test mocks the get_client() singleton so no record API is needed. We
verify that tools validate their input before touching the API, build the
right FHIR shapes, and turn API problems into failure results instead of
raising.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from clinic_agent.fhir import ResourceKind
from clinic_agent.record_client import RecordStoreError

# We patch get_client in each tool module to return a mock client.


def _mock_client(**responses: Any) -> AsyncMock:
    """Create a mock RecordStoreClient whose methods return the given values.

    The mock's create() echoes the resource back with an id, like the API.
    """
    client = AsyncMock()
    client.create.side_effect = lambda kind, resource: {**resource, "id": f"{kind.value[:3]}-1"}
    for method, value in responses.items():
        getattr(client, method).return_value = value
    return client


def _patient(given: str = "Jane", family: str = "Doe") -> dict[str, Any]:
    return {
        "resourceType": "Patient",
        "id": "pat-1",
        "name": [{"use": "official", "given": [given], "family": family}],
    }


# --- create_patient ---


@pytest.mark.asyncio
@patch("clinic_agent.tools.patient.get_client")
async def test_create_patient(mock_gc: AsyncMock) -> None:
    client = _mock_client()
    mock_gc.return_value = client
    from clinic_agent.tools.patient import create_patient

    result = await create_patient(
        {
            "firstName": "Jane",
            "lastName": "Doe",
            "birthDate": "1990-04-01",
            "gender": "female",
            "phone": "555-0100",
            "address": {"line": "1 Main St", "city": "Springfield"},
        }
    )

    assert result.succeeded
    assert "Jane Doe" in result.payload["message"]
    kind, resource = client.create.call_args.args
    assert kind is ResourceKind.PATIENTS
    assert resource["name"][0] == {"use": "official", "family": "Doe", "given": ["Jane"]}
    assert resource["telecom"] == [{"system": "phone", "value": "555-0100", "use": "mobile"}]
    assert resource["address"][0]["line"] == ["1 Main St"]


@pytest.mark.asyncio
@patch("clinic_agent.tools.patient.get_client")
async def test_create_patient_missing_field_never_calls_api(mock_gc: AsyncMock) -> None:
    from clinic_agent.tools.patient import create_patient

    result = await create_patient({"firstName": "Jane", "lastName": "Doe", "gender": "female"})

    assert not result.succeeded
    assert result.error_message == "birthDate is required"
    mock_gc.assert_not_called()


@pytest.mark.asyncio
@patch("clinic_agent.tools.patient.get_client")
async def test_create_patient_invalid_gender(mock_gc: AsyncMock) -> None:
    from clinic_agent.tools.patient import create_patient

    result = await create_patient(
        {"firstName": "A", "lastName": "B", "birthDate": "2000-01-01", "gender": "robot"}
    )

    assert not result.succeeded
    assert "Invalid gender" in result.error_message
    mock_gc.assert_not_called()


@pytest.mark.asyncio
@patch("clinic_agent.tools.patient.get_client")
async def test_create_patient_api_error(mock_gc: AsyncMock) -> None:
    """API failures become failure results, never exceptions."""
    client = _mock_client()
    client.create.side_effect = RecordStoreError(500, "disk full")
    mock_gc.return_value = client
    from clinic_agent.tools.patient import create_patient

    result = await create_patient(
        {"firstName": "A", "lastName": "B", "birthDate": "2000-01-01", "gender": "male"}
    )

    assert not result.succeeded
    assert result.error_message == "Failed to create patient: disk full"


# --- appointments ---


@pytest.mark.asyncio
@patch("clinic_agent.tools.scheduling.get_client")
async def test_create_appointment_requires_practitioner(mock_gc: AsyncMock) -> None:
    """A missing required field fails without any API call."""
    from clinic_agent.tools.scheduling import create_appointment

    result = await create_appointment({"patientId": "p1"})

    assert not result.succeeded
    assert result.error_message == "practitionerId is required"
    mock_gc.assert_not_called()


@pytest.mark.asyncio
@patch("clinic_agent.tools.scheduling.get_client")
async def test_create_appointment_labels_participants(mock_gc: AsyncMock) -> None:
    client = _mock_client()
    client.get.side_effect = [
        _patient(),
        {"resourceType": "Practitioner", "name": [{"given": ["Greg"], "family": "House"}]},
    ]
    mock_gc.return_value = client
    from clinic_agent.tools.scheduling import create_appointment

    result = await create_appointment(
        {
            "patientId": "pat-1",
            "practitionerId": "pra-1",
            "start": "2025-01-01T09:00:00Z",
            "end": "2025-01-01T09:30:00Z",
        }
    )

    assert result.succeeded
    appointment = result.payload["appointment"]
    assert appointment["status"] == "booked"
    actors = [p["actor"] for p in appointment["participant"]]
    assert actors[0] == {"reference": "Patient/pat-1", "type": "Patient", "display": "Jane Doe"}
    assert actors[1]["display"] == "Greg House"
    # Patient label first, then practitioner
    assert [c.args for c in client.get.call_args_list] == [
        (ResourceKind.PATIENTS, "pat-1"),
        (ResourceKind.PRACTITIONERS, "pra-1"),
    ]


@pytest.mark.asyncio
@patch("clinic_agent.tools.scheduling.get_client")
async def test_create_appointment_label_falls_back_to_unknown(mock_gc: AsyncMock) -> None:
    """A failed or empty label lookup never stops the booking."""
    client = _mock_client()
    client.get.side_effect = [RecordStoreError(0, "down"), None]
    mock_gc.return_value = client
    from clinic_agent.tools.scheduling import create_appointment

    result = await create_appointment(
        {"patientId": "p1", "practitionerId": "d1", "start": "s", "end": "e"}
    )

    assert result.succeeded
    displays = [p["actor"]["display"] for p in result.payload["appointment"]["participant"]]
    assert displays == ["Unknown", "Unknown"]


@pytest.mark.asyncio
@patch("clinic_agent.tools.scheduling.get_client")
async def test_update_appointment_without_fields(mock_gc: AsyncMock) -> None:
    from clinic_agent.tools.scheduling import update_appointment

    result = await update_appointment({"id": "app-1"})

    assert result.error_message == "No update fields provided"
    mock_gc.assert_not_called()


@pytest.mark.asyncio
@patch("clinic_agent.tools.scheduling.get_client")
async def test_update_appointment_not_found(mock_gc: AsyncMock) -> None:
    mock_gc.return_value = _mock_client(update=None)
    from clinic_agent.tools.scheduling import update_appointment

    result = await update_appointment({"id": "app-9", "status": "cancelled"})

    assert not result.succeeded
    assert result.error_message == "appointments with id 'app-9' not found"


# --- encounters ---


@pytest.mark.asyncio
@patch("clinic_agent.tools.encounters.get_client")
async def test_update_encounter_end_date_keeps_start(mock_gc: AsyncMock) -> None:
    client = _mock_client(
        get={"id": "enc-1", "period": {"start": "2025-01-01T09:00:00Z"}},
        update={"id": "enc-1"},
    )
    mock_gc.return_value = client
    from clinic_agent.tools.encounters import update_encounter

    result = await update_encounter(
        {"id": "enc-1", "status": "finished", "endDate": "2025-01-01T10:00:00Z"}
    )

    assert result.succeeded
    client.update.assert_awaited_once_with(
        ResourceKind.ENCOUNTERS,
        "enc-1",
        {
            "status": "finished",
            "period": {"start": "2025-01-01T09:00:00Z", "end": "2025-01-01T10:00:00Z"},
        },
    )


@pytest.mark.asyncio
@patch("clinic_agent.tools.encounters.get_client")
async def test_create_encounter_unknown_class_is_ambulatory(mock_gc: AsyncMock) -> None:
    mock_gc.return_value = _mock_client(get=_patient())
    from clinic_agent.tools.encounters import create_encounter

    result = await create_encounter(
        {"patientId": "pat-1", "practitionerId": "pra-1", "encounterClass": "teleport"}
    )

    assert result.succeeded
    encounter = result.payload["encounter"]
    assert encounter["class"]["code"] == "AMB"
    assert encounter["subject"]["reference"] == "Patient/pat-1"
    assert encounter["participant"][0]["individual"]["reference"] == "Practitioner/pra-1"


# --- clinical ---


@pytest.mark.asyncio
@patch("clinic_agent.tools.clinical.get_client")
async def test_create_observation_prefers_quantity(mock_gc: AsyncMock) -> None:
    mock_gc.return_value = _mock_client(get=_patient())
    from clinic_agent.tools.clinical import create_observation

    result = await create_observation(
        {
            "patientId": "pat-1",
            "code": "8867-4",
            "codeDisplay": "Heart rate",
            "category": "vital-signs",
            "encounterId": "enc-1",
            "valueQuantity": {"value": 72, "unit": "beats/min"},
            "valueString": "ignored",
        }
    )

    assert result.succeeded
    observation = result.payload["observation"]
    assert observation["valueQuantity"] == {"value": 72, "unit": "beats/min"}
    assert "valueString" not in observation
    assert observation["encounter"]["reference"] == "Encounter/enc-1"
    assert observation["category"][0]["coding"][0]["display"] == "Vital Signs"


@pytest.mark.asyncio
@patch("clinic_agent.tools.clinical.get_client")
async def test_create_condition_defaults_to_confirmed(mock_gc: AsyncMock) -> None:
    mock_gc.return_value = _mock_client(get=_patient())
    from clinic_agent.tools.clinical import create_condition

    result = await create_condition(
        {"patientId": "pat-1", "code": "J45", "codeDisplay": "Asthma", "clinicalStatus": "active"}
    )

    assert result.succeeded
    condition = result.payload["condition"]
    assert condition["verificationStatus"]["coding"][0]["code"] == "confirmed"
    assert condition["clinicalStatus"]["coding"][0]["display"] == "Active"


@pytest.mark.asyncio
@patch("clinic_agent.tools.clinical.get_client")
async def test_update_medication_request_status(mock_gc: AsyncMock) -> None:
    client = _mock_client(update={"id": "med-1", "status": "stopped"})
    mock_gc.return_value = client
    from clinic_agent.tools.clinical import update_medication_request

    result = await update_medication_request({"id": "med-1", "status": "stopped"})

    assert result.succeeded
    client.update.assert_awaited_once_with(
        ResourceKind.MEDICATION_REQUESTS, "med-1", {"status": "stopped"}
    )


# --- generic record tools ---


def _appointments() -> list[dict[str, Any]]:
    def appt(appt_id: str, patient: str, practitioner: str, status: str) -> dict[str, Any]:
        return {
            "id": appt_id,
            "status": status,
            "participant": [
                {"actor": {"reference": f"Patient/{patient}"}},
                {"actor": {"reference": f"Practitioner/{practitioner}"}},
            ],
        }

    return [
        appt("app-1", "pat-1", "pra-1", "booked"),
        appt("app-2", "pat-1", "pra-2", "cancelled"),
        appt("app-3", "pat-2", "pra-1", "booked"),
        appt("app-4", "pat-1", "pra-1", "booked"),
    ]


@pytest.mark.asyncio
@patch("clinic_agent.tools.records.get_client")
async def test_list_resources_filters_and_limit(mock_gc: AsyncMock) -> None:
    resources = _appointments()
    mock_gc.return_value = _mock_client(list=resources)
    from clinic_agent.tools.records import list_resources

    result = await list_resources(
        {
            "resourceType": "appointments",
            "patientId": "Patient/pat-1",
            "practitionerId": "pra-1",
            "status": "booked",
            "limit": "1",
        }
    )

    assert result.succeeded
    assert result.payload["totalCount"] == 4
    assert result.payload["filteredCount"] == 1
    assert [r["id"] for r in result.payload["resources"]] == ["app-1"]
    # The fetched list itself is left alone
    assert len(resources) == 4


@pytest.mark.asyncio
@patch("clinic_agent.tools.records.get_client")
async def test_list_resources_ignores_inapplicable_filter(mock_gc: AsyncMock) -> None:
    """Patients have no status filter, so status is ignored for them."""
    mock_gc.return_value = _mock_client(list=[_patient(), _patient("John")])
    from clinic_agent.tools.records import list_resources

    result = await list_resources({"resourceType": "patients", "status": "booked"})

    assert result.payload["filteredCount"] == 2


@pytest.mark.asyncio
@patch("clinic_agent.tools.records.get_client")
async def test_condition_status_comes_from_clinical_status(mock_gc: AsyncMock) -> None:
    conditions = [
        {"id": "con-1", "clinicalStatus": {"coding": [{"code": "active"}]}},
        {"id": "con-2", "clinicalStatus": {"coding": [{"code": "resolved"}]}},
    ]
    mock_gc.return_value = _mock_client(list=conditions)
    from clinic_agent.tools.records import list_resources

    result = await list_resources({"resourceType": "conditions", "status": "resolved"})

    assert [r["id"] for r in result.payload["resources"]] == ["con-2"]


@pytest.mark.asyncio
@patch("clinic_agent.tools.records.get_client")
async def test_invalid_resource_type(mock_gc: AsyncMock) -> None:
    from clinic_agent.tools.records import read_resource

    result = await read_resource({"resourceType": "invoices", "id": "x"})

    assert not result.succeeded
    assert result.error_message.startswith("Invalid resource type: invoices. Valid types are: ")
    assert "medication-requests" in result.error_message
    mock_gc.assert_not_called()


@pytest.mark.asyncio
@patch("clinic_agent.tools.records.get_client")
async def test_read_resource_not_found(mock_gc: AsyncMock) -> None:
    mock_gc.return_value = _mock_client(get=None)
    from clinic_agent.tools.records import read_resource

    result = await read_resource({"resourceType": "patients", "id": "pat-9"})

    assert result.error_message == "patients with id 'pat-9' not found"


@pytest.mark.asyncio
@patch("clinic_agent.tools.records.get_client")
async def test_query_fhir_single_and_all(mock_gc: AsyncMock) -> None:
    mock_gc.return_value = _mock_client(get=_patient(), list=[_patient(), _patient("Al")])
    from clinic_agent.tools.records import query_fhir

    one = await query_fhir({"resource": "patients", "id": "pat-1"})
    everything = await query_fhir({"resource": "patients"})

    assert one.payload["count"] == 1
    assert one.payload["results"]["id"] == "pat-1"
    assert everything.payload["count"] == 2


@pytest.mark.asyncio
@patch("clinic_agent.tools.records.get_client")
async def test_delete_resource(mock_gc: AsyncMock) -> None:
    mock_gc.return_value = _mock_client(delete=True)
    from clinic_agent.tools.records import delete_resource

    result = await delete_resource({"resourceType": "encounters", "id": "enc-1"})

    assert result.payload == {"message": "Successfully deleted encounters with ID enc-1"}


# --- registry ---


@pytest.mark.asyncio
async def test_registry_unknown_tool() -> None:
    from clinic_agent.tools import get_registry

    result = await get_registry().execute({"tool": "launch_rocket"})

    assert not result.succeeded
    assert result.error_message == "Unknown tool: launch_rocket"


@pytest.mark.asyncio
async def test_registry_reads_action_field() -> None:
    from clinic_agent.tools import ActionRegistry, ToolResult

    async def ping(params: dict[str, Any]) -> ToolResult:
        return ToolResult.ok(params["n"])

    registry = ActionRegistry([ping])
    result = await registry.execute({"action": "ping", "n": 3})

    assert result.payload == 3


@pytest.mark.asyncio
async def test_registry_converts_executor_exceptions() -> None:
    from clinic_agent.tools import ActionRegistry, ToolResult

    async def explode(params: dict[str, Any]) -> ToolResult:
        raise KeyError("boom")

    result = await ActionRegistry([explode]).execute({"tool": "explode"})

    assert not result.succeeded
    assert result.error_message.startswith("Tool explode failed")


def test_registry_rejects_duplicates() -> None:
    from clinic_agent.tools import ActionRegistry, ToolResult

    async def twin(params: dict[str, Any]) -> ToolResult:
        return ToolResult.ok()

    with pytest.raises(ValueError, match="twin"):
        ActionRegistry([twin, twin])
