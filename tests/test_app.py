"""Tests for the HTTP surface: record CRUD, the SSE chat stream, and the
tools talking to the real routes through an in-process transport."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

import clinic_agent.app as app_module
from clinic_agent.app import app
from clinic_agent.fhir import ResourceKind
from clinic_agent.record_client import RecordStoreClient
from clinic_agent.storage import JsonRecordStore


@pytest.fixture
def store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> JsonRecordStore:
    """Point the app at an empty data directory."""
    temp_store = JsonRecordStore(tmp_path)
    monkeypatch.setattr(app_module, "store", temp_store)
    return temp_store


@pytest.fixture
def client(store: JsonRecordStore) -> TestClient:
    return TestClient(app)


# --- CRUD ---


def test_create_fills_defaults(client: TestClient) -> None:
    response = client.post("/api/appointments", json={"description": "checkup"})

    assert response.status_code == 201
    body = response.json()
    assert body["resourceType"] == "Appointment"
    assert body["status"] == "booked"
    assert body["id"].startswith("app-")
    assert body["meta"]["versionId"] == "1"


def test_get_update_delete(client: TestClient) -> None:
    created = client.post("/api/patients", json={"gender": "female"}).json()
    path = f"/api/patients/{created['id']}"

    assert client.get(path).json()["gender"] == "female"

    updated = client.put(path, json={"gender": "other"}).json()
    assert updated["gender"] == "other"
    assert updated["meta"]["versionId"] == "2"

    deleted = client.delete(path)
    assert deleted.json() == {"message": "Patient deleted successfully"}
    assert client.get(path).status_code == 404


def test_missing_record_is_404(client: TestClient) -> None:
    for response in (
        client.get("/api/conditions/con-x"),
        client.put("/api/conditions/con-x", json={"note": []}),
        client.delete("/api/conditions/con-x"),
    ):
        assert response.status_code == 404
        assert response.json()["detail"] == "Condition not found"


def test_unknown_kind_is_404(client: TestClient) -> None:
    response = client.get("/api/invoices")
    assert response.status_code == 404
    assert "invoices" in response.json()["detail"]


def test_list_by_patient(client: TestClient) -> None:
    client.post("/api/observations", json={"subject": {"reference": "Patient/pat-1"}})
    client.post("/api/observations", json={"subject": {"reference": "Patient/pat-2"}})
    client.post(
        "/api/appointments",
        json={"participant": [{"actor": {"reference": "Patient/pat-1"}}]},
    )

    assert len(client.get("/api/observations").json()) == 2
    assert len(client.get("/api/observations", params={"patient": "pat-1"}).json()) == 1
    assert len(client.get("/api/appointments", params={"patient": "pat-1"}).json()) == 1


# --- SSE chat stream ---


def test_stream_chat_requires_messages(client: TestClient) -> None:
    response = client.post("/api/ai/chat", json={"messages": []})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid request: messages array required"


def test_stream_chat_frames(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[list[dict[str, str]]] = []

    async def fake_stream(turns: list[dict[str, str]]) -> AsyncIterator[str]:
        seen.append(turns)
        yield "Hel"
        yield "lo"

    monkeypatch.setattr(app_module, "stream_chat", fake_stream)

    response = client.post("/api/ai/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.text == (
        'data: {"content": "Hel"}\n\n'
        'data: {"content": "lo"}\n\n'
        "data: [DONE]\n\n"
    )
    assert seen == [[{"role": "user", "content": "hi"}]]


# --- Tools against the real routes ---


@pytest.mark.asyncio
async def test_tool_round_trip_through_api(store: JsonRecordStore) -> None:
    """Tools create records through the API and see each other's output."""
    record_client = RecordStoreClient(
        base_url="http://testserver",
        transport=httpx.ASGITransport(app=app),
    )
    from clinic_agent.tools.patient import create_patient
    from clinic_agent.tools.records import list_resources
    from clinic_agent.tools.scheduling import create_appointment

    with (
        patch("clinic_agent.tools.patient.get_client", AsyncMock(return_value=record_client)),
        patch("clinic_agent.tools.scheduling.get_client", AsyncMock(return_value=record_client)),
        patch("clinic_agent.tools.records.get_client", AsyncMock(return_value=record_client)),
    ):
        patient = await create_patient(
            {"firstName": "Jane", "lastName": "Doe", "birthDate": "1990-04-01", "gender": "female"}
        )
        patient_id = patient.payload["patient"]["id"]

        appointment = await create_appointment(
            {
                "patientId": patient_id,
                "practitionerId": "pra-missing",
                "start": "2025-01-01T09:00:00Z",
                "end": "2025-01-01T09:30:00Z",
            }
        )
        listed = await list_resources({"resourceType": "appointments", "patientId": patient_id})

    await record_client.close()

    assert patient.succeeded and appointment.succeeded
    displays = [p["actor"]["display"] for p in appointment.payload["appointment"]["participant"]]
    assert displays == ["Jane Doe", "Unknown"]
    assert listed.payload["filteredCount"] == 1
    assert store.count(ResourceKind.PATIENTS) == 1
