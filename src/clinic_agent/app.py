"""FastAPI server: the HTTP entry point for the clinic.

This file defines the web API. It exposes:

- GET  /health                    - Simple check that the server is running
- /api/{kind}[/{id}]              - CRUD over the seven record kinds
- POST /api/ai/chat               - Raw model stream as server-sent events
- POST /agent/chat                - One user message through the full
                                    tool-calling loop

Records are stored by clinic_agent.storage as flat JSON files. The
assistant's tools reach them through the same /api routes as any other
client.

Run locally with:
    uvicorn clinic_agent.app:app --reload
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from clinic_agent.config import LOG_LEVEL
from clinic_agent.fhir import RESOURCE_TYPES, ResourceKind, parse_resource_kind, strip_reference
from clinic_agent.llm import stream_chat
from clinic_agent.orchestrator import ConversationState, Orchestrator, Turn
from clinic_agent.storage import JsonRecordStore
from clinic_agent.tools import get_registry

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Clinic Assistant",
    description="FHIR-shaped clinic records with a tool-calling assistant",
    version="0.1.0",
)

store = JsonRecordStore()

# Defaults the create route fills in when the body leaves them out
_CREATE_DEFAULTS: dict[ResourceKind, dict[str, Any]] = {
    ResourceKind.APPOINTMENTS: {"status": "booked"},
    ResourceKind.ENCOUNTERS: {"status": "in-progress"},
    ResourceKind.OBSERVATIONS: {"status": "final"},
    ResourceKind.MEDICATION_REQUESTS: {"status": "active", "intent": "order"},
    ResourceKind.PATIENTS: {"active": True},
    ResourceKind.PRACTITIONERS: {"active": True},
}


class ChatTurn(BaseModel):
    role: str
    content: str


class StreamChatRequest(BaseModel):
    """What the client sends to /api/ai/chat."""

    messages: list[ChatTurn] | None = None


class ChatRequest(BaseModel):
    """What the client sends to the /agent/chat endpoint."""

    message: str  # The user's message in plain English
    session_id: str | None = None  # Optional: continue an existing conversation


class ChatResponse(BaseModel):
    """What the /agent/chat endpoint sends back."""

    response: str  # The assistant's final answer
    session_id: str  # The session ID (new or existing) for follow-up messages
    turns: list[Turn]  # The whole conversation, tool calls included


# In-memory conversations for /agent/chat, keyed by session id
_sessions: dict[str, ConversationState] = {}


def _kind_or_404(kind: str) -> ResourceKind:
    resource_kind = parse_resource_kind(kind)
    if resource_kind is None:
        raise HTTPException(status_code=404, detail=f"Unknown resource type: {kind}")
    return resource_kind


def _references_patient(resource: dict[str, Any], patient_id: str) -> bool:
    for key in ("subject", "patient"):
        ref = (resource.get(key) or {}).get("reference")
        if ref and strip_reference(ref, "Patient") == patient_id:
            return True
    return any(
        strip_reference((p.get("actor") or {}).get("reference", ""), "Patient") == patient_id
        for p in resource.get("participant") or []
    )


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint. Returns 200 if the server is running."""
    return {"status": "ok"}


# --- Record CRUD ---
# These are plain (sync) handlers: the store does blocking file I/O, and
# FastAPI runs sync handlers in its thread pool.


@app.get("/api/{kind}")
def list_records(kind: str, patient: str | None = None) -> list[dict[str, Any]]:
    """List every record of a kind, optionally only those for one patient."""
    resource_kind = _kind_or_404(kind)
    if patient:
        return store.search(resource_kind, lambda r: _references_patient(r, patient))
    return store.list(resource_kind)


@app.get("/api/{kind}/{resource_id}")
def get_record(kind: str, resource_id: str) -> dict[str, Any]:
    resource_kind = _kind_or_404(kind)
    record = store.get(resource_kind, resource_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{RESOURCE_TYPES[resource_kind]} not found")
    return record


@app.post("/api/{kind}", status_code=201)
def create_record(kind: str, body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    resource_kind = _kind_or_404(kind)
    resource = {
        "resourceType": RESOURCE_TYPES[resource_kind],
        **_CREATE_DEFAULTS.get(resource_kind, {}),
        **body,
    }
    return store.create(resource_kind, resource)


@app.put("/api/{kind}/{resource_id}")
def update_record(kind: str, resource_id: str, body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    resource_kind = _kind_or_404(kind)
    updated = store.update(resource_kind, resource_id, body)
    if updated is None:
        raise HTTPException(status_code=404, detail=f"{RESOURCE_TYPES[resource_kind]} not found")
    return updated


@app.delete("/api/{kind}/{resource_id}")
def delete_record(kind: str, resource_id: str) -> dict[str, str]:
    resource_kind = _kind_or_404(kind)
    if not store.delete(resource_kind, resource_id):
        raise HTTPException(status_code=404, detail=f"{RESOURCE_TYPES[resource_kind]} not found")
    return {"message": f"{RESOURCE_TYPES[resource_kind]} deleted successfully"}


# --- Assistant ---


async def _sse_frames(turns: list[dict[str, str]]) -> AsyncIterator[str]:
    try:
        async for delta in stream_chat(turns):
            yield f"data: {json.dumps({'content': delta})}\n\n"
    except Exception:
        # The status line has already been sent; all we can do is stop
        logger.exception("Model stream failed mid-response")
        raise
    yield "data: [DONE]\n\n"


@app.post("/api/ai/chat")
async def stream_chat_endpoint(request: StreamChatRequest) -> StreamingResponse:
    """Stream the model's reply to a conversation as server-sent events."""
    if not request.messages:
        raise HTTPException(status_code=400, detail="Invalid request: messages array required")

    turns = [{"role": m.role, "content": m.content} for m in request.messages]
    return StreamingResponse(
        _sse_frames(turns),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.post("/agent/chat", response_model=ChatResponse)
async def chat(request: ChatRequest) -> ChatResponse:
    """Process a chat message through the tool-calling assistant.

    Include a session_id to continue a previous conversation. If omitted
    (or unknown), a new session is created and its ID is returned.
    """
    session_id = request.session_id if request.session_id in _sessions else str(uuid.uuid4())
    state = _sessions.setdefault(session_id, ConversationState())

    if state.is_loading:
        raise HTTPException(status_code=409, detail="This conversation is already busy")

    orchestrator = Orchestrator(stream_chat, get_registry())
    state = await orchestrator.submit(state, request.message)

    return ChatResponse(
        response=state.last_assistant_text(),
        session_id=session_id,
        turns=state.turns,
    )
