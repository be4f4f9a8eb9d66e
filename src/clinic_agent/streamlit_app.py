"""Streamlit chat frontend for the clinic assistant.

Streamlit re-runs this entire script on every user interaction, so the
conversation is kept in st.session_state. Each message is sent to the
FastAPI backend's /agent/chat endpoint, which runs the tool-calling loop
and returns every turn of the conversation, tool calls included.

This page only displays what the backend decided: assistant text with tool
blocks stripped out, plus one status line per tool call.

Run locally with:
    streamlit run src/clinic_agent/streamlit_app.py

The FastAPI backend must be running at the URL configured below.
"""

import os

import requests
import streamlit as st

from clinic_agent.parser import remove_tool_blocks

BACKEND_URL = os.getenv("AGENT_BACKEND_URL", "http://localhost:8000")

STATUS_ICONS = {
    "pending": "⏳",
    "executing": "⚙️",
    "success": "✅",
    "error": "❌",
}

# --- Page config ---
st.set_page_config(
    page_title="Clinic Assistant",
    page_icon="\U0001f3e5",
)

st.title("Clinic Assistant")
st.caption("Ask about patients, appointments and records, or ask me to create them.")

# --- Session state initialization ---

if "turns" not in st.session_state:
    # Turn dicts as returned by the backend
    st.session_state.turns = []

if "session_id" not in st.session_state:
    st.session_state.session_id = None  # Set by the first backend response


def render_turn(turn: dict) -> None:
    """Draw one turn. Tool-result turns are for the model, not the user."""
    if turn.get("is_tool_result"):
        return
    with st.chat_message(turn["role"]):
        text = turn["text"]
        if turn["role"] == "assistant":
            text = remove_tool_blocks(text)
        if text:
            st.markdown(text)
        for action in turn.get("actions", []):
            icon = STATUS_ICONS.get(action["status"], "")
            line = f"{icon} `{action['name']}`"
            result = action.get("result") or {}
            if result.get("error_message"):
                line += f": {result['error_message']}"
            st.caption(line)


# --- Display chat history ---

for turn in st.session_state.turns:
    render_turn(turn)

# --- Handle new user input ---

user_input = st.chat_input("Ask about patients, appointments, or create a record...")

if user_input:
    st.chat_message("user").write(user_input)

    with st.spinner("Thinking..."):
        try:
            resp = requests.post(
                f"{BACKEND_URL}/agent/chat",
                json={
                    "message": user_input,
                    "session_id": st.session_state.session_id,
                },
                timeout=300,
            )
            resp.raise_for_status()
            data = resp.json()
            st.session_state.session_id = data.get("session_id")
            st.session_state.turns = data["turns"]
            st.rerun()
        except requests.exceptions.ConnectionError:
            st.error(f"Could not connect to the backend. Is the FastAPI server running at {BACKEND_URL}?")
        except requests.exceptions.Timeout:
            st.error("The request timed out. The assistant may still be working through tools.")
        except requests.exceptions.RequestException as e:
            st.error(f"Error: {e}")
