"""Configuration for the clinic assistant.

Loads settings from environment variables (via a .env file or the system
environment). Every setting has a default so the package can be imported
without any env vars at all, which is what CI and the test suite do.

At *runtime*, a missing ANTHROPIC_API_KEY makes the model layer answer with
a placeholder instead of failing.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists (it won't exist in CI or Docker, that's fine)
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(_env_path)

# --- Clinic record API ---
# Base URL of the FastAPI service that exposes /api/{resource} CRUD routes.
# The assistant's tools talk to the records through this API, never to the
# JSON files directly.
CLINIC_API_BASE_URL: str = os.getenv("CLINIC_API_BASE_URL", "http://localhost:8000")

# The SSE endpoint the HTTP stream transport reads model output from.
CHAT_API_URL: str = os.getenv("CHAT_API_URL", f"{CLINIC_API_BASE_URL}/api/ai/chat")

# Seconds before a record API request is abandoned
REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "30"))

# --- Flat-file storage ---
# One <resource>.json bundle per resource kind lives in this directory.
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "data"))

# --- LLM (Large Language Model) ---
ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest")
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "2048"))

# --- Orchestration ---
# Safety valve against a model that never stops requesting tools. This is
# not an expected bound; real conversations finish long before it.
MAX_TOOL_ITERATIONS: int = int(os.getenv("MAX_TOOL_ITERATIONS", "9999"))

# --- Logging ---
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
