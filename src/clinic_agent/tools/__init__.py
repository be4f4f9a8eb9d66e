"""Clinic record tools for the assistant.

Each module in this package contains "tools": async functions the
assistant can call by writing a tool block. Every tool takes the block's
parameter object and returns a ToolResult; none of them raise.

Tools are organized by domain:
- patient.py:     Create patients
- scheduling.py:  Practitioners and appointments
- encounters.py:  Clinic visits
- clinical.py:    Observations, conditions, medication requests
- records.py:     Query, read, list and delete any kind of record
- registry.py:    Name -> tool dispatch table
- definitions.py: The prose catalog the model reads in its system prompt
"""

from clinic_agent.tools.common import ToolResult
from clinic_agent.tools.registry import ActionRegistry, get_registry

__all__ = ["ActionRegistry", "ToolResult", "get_registry"]
