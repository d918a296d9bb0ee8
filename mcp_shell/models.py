"""Plain data carried between the shell's components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ROLES = ("user", "assistant", "system")


@dataclass
class ToolDescriptor:
    """A tool advertised by the active server."""
    name: str
    description: str = "No description available"
    input_schema: dict[str, Any] = field(default_factory=dict)
    server_name: str = ""

    @property
    def properties(self) -> dict[str, dict]:
        return self.input_schema.get("properties") or {}

    @property
    def required(self) -> list[str]:
        return list(self.input_schema.get("required") or [])


@dataclass
class ResourceDescriptor:
    """A readable resource advertised by a server."""
    uri: str
    name: str | None = None
    description: str | None = None
    mime_type: str | None = None
    server_name: str = ""


@dataclass
class ToolCall:
    tool: str
    arguments: dict[str, Any]


@dataclass
class ConversationTurn:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown role: {self.role!r}")

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Usage:
    """Token counters. Backends report inconsistently, so each may be missing."""
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass
class GatewayResponse:
    text: str
    usage: Usage | None = None
    tool_call: ToolCall | None = None

    @property
    def is_tool_call(self) -> bool:
        return self.tool_call is not None
