"""
Exception hierarchy for the agent shell.

Configuration problems are ValueErrors, everything that goes wrong on the
wire (subprocess pipes, SSE streams, JSON-RPC error replies, LLM backends)
is a RuntimeError, so callers can catch either family without importing
this module.
"""

from __future__ import annotations

from typing import Any


class McpShellError(Exception):
    """Base exception for all shell errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(McpShellError, ValueError):
    """A descriptor or LLM setting cannot be used as given."""


class UnsupportedProviderError(ConfigurationError):
    """The configured LLM provider has no backend."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported LLM provider: {provider}")
        self.provider = provider


class TransportError(McpShellError, RuntimeError):
    """Spawning, connecting to, or talking to a tool server failed."""


class HandshakeError(TransportError):
    """The tool server rejected the initialize handshake."""


class ToolServerError(McpShellError, RuntimeError):
    """The tool server answered a request with a JSON-RPC error."""

    def __init__(
        self,
        message: str,
        code: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class NoActiveServerError(McpShellError, RuntimeError):
    """A tool was invoked while no server is active."""

    def __init__(self, message: str = "No active MCP server") -> None:
        super().__init__(message)


class BackendError(McpShellError, RuntimeError):
    """An LLM backend answered with a body we cannot interpret."""
