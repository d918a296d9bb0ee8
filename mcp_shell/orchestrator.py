"""
Conversation Orchestrator: the two-pass tool protocol.

Per user message:

    IDLE ─▶ AWAITING_FIRST_REPLY ─┬─▶ FINAL                        (plain reply)
                                  └─▶ AWAITING_TOOL_RESULT
                                        ─▶ AWAITING_SECOND_REPLY ─▶ FINAL

Any gateway failure moves the exchange to FAILED. Turns appended before
the failure stay in the history; nothing is retried and the session is
ready for the next message either way.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mcp_shell.config import AppConfig, ServerDescriptor
from mcp_shell.errors import ConfigurationError
from mcp_shell.gateway import ProviderGateway
from mcp_shell.models import ConversationTurn, ToolCall, Usage
from mcp_shell.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ExchangeState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_REPLY = "awaiting_first_reply"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"
    AWAITING_SECOND_REPLY = "awaiting_second_reply"
    FINAL = "final"
    FAILED = "failed"


@dataclass
class ExchangeResult:
    """What one user message produced."""
    state: ExchangeState
    text: str | None = None
    usage: Usage | None = None
    tool_call: ToolCall | None = None
    tool_result: Any = None
    tool_error: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state == ExchangeState.FINAL


class Session:
    """
    Everything one running shell knows: config, conversation history and
    the registry of the active server's tools.
    """

    def __init__(self, config: AppConfig, registry: ToolRegistry):
        self.config = config
        self.registry = registry
        self.history: list[ConversationTurn] = []

    @property
    def active_server(self) -> ServerDescriptor | None:
        return self.registry.active

    def servers(self) -> list[tuple[str, ServerDescriptor, bool]]:
        """(key, descriptor, is_active) for every configured server."""
        active = self.active_server
        return [
            (key, server, active is not None and active.name == server.name)
            for key, server in self.config.servers.items()
        ]

    def _lookup(self, key: str) -> ServerDescriptor:
        server = self.config.servers.get(key)
        if server is None:
            raise ConfigurationError(f"Server '{key}' not found.")
        return server

    def use_server(self, key: str) -> int:
        """Make ``key`` the active server and load its tools. Returns the tool count."""
        server = self._lookup(key)
        if not server.enabled:
            raise ConfigurationError(f"Server '{server.name}' is disabled.")
        self.registry.set_active(server)
        self.registry.reload()
        logger.info(f"Active MCP server set to: {server.name} ({len(self.registry)} tools)")
        return len(self.registry)

    def set_server_enabled(self, key: str, enabled: bool) -> None:
        """Enable or disable a server; disabling the active one deactivates it."""
        server = self._lookup(key)
        server.enabled = enabled
        logger.info(f"Server '{server.name}' {'enabled' if enabled else 'disabled'}.")

        active = self.active_server
        if not enabled and active is not None and active.name == server.name:
            self.registry.set_active(None)
            self.registry.reload()
            logger.info("Active server cleared.")

    def clear_history(self) -> None:
        self.history = []

    def append(self, role: str, content: str) -> None:
        self.history.append(ConversationTurn(role=role, content=content))


class ConversationOrchestrator:
    def __init__(self, gateway: ProviderGateway, session: Session):
        self.gateway = gateway
        self.session = session
        self.state = ExchangeState.IDLE

    @property
    def registry(self) -> ToolRegistry:
        return self.session.registry

    def send(self, message: str) -> ExchangeResult:
        """Resolve one user message, including any tool round trip."""
        session = self.session
        session.append("user", message)
        include_capabilities = len(self.registry) > 0

        self.state = ExchangeState.AWAITING_FIRST_REPLY
        try:
            response = self.gateway.chat(session.history, include_capabilities)
        except Exception as e:
            return self._fail("chat", e)

        if not response.is_tool_call:
            session.append("assistant", response.text)
            return self._finish(ExchangeResult(
                state=ExchangeState.FINAL,
                text=response.text,
                usage=response.usage,
            ))

        tool_call = response.tool_call
        logger.info(f"LLM wants to use tool: {tool_call.tool} "
                    f"arguments={json.dumps(tool_call.arguments)}")
        session.append("assistant", response.text)
        result = ExchangeResult(state=ExchangeState.AWAITING_TOOL_RESULT, tool_call=tool_call)

        self.state = ExchangeState.AWAITING_TOOL_RESULT
        try:
            result.tool_result = self.registry.invoke(tool_call)
            session.append("system", f"Tool execution result: {json.dumps(result.tool_result, default=str)}")
        except Exception as e:
            result.tool_error = str(e)
            session.append("system", f"Error executing tool: {e}")

        self.state = ExchangeState.AWAITING_SECOND_REPLY
        try:
            final = self.gateway.chat(session.history, include_capabilities)
        except Exception as e:
            failed = self._fail("chat (tool follow-up)", e)
            failed.tool_call = result.tool_call
            failed.tool_result = result.tool_result
            failed.tool_error = result.tool_error
            return failed

        session.append("assistant", final.text)
        result.state = ExchangeState.FINAL
        result.text = final.text
        result.usage = final.usage
        return self._finish(result)

    def _finish(self, result: ExchangeResult) -> ExchangeResult:
        self.state = ExchangeState.IDLE
        return result

    def _fail(self, operation: str, error: Exception) -> ExchangeResult:
        logger.error(f"Error during {operation}: {error}")
        return self._finish(ExchangeResult(
            state=ExchangeState.FAILED,
            error=f"{operation}: {error}",
        ))
