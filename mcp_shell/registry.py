"""
Tool Registry: the tools of whichever server is currently active.

The registry caches the active server's tool list, renders it as the
capabilities text shown to the model, and turns model replies of the form

    {"tool": "<name>", "arguments": {...}}

into ToolCall objects, rejecting names the active server never advertised.

The tool set is always replaced wholesale: after reload() it holds
either exactly what the server reported or nothing.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp_shell.config import ServerDescriptor
from mcp_shell.connector import ToolProviderConnector
from mcp_shell.errors import NoActiveServerError
from mcp_shell.models import ToolCall, ToolDescriptor

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, connector: ToolProviderConnector):
        self.connector = connector
        self._active: ServerDescriptor | None = None
        self._tools: list[ToolDescriptor] = []

    @property
    def active(self) -> ServerDescriptor | None:
        return self._active

    def set_active(self, descriptor: ServerDescriptor | None) -> None:
        """Point at a new server. Call reload() afterwards to fetch its tools."""
        self._active = descriptor

    def reload(self) -> None:
        """Replace the cached tools with the active server's; empty on any failure."""
        if self._active is None:
            self._tools = []
            return

        try:
            tools = self.connector.list_tools(self._active)
        except Exception as e:
            logger.error(f"Error loading tools from {self._active.name}: {e}")
            self._tools = []
            return

        self._tools = list(tools)
        logger.info(f"Loaded {len(self._tools)} tools from {self._active.name}: "
                    f"{[t.name for t in self._tools]}")

    def clear(self) -> None:
        self._tools = []

    def list(self) -> list[ToolDescriptor]:
        return list(self._tools)

    def get(self, name: str) -> ToolDescriptor | None:
        return next((t for t in self._tools if t.name == name), None)

    def __len__(self) -> int:
        return len(self._tools)

    # ── Model-facing rendering ────────────────────────────

    def render_capabilities(self) -> str:
        """Describe the cached tools for the system prompt, in cached order."""
        if not self._tools:
            return "No tools available."
        return "\n\n".join(
            f"Tool: {tool.name}\n"
            f"Description: {tool.description}\n"
            f"Arguments:\n"
            f"{_render_arguments(tool)}"
            for tool in self._tools
        )

    # ── Tool-call protocol ────────────────────────────────

    def parse_tool_call(self, text: str) -> ToolCall | None:
        """
        Interpret a whole model reply as a tool call.

        Returns None for anything that is not exactly a JSON object with a
        string ``tool`` and an object ``arguments``, which is what an
        ordinary conversational reply looks like. A well-formed call naming
        a tool the active server does not have is also rejected.
        """
        try:
            parsed = json.loads(text.strip())
        except ValueError:
            return None

        if not isinstance(parsed, dict):
            return None
        tool = parsed.get("tool")
        arguments = parsed.get("arguments")
        if not isinstance(tool, str) or not isinstance(arguments, dict):
            return None

        if self.get(tool) is None:
            logger.warning(f'Tool "{tool}" not found in available tools')
            return None

        return ToolCall(tool=tool, arguments=arguments)

    def invoke(self, tool_call: ToolCall) -> Any:
        """Run a tool call against the active server."""
        if self._active is None:
            raise NoActiveServerError()
        try:
            return self.connector.call_tool(self._active, tool_call.tool, tool_call.arguments)
        except Exception as e:
            logger.error(f"Error executing tool {tool_call.tool}: {e}")
            raise


def _render_arguments(tool: ToolDescriptor) -> str:
    properties = tool.properties
    if not properties:
        return "- No arguments"
    required = tool.required
    lines = []
    for name, info in properties.items():
        description = (info or {}).get("description") or "No description"
        suffix = " (required)" if name in required else ""
        lines.append(f"- {name}: {description}{suffix}")
    return "\n".join(lines)
