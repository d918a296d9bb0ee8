"""
Bridge between the active tool server and LangChain.

Turns every tool in a ToolRegistry into a LangChain StructuredTool, so
the same tools the shell offers its model can be handed to a LangChain
agent instead.

Usage:
    from mcp_shell.bridge import registry_to_langchain_tools

    session.use_server("echo")
    tools = registry_to_langchain_tools(session.registry)
"""

from __future__ import annotations

import json
from typing import Any

from langchain_core.tools import StructuredTool

from mcp_shell.models import ToolCall, ToolDescriptor
from mcp_shell.registry import ToolRegistry


def result_to_text(result: Any) -> str:
    """Flatten an MCP tools/call result into the text a model should see."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        texts = [c.get("text", "") for c in result["content"] if c.get("type") == "text"]
        if texts:
            text = "\n".join(texts)
            return f"Error: {text}" if result.get("isError") else text
    return json.dumps(result, indent=2)


def to_langchain_tool(registry: ToolRegistry, tool: ToolDescriptor) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies to the registry.

    The tool's argument schema is the server's own ``inputSchema``; calls
    go through ``registry.invoke`` so they always hit the active server.
    """

    def _call_mcp(**kwargs: Any) -> str:
        try:
            result = registry.invoke(ToolCall(tool=tool.name, arguments=kwargs))
        except Exception as e:
            return f"Error calling {tool.server_name}/{tool.name}: {e}"
        return result_to_text(result)

    schema = dict(tool.input_schema) or {"type": "object", "properties": {}}
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    schema.setdefault("title", tool.name)

    return StructuredTool.from_function(
        func=_call_mcp,
        name=tool.name,
        description=tool.description,
        args_schema=schema,
    )


def registry_to_langchain_tools(registry: ToolRegistry) -> list[StructuredTool]:
    """One StructuredTool per tool currently cached in the registry."""
    return [to_langchain_tool(registry, tool) for tool in registry.list()]
