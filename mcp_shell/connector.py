"""
Tool Provider Connector: protocol-level operations on a tool server.

Every call acquires a live connection from the ConnectionManager first,
so a server that died since the last call is respawned transparently.
Results are returned as the server sent them; errors propagate unchanged.
"""

from __future__ import annotations

import logging
from typing import Any

from mcp_shell.config import ServerDescriptor
from mcp_shell.manager import ConnectionManager, ToolServerConnection
from mcp_shell.models import ResourceDescriptor, ToolDescriptor

logger = logging.getLogger(__name__)


def _paginate(conn: ToolServerConnection, method: str, field: str) -> list[dict]:
    """Collect every page of a cursor-paginated list method."""
    items: list[dict] = []
    cursor = None
    while True:
        params = {"cursor": cursor} if cursor else {}
        result = conn.request(method, params) or {}
        items.extend(result.get(field) or [])
        cursor = result.get("nextCursor")
        if not cursor:
            return items


class ToolProviderConnector:
    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    def list_tools(self, descriptor: ServerDescriptor) -> list[ToolDescriptor]:
        """List the tools a server advertises, stamped with the server's name."""
        logger.info(f"Listing tools for server: {descriptor.name}")
        conn = self.manager.acquire(descriptor)
        return [
            ToolDescriptor(
                name=raw["name"],
                description=raw.get("description") or "No description available",
                input_schema=raw.get("inputSchema") or {},
                server_name=descriptor.name,
            )
            for raw in _paginate(conn, "tools/list", "tools")
        ]

    def list_resources(self, descriptor: ServerDescriptor) -> list[ResourceDescriptor]:
        logger.info(f"Listing resources for server: {descriptor.name}")
        conn = self.manager.acquire(descriptor)
        return [
            ResourceDescriptor(
                uri=raw["uri"],
                name=raw.get("name"),
                description=raw.get("description"),
                mime_type=raw.get("mimeType"),
                server_name=descriptor.name,
            )
            for raw in _paginate(conn, "resources/list", "resources")
        ]

    def call_tool(
        self,
        descriptor: ServerDescriptor,
        name: str,
        arguments: dict[str, Any],
    ) -> Any:
        """
        Call a tool on a server.

        Args:
            descriptor: Which server to call
            name: Which tool on that server
            arguments: Tool parameters

        Returns:
            The server's result object, uninterpreted.
        """
        logger.info(f"Calling: {descriptor.name} - {name} args={list(arguments.keys())}")
        try:
            conn = self.manager.acquire(descriptor)
            return conn.request("tools/call", {"name": name, "arguments": arguments})
        except Exception as e:
            logger.error(f"Error calling tool {name} on {descriptor.name}: {e}")
            raise

    def read_resource(self, descriptor: ServerDescriptor, uri: str) -> Any:
        logger.info(f"Reading resource: {descriptor.name} - {uri}")
        try:
            conn = self.manager.acquire(descriptor)
            return conn.request("resources/read", {"uri": uri})
        except Exception as e:
            logger.error(f"Error reading resource {uri} on {descriptor.name}: {e}")
            raise
