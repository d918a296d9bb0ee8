"""
Building blocks for writing an MCP tool server that speaks over stdio.

The shell itself is only ever a client; this module exists so that tool
servers (and the test suite) can be written in a few lines:

    from mcp_shell.server import StdioToolServer, ToolHandler

    class Upper(ToolHandler):
        name = "upper"
        description = "Upper-case a string"
        parameters = {"text": {"type": "string", "description": "Input text"}}
        required = ["text"]

        def handle(self, params: dict) -> str:
            return params["text"].upper()

    if __name__ == "__main__":
        server = StdioToolServer("strings")
        server.register(Upper())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ToolHandler(ABC):
    """One callable tool. Subclasses fill in the class attributes and handle()."""

    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Run the tool.

        A string is returned to the client as-is; anything else is
        serialized to JSON text first. Raising marks the call as failed.
        """
        ...

    def get_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.parameters,
                "required": self.required,
            },
        }


class ResourceHandler(ABC):
    """A piece of text the server exposes under a URI."""

    uri: str = ""
    name: str = ""
    description: str = ""
    mime_type: str = "text/plain"

    @abstractmethod
    def read(self) -> str:
        ...

    def get_schema(self) -> dict:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


class ToolServerRequestError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code


def _text_content(value: Any) -> list[dict]:
    text = value if isinstance(value, str) else json.dumps(value)
    return [{"type": "text", "text": text}]


class StdioToolServer:
    """
    Line-delimited JSON-RPC 2.0 over stdin/stdout.

    Answers initialize, ping, tools/list, tools/call, resources/list and
    resources/read. Messages without an id are notifications and get no
    reply. A tool that raises produces a result with ``isError`` set
    rather than a protocol error.
    """

    def __init__(self, name: str = "mcp-shell-server", version: str = "0.1.0"):
        self.name = name
        self.version = version
        self._handlers: dict[str, ToolHandler] = {}
        self._resources: dict[str, ResourceHandler] = {}
        self._stdout: TextIO = sys.stdout

    def register(self, handler: ToolHandler) -> None:
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Tool added: {handler.name}")

    def register_resource(self, resource: ResourceHandler) -> None:
        if not resource.uri:
            raise ValueError(f"ResourceHandler {resource.__class__.__name__} has no uri")
        self._resources[resource.uri] = resource
        logger.info(f"Resource added: {resource.uri}")

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """Serve until stdin reaches EOF."""
        stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        logger.info(f"{self.name} serving {len(self._handlers)} tools: {sorted(self._handlers)}")

        for raw in stdin:
            raw = raw.strip()
            if not raw:
                continue

            try:
                message = json.loads(raw)
            except json.JSONDecodeError as e:
                self._reply_error(None, PARSE_ERROR, f"Parse error: {e}")
                continue

            method = message.get("method", "")
            if "id" not in message:
                logger.debug(f"Notification: {method}")
                continue

            message_id = message["id"]
            try:
                self._reply(message_id, self.dispatch(method, message.get("params") or {}))
            except ToolServerRequestError as e:
                self._reply_error(message_id, e.code, str(e))
            except Exception as e:
                self._reply_error(message_id, INTERNAL_ERROR, str(e))

    def dispatch(self, method: str, params: dict) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}, "resources": {}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            name = params.get("name", "")
            if name not in self._handlers:
                raise ToolServerRequestError(
                    INVALID_PARAMS,
                    f"Unknown tool: '{name}'. Available: {sorted(self._handlers)}",
                )
            try:
                output = self._handlers[name].handle(params.get("arguments") or {})
            except Exception as e:
                return {"content": _text_content(str(e)), "isError": True}
            return {"content": _text_content(output), "isError": False}

        if method == "resources/list":
            return {"resources": [r.get_schema() for r in self._resources.values()]}

        if method == "resources/read":
            uri = params.get("uri", "")
            if uri not in self._resources:
                raise ToolServerRequestError(INVALID_PARAMS, f"Unknown resource: '{uri}'")
            resource = self._resources[uri]
            return {"contents": [{"uri": uri, "mimeType": resource.mime_type, "text": resource.read()}]}

        raise ToolServerRequestError(METHOD_NOT_FOUND, f"Unknown method: '{method}'")

    def _send(self, message: dict) -> None:
        self._stdout.write(json.dumps(message) + "\n")
        self._stdout.flush()

    def _reply(self, message_id: Any, result: Any) -> None:
        self._send({"jsonrpc": "2.0", "id": message_id, "result": result})

    def _reply_error(self, message_id: Any, code: int, text: str) -> None:
        self._send({"jsonrpc": "2.0", "id": message_id, "error": {"code": code, "message": text}})
