"""Tests for the stdio tool server and the bundled echo server."""

import io
import json

import pytest

from mcp_shell.server import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    StdioToolServer,
    ToolHandler,
    ToolServerRequestError,
)
from mcp_shell.servers.echo import EchoTool, build_server


class FailingTool(ToolHandler):
    name = "fail"
    description = "Always fails"

    def handle(self, params):
        raise RuntimeError("kaboom")


def run_lines(server, *messages):
    stdin = io.StringIO("".join(
        (m if isinstance(m, str) else json.dumps(m)) + "\n" for m in messages
    ))
    stdout = io.StringIO()
    server.run(stdin=stdin, stdout=stdout)
    return [json.loads(line) for line in stdout.getvalue().splitlines()]


@pytest.fixture
def server():
    server = build_server()
    server.register(FailingTool())
    return server


class TestDispatch:
    def test_initialize(self, server):
        result = server.dispatch("initialize", {})
        assert result["protocolVersion"] == "2024-11-05"
        assert result["serverInfo"]["name"] == "echo"

    def test_tools_list(self, server):
        tools = server.dispatch("tools/list", {})["tools"]
        assert [t["name"] for t in tools] == ["echo", "fail"]
        assert tools[0]["inputSchema"]["required"] == ["message"]

    def test_tools_call(self, server):
        result = server.dispatch("tools/call", {"name": "echo", "arguments": {"message": "abc"}})
        assert result["isError"] is False
        assert json.loads(result["content"][0]["text"]) == {"echoed": "abc", "length": 3}

    def test_tool_exception_is_an_error_result(self, server):
        result = server.dispatch("tools/call", {"name": "fail", "arguments": {}})
        assert result == {"content": [{"type": "text", "text": "kaboom"}], "isError": True}

    def test_unknown_tool(self, server):
        with pytest.raises(ToolServerRequestError) as excinfo:
            server.dispatch("tools/call", {"name": "nope"})
        assert excinfo.value.code == INVALID_PARAMS

    def test_resources(self, server):
        listed = server.dispatch("resources/list", {})["resources"]
        assert listed[0]["uri"] == "echo://readme"
        read = server.dispatch("resources/read", {"uri": "echo://readme"})
        assert read["contents"][0]["mimeType"] == "text/plain"

    def test_unknown_method(self, server):
        with pytest.raises(ToolServerRequestError) as excinfo:
            server.dispatch("sampling/createMessage", {})
        assert excinfo.value.code == METHOD_NOT_FOUND

    def test_nameless_handler_is_rejected(self):
        class Nameless(EchoTool):
            name = ""

        with pytest.raises(ValueError, match="has no name"):
            StdioToolServer().register(Nameless())


class TestRunLoop:
    def test_answers_requests_in_order(self, server):
        replies = run_lines(
            server,
            {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {}},
            {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/call",
             "params": {"name": "echo", "arguments": {"message": "x"}}},
        )

        assert [r["id"] for r in replies] == [1, 2]
        assert replies[0]["result"] == {}

    def test_errors_are_json_rpc_errors(self, server):
        replies = run_lines(
            server,
            "{not json",
            {"jsonrpc": "2.0", "id": 5, "method": "bogus"},
        )

        assert replies[0]["error"]["code"] == PARSE_ERROR
        assert replies[1]["id"] == 5
        assert replies[1]["error"]["code"] == METHOD_NOT_FOUND

    def test_blank_lines_are_ignored(self, server):
        assert run_lines(server, "", "   ") == []
