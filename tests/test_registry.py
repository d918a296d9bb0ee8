"""Tests for the tool registry: reload, rendering, tool-call parsing, invocation."""

import json
import logging

import pytest

from mcp_shell.config import ServerDescriptor
from mcp_shell.connector import ToolProviderConnector
from mcp_shell.errors import NoActiveServerError, TransportError
from mcp_shell.manager import ConnectionManager
from mcp_shell.models import ToolCall
from mcp_shell.registry import ToolRegistry

from conftest import TIME_TOOL, WEATHER_TOOL, FakeTransportFactory


@pytest.fixture
def loaded(registry, weather_server):
    registry.set_active(weather_server)
    registry.reload()
    return registry


# ---------------------------------------------------------------------------
# Active server and reload
# ---------------------------------------------------------------------------


class TestReload:
    def test_set_active_does_not_load(self, registry, factory, weather_server):
        registry.set_active(weather_server)
        assert registry.active is weather_server
        assert len(registry) == 0
        assert factory.created == []

    def test_reload_loads_active_tools(self, loaded):
        assert [t.name for t in loaded.list()] == ["get_weather"]
        assert loaded.list()[0].server_name == "weather"

    def test_reload_without_active_clears(self, loaded):
        loaded.set_active(None)
        loaded.reload()
        assert loaded.list() == []

    def test_switching_servers_replaces_wholesale(self, loaded, factory):
        factory.kwargs["tools"] = [TIME_TOOL]
        other = ServerDescriptor(name="clock", command="clock-server")

        loaded.set_active(other)
        loaded.reload()

        assert [t.name for t in loaded.list()] == ["get_time"]
        assert {t.server_name for t in loaded.list()} == {"clock"}

    def test_failed_reload_empties_the_cache(self, loaded, factory, caplog):
        factory.fail_for.add("broken")
        other = ServerDescriptor(name="broken", command="nope")
        loaded.set_active(other)

        with caplog.at_level(logging.ERROR, logger="mcp_shell.registry"):
            loaded.reload()

        assert loaded.list() == []
        assert "Error loading tools from broken" in caplog.text

    def test_list_returns_a_copy(self, loaded):
        loaded.list().clear()
        assert len(loaded) == 1


# ---------------------------------------------------------------------------
# Capabilities text
# ---------------------------------------------------------------------------


class TestRenderCapabilities:
    def test_no_tools(self, registry):
        assert registry.render_capabilities() == "No tools available."

    def test_renders_arguments_and_required(self, loaded):
        assert loaded.render_capabilities() == (
            "Tool: get_weather\n"
            "Description: Current weather for a city\n"
            "Arguments:\n"
            "- city: City name (required)\n"
            "- units: metric or imperial"
        )

    def test_multiple_tools_in_cached_order(self, weather_server):
        manager = ConnectionManager(FakeTransportFactory(tools=[TIME_TOOL, WEATHER_TOOL]))
        registry = ToolRegistry(ToolProviderConnector(manager))
        registry.set_active(weather_server)
        registry.reload()

        text = registry.render_capabilities()

        assert text.index("Tool: get_time") < text.index("Tool: get_weather")
        assert "Tool: get_time\nDescription: Current time\nArguments:\n- No arguments\n\nTool: get_weather" in text
        manager.stop_all()

    def test_is_deterministic(self, loaded):
        assert loaded.render_capabilities() == loaded.render_capabilities()

    def test_property_without_description(self, weather_server):
        tool = {"name": "t", "inputSchema": {"properties": {"x": {}}, "required": ["x"]}}
        manager = ConnectionManager(FakeTransportFactory(tools=[tool]))
        registry = ToolRegistry(ToolProviderConnector(manager))
        registry.set_active(weather_server)
        registry.reload()

        assert "- x: No description (required)" in registry.render_capabilities()
        manager.stop_all()


# ---------------------------------------------------------------------------
# Tool-call parsing
# ---------------------------------------------------------------------------


class TestParseToolCall:
    def test_valid_call(self, loaded):
        call = loaded.parse_tool_call('{"tool": "get_weather", "arguments": {"city": "Paris"}}')
        assert call == ToolCall(tool="get_weather", arguments={"city": "Paris"})

    def test_surrounding_whitespace_is_ignored(self, loaded):
        text = "\n  " + json.dumps({"tool": "get_weather", "arguments": {}}, indent=4) + "  \n"
        assert loaded.parse_tool_call(text) == ToolCall(tool="get_weather", arguments={})

    @pytest.mark.parametrize("text", [
        "Hello! How can I help?",
        "",
        "   ",
        '{"tool": "get_weather", "arguments": {"city": "Paris"}',
        'Sure: {"tool": "get_weather", "arguments": {}}',
        '["get_weather", {}]',
        "42",
        "null",
        '{"tool": "get_weather"}',
        '{"arguments": {"city": "Paris"}}',
        '{"tool": 7, "arguments": {}}',
        '{"tool": "get_weather", "arguments": "city=Paris"}',
        '{"tool": "get_weather", "arguments": ["Paris"]}',
        '{"tool": "get_weather", "arguments": null}',
    ])
    def test_non_calls_return_none(self, loaded, text):
        assert loaded.parse_tool_call(text) is None

    def test_unknown_tool_is_rejected_with_warning(self, loaded, caplog):
        with caplog.at_level(logging.WARNING, logger="mcp_shell.registry"):
            call = loaded.parse_tool_call('{"tool": "launch_rockets", "arguments": {}}')
        assert call is None
        assert 'Tool "launch_rockets" not found' in caplog.text

    def test_no_tools_means_no_calls(self, registry):
        assert registry.parse_tool_call('{"tool": "get_weather", "arguments": {}}') is None


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


class TestInvoke:
    def test_requires_active_server(self, registry):
        with pytest.raises(NoActiveServerError, match="No active MCP server"):
            registry.invoke(ToolCall(tool="get_weather", arguments={}))

    def test_delegates_to_active_server(self, loaded, factory):
        factory.created[0].call_results["get_weather"] = {"content": [{"type": "text", "text": "sunny"}]}
        result = loaded.invoke(ToolCall(tool="get_weather", arguments={"city": "Paris"}))
        assert result == {"content": [{"type": "text", "text": "sunny"}]}

    def test_failure_propagates(self, loaded, factory):
        factory.created[0].call_results["get_weather"] = TransportError("server died")
        with pytest.raises(TransportError, match="server died"):
            loaded.invoke(ToolCall(tool="get_weather", arguments={}))
