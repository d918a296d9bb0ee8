"""Tests for the LangChain bridge."""

import pytest

from mcp_shell.bridge import registry_to_langchain_tools, result_to_text
from mcp_shell.errors import TransportError


@pytest.fixture
def tools(registry, weather_server):
    registry.set_active(weather_server)
    registry.reload()
    return registry_to_langchain_tools(registry)


class TestResultToText:
    def test_text_content(self):
        result = {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}
        assert result_to_text(result) == "a\nb"

    def test_error_content(self):
        result = {"content": [{"type": "text", "text": "bad city"}], "isError": True}
        assert result_to_text(result) == "Error: bad city"

    def test_other_shapes_become_json(self):
        assert result_to_text({"value": 1}) == '{\n  "value": 1\n}'
        assert result_to_text("plain") == "plain"


class TestStructuredTools:
    def test_one_tool_per_registry_entry(self, tools):
        assert [t.name for t in tools] == ["get_weather"]
        assert tools[0].description == "Current weather for a city"

    def test_invoke_goes_to_the_active_server(self, tools, factory):
        factory.created[0].call_results["get_weather"] = {
            "content": [{"type": "text", "text": "sunny"}],
        }

        assert tools[0].invoke({"city": "Paris"}) == "sunny"

        call = [r for r in factory.created[0].sent if r.method == "tools/call"][-1]
        assert call.params == {"name": "get_weather", "arguments": {"city": "Paris"}}

    def test_failures_are_reported_as_text(self, tools, factory):
        factory.created[0].call_results["get_weather"] = TransportError("down")
        assert tools[0].invoke({"city": "Paris"}) == "Error calling weather/get_weather: down"

    def test_empty_registry(self, registry):
        assert registry_to_langchain_tools(registry) == []
