"""Shared fakes: an in-memory tool server transport and a scripted LLM."""

from __future__ import annotations

import json
import sys
from typing import Any

import httpx
import pytest

from mcp_shell.config import AppConfig, LLMConfig, ServerDescriptor
from mcp_shell.connector import ToolProviderConnector
from mcp_shell.errors import TransportError
from mcp_shell.gateway import ProviderGateway
from mcp_shell.manager import ConnectionManager
from mcp_shell.orchestrator import ConversationOrchestrator, Session
from mcp_shell.registry import ToolRegistry
from mcp_shell.transport import JsonRpcRequest, JsonRpcResponse, Transport

WEATHER_TOOL = {
    "name": "get_weather",
    "description": "Current weather for a city",
    "inputSchema": {
        "type": "object",
        "properties": {
            "city": {"type": "string", "description": "City name"},
            "units": {"type": "string", "description": "metric or imperial"},
        },
        "required": ["city"],
    },
}

TIME_TOOL = {"name": "get_time", "description": "Current time", "inputSchema": {}}


class FakeTransport(Transport):
    """A tool server living in memory. ``ping`` may be True, False or an exception."""

    def __init__(self, tools: list[dict] | None = None, ping: Any = True):
        super().__init__()
        self.tools = list(tools if tools is not None else [WEATHER_TOOL])
        self.resources = [{"uri": "mem://notes", "name": "notes", "mimeType": "text/plain"}]
        self.ping = ping
        self.alive = False
        self.started = 0
        self.stopped = 0
        self.sent: list[JsonRpcRequest] = []
        self.notifications: list[JsonRpcRequest] = []
        self.call_results: dict[str, Any] = {}
        self.reject_initialize = False
        self.page_size: int | None = None

    def start(self) -> None:
        self.alive = True
        self.started += 1

    def stop(self) -> None:
        self.alive = False
        self.stopped += 1

    def is_alive(self) -> bool:
        return self.alive

    def notify(self, request: JsonRpcRequest) -> None:
        self.notifications.append(request)

    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        self.sent.append(request)
        method = request.method

        if method == "initialize":
            if self.reject_initialize:
                return JsonRpcResponse(id=request.id, error={"code": -32600, "message": "nope"})
            return JsonRpcResponse(id=request.id, result={
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake", "version": "1.0"},
            })
        if method == "ping":
            if isinstance(self.ping, Exception):
                raise self.ping
            if not self.ping:
                return JsonRpcResponse(id=request.id, error={"code": -1, "message": "down"})
            return JsonRpcResponse(id=request.id, result={})
        if method == "tools/list":
            return JsonRpcResponse(id=request.id, result=self._page(self.tools, "tools", request))
        if method == "resources/list":
            return JsonRpcResponse(id=request.id, result=self._page(self.resources, "resources", request))
        if method == "tools/call":
            name = request.params["name"]
            outcome = self.call_results.get(name, {"content": [{"type": "text", "text": "ok"}]})
            if isinstance(outcome, Exception):
                raise outcome
            return JsonRpcResponse(id=request.id, result=outcome)
        if method == "resources/read":
            return JsonRpcResponse(id=request.id, result={
                "contents": [{"uri": request.params["uri"], "text": "hello"}],
            })
        return JsonRpcResponse(id=request.id, error={"code": -32601, "message": f"Unknown method: {method}"})

    def _page(self, items: list[dict], field: str, request: JsonRpcRequest) -> dict:
        if not self.page_size:
            return {field: items}
        start = int(request.params.get("cursor") or 0)
        end = start + self.page_size
        result: dict[str, Any] = {field: items[start:end]}
        if end < len(items):
            result["nextCursor"] = str(end)
        return result


class FakeTransportFactory:
    """Hands out FakeTransports and remembers them."""

    def __init__(self, **kwargs: Any):
        self.kwargs = kwargs
        self.created: list[FakeTransport] = []
        self.fail_for: set[str] = set()

    def __call__(self, descriptor: ServerDescriptor) -> FakeTransport:
        if descriptor.name in self.fail_for:
            raise TransportError(f"Failed to spawn tool server '{descriptor.command}'")
        transport = FakeTransport(**self.kwargs)
        self.created.append(transport)
        return transport


class ScriptedLLM:
    """An OpenAI-compatible endpoint that replies from a script."""

    def __init__(self, replies: list[Any] | None = None):
        self.replies = list(replies or [])
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        reply = self.replies.pop(0)
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json={
            "choices": [{"message": {"role": "assistant", "content": reply}}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        })

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def weather_server() -> ServerDescriptor:
    return ServerDescriptor(name="weather", command="weather-server", args=["--stdio"])


@pytest.fixture
def echo_server() -> ServerDescriptor:
    return ServerDescriptor(name="echo", command=sys.executable, args=["-m", "mcp_shell.servers.echo"])


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def manager(factory: FakeTransportFactory):
    manager = ConnectionManager(transport_factory=factory)
    yield manager
    manager.stop_all()


@pytest.fixture
def registry(manager: ConnectionManager) -> ToolRegistry:
    return ToolRegistry(ToolProviderConnector(manager))


@pytest.fixture
def app_config(weather_server: ServerDescriptor) -> AppConfig:
    return AppConfig(
        llm=LLMConfig(provider="openai", api_key="sk-test", model="gpt-test"),
        servers={
            "weather": weather_server,
            "other": ServerDescriptor(name="other", base_url="http://tools.local/sse"),
        },
        default_server="weather",
    )


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def session(app_config: AppConfig, registry: ToolRegistry) -> Session:
    return Session(app_config, registry)


@pytest.fixture
def orchestrator(app_config: AppConfig, session: Session, llm: ScriptedLLM):
    gateway = ProviderGateway(app_config.llm, session.registry, client=llm.client())
    yield ConversationOrchestrator(gateway, session)
    gateway.close()
