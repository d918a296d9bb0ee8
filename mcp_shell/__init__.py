"""
mcp_shell: an interactive LLM shell that can call MCP tools.

Architecture:
    ┌──────────────┐   HTTPS    ┌──────────────┐
    │   Provider   │ ─────────▶ │  LLM backend │
    │   Gateway    │            │ (openai, ...)│
    └──────▲───────┘            └──────────────┘
           │
    ┌──────┴───────┐            ┌──────────────┐  stdio / SSE  ┌──────────────┐
    │ Conversation │ ─────────▶ │ ToolRegistry │ ───────────── │  Tool Server │
    │ Orchestrator │            │  Connector   │   JSON-RPC    │ (MCP server) │
    └──────────────┘            │   Manager    │               └──────────────┘
                                └──────────────┘

The model asks for a tool by replying with bare JSON
({"tool": ..., "arguments": {...}}). The orchestrator runs the tool on
the active server, feeds the result back as a system turn, and asks the
model again for the final answer.

The ConnectionManager keeps one live connection per server descriptor
and replaces it whenever a ping says it is gone.
"""

__version__ = "0.1.0"

from mcp_shell.config import AppConfig, LLMConfig, ServerDescriptor, load_config
from mcp_shell.connector import ToolProviderConnector
from mcp_shell.gateway import ProviderGateway
from mcp_shell.manager import ConnectionManager
from mcp_shell.orchestrator import ConversationOrchestrator, ExchangeResult, Session
from mcp_shell.registry import ToolRegistry


# Bridge pulls in langchain, so it is imported on first use
def registry_to_langchain_tools(*args, **kwargs):
    from mcp_shell.bridge import registry_to_langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "AppConfig",
    "ConnectionManager",
    "ConversationOrchestrator",
    "ExchangeResult",
    "LLMConfig",
    "ProviderGateway",
    "ServerDescriptor",
    "Session",
    "ToolProviderConnector",
    "ToolRegistry",
    "load_config",
    "registry_to_langchain_tools",
]
