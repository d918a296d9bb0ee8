"""
Provider Gateway: one chat() call for every configured LLM backend.

The gateway prepends the tool-use system prompt when asked to, hands
the conversation to the backend chosen at construction time, and marks
the reply as a tool call when the registry recognizes it as one.
"""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

from mcp_shell.backends import BACKENDS, ChatBackend
from mcp_shell.config import LLMConfig
from mcp_shell.errors import UnsupportedProviderError
from mcp_shell.models import ConversationTurn, GatewayResponse
from mcp_shell.registry import ToolRegistry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_TEMPLATE = """You are a helpful assistant with access to these tools:

{capabilities}

Choose the appropriate tool based on the user's question. If no tool is needed, reply directly.

IMPORTANT: When you need to use a tool, you must ONLY respond with the exact JSON object format below, nothing else:
{{
    "tool": "tool-name",
    "arguments": {{
        "argument-name": "value"
    }}
}}

After receiving a tool's response:
1. Transform the raw data into a natural, conversational response
2. Keep responses concise but informative
3. Focus on the most relevant information
4. Use appropriate context from the user's question
5. Avoid simply repeating the raw data

Please use only the tools that are explicitly defined above."""


def build_system_prompt(capabilities: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(capabilities=capabilities)


class ProviderGateway:
    def __init__(
        self,
        config: LLMConfig,
        registry: ToolRegistry,
        client: httpx.Client | None = None,
    ):
        """
        Args:
            config: LLM settings; ``provider`` picks the backend.
            registry: Source of the capabilities text and tool-call parsing.
            client: HTTP client to use (the gateway only closes clients it built).

        Raises:
            UnsupportedProviderError: ``provider`` names no known backend.
        """
        backend_cls = BACKENDS.get(config.provider.lower())
        if backend_cls is None:
            raise UnsupportedProviderError(config.provider)

        self.config = config
        self.registry = registry
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=config.timeout)
        self.backend: ChatBackend = backend_cls(config, self._client)
        logger.info(f"LLM provider: {config.provider} (model={self.backend.model})")

    def prepare_messages(
        self,
        history: Sequence[ConversationTurn],
        include_capabilities: bool,
    ) -> list[dict[str, str]]:
        """
        Wire messages for ``history``, led by the tool prompt when requested.

        A leading system turn is replaced by the tool prompt; system turns
        later in the history (tool results, tool errors) are left alone.
        """
        messages = [turn.to_message() for turn in history]
        if not include_capabilities:
            return messages

        system = {
            "role": "system",
            "content": build_system_prompt(self.registry.render_capabilities()),
        }
        if messages and messages[0]["role"] == "system":
            messages[0] = system
            return messages
        return [system, *messages]

    def chat(
        self,
        history: Sequence[ConversationTurn],
        include_capabilities: bool,
    ) -> GatewayResponse:
        """Send the conversation once; errors from the backend propagate."""
        messages = self.prepare_messages(history, include_capabilities)
        completion = self.backend.send(self.backend.build_request(messages))

        response = GatewayResponse(text=completion.text, usage=completion.usage)
        response.tool_call = self.registry.parse_tool_call(completion.text)
        return response

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
