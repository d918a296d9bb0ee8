"""
Chat-completion backends.

Each backend turns a ChatRequest into one HTTP call against its
provider's published chat API and pulls the reply text and token
counters back out of that provider's response shape.

    openai / openrouter / deepseek   POST {base}/chat/completions
    ollama                           POST {base}/api/chat
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from mcp_shell.config import LLMConfig
from mcp_shell.errors import BackendError
from mcp_shell.models import Usage

logger = logging.getLogger(__name__)


@dataclass
class ChatRequest:
    model: str
    messages: list[dict[str, str]]
    temperature: float
    max_tokens: int


@dataclass
class ChatCompletion:
    text: str
    usage: Usage | None = None


class ChatBackend(ABC):
    """One LLM provider's chat endpoint."""

    default_base_url: str = ""
    default_model: str = ""

    def __init__(self, config: LLMConfig, client: httpx.Client):
        self.config = config
        self.client = client

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.default_base_url).rstrip("/")

    @property
    def model(self) -> str:
        return self.config.model or self.default_model

    def build_request(self, messages: list[dict[str, str]]) -> ChatRequest:
        return ChatRequest(
            model=self.model,
            messages=messages,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )

    def _post(self, url: str, body: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        logger.debug(f"POST {url} model={body.get('model')} messages={len(body.get('messages', []))}")
        response = self.client.post(url, json=body, headers=headers)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"{self.name} returned a non-JSON body: {e}") from e

    @property
    def name(self) -> str:
        return self.config.provider

    @abstractmethod
    def send(self, request: ChatRequest) -> ChatCompletion:
        """Send one request; HTTP and network errors propagate."""
        ...


class OpenAICompatibleBackend(ChatBackend):
    """Any provider speaking the OpenAI chat completions contract."""

    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-3.5-turbo"

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def send(self, request: ChatRequest) -> ChatCompletion:
        data = self._post(
            f"{self.base_url}/chat/completions",
            {
                "model": request.model,
                "messages": request.messages,
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
            },
            self.headers(),
        )
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise BackendError(f"Unexpected response shape from {self.name}: {e!r}") from e

        usage = data.get("usage")
        return ChatCompletion(
            text=text or "",
            usage=Usage(
                prompt_tokens=usage.get("prompt_tokens"),
                completion_tokens=usage.get("completion_tokens"),
                total_tokens=usage.get("total_tokens"),
            ) if usage else None,
        )


class OpenRouterBackend(OpenAICompatibleBackend):
    default_base_url = "https://openrouter.ai/api/v1"
    default_model = "openai/gpt-3.5-turbo"


class DeepseekBackend(OpenAICompatibleBackend):
    default_base_url = "https://api.deepseek.com/v1"
    default_model = "deepseek-chat"


class OllamaBackend(ChatBackend):
    """Local Ollama server; replies with a single ``message`` envelope."""

    default_base_url = "http://localhost:11434"
    default_model = "llama3"

    def send(self, request: ChatRequest) -> ChatCompletion:
        data = self._post(
            f"{self.base_url}/api/chat",
            {
                "model": request.model,
                "messages": request.messages,
                "stream": False,
                "options": {
                    "temperature": request.temperature,
                    "num_predict": request.max_tokens,
                },
            },
            {"Content-Type": "application/json"},
        )
        try:
            text = data["message"]["content"]
        except (KeyError, TypeError) as e:
            raise BackendError(f"Unexpected response shape from {self.name}: {e!r}") from e

        prompt = data.get("prompt_eval_count")
        completion = data.get("eval_count")
        usage = None
        if prompt is not None or completion is not None:
            usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=prompt + completion
                if prompt is not None and completion is not None else None,
            )
        return ChatCompletion(text=text or "", usage=usage)


BACKENDS: dict[str, type[ChatBackend]] = {
    "ollama": OllamaBackend,
    "openai": OpenAICompatibleBackend,
    "openrouter": OpenRouterBackend,
    "deepseek": DeepseekBackend,
}
