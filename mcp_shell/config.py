"""
Shell configuration: LLM settings and tool server descriptors.

Configuration is assembled in three layers, later ones winning:

    built-in defaults  →  JSON config file  →  environment (.env included)

The JSON file uses the same camelCase keys as the environment-facing
documentation (``llm``, ``mcpServers``, ``defaultMCPServer``).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


@dataclass
class LLMConfig:
    """Which chat-completion backend to talk to, and how."""
    provider: str = "ollama"
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    timeout: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LLMConfig":
        temperature = data.get("temperature")
        max_tokens = data.get("maxTokens")
        return cls(
            provider=data.get("provider", "ollama"),
            api_key=data.get("apiKey"),
            base_url=data.get("baseUrl"),
            model=data.get("model"),
            temperature=DEFAULT_TEMPERATURE if temperature is None else float(temperature),
            max_tokens=DEFAULT_MAX_TOKENS if max_tokens is None else int(max_tokens),
            timeout=data.get("timeout"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "apiKey": "***" if self.api_key else None,
            "baseUrl": self.base_url,
            "model": self.model,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "timeout": self.timeout,
        }


@dataclass
class ServerDescriptor:
    """
    How to reach one tool server.

    Either ``command`` (+ ``args``/``env``) for a stdio subprocess, or
    ``base_url`` for an SSE endpoint. Only ``enabled`` changes after
    startup.
    """
    name: str
    enabled: bool = True
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    base_url: str | None = None
    registry_url: str | None = None
    auto_approve: list[str] = field(default_factory=list)

    def cache_key(self) -> str:
        """Stable identity of the transport-relevant fields."""
        return json.dumps(
            {
                "baseUrl": self.base_url,
                "command": self.command,
                "args": self.args,
                "env": self.env,
                "name": self.name,
            },
            sort_keys=True,
        )

    @property
    def transport_kind(self) -> str | None:
        if self.base_url:
            return "sse"
        if self.command:
            return "stdio"
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerDescriptor":
        return cls(
            name=data["name"],
            enabled=bool(data.get("enabled", True)),
            command=data.get("command"),
            args=list(data.get("args") or []),
            env=dict(data.get("env") or {}),
            base_url=data.get("baseUrl"),
            registry_url=data.get("registryUrl"),
            auto_approve=list(data.get("autoApprove") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "enabled": self.enabled}
        if self.command:
            data["command"] = self.command
            data["args"] = self.args
            data["env"] = self.env
        if self.base_url:
            data["baseUrl"] = self.base_url
        if self.registry_url:
            data["registryUrl"] = self.registry_url
        if self.auto_approve:
            data["autoApprove"] = self.auto_approve
        return data


@dataclass
class AppConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    servers: dict[str, ServerDescriptor] = field(default_factory=dict)
    default_server: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "llm": self.llm.to_dict(),
            "mcpServers": {key: s.to_dict() for key, s in self.servers.items()},
            "defaultMCPServer": self.default_server,
        }


def default_config() -> AppConfig:
    """Built-in defaults: a local Ollama and one stdio server."""
    return AppConfig(
        llm=LLMConfig(provider="ollama", base_url="http://localhost:11434", model="llama3"),
        servers={
            "k8s": ServerDescriptor(name="mcp_k8s_server", command="mcp_k8s_server"),
        },
        default_server="k8s",
    )


def _apply_file(config: AppConfig, data: dict[str, Any]) -> AppConfig:
    if "llm" in data:
        config.llm = LLMConfig.from_dict(data["llm"])
    if "mcpServers" in data:
        config.servers = {
            key: ServerDescriptor.from_dict({"name": key, **raw})
            for key, raw in data["mcpServers"].items()
        }
    if "defaultMCPServer" in data:
        config.default_server = data["defaultMCPServer"]
    return config


def _apply_env(config: AppConfig) -> AppConfig:
    llm = config.llm
    if os.environ.get("LLM_PROVIDER"):
        llm.provider = os.environ["LLM_PROVIDER"]
    if os.environ.get("LLM_API_KEY"):
        llm.api_key = os.environ["LLM_API_KEY"]
    if os.environ.get("LLM_BASE_URL"):
        llm.base_url = os.environ["LLM_BASE_URL"]
    if os.environ.get("LLM_MODEL"):
        llm.model = os.environ["LLM_MODEL"]
    if os.environ.get("LLM_TEMPERATURE"):
        llm.temperature = float(os.environ["LLM_TEMPERATURE"])
    if os.environ.get("LLM_MAX_TOKENS"):
        llm.max_tokens = int(os.environ["LLM_MAX_TOKENS"])
    if os.environ.get("DEFAULT_MCP_SERVER"):
        config.default_server = os.environ["DEFAULT_MCP_SERVER"]
    return config


def load_config(path: str | Path | None = None) -> AppConfig:
    """
    Load configuration from defaults, an optional JSON file, and the environment.

    A missing or unreadable file is logged and ignored; the shell still
    starts on defaults.
    """
    load_dotenv(find_dotenv(usecwd=True))
    config = default_config()

    if path:
        config_file = Path(path).expanduser().resolve()
        if config_file.exists():
            try:
                data = json.loads(config_file.read_text(encoding="utf-8"))
                config = _apply_file(config, data)
                logger.info(f"Loaded config file: {config_file}")
            except (OSError, ValueError, KeyError) as e:
                logger.error(f"Error loading config file {config_file}: {e}")
        else:
            logger.warning(f"Config file not found: {config_file}")

    return _apply_env(config)
