"""
Connection Manager: creates, caches, health-checks and tears down
connections to MCP tool servers.

Connections are keyed by ``ServerDescriptor.cache_key()``. A cached
connection is pinged before every reuse; if the ping fails in any way the
connection is thrown away and a fresh one is opened in its place.

Usage:
    manager = ConnectionManager()

    server = ServerDescriptor(name="echo", command="python",
                              args=["-m", "mcp_shell.servers.echo"])

    # Spawn (or reuse) the server and complete the handshake
    conn = manager.acquire(server)
    tools = conn.request("tools/list", {})

    # Recover a server known to be unhealthy
    manager.restart(server)

    # Stop everything
    manager.stop_all()
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from mcp_shell import __version__
from mcp_shell.config import ServerDescriptor
from mcp_shell.errors import ConfigurationError, HandshakeError, ToolServerError
from mcp_shell.transport import JsonRpcRequest, SseTransport, StdioTransport, Transport

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "mcp-shell", "version": __version__}

TransportFactory = Callable[[ServerDescriptor], Transport]


def create_transport(descriptor: ServerDescriptor) -> Transport:
    """Pick the transport for a descriptor: SSE when it has a URL, else stdio."""
    if descriptor.base_url:
        return SseTransport(descriptor.base_url)
    if descriptor.command:
        return StdioTransport(descriptor.command, descriptor.args, descriptor.env)
    raise ConfigurationError(
        f"Server '{descriptor.name}': either base_url or command must be provided"
    )


class ToolServerConnection:
    """A live, initialized session with one tool server."""

    def __init__(self, descriptor: ServerDescriptor, transport: Transport):
        self.descriptor = descriptor
        self.transport = transport
        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self.descriptor.name

    def open(self) -> "ToolServerConnection":
        """Start the transport and run the initialize handshake."""
        self.transport.start()
        try:
            response = self.transport.send(JsonRpcRequest(
                method="initialize",
                params={
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": CLIENT_INFO,
                },
                id=self.transport.next_id(),
            ))
            if response.is_error:
                raise HandshakeError(
                    f"Server '{self.name}' rejected initialize: {response.error}"
                )
            result = response.result or {}
            self.server_info = result.get("serverInfo") or {}
            self.server_capabilities = result.get("capabilities") or {}
            self.transport.notify(JsonRpcRequest(method="notifications/initialized", params={}))
        except Exception:
            self.transport.stop()
            raise

        logger.info(
            f"Connected to {self.name}: "
            f"{self.server_info.get('name', '?')} {self.server_info.get('version', '')}".rstrip()
        )
        return self

    def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and return its result, raising on a JSON-RPC error."""
        response = self.transport.send(JsonRpcRequest(
            method=method,
            params=params or {},
            id=self.transport.next_id(),
        ))
        if response.is_error:
            error = response.error or {}
            raise ToolServerError(
                f"{method} failed on {self.name}: {error.get('message', error)}",
                code=error.get("code"),
                data=error.get("data"),
            )
        return response.result

    def ping(self) -> bool:
        """Liveness probe. Transport errors propagate to the caller."""
        if not self.transport.is_alive():
            return False
        response = self.transport.send(JsonRpcRequest(
            method="ping",
            params={},
            id=self.transport.next_id(),
        ))
        return not response.is_error

    def close(self) -> None:
        self.transport.stop()

    def is_alive(self) -> bool:
        return self.transport.is_alive()


class ConnectionManager:
    """
    Owns the cache of live tool server connections.

    Responsibilities:
    - Choose the transport per descriptor (stdio subprocess vs. SSE stream)
    - Reuse healthy connections, replace dead ones transparently
    - Explicit stop / restart of a single server
    - Graceful shutdown
    """

    def __init__(self, transport_factory: TransportFactory | None = None):
        self._transport_factory = transport_factory or create_transport
        self._connections: dict[str, ToolServerConnection] = {}
        self._lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    def _key_lock(self, key: str) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def _probe(self, conn: ToolServerConnection) -> bool:
        try:
            healthy = conn.ping()
        except Exception as e:
            logger.debug(f"Ping to {conn.name} raised: {e}")
            return False
        logger.debug(f"Ping result for {conn.name}: {healthy}")
        return healthy

    def _discard(self, key: str, conn: ToolServerConnection) -> None:
        with self._lock:
            if self._connections.get(key) is conn:
                del self._connections[key]
        try:
            conn.close()
        except Exception as e:
            logger.debug(f"Error closing stale connection to {conn.name}: {e}")

    def acquire(self, descriptor: ServerDescriptor) -> ToolServerConnection:
        """
        Return a live connection for ``descriptor``.

        Reuses the cached one when it answers a ping; otherwise opens a new
        one. Transport and handshake failures propagate; nothing is retried.
        """
        key = descriptor.cache_key()
        with self._key_lock(key):
            with self._lock:
                cached = self._connections.get(key)

            if cached is not None:
                if self._probe(cached):
                    return cached
                logger.info(f"Connection to {descriptor.name} is unhealthy, reconnecting")
                self._discard(key, cached)

            transport = self._transport_factory(descriptor)
            conn = ToolServerConnection(descriptor, transport).open()

            with self._lock:
                self._connections[key] = conn
            logger.info(f"Activated server: {descriptor.name}")
            return conn

    def release(self, key: str) -> None:
        """Close and forget the connection under ``key``. A miss only warns."""
        # locks exist only for keys acquire() has seen
        with self._lock:
            key_lock = self._key_locks.get(key)
        if key_lock is None:
            logger.warning(f"No connection found for server key: {key}")
            return

        with key_lock:
            with self._lock:
                conn = self._connections.pop(key, None)
            if conn is None:
                logger.warning(f"No connection found for server key: {key}")
                return
            conn.close()
            logger.info(f"Closed server: {conn.name}")

    def stop(self, descriptor: ServerDescriptor) -> None:
        logger.info(f"Stopping server: {descriptor.name}")
        self.release(descriptor.cache_key())

    def restart(self, descriptor: ServerDescriptor) -> ToolServerConnection:
        logger.info(f"Restarting server: {descriptor.name}")
        self.release(descriptor.cache_key())
        return self.acquire(descriptor)

    def stop_all(self) -> None:
        """Stop all cached connections."""
        for key in self.cached_keys():
            try:
                self.release(key)
            except Exception as e:
                logger.error(f"Failed to stop server {key}: {e}")

    def cached_keys(self) -> list[str]:
        with self._lock:
            return list(self._connections.keys())

    def is_cached(self, descriptor: ServerDescriptor) -> bool:
        with self._lock:
            return descriptor.cache_key() in self._connections
