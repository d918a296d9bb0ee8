"""
Transport layer for MCP tool server communication.

Implements:
  - StdioTransport: JSON-RPC over stdin/stdout pipes of a spawned process
  - SseTransport: JSON-RPC over HTTP, responses delivered on a long-lived
    Server-Sent Events stream (the MCP "HTTP+SSE" transport)

Both speak newline-free JSON-RPC 2.0 messages and expose the same
blocking send() contract, so the connection layer never needs to know
which one it is holding.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Iterable, Iterator
from urllib.parse import urljoin

import httpx

from mcp_shell.errors import TransportError

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 200


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. A request without an id is a notification."""
    method: str
    params: dict[str, Any]
    id: int | str | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": self.method,
            "params": self.params,
        }
        if self.id is not None:
            message["id"] = self.id
        return message

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_dict(cls, parsed: dict[str, Any]) -> "JsonRpcResponse":
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=parsed.get("error"),
        )

    @classmethod
    def from_json(cls, data: str) -> "JsonRpcResponse":
        return cls.from_dict(json.loads(data))

    @property
    def is_error(self) -> bool:
        return self.error is not None


def _is_response(message: Any) -> bool:
    """True for response objects, False for notifications and server requests."""
    return (
        isinstance(message, dict)
        and "method" not in message
        and ("result" in message or "error" in message)
    )


def _describe(message: Any) -> str:
    """Short label for a message we are skipping; need not be a JSON object."""
    if isinstance(message, dict):
        return str(message.get("method"))
    return repr(message)[:200]


class Transport(ABC):
    """Moves JSON-RPC messages between the shell and one tool server."""

    def __init__(self) -> None:
        self._request_id = 0
        self._id_lock = threading.Lock()

    @abstractmethod
    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Send a request and block until its response arrives."""
        ...

    @abstractmethod
    def notify(self, request: JsonRpcRequest) -> None:
        """Send a notification (no response expected)."""
        ...

    @abstractmethod
    def start(self) -> None:
        """Start the transport (launch subprocess, open stream)."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop the transport and release its resources."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """True while requests can still be sent."""
        ...

    def next_id(self) -> int:
        """Request ids are unique per transport, starting at 1."""
        with self._id_lock:
            self._request_id += 1
            return self._request_id


class StdioTransport(Transport):
    """
    A tool server running as a child process.

    Requests go to its stdin and replies come back on its stdout, one
    JSON object per line. Anything else it prints on stdout is skipped.
    Its stderr is read in the background and the last lines are kept
    for the error raised when the process dies.

    The child inherits the parent's environment, overlaid with the
    descriptor's own variables.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ):
        """
        Args:
            command: Executable that launches the tool server.
            args: Arguments passed to the executable.
            env: Extra environment variables for the subprocess.
        """
        super().__init__()
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self._process: subprocess.Popen | None = None
        self._io_lock = threading.Lock()
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_thread: threading.Thread | None = None

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def start(self) -> None:
        """Spawn the child; a missing executable raises TransportError."""
        if self._process and self._process.poll() is None:
            logger.warning("Transport already running, stopping first")
            self.stop()

        logger.info(f"Starting stdio transport: {' '.join(self.argv)}")
        try:
            self._process = subprocess.Popen(
                self.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env={**os.environ, **self.env},
                bufsize=1,  # Line-buffered
            )
        except OSError as e:
            raise TransportError(
                f"Failed to spawn tool server '{self.command}': {e}"
            ) from e

        # The child blocks once the stderr pipe fills, so it is read continuously
        self._stderr_tail.clear()
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(self._process.stderr,),
            name=f"stderr:{self.command}",
            daemon=True,
        )
        self._stderr_thread.start()

    def _drain_stderr(self, stream) -> None:
        try:
            for line in stream:
                self._stderr_tail.append(line)
                logger.debug(f"[{self.command}] {line.rstrip()}")
        except (OSError, ValueError):
            # stream closed by stop()
            return

    def _join_stderr(self) -> None:
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1)
            self._stderr_thread = None

    def stop(self) -> None:
        """Close stdin, then terminate (kill after 5s)."""
        if self._process:
            if self._process.stdin:
                self._process.stdin.close()
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                self._process.wait()
            self._join_stderr()
            for stream in (self._process.stdout, self._process.stderr):
                if stream:
                    stream.close()
            self._process = None
            logger.info("Stdio transport stopped")

    def is_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def _write(self, request: JsonRpcRequest) -> None:
        if not self.is_alive():
            raise TransportError("Transport not running. Call start() first.")
        try:
            self._process.stdin.write(request.to_json() + "\n")
            self._process.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            raise TransportError(f"Tool server pipe closed: {e}") from e

    def _died(self) -> TransportError:
        try:
            self._process.wait(timeout=1)
        except subprocess.TimeoutExpired:
            pass  # stdout closed but still running
        else:
            # exited: let the drain thread reach EOF
            self._join_stderr()
        stderr = "".join(self._stderr_tail)
        return TransportError(f"Tool server process died. stderr: {stderr[-500:]}")

    def notify(self, request: JsonRpcRequest) -> None:
        with self._io_lock:
            self._write(request)

    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Send JSON-RPC request via stdin, read the matching response from stdout."""
        with self._io_lock:
            self._write(request)

            while True:
                line = self._process.stdout.readline()
                if not line:
                    raise self._died()
                line = line.strip()
                if not line:
                    continue

                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"Ignoring non-JSON output from tool server: {line[:200]}")
                    continue

                if not _is_response(message):
                    # Server-side notifications (logging, progress) are not ours to answer
                    logger.debug(f"Skipping server message: {_describe(message)}")
                    continue

                if message.get("id") != request.id:
                    logger.debug(f"Skipping response for unknown id {message.get('id')}")
                    continue

                return JsonRpcResponse.from_dict(message)


@dataclass
class SseEvent:
    """A single Server-Sent Event."""
    event: str
    data: str
    id: str | None = None


def iter_sse_events(lines: Iterable[str]) -> Iterator[SseEvent]:
    """Group raw SSE lines into events (blank line terminates an event)."""
    event_type = "message"
    data_lines: list[str] = []
    event_id: str | None = None

    for line in lines:
        line = line.rstrip("\r\n")

        if line.startswith(":"):
            continue

        if not line:
            if data_lines:
                yield SseEvent(event=event_type, data="\n".join(data_lines), id=event_id)
            event_type = "message"
            data_lines = []
            event_id = None
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            event_id = value

    if data_lines:
        yield SseEvent(event=event_type, data="\n".join(data_lines), id=event_id)


class SseTransport(Transport):
    """
    JSON-RPC over the MCP HTTP+SSE transport.

    A background thread holds a GET request on the server URL open and
    reads its event stream. The server first announces, via an
    ``endpoint`` event, where requests must be POSTed; every later
    ``message`` event carries one JSON-RPC message, which is handed to
    whichever caller is waiting on that id.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        connect_timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        """
        Args:
            url: The server's SSE URL.
            headers: Extra headers sent with the stream and every POST.
            timeout: Seconds to wait for a response; None waits forever.
            connect_timeout: Seconds to wait for the endpoint announcement.
            client: Pre-built httpx client (the transport closes it on stop).
        """
        super().__init__()
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._client = client
        self._endpoint: str | None = None
        self._ready = threading.Event()
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: TransportError | None = None
        self._pending: dict[Any, Queue] = {}
        self._pending_lock = threading.Lock()

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    def start(self) -> None:
        """Open the event stream and wait for the endpoint announcement."""
        if self.is_alive():
            logger.warning("Transport already running, stopping first")
            self.stop()

        logger.info(f"Starting SSE transport: {self.url}")
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(self.connect_timeout, read=None))
        self._endpoint = None
        self._error = None
        self._ready.clear()
        self._closed.clear()

        self._thread = threading.Thread(
            target=self._read_stream,
            name=f"sse-reader:{self.url}",
            daemon=True,
        )
        self._thread.start()

        if not self._ready.wait(self.connect_timeout):
            self.stop()
            raise TransportError(f"Timed out waiting for SSE endpoint from {self.url}")
        if self._endpoint is None:
            error = self._error or TransportError(f"SSE stream from {self.url} closed early")
            self.stop()
            raise error

    def stop(self) -> None:
        """Close the stream and fail anything still waiting."""
        self._closed.set()
        if self._client is not None:
            self._client.close()
            self._client = None
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
        self._fail_pending(TransportError("SSE transport stopped"))
        logger.info("SSE transport stopped")

    def is_alive(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and self._endpoint is not None
            and not self._closed.is_set()
        )

    def notify(self, request: JsonRpcRequest) -> None:
        self._post(request)

    def send(self, request: JsonRpcRequest) -> JsonRpcResponse:
        if not self.is_alive():
            raise TransportError("Transport not running. Call start() first.")

        waiter: Queue = Queue()
        with self._pending_lock:
            self._pending[request.id] = waiter
        try:
            self._post(request)
            try:
                outcome = waiter.get(timeout=self.timeout)
            except Empty:
                raise TransportError(
                    f"Timed out after {self.timeout}s waiting for '{request.method}'"
                ) from None
        finally:
            with self._pending_lock:
                self._pending.pop(request.id, None)

        if isinstance(outcome, TransportError):
            raise outcome
        return outcome

    def _post(self, request: JsonRpcRequest) -> None:
        if self._endpoint is None or self._client is None:
            raise TransportError("Transport not running. Call start() first.")
        try:
            response = self._client.post(
                self._endpoint,
                json=request.to_dict(),
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"POST to {self._endpoint} failed: {e}") from e
        if response.status_code >= 400:
            raise TransportError(
                f"POST to {self._endpoint} rejected with HTTP {response.status_code}"
            )

    def _read_stream(self) -> None:
        headers = dict(self.headers)
        headers["Accept"] = "text/event-stream"
        headers["Cache-Control"] = "no-cache"

        try:
            with self._client.stream("GET", self.url, headers=headers) as response:
                if response.status_code != 200:
                    self._error = TransportError(
                        f"SSE connect to {self.url} failed with HTTP {response.status_code}"
                    )
                    return
                for event in iter_sse_events(response.iter_lines()):
                    if self._closed.is_set():
                        break
                    self._dispatch(event)
        except (httpx.HTTPError, RuntimeError) as e:
            # RuntimeError: the client was closed underneath us by stop()
            if not self._closed.is_set():
                self._error = TransportError(f"SSE stream from {self.url} failed: {e}")
        finally:
            self._closed.set()
            self._ready.set()
            self._fail_pending(self._error or TransportError(f"SSE stream from {self.url} closed"))

    def _dispatch(self, event: SseEvent) -> None:
        if event.event == "endpoint":
            self._endpoint = urljoin(self.url, event.data.strip())
            logger.debug(f"SSE endpoint announced: {self._endpoint}")
            self._ready.set()
            return

        if event.event != "message":
            return

        try:
            message = json.loads(event.data)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring malformed SSE message: {event.data[:200]}")
            return

        if not _is_response(message):
            logger.debug(f"Skipping server message: {_describe(message)}")
            return

        with self._pending_lock:
            waiter = self._pending.get(message.get("id"))
        if waiter is None:
            logger.debug(f"Skipping response for unknown id {message.get('id')}")
            return
        waiter.put(JsonRpcResponse.from_dict(message))

    def _fail_pending(self, error: TransportError) -> None:
        with self._pending_lock:
            waiters = list(self._pending.values())
        for waiter in waiters:
            if waiter.empty():
                waiter.put(error)
