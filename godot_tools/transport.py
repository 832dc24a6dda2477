"""
Transport layer for the live Godot bridge.

Wire format: one JSON object per line over a persistent TCP socket.

    {"type": "godot_ready", "project_path": "..."}        engine → controller
    {"type": "ping"} / {"type": "pong"}                    either direction
    {"type": "tool_invoke", "id": ..., "tool": ..., "args": {...}}   controller → engine
    {"type": "tool_result", "id": ..., "success": ..., "result"?: ..., "error"?: ...}

Implements:
  - SocketTransport: non-blocking TCP client, advanced by poll() from the
    engine's own frame loop
"""

from __future__ import annotations

import enum
import errno
import json
import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


@dataclass
class GodotReady:
    """Sent once by the engine right after the connection opens."""
    project_path: str

    def to_json(self) -> str:
        return json.dumps({"type": "godot_ready", "project_path": self.project_path})


@dataclass
class Ping:
    def to_json(self) -> str:
        return json.dumps({"type": "ping"})


@dataclass
class Pong:
    def to_json(self) -> str:
        return json.dumps({"type": "pong"})


@dataclass
class ToolInvoke:
    """Controller asks the engine to run a runtime tool."""
    id: str
    tool: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({
            "type": "tool_invoke",
            "id": self.id,
            "tool": self.tool,
            "args": self.args,
        })


@dataclass
class ToolResult:
    """Engine answers a previously received tool_invoke."""
    id: str
    success: bool
    result: Any = None
    error: str | None = None

    def to_json(self) -> str:
        payload: dict[str, Any] = {
            "type": "tool_result",
            "id": self.id,
            "success": self.success,
        }
        if self.result is not None:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error
        return json.dumps(payload)


Frame = Union[GodotReady, Ping, Pong, ToolInvoke, ToolResult]


def parse_frame(data: str) -> Frame | None:
    """Decode one line. Anything malformed or of unknown type yields None."""
    try:
        parsed = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(parsed, dict):
        return None

    kind = parsed.get("type")
    if kind == "ping":
        return Ping()
    if kind == "pong":
        return Pong()
    if kind == "godot_ready":
        project_path = parsed.get("project_path")
        return GodotReady(project_path) if isinstance(project_path, str) else None
    if kind == "tool_invoke":
        request_id, tool = parsed.get("id"), parsed.get("tool")
        args = parsed.get("args", {})
        if not isinstance(request_id, str) or not isinstance(tool, str):
            return None
        return ToolInvoke(id=request_id, tool=tool, args=args if isinstance(args, dict) else {})
    if kind == "tool_result":
        request_id, success = parsed.get("id"), parsed.get("success")
        error = parsed.get("error")
        if not isinstance(request_id, str) or not isinstance(success, bool):
            return None
        if error is not None and not isinstance(error, str):
            return None
        return ToolResult(id=request_id, success=success, result=parsed.get("result"), error=error)
    return None


class LineBuffer:
    """Accumulates bytes and yields complete newline-terminated lines."""

    def __init__(self):
        self._pending = b""

    def feed(self, data: bytes) -> list[str]:
        self._pending += data
        *lines, self._pending = self._pending.split(b"\n")
        return [line.decode("utf-8", errors="replace").strip() for line in lines if line.strip()]

    def clear(self) -> None:
        self._pending = b""


class Transport(ABC):
    """Abstract duplex transport driven by an external poll loop."""

    @abstractmethod
    def connect(self, host: str, port: int) -> None:
        """Begin a connection attempt (returns immediately)."""
        ...

    @abstractmethod
    def poll(self) -> None:
        """Advance internal state: finish connecting, flush, read."""
        ...

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        ...

    @abstractmethod
    def receive(self) -> list[str]:
        """Drain and return every complete inbound frame buffered so far."""
        ...

    @abstractmethod
    def send_text(self, text: str) -> None:
        """Queue one frame for sending."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Start closing; the next poll() finishes it."""
        ...


class SocketTransport(Transport):
    """
    Newline-framed JSON over a non-blocking TCP socket.

    Nothing here blocks: connect() starts the handshake, and every poll()
    checks for completion, flushes queued output and reads whatever has
    arrived. Failures show up as a transition to DISCONNECTED.
    """

    RECV_SIZE = 65536

    def __init__(self):
        self._sock: socket.socket | None = None
        self._state = ConnectionState.DISCONNECTED
        self._inbound: list[str] = []
        self._outbound = b""
        self._lines = LineBuffer()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def connect(self, host: str, port: int) -> None:
        self._reset()
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setblocking(False)
        code = sock.connect_ex((host, port))
        if code not in (0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY, getattr(errno, "WSAEWOULDBLOCK", -1)):
            logger.debug(f"Connect to {host}:{port} failed immediately: {errno.errorcode.get(code, code)}")
            sock.close()
            return
        self._sock = sock
        self._state = ConnectionState.CONNECTING

    def poll(self) -> None:
        if self._sock is None:
            self._state = ConnectionState.DISCONNECTED
            return

        if self._state is ConnectionState.CONNECTING:
            self._finish_connect()
        if self._state is ConnectionState.OPEN:
            self._flush()
        if self._state is ConnectionState.OPEN:
            self._read()
        if self._state is ConnectionState.CLOSING:
            self._flush()
            self._drop()

    def receive(self) -> list[str]:
        frames, self._inbound = self._inbound, []
        return frames

    def send_text(self, text: str) -> None:
        if self._state is not ConnectionState.OPEN:
            raise ConnectionError("Transport is not open")
        self._outbound += text.encode("utf-8") + b"\n"
        self._flush()

    def close(self) -> None:
        if self._sock is None:
            self._state = ConnectionState.DISCONNECTED
            return
        self._state = ConnectionState.CLOSING

    def _finish_connect(self) -> None:
        code = self._sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if code != 0:
            logger.debug(f"Connection failed: {errno.errorcode.get(code, code)}")
            self._drop()
            return
        try:
            self._sock.getpeername()
        except OSError:
            # Handshake still in flight
            return
        self._state = ConnectionState.OPEN

    def _flush(self) -> None:
        while self._outbound:
            try:
                sent = self._sock.send(self._outbound)
            except BlockingIOError:
                return
            except OSError as e:
                logger.debug(f"Send failed: {e}")
                self._drop()
                return
            self._outbound = self._outbound[sent:]

    def _read(self) -> None:
        while True:
            try:
                data = self._sock.recv(self.RECV_SIZE)
            except BlockingIOError:
                return
            except OSError as e:
                logger.debug(f"Receive failed: {e}")
                self._drop()
                return
            if not data:
                logger.debug("Peer closed the connection")
                self._drop()
                return
            self._inbound.extend(self._lines.feed(data))

    def _drop(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                logger.debug(f"Close failed: {e}")
        self._sock = None
        self._outbound = b""
        self._lines.clear()
        self._state = ConnectionState.DISCONNECTED

    def _reset(self) -> None:
        self._drop()
        self._inbound = []
