"""
Controller-side end of the live bridge.

Listens for the engine's BridgeClient and forwards runtime tool calls to
it. Only one engine connection is served at a time; a second one is
closed as soon as it is accepted while the first is still alive. A
restarted engine replaces a connection whose peer has gone away.

Usage:
    host = BridgeHost(port=6505)
    host.start()

    result = host.invoke_tool("get_scene_tree", {"depth": 2})

    host.stop()
"""

from __future__ import annotations

import logging
import socket
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from godot_tools.config import DEFAULT_BRIDGE_HOST, resolve_bridge_port
from godot_tools.errors import BridgeError
from godot_tools.transport import (
    GodotReady,
    LineBuffer,
    Ping,
    Pong,
    ToolInvoke,
    ToolResult,
    parse_frame,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
ACCEPT_POLL_INTERVAL = 0.5


class BridgeHost:
    """
    Accepts one engine connection and runs request/response over it.

    Requests are serialised: ``invoke_tool`` and ``ping`` each hold the
    connection until their answer arrives.
    """

    def __init__(self, host: str = DEFAULT_BRIDGE_HOST, port: int | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.host = host
        self.port = port if port is not None else resolve_bridge_port()
        self.timeout = timeout
        self._server: socket.socket | None = None
        self._conn: socket.socket | None = None
        self._lines = LineBuffer()
        self._backlog: list[str] = []
        self._lock = threading.Lock()
        self._running = threading.Event()
        self._accept_thread: threading.Thread | None = None
        self.project_path: str | None = None
        self.connected_at: datetime | None = None
        self.last_pong_at: datetime | None = None

    def start(self) -> None:
        """Bind and begin accepting engine connections in the background."""
        if self._server is not None:
            return
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind((self.host, self.port))
        server.listen()
        server.settimeout(ACCEPT_POLL_INTERVAL)
        self.port = server.getsockname()[1]
        self._server = server
        self._running.set()
        self._accept_thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._accept_thread.start()
        logger.info(f"Bridge listening on {self.host}:{self.port}")

    def stop(self) -> None:
        self._running.clear()
        with self._lock:
            self._drop_connection()
        if self._server is not None:
            self._server.close()
            self._server = None
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=ACCEPT_POLL_INTERVAL * 4)
            self._accept_thread = None
        logger.info("Bridge stopped")

    def is_connected(self) -> bool:
        return self._conn is not None

    def wait_for_connection(self, timeout: float = DEFAULT_TIMEOUT) -> bool:
        """Block until an engine connects (or timeout). Returns is_connected()."""
        deadline = time.monotonic() + timeout
        while not self.is_connected() and time.monotonic() < deadline:
            time.sleep(0.05)
        return self.is_connected()

    def status(self) -> dict[str, Any]:
        with self._lock:
            try:
                self._read_available()
            except BridgeError as e:
                logger.warning(f"Bridge connection error: {e.message}")
        return {
            "port": self.port,
            "connected": self.is_connected(),
            "project_path": self.project_path,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "last_pong_at": self.last_pong_at.isoformat() if self.last_pong_at else None,
        }

    def invoke_tool(self, tool: str, args: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
        """
        Run a tool inside the engine and return its result.

        Raises:
            BridgeError: not connected, timed out, disconnected, or the
                engine reported failure.
        """
        timeout = self.timeout if timeout is None else timeout
        request = ToolInvoke(id=str(uuid.uuid4()), tool=tool, args=args or {})
        started = time.monotonic()

        with self._lock:
            self._send(request.to_json())
            deadline = started + timeout
            while True:
                frame = self._next_frame(deadline, f"Tool {tool} timed out after {timeout}s")
                if isinstance(frame, ToolResult):
                    if frame.id != request.id:
                        logger.warning(f"Received tool_result for unknown id={frame.id}")
                        continue
                    logger.debug(f"Tool {tool} finished in {time.monotonic() - started:.3f}s")
                    if not frame.success:
                        raise BridgeError(frame.error or f"Tool {tool} failed", [
                            "Check the Godot output panel for the runtime error",
                            "Verify the tool arguments match what the runtime addon expects",
                        ])
                    return frame.result

    def ping(self, timeout: float = 5.0) -> bool:
        """Keepalive round trip. Returns False instead of raising."""
        try:
            with self._lock:
                self._send(Ping().to_json())
                deadline = time.monotonic() + timeout
                while True:
                    frame = self._next_frame(deadline, "Ping timed out")
                    if isinstance(frame, Pong):
                        return True
        except BridgeError as e:
            logger.warning(f"Failed to ping Godot: {e.message}")
            return False

    def _accept_loop(self) -> None:
        while self._running.is_set():
            try:
                conn, addr = self._server.accept()
            except socket.timeout:
                continue
            except OSError:
                # listening socket closed by stop()
                return

            with self._lock:
                if self._conn is not None and not self._connection_alive():
                    logger.info("Previous Godot connection is closed, accepting the new one")
                    self._drop_connection()
                if self._conn is not None:
                    logger.warning("Rejecting second Godot connection")
                    conn.close()
                    continue
                conn.setblocking(True)
                self._conn = conn
                self._lines.clear()
                self._backlog = []
                self.connected_at = datetime.now(timezone.utc)
                self.project_path = None
                self.last_pong_at = None
            logger.info(f"Godot connected from {addr[0]}:{addr[1]}")

    def _send(self, text: str) -> None:
        if self._conn is None:
            raise BridgeError("Godot is not connected")
        try:
            self._conn.sendall(text.encode("utf-8") + b"\n")
        except OSError as e:
            self._drop_connection()
            raise BridgeError(f"Godot disconnected: {e}") from e

    def _read_available(self) -> None:
        """Absorb whatever the engine sent while no request was running."""
        if self._conn is None:
            return
        self._conn.setblocking(False)
        try:
            while True:
                data = self._conn.recv(65536)
                if not data:
                    logger.warning("Godot disconnected")
                    self._drop_connection()
                    return
                self._backlog.extend(self._lines.feed(data))
        except BlockingIOError:
            pass
        except OSError as e:
            logger.warning(f"Bridge connection error: {e}")
            self._drop_connection()
            return
        finally:
            if self._conn is not None:
                self._conn.setblocking(True)
        while self._backlog:
            frame = self._absorb(self._backlog.pop(0))
            if isinstance(frame, ToolResult):
                logger.warning(f"Received tool_result for unknown id={frame.id}")

    def _absorb(self, line: str):
        """Handle bookkeeping frames; return the ones a caller must see."""
        frame = parse_frame(line)
        if frame is None:
            logger.warning("Ignoring unknown Godot message payload")
            return None
        if isinstance(frame, GodotReady):
            self.project_path = frame.project_path
            logger.info(f"Godot ready: {frame.project_path}")
            return None
        if isinstance(frame, Ping):
            self._send(Pong().to_json())
            return None
        if isinstance(frame, Pong):
            self.last_pong_at = datetime.now(timezone.utc)
        return frame

    def _next_frame(self, deadline: float, timeout_message: str):
        """Read frames until one that the caller has to look at arrives."""
        while True:
            while self._backlog:
                frame = self._absorb(self._backlog.pop(0))
                if frame is not None:
                    return frame

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BridgeError(timeout_message)
            if self._conn is None:
                raise BridgeError("Godot disconnected during request")
            self._conn.settimeout(remaining)
            try:
                data = self._conn.recv(65536)
            except socket.timeout:
                raise BridgeError(timeout_message) from None
            except OSError as e:
                self._drop_connection()
                raise BridgeError(f"Godot disconnected during request: {e}") from e
            if not data:
                logger.warning("Godot disconnected")
                self._drop_connection()
                raise BridgeError("Godot disconnected during request")
            self._backlog.extend(self._lines.feed(data))

    def _connection_alive(self) -> bool:
        """Peek at the current socket without consuming anything."""
        self._conn.setblocking(False)
        try:
            return self._conn.recv(1, socket.MSG_PEEK) != b""
        except BlockingIOError:
            return True
        except OSError as e:
            logger.debug(f"Existing Godot connection is unusable: {e}")
            return False
        finally:
            self._conn.setblocking(True)

    def _drop_connection(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except OSError as e:
                logger.debug(f"Close failed: {e}")
        self._conn = None
        self.connected_at = None
        self.project_path = None
