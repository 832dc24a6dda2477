"""
Engine-side end of the live bridge.

The client lives inside the running engine and is driven by the engine's
frame loop: call ``tick()`` once per frame. It never blocks and never
spawns threads. All reconnection happens inside the state machine:

    DISCONNECTED → CONNECTING → OPEN → CLOSING / DISCONNECTED

A dropped or refused connection schedules a retry after the current
delay, which doubles per failure up to a ceiling and resets to the base
value once a connection opens. Retries continue until ``disconnect()``.

Usage:
    client = BridgeClient(project_path="/games/demo", on_tool_invoke=handle)
    client.connect()

    # every frame
    client.tick()

    # later, when the engine has an answer
    client.send_result(request_id, result={"nodes": 12})
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Mapping
from typing import Any, Callable

from godot_tools.config import (
    BRIDGE_PORT_ENV_KEYS,
    DEFAULT_BRIDGE_HOST,
    DEFAULT_BRIDGE_PORT,
    parse_port,
)
from godot_tools.transport import (
    ConnectionState,
    GodotReady,
    Ping,
    Pong,
    SocketTransport,
    ToolInvoke,
    ToolResult,
    Transport,
    parse_frame,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 3.0
DEFAULT_MAX_DELAY = 30.0

ToolInvokeHandler = Callable[[str, str, dict[str, Any]], None]


def resolve_bridge_address(
    host: str | None = None,
    port: int | None = None,
    settings: Mapping[str, str] | None = None,
) -> tuple[str, int]:
    """Explicit override, else the first valid configured port, else the default endpoint."""
    host = host or DEFAULT_BRIDGE_HOST
    if port is not None:
        return host, port

    settings = os.environ if settings is None else settings
    for key in BRIDGE_PORT_ENV_KEYS:
        raw = settings.get(key)
        if raw is None or not str(raw).strip():
            continue
        parsed = parse_port(raw)
        if parsed is not None:
            return host, parsed
        logger.warning(f"Ignoring invalid {key}={raw!r}. Expected an integer between 1 and 65535.")
    return host, DEFAULT_BRIDGE_PORT


class BridgeClient:
    """Reconnecting duplex client, advanced one step per ``tick()``."""

    def __init__(
        self,
        project_path: str,
        on_tool_invoke: ToolInvokeHandler | None = None,
        transport: Transport | None = None,
        host: str | None = None,
        port: int | None = None,
        settings: Mapping[str, str] | None = None,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.project_path = project_path
        self.on_tool_invoke = on_tool_invoke
        self.transport = transport or SocketTransport()
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._host_override = host
        self._port_override = port
        self._settings = settings
        self._clock = clock

        self.address: tuple[str, int] | None = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_enabled = False
        self._delay = base_delay
        self._retry_at: float | None = None
        self.scheduled_delay: float | None = None
        self._pending_ids: set[str] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_delay(self) -> float:
        """Delay the next failure will be scheduled with."""
        return self._delay

    @property
    def pending_requests(self) -> set[str]:
        return set(self._pending_ids)

    def connect(self) -> None:
        """Enable the bridge and start a connection attempt."""
        self._reconnect_enabled = True
        self._cancel_retry()
        self._open()

    def disconnect(self) -> None:
        """Close the connection and stop reconnecting. In-flight frames are dropped."""
        self._reconnect_enabled = False
        self._cancel_retry()
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            self._state = ConnectionState.CLOSING
        self.transport.close()
        self._pending_ids.clear()

    def tick(self) -> None:
        """Advance the bridge by one engine frame."""
        if self._retry_at is not None and self._clock() >= self._retry_at:
            self._cancel_retry()
            if self._reconnect_enabled:
                self._open()

        self.transport.poll()
        self._sync_state()

        if self._state is ConnectionState.OPEN:
            for line in self.transport.receive():
                self._dispatch(line)
            # a dispatch may have failed a send
            self._sync_state()

    def send_result(self, request_id: str, result: Any = None, error: str | None = None) -> bool:
        """
        Answer a tool_invoke received earlier on this connection.

        Returns False when the id is unknown or the bridge is not open.
        """
        if request_id not in self._pending_ids:
            logger.warning(f"Dropping result for unknown request id={request_id}")
            return False
        if self._state is not ConnectionState.OPEN:
            logger.warning(f"Cannot deliver result for id={request_id}: bridge is {self._state.value}")
            return False

        self._pending_ids.discard(request_id)
        frame = ToolResult(id=request_id, success=error is None, result=result, error=error)
        return self._send(frame.to_json())

    def _open(self) -> None:
        self.address = resolve_bridge_address(self._host_override, self._port_override, self._settings)
        host, port = self.address
        logger.debug(f"Connecting to bridge at {host}:{port}")
        self._state = ConnectionState.CONNECTING
        self.transport.connect(host, port)

    def _sync_state(self) -> None:
        current = self.transport.state
        if current is self._state:
            return
        previous, self._state = self._state, current

        if current is ConnectionState.OPEN:
            self._on_open()
        elif current is ConnectionState.DISCONNECTED:
            self._on_closed(previous)

    def _on_open(self) -> None:
        host, port = self.address or (DEFAULT_BRIDGE_HOST, DEFAULT_BRIDGE_PORT)
        logger.info(f"Bridge connected to {host}:{port}")
        self._delay = self.base_delay
        self._send(GodotReady(project_path=self.project_path).to_json())

    def _on_closed(self, previous: ConnectionState) -> None:
        self._pending_ids.clear()
        if previous is ConnectionState.OPEN:
            logger.info("Bridge disconnected")
        if not self._reconnect_enabled:
            return

        self.scheduled_delay = self._delay
        self._retry_at = self._clock() + self._delay
        logger.debug(f"Reconnecting in {self._delay:.1f}s")
        self._delay = min(self._delay * 2, self.max_delay)

    def _cancel_retry(self) -> None:
        self._retry_at = None
        self.scheduled_delay = None

    def _dispatch(self, line: str) -> None:
        frame = parse_frame(line)
        if isinstance(frame, Ping):
            self._send(Pong().to_json())
        elif isinstance(frame, ToolInvoke):
            self._handle_invoke(frame)
        else:
            logger.debug(f"Ignoring bridge frame: {line[:200]}")

    def _handle_invoke(self, frame: ToolInvoke) -> None:
        self._pending_ids.add(frame.id)
        if self.on_tool_invoke is None:
            self.send_result(frame.id, error=f"No tool handler registered for {frame.tool}")
            return
        try:
            self.on_tool_invoke(frame.id, frame.tool, frame.args)
        except Exception as e:
            logger.error(f"Tool handler for {frame.tool} raised: {e}")
            self.send_result(frame.id, error=str(e))

    def _send(self, text: str) -> bool:
        try:
            self.transport.send_text(text)
        except (ConnectionError, OSError) as e:
            logger.debug(f"Bridge send failed: {e}")
            return False
        return True
