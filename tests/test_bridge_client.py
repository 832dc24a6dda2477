from __future__ import annotations

import json
from typing import Any

import pytest

from godot_tools.bridge_client import BridgeClient, resolve_bridge_address
from godot_tools.transport import ConnectionState, Transport


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport(Transport):
    """Scripted transport: each connect() consumes one outcome ("open" or "fail")."""

    def __init__(self, outcomes: list[str] | None = None, events: list | None = None):
        self.outcomes = list(outcomes or [])
        self.events = events if events is not None else []
        self.connects: list[tuple[str, int]] = []
        self.sent: list[dict[str, Any]] = []
        self.inbound: list[str] = []
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    def connect(self, host: str, port: int) -> None:
        self.connects.append((host, port))
        self._state = ConnectionState.CONNECTING

    def poll(self) -> None:
        if self._state is ConnectionState.CONNECTING:
            outcome = self.outcomes.pop(0) if self.outcomes else "fail"
            self._state = ConnectionState.OPEN if outcome == "open" else ConnectionState.DISCONNECTED
        elif self._state is ConnectionState.CLOSING:
            self._state = ConnectionState.DISCONNECTED

    def receive(self) -> list[str]:
        frames, self.inbound = self.inbound, []
        return frames

    def send_text(self, text: str) -> None:
        if self._state is not ConnectionState.OPEN:
            raise ConnectionError("not open")
        frame = json.loads(text)
        self.sent.append(frame)
        self.events.append(("send", frame["type"]))

    def close(self) -> None:
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            self._state = ConnectionState.CLOSING
        else:
            self._state = ConnectionState.DISCONNECTED

    def drop(self) -> None:
        self._state = ConnectionState.DISCONNECTED

    def deliver(self, **frame: Any) -> None:
        self.inbound.append(json.dumps(frame))


def _client(transport: FakeTransport, clock: FakeClock, **kwargs: Any) -> BridgeClient:
    return BridgeClient(
        "/games/demo",
        transport=transport,
        port=6505,
        base_delay=3.0,
        max_delay=30.0,
        clock=clock,
        **kwargs,
    )


def _fail_until_retry(client: BridgeClient, clock: FakeClock) -> float:
    delay = client.scheduled_delay
    assert delay is not None
    clock.advance(delay)
    client.tick()
    return delay


def test_backoff_doubles_then_resets_after_success() -> None:
    transport = FakeTransport(["fail", "fail", "fail", "open"])
    clock = FakeClock()
    client = _client(transport, clock)

    client.connect()
    client.tick()
    delays = [_fail_until_retry(client, clock) for _ in range(3)]

    assert delays == [3.0, 6.0, 12.0]
    assert client.state is ConnectionState.OPEN
    assert client.scheduled_delay is None
    assert len(transport.connects) == 4

    transport.drop()
    client.tick()
    assert client.state is ConnectionState.DISCONNECTED
    assert client.scheduled_delay == 3.0


def test_backoff_is_capped() -> None:
    transport = FakeTransport(["fail"] * 8)
    clock = FakeClock()
    client = _client(transport, clock)

    client.connect()
    client.tick()
    delays = [_fail_until_retry(client, clock) for _ in range(7)]

    assert delays == [min(3.0 * 2 ** n, 30.0) for n in range(7)]
    assert delays[-3:] == [30.0, 30.0, 30.0]


def test_retry_waits_for_the_full_delay() -> None:
    transport = FakeTransport(["fail", "open"])
    clock = FakeClock()
    client = _client(transport, clock)

    client.connect()
    client.tick()
    clock.advance(2.9)
    client.tick()
    assert len(transport.connects) == 1

    clock.advance(0.2)
    client.tick()
    assert len(transport.connects) == 2
    assert client.state is ConnectionState.OPEN


def test_ready_is_sent_before_any_invoke_is_handled() -> None:
    events: list = []
    transport = FakeTransport(["open"], events)
    clock = FakeClock()
    client = _client(
        transport, clock,
        on_tool_invoke=lambda rid, tool, args: events.append(("invoke", rid)),
    )
    transport.deliver(type="tool_invoke", id="r1", tool="get_scene_tree", args={})

    client.connect()
    client.tick()

    assert events[:2] == [("send", "godot_ready"), ("invoke", "r1")]
    assert transport.sent[0] == {"type": "godot_ready", "project_path": "/games/demo"}


def test_ping_is_answered_and_unknown_frames_are_dropped() -> None:
    transport = FakeTransport(["open"])
    client = _client(transport, FakeClock())
    client.connect()
    client.tick()

    transport.deliver(type="ping")
    transport.deliver(type="telemetry", value=3)
    transport.inbound.append("{not json")
    client.tick()

    assert [frame["type"] for frame in transport.sent] == ["godot_ready", "pong"]
    assert client.state is ConnectionState.OPEN


def test_results_are_correlated_with_invokes() -> None:
    transport = FakeTransport(["open"])
    received: list[tuple[str, str, dict]] = []
    client = _client(transport, FakeClock(), on_tool_invoke=lambda *call: received.append(call))
    client.connect()
    client.tick()

    transport.deliver(type="tool_invoke", id="a", tool="list_nodes", args={"depth": 1})
    client.tick()

    assert received == [("a", "list_nodes", {"depth": 1})]
    assert client.pending_requests == {"a"}
    assert client.send_result("a", result={"nodes": 3}) is True
    assert transport.sent[-1] == {"type": "tool_result", "id": "a", "success": True, "result": {"nodes": 3}}
    assert client.send_result("a", result={}) is False
    assert client.send_result("never-sent", result={}) is False


def test_error_result_carries_message_only() -> None:
    transport = FakeTransport(["open"])
    client = _client(transport, FakeClock(), on_tool_invoke=lambda *call: None)
    client.connect()
    client.tick()
    transport.deliver(type="tool_invoke", id="b", tool="x", args={})
    client.tick()

    assert client.send_result("b", error="node not found") is True
    assert transport.sent[-1] == {"type": "tool_result", "id": "b", "success": False, "error": "node not found"}


def test_handler_exception_becomes_error_result() -> None:
    transport = FakeTransport(["open"])

    def explode(request_id: str, tool: str, args: dict) -> None:
        raise RuntimeError("scene tree locked")

    client = _client(transport, FakeClock(), on_tool_invoke=explode)
    client.connect()
    client.tick()
    transport.deliver(type="tool_invoke", id="c", tool="x", args={})
    client.tick()

    assert transport.sent[-1] == {"type": "tool_result", "id": "c", "success": False, "error": "scene tree locked"}
    assert client.pending_requests == set()


def test_invoke_without_handler_is_answered_with_error() -> None:
    transport = FakeTransport(["open"])
    client = _client(transport, FakeClock())
    client.connect()
    client.tick()
    transport.deliver(type="tool_invoke", id="d", tool="x", args={})
    client.tick()

    assert transport.sent[-1]["success"] is False
    assert "x" in transport.sent[-1]["error"]


def test_pending_ids_do_not_survive_a_reconnect() -> None:
    transport = FakeTransport(["open", "open"])
    clock = FakeClock()
    client = _client(transport, clock, on_tool_invoke=lambda *call: None)
    client.connect()
    client.tick()
    transport.deliver(type="tool_invoke", id="e", tool="x", args={})
    client.tick()

    transport.drop()
    client.tick()
    clock.advance(3.0)
    client.tick()

    assert client.state is ConnectionState.OPEN
    assert client.send_result("e", result=1) is False


def test_disconnect_stops_reconnecting() -> None:
    transport = FakeTransport(["open"])
    clock = FakeClock()
    client = _client(transport, clock)
    client.connect()
    client.tick()

    client.disconnect()
    client.tick()
    clock.advance(120.0)
    client.tick()

    assert client.state is ConnectionState.DISCONNECTED
    assert client.scheduled_delay is None
    assert len(transport.connects) == 1


def test_send_result_while_disconnected_is_refused() -> None:
    transport = FakeTransport(["open"])
    client = _client(transport, FakeClock(), on_tool_invoke=lambda *call: None)
    client.connect()
    client.tick()
    transport.deliver(type="tool_invoke", id="f", tool="x", args={})
    client.tick()

    transport.drop()
    assert client.send_result("f", result=1) is False


@pytest.mark.parametrize("settings, expected_port", [
    ({}, 6505),
    ({"GODOT_BRIDGE_PORT": "7001"}, 7001),
    ({"GODOT_BRIDGE_PORT": "abc", "MCP_BRIDGE_PORT": "7002"}, 7002),
    ({"MCP_BRIDGE_PORT": "70000", "GOPEAK_BRIDGE_PORT": "7003"}, 7003),
    ({"GODOT_BRIDGE_PORT": "0"}, 6505),
    ({"GODOT_BRIDGE_PORT": "  "}, 6505),
])
def test_address_resolution(settings: dict[str, str], expected_port: int) -> None:
    assert resolve_bridge_address(settings=settings) == ("127.0.0.1", expected_port)


def test_explicit_address_overrides_settings() -> None:
    settings = {"GODOT_BRIDGE_PORT": "7001"}
    assert resolve_bridge_address("10.0.0.5", 9000, settings) == ("10.0.0.5", 9000)


def test_address_is_resolved_on_each_attempt() -> None:
    settings = {"GODOT_BRIDGE_PORT": "7001"}
    transport = FakeTransport(["fail", "open"])
    clock = FakeClock()
    client = BridgeClient("/games/demo", transport=transport, settings=settings, clock=clock)

    client.connect()
    client.tick()
    settings["GODOT_BRIDGE_PORT"] = "7002"
    clock.advance(client.scheduled_delay)
    client.tick()

    assert transport.connects == [("127.0.0.1", 7001), ("127.0.0.1", 7002)]
