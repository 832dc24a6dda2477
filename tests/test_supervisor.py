from __future__ import annotations

import threading
import time

import pytest

from godot_tools.errors import GodotLaunchError
from godot_tools.supervisor import ProcessSupervisor, is_safe_path

from conftest import FakePopen, FakeProcess, StubLocator, wait_until


def _supervisor(processes: list[FakeProcess], events: list) -> tuple[ProcessSupervisor, FakePopen]:
    popen = FakePopen(processes, events)
    return ProcessSupervisor(StubLocator("/usr/bin/godot"), popen=popen), popen


def test_start_launches_debug_run_with_scene() -> None:
    events: list = []
    supervisor, popen = _supervisor([FakeProcess(events=events, label="a")], events)

    supervisor.start("/games/demo", "scenes/level.tscn")

    assert popen.commands == [["/usr/bin/godot", "-d", "--path", "/games/demo", "scenes/level.tscn"]]
    supervisor.shutdown()


def test_unsafe_scene_is_dropped_from_the_command() -> None:
    events: list = []
    supervisor, popen = _supervisor([FakeProcess(events=events, label="a")], events)

    supervisor.start("/games/demo", "../outside.tscn")

    assert popen.commands == [["/usr/bin/godot", "-d", "--path", "/games/demo"]]
    supervisor.shutdown()


def test_output_is_captured_per_stream() -> None:
    events: list = []
    process = FakeProcess(["Godot Engine v4.4", "ready"], ["WARNING: slow frame"], events, "a")
    supervisor, _ = _supervisor([process], events)

    supervisor.start("/games/demo")

    assert wait_until(lambda: len(supervisor.snapshot()["output"]) == 2)
    assert wait_until(lambda: len(supervisor.snapshot()["errors"]) == 1)
    snapshot = supervisor.snapshot()
    assert snapshot == {
        "active": True,
        "output": ["Godot Engine v4.4", "ready"],
        "errors": ["WARNING: slow frame"],
    }
    supervisor.shutdown()


def test_new_run_kills_previous_before_spawning() -> None:
    events: list = []
    first = FakeProcess(["old line"], [], events, "first")
    second = FakeProcess([], [], events, "second")
    supervisor, _ = _supervisor([first, second], events)

    supervisor.start("/games/demo")
    assert wait_until(lambda: supervisor.snapshot()["output"] == ["old line"])
    handle = supervisor.start("/games/demo")

    assert events == [("spawn", "first"), ("kill", "first"), ("spawn", "second")]
    assert first.killed and not second.killed
    assert supervisor.active is handle
    # The new run does not inherit the old run's logs.
    assert supervisor.snapshot() == {"active": True, "output": [], "errors": []}
    supervisor.shutdown()


def test_late_exit_of_replaced_run_keeps_the_new_one() -> None:
    events: list = []
    first = FakeProcess([], [], events, "first")
    second = FakeProcess([], [], events, "second")
    supervisor, _ = _supervisor([first, second], events)

    supervisor.start("/games/demo")
    handle = supervisor.start("/games/demo")
    first.finish()

    assert not wait_until(lambda: supervisor.active is not handle, timeout=0.3)
    assert supervisor.active is handle
    supervisor.shutdown()


def test_natural_exit_clears_the_active_run() -> None:
    events: list = []
    process = FakeProcess([], [], events, "a")
    supervisor, _ = _supervisor([process], events)

    supervisor.start("/games/demo")
    process.finish(0)

    assert wait_until(lambda: supervisor.active is None)
    assert supervisor.snapshot() == {"active": False, "message": "No active Godot process."}


def test_stop_returns_final_logs_and_clears() -> None:
    events: list = []
    process = FakeProcess(["hello"], ["oops"], events, "a")
    supervisor, _ = _supervisor([process], events)

    supervisor.start("/games/demo")
    assert wait_until(lambda: supervisor.snapshot().get("errors") == ["oops"])
    assert wait_until(lambda: supervisor.snapshot().get("output") == ["hello"])

    result = supervisor.stop()

    assert result == {
        "stopped": True,
        "message": "Godot project stopped",
        "output": ["hello"],
        "errors": ["oops"],
    }
    assert process.killed
    assert supervisor.active is None


def test_stop_when_idle_does_not_raise() -> None:
    supervisor, _ = _supervisor([], [])
    assert supervisor.stop() == {"stopped": False, "message": "No active Godot process to stop."}
    assert supervisor.stop()["stopped"] is False
    supervisor.shutdown()


def test_spawn_failure_raises_launch_error() -> None:
    def broken_popen(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    supervisor = ProcessSupervisor(StubLocator("/missing/godot"), popen=broken_popen)

    with pytest.raises(GodotLaunchError) as excinfo:
        supervisor.start("/games/demo")
    assert excinfo.value.possible_solutions
    assert supervisor.active is None


@pytest.mark.parametrize("path, safe", [
    ("scenes/main.tscn", True),
    ("/abs/project", True),
    ("../escape", False),
    ("a/../b", False),
    ("", False),
    (None, False),
])
def test_is_safe_path(path, safe: bool) -> None:
    assert is_safe_path(path) is safe


class SlowPopen(FakePopen):
    """Spawning takes a while, so overlapping starts really overlap."""

    def __call__(self, cmd, **kwargs):
        time.sleep(0.1)
        return super().__call__(cmd, **kwargs)


def test_overlapping_starts_leave_no_orphans() -> None:
    events: list = []
    processes = [FakeProcess([], [], events, label) for label in ("a", "b", "c")]
    popen = SlowPopen(processes, events)
    supervisor = ProcessSupervisor(StubLocator("/usr/bin/godot"), popen=popen)

    threads = [threading.Thread(target=supervisor.start, args=("/games/demo",)) for _ in processes]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    alive = [p for p in processes if not p.killed]
    assert len(alive) == 1
    assert supervisor.active is not None and supervisor.active.process is alive[0]

    supervisor.shutdown()
    assert all(p.killed for p in processes)


def test_launch_editor_is_not_tracked() -> None:
    events: list = []
    run = FakeProcess([], [], events, "run")
    editor = FakeProcess([], [], events, "editor")
    supervisor, popen = _supervisor([run, editor], events)
    supervisor.start("/games/demo")

    assert supervisor.launch_editor("/games/demo") is editor

    assert popen.commands[-1] == ["/usr/bin/godot", "-e", "--path", "/games/demo"]
    assert not run.killed
    assert supervisor.active.process is run
    supervisor.shutdown()
    assert not editor.killed


def test_launch_editor_spawn_failure() -> None:
    def broken_popen(cmd, **kwargs):
        raise PermissionError(cmd[0])

    supervisor = ProcessSupervisor(StubLocator("/usr/bin/godot"), popen=broken_popen)
    with pytest.raises(GodotLaunchError, match="Failed to launch Godot editor"):
        supervisor.launch_editor("/games/demo")
