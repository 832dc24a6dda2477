from __future__ import annotations

import io
import stat
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable

import pytest

from godot_tools.config import GodotConfig
from godot_tools.executor import OperationResult


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class StubLocator:
    """Stands in for GodotLocator without running any binary."""

    def __init__(self, path: str = "godot", version: str = "4.4.stable.official"):
        self.config = GodotConfig(godot_path=path)
        self.path = path
        self.version = version

    def resolve(self) -> str:
        return self.path

    def get_version(self) -> str:
        return self.version


class FakeExecutor:
    """Records operations instead of launching Godot."""

    def __init__(self, locator: StubLocator | None = None, stdout: str = "", stderr: str = ""):
        self.locator = locator or StubLocator()
        self.stdout = stdout
        self.stderr = stderr
        self.calls: list[tuple[str, dict[str, Any], str]] = []

    def execute(self, operation: str, params: dict[str, Any], project_path: str) -> OperationResult:
        self.calls.append((operation, params, project_path))
        return OperationResult(stdout=self.stdout, stderr=self.stderr)


class FakeProcess:
    """Popen look-alike whose lifetime the test controls."""

    def __init__(self, stdout_lines: list[str] | None = None, stderr_lines: list[str] | None = None,
                 events: list | None = None, label: str = ""):
        self.stdout = io.StringIO("".join(f"{line}\n" for line in stdout_lines or []))
        self.stderr = io.StringIO("".join(f"{line}\n" for line in stderr_lines or []))
        self.events = events if events is not None else []
        self.label = label
        self.killed = False
        self._exited = threading.Event()
        self.returncode: int | None = None

    def kill(self) -> None:
        self.killed = True
        self.events.append(("kill", self.label))
        self.finish(-9)

    def finish(self, code: int = 0) -> None:
        if self.returncode is None:
            self.returncode = code
        self._exited.set()

    def wait(self, timeout: float | None = None) -> int | None:
        self._exited.wait(timeout)
        return self.returncode


class FakePopen:
    """Callable replacing subprocess.Popen; hands out queued FakeProcesses."""

    def __init__(self, processes: list[FakeProcess], events: list):
        self.processes = list(processes)
        self.events = events
        self.commands: list[list[str]] = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        process = self.processes.pop(0)
        self.events.append(("spawn", process.label))
        return process


@pytest.fixture()
def godot_project(tmp_path: Path) -> Path:
    project = tmp_path / "demo"
    (project / "scenes").mkdir(parents=True)
    (project / "project.godot").write_text('config_version=5\n[application]\nconfig/name="Demo"\n')
    (project / "scenes" / "main.tscn").write_text('[gd_scene format=3]\n[node name="Main" type="Node2D"]\n')
    return project


@pytest.fixture()
def fake_godot(tmp_path: Path) -> Callable[[str], Path]:
    """Write an executable shell script that pretends to be Godot."""
    if sys.platform == "win32":
        pytest.skip("shell-script fake engine needs a POSIX shell")

    def _make(body: str) -> Path:
        script = tmp_path / "bin" / "godot"
        script.parent.mkdir(exist_ok=True)
        script.write_text(
            "#!/bin/sh\n"
            'if [ "$1" = "--version" ]; then echo "4.4.stable.official"; exit 0; fi\n'
            f"{body}\n"
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture(autouse=True)
def _clean_bridge_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("GODOT_BRIDGE_PORT", "MCP_BRIDGE_PORT", "GOPEAK_BRIDGE_PORT", "GODOT_PATH"):
        monkeypatch.delenv(key, raising=False)
