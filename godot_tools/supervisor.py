"""
Foreground Godot run supervision.

At most one engine process is tracked at a time. Starting a new run kills
the previous one outright (no graceful shutdown, no queue). Output from
both streams is captured line by line for ``get_debug_output``-style
inspection.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass, field
from typing import IO, Any, Callable

from godot_tools.errors import GodotLaunchError
from godot_tools.locator import GodotLocator

logger = logging.getLogger(__name__)

SHUTDOWN_LOCK_TIMEOUT = 5.0


def is_safe_path(path: str | None) -> bool:
    """Reject empty paths and anything with ``..`` in it."""
    return bool(path) and ".." not in path


@dataclass
class EngineProcess:
    """A running foreground engine and everything it has printed so far."""

    process: Any
    output: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class ProcessSupervisor:
    """Owns the single current foreground run."""

    def __init__(self, locator: GodotLocator, popen: Callable[..., Any] = subprocess.Popen):
        self.locator = locator
        self._popen = popen
        self._active: EngineProcess | None = None
        # _lock guards _active; _start_lock serialises kill/spawn/assign sequences
        self._lock = threading.Lock()
        self._start_lock = threading.Lock()

    @property
    def active(self) -> EngineProcess | None:
        return self._active

    def start(self, project_path: str, scene: str | None = None) -> EngineProcess:
        """
        Launch ``godot -d --path <project> [scene]`` as the tracked run.

        Any run already tracked is killed before the new one is spawned.
        Overlapping calls are serialised, so the last one wins and every
        earlier process is killed.

        Raises:
            GodotConfigurationError: no Godot executable could be resolved.
            GodotLaunchError: the process could not be spawned.
        """
        godot_path = self.locator.resolve()

        cmd = [godot_path, "-d", "--path", project_path]
        if scene and is_safe_path(scene):
            logger.debug(f"Adding scene parameter: {scene}")
            cmd.append(scene)

        with self._start_lock:
            with self._lock:
                previous, self._active = self._active, None
            if previous is not None:
                logger.debug("Killing existing Godot process before starting a new one")
                self._kill(previous)

            logger.debug(f"Running Godot project: {project_path}")
            try:
                process = self._popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    bufsize=1,
                )
            except OSError as e:
                logger.error(f"Failed to start Godot process: {e}")
                raise GodotLaunchError(f"Failed to run Godot project: {e}") from e

            handle = EngineProcess(process=process)
            with self._lock:
                self._active = handle

        self._spawn(self._pump, process.stdout, handle.output, "stdout")
        self._spawn(self._pump, process.stderr, handle.errors, "stderr")
        self._spawn(self._watch, handle)
        return handle

    def launch_editor(self, project_path: str) -> Any:
        """
        Open the Godot editor (``godot -e --path <project>``).

        The editor is not tracked: it does not replace the foreground run
        and is left running on shutdown.

        Raises:
            GodotConfigurationError: no Godot executable could be resolved.
            GodotLaunchError: the process could not be spawned.
        """
        godot_path = self.locator.resolve()
        logger.debug(f"Launching Godot editor for project: {project_path}")
        try:
            return self._popen(
                [godot_path, "-e", "--path", project_path],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error(f"Failed to start Godot editor: {e}")
            raise GodotLaunchError(f"Failed to launch Godot editor: {e}") from e

    def stop(self) -> dict[str, Any]:
        """Kill the tracked run and return its final logs. Never raises."""
        with self._start_lock, self._lock:
            handle, self._active = self._active, None
        if handle is None:
            return {"stopped": False, "message": "No active Godot process to stop."}

        logger.debug("Stopping active Godot process")
        self._kill(handle)
        return {
            "stopped": True,
            "message": "Godot project stopped",
            "output": list(handle.output),
            "errors": list(handle.errors),
        }

    def snapshot(self) -> dict[str, Any]:
        """Current logs of the tracked run, without side effects."""
        handle = self._active
        if handle is None:
            return {"active": False, "message": "No active Godot process."}
        return {
            "active": True,
            "output": list(handle.output),
            "errors": list(handle.errors),
        }

    def shutdown(self) -> None:
        """Kill whatever is tracked; safe to call more than once."""
        # Bounded wait: this also runs from a signal handler that may have
        # interrupted start() on the same thread.
        acquired = self._start_lock.acquire(timeout=SHUTDOWN_LOCK_TIMEOUT)
        try:
            with self._lock:
                handle, self._active = self._active, None
            if handle is not None:
                logger.debug("Killing active Godot process")
                self._kill(handle)
        finally:
            if acquired:
                self._start_lock.release()

    def _kill(self, handle: EngineProcess) -> None:
        try:
            handle.process.kill()
        except OSError as e:
            # Already gone
            logger.debug(f"Kill failed: {e}")

    def _clear_if_current(self, handle: EngineProcess) -> None:
        # A newer start may have replaced this handle already.
        with self._lock:
            if self._active is handle:
                self._active = None

    def _pump(self, stream: IO[str] | None, sink: list[str], label: str) -> None:
        if stream is None:
            return
        for line in stream:
            line = line.rstrip("\r\n")
            sink.append(line)
            if line.strip():
                logger.debug(f"[Godot {label}] {line}")

    def _watch(self, handle: EngineProcess) -> None:
        code = handle.process.wait()
        logger.debug(f"Godot process exited with code {code}")
        self._clear_if_current(handle)

    @staticmethod
    def _spawn(target: Callable[..., None], *args: Any) -> None:
        threading.Thread(target=target, args=args, daemon=True).start()
