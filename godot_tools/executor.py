"""
One-shot headless operations.

Each call builds a single shell command line:

    "<godot>" --headless --path "<project>" --script "<operations.gd>" <operation> '<json>' [--debug-godot]

and runs it to completion. On POSIX the line goes through /bin/sh; on
Windows it is handed to CreateProcess directly, without cmd.exe, so the
MSVC argv quoting decodes exactly. The operations script reports progress on
stdout and problems on stderr; its exit status is not reliable, so a
non-zero exit is not an error here. Callers inspect the returned text
(see ``godot_tools.errors.find_failure_marker``).
"""

from __future__ import annotations

import enum
import json
import logging
import os
import subprocess
from dataclasses import dataclass

from godot_tools.config import GodotConfig
from godot_tools.errors import GodotConfigurationError, GodotOperationError
from godot_tools.locator import GodotLocator
from godot_tools.parameters import Params, to_engine_parameters

logger = logging.getLogger(__name__)


class ShellDialect(enum.Enum):
    POSIX = "posix"
    # CreateProcess command line, parsed by the MSVC argv rules
    WINDOWS = "windows"

    @classmethod
    def for_host(cls) -> "ShellDialect":
        return cls.WINDOWS if os.name == "nt" else cls.POSIX


def quote_posix(arg: str) -> str:
    """Single-quote for sh; embedded ``'`` becomes ``'\\''``."""
    return "'" + arg.replace("'", "'\\''") + "'"


def quote_windows(arg: str) -> str:
    """
    Double-quote using the MSVC argv rules.

    ``"`` becomes ``\\"``; backslashes are doubled only when they precede a
    quote (including the closing one), so the argument decodes byte for byte.
    """
    parts: list[str] = []
    backslashes = 0
    for ch in arg:
        if ch == "\\":
            backslashes += 1
            continue
        if ch == '"':
            parts.append("\\" * (backslashes * 2) + '\\"')
        else:
            parts.append("\\" * backslashes + ch)
        backslashes = 0
    parts.append("\\" * (backslashes * 2))
    return '"' + "".join(parts) + '"'


def quote_argument(arg: str, dialect: ShellDialect) -> str:
    if dialect is ShellDialect.WINDOWS:
        return quote_windows(arg)
    return quote_posix(arg)


@dataclass
class OperationResult:
    stdout: str
    stderr: str


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class OperationExecutor:
    """
    Runs operations through the Godot operations script.

    Calls are independent: nothing is shared between them except the
    locator's read-mostly path cache.
    """

    def __init__(
        self,
        locator: GodotLocator,
        config: GodotConfig | None = None,
        dialect: ShellDialect | None = None,
    ):
        self.locator = locator
        self.config = config or locator.config
        self.dialect = dialect or ShellDialect.for_host()

    def timeout_for(self, operation: str) -> float:
        if operation.startswith("export"):
            return self.config.export_timeout
        return self.config.operation_timeout

    def build_command(self, godot_path: str, operation: str, params: Params, project_path: str) -> str:
        """Assemble the full command line for one operation."""
        payload = json.dumps(to_engine_parameters(params))
        dialect = self.dialect
        cmd = [
            quote_argument(godot_path, dialect),
            "--headless",
            "--path",
            quote_argument(project_path, dialect),
            "--script",
            quote_argument(self.config.operations_script_path, dialect),
            operation,
            quote_argument(payload, dialect),
        ]
        if self.config.godot_debug_mode:
            cmd.append("--debug-godot")
        return " ".join(cmd)

    def execute(self, operation: str, params: Params, project_path: str) -> OperationResult:
        """
        Run one operation and return its captured output.

        Raises:
            GodotConfigurationError: no Godot executable could be resolved.
            GodotOperationError: the command could not run and produced no output.
        """
        logger.debug(f"Executing operation: {operation} in project: {project_path}")
        logger.debug(f"Operation params: {json.dumps(params)}")

        godot_path = self.locator.resolve()
        if not godot_path:
            raise GodotConfigurationError("Could not find a valid Godot executable path")

        if not os.path.exists(self.config.operations_script_path):
            logger.warning(f"Operations script not found: {self.config.operations_script_path}")

        cmd = self.build_command(godot_path, operation, params, project_path)
        timeout = self.timeout_for(operation)
        logger.debug(f"Command: {cmd}")

        try:
            completed = subprocess.run(
                cmd,
                shell=self.dialect is ShellDialect.POSIX,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            stdout, stderr = _as_text(e.stdout), _as_text(e.stderr)
            if stdout or stderr:
                logger.warning(f"Operation {operation} timed out after {timeout}s, returning partial output")
                return OperationResult(stdout=stdout, stderr=stderr)
            raise GodotOperationError(
                f"Operation {operation} timed out after {timeout}s with no output",
                ["Check that the project opens in the Godot editor",
                 "Increase GODOT_OPERATION_TIMEOUT or GODOT_EXPORT_TIMEOUT"],
            ) from e
        except OSError as e:
            raise GodotOperationError(f"Failed to launch Godot for {operation}: {e}") from e

        if completed.returncode != 0:
            logger.debug(f"Operation {operation} exited with code {completed.returncode}")

        return OperationResult(stdout=completed.stdout or "", stderr=completed.stderr or "")
