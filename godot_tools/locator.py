"""
Godot executable discovery.

Resolution order: explicitly configured path, ``GODOT_PATH``, ``godot`` on
PATH, then a handful of per-platform install locations. Each candidate is
checked once with ``--version`` and the verdict cached for the life of the
locator.

When nothing validates, strict mode raises. Lenient mode (the default)
falls back to a guessed platform default and logs a warning; this legacy
behaviour tends to surface later as confusing launch failures, so prefer
``strict_path_validation=True`` when fail-fast is wanted.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import sys

from godot_tools.config import GodotConfig
from godot_tools.errors import GodotConfigurationError

logger = logging.getLogger(__name__)

VERSION_CHECK_TIMEOUT = 10.0

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)")


def platform_candidates(platform: str | None = None) -> list[str]:
    """Likely install locations for the given ``sys.platform`` value."""
    platform = platform or sys.platform
    home = os.path.expanduser("~")
    candidates = ["godot"]

    if platform == "darwin":
        candidates += [
            "/Applications/Godot.app/Contents/MacOS/Godot",
            "/Applications/Godot_4.app/Contents/MacOS/Godot",
            f"{home}/Applications/Godot.app/Contents/MacOS/Godot",
            f"{home}/Applications/Godot_4.app/Contents/MacOS/Godot",
            f"{home}/Library/Application Support/Steam/steamapps/common/Godot Engine/Godot.app/Contents/MacOS/Godot",
        ]
    elif platform == "win32":
        userprofile = os.environ.get("USERPROFILE", home)
        candidates += [
            "C:\\Program Files\\Godot\\Godot.exe",
            "C:\\Program Files (x86)\\Godot\\Godot.exe",
            "C:\\Program Files\\Godot_4\\Godot.exe",
            "C:\\Program Files (x86)\\Godot_4\\Godot.exe",
            f"{userprofile}\\Godot\\Godot.exe",
        ]
    elif platform.startswith("linux"):
        candidates += [
            "/usr/bin/godot",
            "/usr/local/bin/godot",
            "/snap/bin/godot",
            f"{home}/.local/bin/godot",
        ]

    return candidates


def fallback_path(platform: str | None = None) -> str:
    platform = platform or sys.platform
    if platform == "win32":
        return "C:\\Program Files\\Godot\\Godot.exe"
    if platform == "darwin":
        return "/Applications/Godot.app/Contents/MacOS/Godot"
    return "/usr/bin/godot"


def is_godot_44_or_later(version: str) -> bool:
    match = _VERSION_RE.match(version.strip())
    if not match:
        return False
    major, minor = int(match.group(1)), int(match.group(2))
    return major > 4 or (major == 4 and minor >= 4)


class GodotLocator:
    """
    Resolves and caches the Godot executable path.

    One instance is built at startup and shared by the executor and the
    supervisor; ``validated_paths`` is its process-wide cache.
    """

    def __init__(self, config: GodotConfig | None = None, platform: str | None = None):
        self.config = config or GodotConfig()
        self.platform = platform or sys.platform
        self.validated_paths: dict[str, bool] = {}
        self.godot_path: str | None = None

        if self.config.godot_path:
            path = os.path.normpath(self.config.godot_path)
            logger.debug(f"Custom Godot path provided: {path}")
            # Cheap existence check only; the full check runs on first use.
            if path == "godot" or os.path.exists(path):
                self.godot_path = path
            else:
                logger.warning(f"Invalid custom Godot path provided: {path}")

    def is_valid_godot_path(self, path: str) -> bool:
        """Run ``path --version``, caching the verdict."""
        if path in self.validated_paths:
            return self.validated_paths[path]

        logger.debug(f"Validating Godot path: {path}")
        valid = False
        if path != "godot" and not os.path.exists(path):
            logger.debug(f"Path does not exist: {path}")
        else:
            try:
                completed = subprocess.run(
                    [path, "--version"],
                    capture_output=True,
                    text=True,
                    timeout=VERSION_CHECK_TIMEOUT,
                )
                valid = completed.returncode == 0
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.debug(f"Invalid Godot path: {path}, error: {e}")

        self.validated_paths[path] = valid
        return valid

    def detect(self) -> str:
        """Run discovery and return the chosen path (see module docstring)."""
        if self.godot_path and self.is_valid_godot_path(self.godot_path):
            logger.debug(f"Using existing Godot path: {self.godot_path}")
            return self.godot_path

        if self.config.env_godot_path:
            env_path = os.path.normpath(self.config.env_godot_path)
            logger.debug(f"Checking GODOT_PATH environment variable: {env_path}")
            if self.is_valid_godot_path(env_path):
                self.godot_path = env_path
                return env_path
            logger.debug("GODOT_PATH environment variable is invalid")

        logger.debug(f"Auto-detecting Godot path for platform: {self.platform}")
        for candidate in platform_candidates(self.platform):
            path = candidate if candidate == "godot" else os.path.normpath(candidate)
            if self.is_valid_godot_path(path):
                logger.debug(f"Found Godot at: {path}")
                self.godot_path = path
                return path

        logger.error(f"Could not find Godot in common locations for {self.platform}")
        if self.config.strict_path_validation:
            raise GodotConfigurationError(
                "Could not find a valid Godot executable. "
                "Set GODOT_PATH or provide a valid path in config.",
            )

        self.godot_path = fallback_path(self.platform)
        logger.warning(f"Using default path: {self.godot_path}, but this may not work.")
        logger.warning(
            "Set GODOT_STRICT_PATH_VALIDATION=1 to fail fast instead of guessing a path."
        )
        return self.godot_path

    def resolve(self) -> str:
        """Return the cached path, running discovery on first use."""
        if not self.godot_path:
            self.detect()
        if not self.godot_path:
            raise GodotConfigurationError("Could not find a valid Godot executable path")
        return self.godot_path

    def set_godot_path(self, custom_path: str) -> bool:
        if not custom_path:
            return False
        path = os.path.normpath(custom_path)
        if self.is_valid_godot_path(path):
            self.godot_path = path
            logger.debug(f"Godot path set to: {path}")
            return True
        logger.debug(f"Failed to set invalid Godot path: {path}")
        return False

    def get_version(self) -> str:
        """``godot --version`` output, stripped."""
        path = self.resolve()
        try:
            completed = subprocess.run(
                [path, "--version"],
                capture_output=True,
                text=True,
                timeout=VERSION_CHECK_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise GodotConfigurationError(f"Failed to get Godot version: {e}") from e
        if completed.returncode != 0:
            raise GodotConfigurationError(
                f"Godot version check exited with code {completed.returncode}: {completed.stderr.strip()}"
            )
        return completed.stdout.strip()
