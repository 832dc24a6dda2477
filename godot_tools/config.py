"""
Runtime configuration.

All environment lookups happen in ``GodotConfig.from_env`` so the rest of
the package takes plain values. ``.env`` loading is left to the entry
point; importing this module never touches the filesystem.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parent
DEFAULT_OPERATIONS_SCRIPT = PACKAGE_ROOT / "scripts" / "godot_operations.gd"

DEFAULT_OPERATION_TIMEOUT = 60.0
DEFAULT_EXPORT_TIMEOUT = 300.0

DEFAULT_BRIDGE_HOST = "127.0.0.1"
DEFAULT_BRIDGE_PORT = 6505
BRIDGE_PORT_ENV_KEYS = ("GODOT_BRIDGE_PORT", "MCP_BRIDGE_PORT", "GOPEAK_BRIDGE_PORT")


def env_flag(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default
    return value if value > 0 else default


def parse_port(raw: str | None) -> int | None:
    """Parse a TCP port, returning None unless it is an integer in 1..65535."""
    if raw is None or not str(raw).strip():
        return None
    try:
        port = int(str(raw).strip())
    except ValueError:
        return None
    return port if 1 <= port <= 65535 else None


def resolve_bridge_port(env: Mapping[str, str] | None = None) -> int:
    """First valid port among the recognised keys, else the default."""
    env = os.environ if env is None else env
    for key in BRIDGE_PORT_ENV_KEYS:
        raw = env.get(key)
        if raw is None or not raw.strip():
            continue
        port = parse_port(raw)
        if port is not None:
            return port
        logger.warning(
            f"Ignoring invalid {key}={raw!r}. Expected an integer between 1 and 65535."
        )
    return DEFAULT_BRIDGE_PORT


@dataclass
class GodotConfig:
    """Settings shared by the locator, executor and supervisor."""

    godot_path: str | None = None
    env_godot_path: str | None = None
    debug_mode: bool = False
    godot_debug_mode: bool = True
    strict_path_validation: bool = False
    operations_script_path: str = str(DEFAULT_OPERATIONS_SCRIPT)
    operation_timeout: float = DEFAULT_OPERATION_TIMEOUT
    export_timeout: float = DEFAULT_EXPORT_TIMEOUT
    bridge_port: int = DEFAULT_BRIDGE_PORT

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides) -> "GodotConfig":
        env = os.environ if env is None else env
        config = cls(
            env_godot_path=(env.get("GODOT_PATH") or "").strip() or None,
            debug_mode=(env.get("DEBUG", "").strip().lower() == "true"),
            godot_debug_mode=env_flag(env, "GODOT_DEBUG_MODE", True),
            strict_path_validation=env_flag(env, "GODOT_STRICT_PATH_VALIDATION", False),
            operations_script_path=(
                (env.get("GODOT_OPERATIONS_SCRIPT") or "").strip()
                or str(DEFAULT_OPERATIONS_SCRIPT)
            ),
            operation_timeout=env_float(env, "GODOT_OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT),
            export_timeout=env_float(env, "GODOT_EXPORT_TIMEOUT", DEFAULT_EXPORT_TIMEOUT),
            bridge_port=resolve_bridge_port(env),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config
