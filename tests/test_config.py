from __future__ import annotations

import pytest

from godot_tools.config import (
    DEFAULT_OPERATIONS_SCRIPT,
    GodotConfig,
    env_flag,
    parse_port,
    resolve_bridge_port,
)
from godot_tools.errors import find_failure_marker, response_text, text_response


def test_defaults_from_empty_environment() -> None:
    config = GodotConfig.from_env({})
    assert config.env_godot_path is None
    assert config.debug_mode is False
    assert config.godot_debug_mode is True
    assert config.strict_path_validation is False
    assert config.operations_script_path == str(DEFAULT_OPERATIONS_SCRIPT)
    assert config.operation_timeout == 60.0
    assert config.export_timeout == 300.0
    assert config.bridge_port == 6505


def test_environment_values_are_read() -> None:
    config = GodotConfig.from_env({
        "GODOT_PATH": " /opt/godot ",
        "DEBUG": "true",
        "GODOT_DEBUG_MODE": "false",
        "GODOT_STRICT_PATH_VALIDATION": "1",
        "GODOT_OPERATIONS_SCRIPT": "/srv/ops.gd",
        "GODOT_OPERATION_TIMEOUT": "15",
        "GODOT_EXPORT_TIMEOUT": "not-a-number",
        "MCP_BRIDGE_PORT": "7100",
    })
    assert config.env_godot_path == "/opt/godot"
    assert config.debug_mode is True
    assert config.godot_debug_mode is False
    assert config.strict_path_validation is True
    assert config.operations_script_path == "/srv/ops.gd"
    assert config.operation_timeout == 15.0
    assert config.export_timeout == 300.0
    assert config.bridge_port == 7100


def test_overrides_skip_none() -> None:
    config = GodotConfig.from_env({"GODOT_STRICT_PATH_VALIDATION": "yes"},
                                  godot_path="/bin/godot", strict_path_validation=None)
    assert config.godot_path == "/bin/godot"
    assert config.strict_path_validation is True


@pytest.mark.parametrize("raw, expected", [
    ("1", 1), ("65535", 65535), ("0", None), ("65536", None), ("-5", None), ("6505.5", None), ("", None), (None, None),
])
def test_parse_port(raw, expected) -> None:
    assert parse_port(raw) == expected


def test_bridge_port_key_precedence() -> None:
    env = {"GODOT_BRIDGE_PORT": "7001", "MCP_BRIDGE_PORT": "7002", "GOPEAK_BRIDGE_PORT": "7003"}
    assert resolve_bridge_port(env) == 7001
    assert resolve_bridge_port({"GOPEAK_BRIDGE_PORT": "7003"}) == 7003
    assert resolve_bridge_port({"GODOT_BRIDGE_PORT": "x"}) == 6505


def test_env_flag() -> None:
    assert env_flag({"F": "off"}, "F", True) is False
    assert env_flag({"F": "on"}, "F") is True
    assert env_flag({}, "F", True) is True


@pytest.mark.parametrize("stderr, marker", [
    ("Failed to load scene", "Failed to"),
    ("noise\nERROR: bad node\n", "ERROR:"),
    ("WARNING: only a warning", None),
    ("", None),
    (None, None),
])
def test_find_failure_marker(stderr, marker) -> None:
    assert find_failure_marker(stderr) == marker


def test_response_text_joins_blocks() -> None:
    response = text_response("a")
    response["content"].append({"type": "text", "text": "b"})
    assert response_text(response) == "a\n\nb"
