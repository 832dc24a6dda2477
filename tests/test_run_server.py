from __future__ import annotations

import pytest

import run_server


def test_parser_defaults() -> None:
    args = run_server.build_parser().parse_args([])
    assert args.godot_path is None
    assert args.strict is False
    assert args.no_bridge is False
    assert args.bridge_port is None


def test_list_prints_catalog(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_server.main(["--list", "--no-bridge"]) == 0

    out = capsys.readouterr().out
    assert "Available tools (14)" in out
    assert "create_scene" in out
    assert "bridge_status" not in out


def test_list_includes_bridge_tools(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_server.main(["--list", "--bridge-port", "7010"]) == 0
    out = capsys.readouterr().out
    assert "Available tools (16)" in out
    assert "invoke_runtime_tool" in out
