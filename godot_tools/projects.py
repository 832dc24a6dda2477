"""
Read-only inspection of Godot projects on disk.

A directory is a Godot project when it contains a ``project.godot`` file.
Hidden entries (names starting with ``.``) are never descended into.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

PROJECT_FILE = "project.godot"

SCENE_SUFFIXES = {".tscn"}
SCRIPT_SUFFIXES = {".gd", ".gdscript", ".cs"}
ASSET_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp", ".svg", ".ttf", ".wav", ".mp3", ".ogg"}

_CONFIG_NAME = re.compile(r'config/name="([^"]*)"')


def is_godot_project(directory: Path) -> bool:
    return (directory / PROJECT_FILE).is_file()


def _visible_subdirectories(directory: Path) -> list[Path]:
    return sorted(p for p in directory.iterdir() if p.is_dir() and not p.name.startswith("."))


def find_godot_projects(directory: str | Path, recursive: bool = False) -> list[dict[str, str]]:
    """
    Find projects at or below a directory.

    Without ``recursive`` only the directory itself and its immediate
    children are checked. With it, the search stops descending at the
    first project found on each branch.

    Returns:
        ``[{"path": ..., "name": ...}]`` where name is the directory name.
    """
    root = Path(directory)
    projects: list[dict[str, str]] = []
    if is_godot_project(root):
        projects.append({"path": str(root), "name": root.name})

    pending = _visible_subdirectories(root)
    while pending:
        subdir = pending.pop(0)
        if is_godot_project(subdir):
            projects.append({"path": str(subdir), "name": subdir.name})
        elif recursive:
            try:
                pending.extend(_visible_subdirectories(subdir))
            except OSError as e:
                logger.debug(f"Skipping unreadable directory {subdir}: {e}")
    return projects


def project_structure(project_path: str | Path) -> dict[str, int]:
    """Count scenes, scripts, assets and everything else in a project."""
    counts = {"scenes": 0, "scripts": 0, "assets": 0, "other": 0}
    pending = [Path(project_path)]
    while pending:
        directory = pending.pop()
        try:
            entries = list(directory.iterdir())
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            continue
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                pending.append(entry)
                continue
            suffix = entry.suffix.lower()
            if suffix in SCENE_SUFFIXES:
                counts["scenes"] += 1
            elif suffix in SCRIPT_SUFFIXES:
                counts["scripts"] += 1
            elif suffix in ASSET_SUFFIXES:
                counts["assets"] += 1
            else:
                counts["other"] += 1
    return counts


def read_project_name(project_path: str | Path) -> str:
    """``config/name`` from project.godot, else the directory name."""
    path = Path(project_path)
    try:
        match = _CONFIG_NAME.search((path / PROJECT_FILE).read_text(encoding="utf-8"))
    except OSError as e:
        logger.debug(f"Could not read {PROJECT_FILE}: {e}")
        match = None
    return match.group(1) if match else path.name


def project_info(project_path: str | Path, godot_version: str) -> dict[str, Any]:
    return {
        "name": read_project_name(project_path),
        "path": str(project_path),
        "godotVersion": godot_version,
        "structure": project_structure(project_path),
    }
