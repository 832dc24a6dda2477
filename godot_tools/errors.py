"""
Error types and tool-result envelopes.

Every failure reported to a controller carries at least one actionable
hint ("Possible solutions"). Engine-side failures are never raised; they
come back as captured stderr and are recognised here by
``find_failure_marker``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# Substrings the operations script writes to stderr when a mutation fails.
FAILURE_MARKERS = ("Failed to", "ERROR:")

_FAILURE_RE = re.compile("|".join(re.escape(m) for m in FAILURE_MARKERS))


class GodotToolsError(Exception):
    """Base error. Carries remediation hints for the controller."""

    default_solutions: list[str] = []

    def __init__(self, message: str, possible_solutions: list[str] | None = None):
        super().__init__(message)
        self.message = message
        if possible_solutions is None:
            possible_solutions = list(self.default_solutions)
        self.possible_solutions = possible_solutions


class GodotConfigurationError(GodotToolsError):
    """The Godot executable could not be resolved."""

    default_solutions = [
        "Ensure Godot is installed correctly",
        "Set GODOT_PATH environment variable to specify the correct path",
    ]


class GodotOperationError(GodotToolsError):
    """A one-shot operation could not be launched and produced no output."""

    default_solutions = [
        "Ensure Godot is installed correctly",
        "Check if the GODOT_PATH environment variable is set correctly",
        "Verify the project path is accessible",
    ]


class GodotLaunchError(GodotToolsError):
    """The foreground Godot process could not be spawned."""

    default_solutions = [
        "Ensure Godot is installed correctly",
        "Check if the GODOT_PATH environment variable is set correctly",
        "Verify the project path is accessible",
    ]


class BridgeError(GodotToolsError):
    """A request over the live bridge failed."""

    default_solutions = [
        "Make sure the Godot editor is running with the runtime addon enabled",
        "Check that GODOT_BRIDGE_PORT matches on both sides",
    ]


def find_failure_marker(stderr: str | None) -> str | None:
    """
    Return the first known failure marker present in stderr, if any.

    This is a text heuristic over what the operations script prints; swap
    it out here if the script ever grows a structured error channel.
    """
    if not stderr:
        return None
    match = _FAILURE_RE.search(stderr)
    return match.group(0) if match else None


def text_response(text: str) -> dict[str, Any]:
    """Successful tool result envelope."""
    return {"content": [{"type": "text", "text": text}], "isError": False}


def error_response(message: str, possible_solutions: list[str] | None = None) -> dict[str, Any]:
    """Failed tool result envelope with remediation hints."""
    possible_solutions = possible_solutions or []
    logger.error(f"Error response: {message}")
    if possible_solutions:
        logger.error(f"Possible solutions: {', '.join(possible_solutions)}")

    content = [{"type": "text", "text": message}]
    if possible_solutions:
        content.append({
            "type": "text",
            "text": "Possible solutions:\n- " + "\n- ".join(possible_solutions),
        })
    return {"content": content, "isError": True}


def response_from_error(prefix: str, error: GodotToolsError) -> dict[str, Any]:
    return error_response(f"{prefix}: {error.message}", error.possible_solutions)


def response_text(response: dict[str, Any]) -> str:
    """Flatten an envelope's text content into one string."""
    return "\n\n".join(
        block.get("text", "") for block in response.get("content", [])
        if block.get("type") == "text"
    )
