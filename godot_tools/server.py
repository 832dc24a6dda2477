"""
Godot tool server.

A standalone process that:
1. Reads JSON-RPC requests from stdin
2. Dispatches to registered ToolHandlers
3. Writes JSON-RPC responses to stdout

Logging goes to stderr; stdout carries protocol traffic only.

To add a tool:

    from godot_tools.server import StdioToolServer, ToolHandler

    class ProjectName(ToolHandler):
        name = "project_name"
        description = "Reads the project name from project.godot"
        parameters = {
            "projectPath": {"type": "string", "description": "Godot project directory"},
        }
        required = ["projectPath"]

        def handle(self, params: dict) -> dict:
            ...
            return text_response(name)

    server = StdioToolServer()
    server.register(ProjectName())
    server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import IO, Any

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class ToolHandler(ABC):
    """
    Base class for a tool.

    Handlers return a content envelope (see ``godot_tools.errors``); the
    server only moves it over the wire.
    """

    # Subclasses must set these
    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        """
        Execute the tool with the given parameters.

        Args:
            params: Dict of parameter name → value

        Returns:
            ``{"content": [...], "isError": bool}``
        """
        ...

    def get_schema(self) -> dict:
        """Return the tool schema for discovery."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.parameters,
                "required": list(self.required),
            },
        }


class StdioToolServer:
    """
    JSON-RPC tool server that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "tools/list" → returns registered tool schemas
        - "tools/call" → calls a tool by name with arguments
        - "ping"       → health check
    """

    def __init__(self, name: str = "godot-tools", version: str = "0.1.0"):
        self.name = name
        self.version = version
        self._handlers: dict[str, ToolHandler] = {}

    @property
    def handlers(self) -> list[ToolHandler]:
        return list(self._handlers.values())

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.debug(f"Registered tool: {handler.name}")

    def run(self, stdin: IO[str] | None = None, stdout: IO[str] | None = None) -> None:
        """
        Main loop: read requests, dispatch, write responses.

        Blocks until stdin is closed (parent process terminates).
        """
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        logger.info(f"{self.name} starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")

        for line in stdin:
            response = self.handle_line(line)
            if response is not None:
                stdout.write(response + "\n")
                stdout.flush()

    def handle_line(self, line: str) -> str | None:
        """Process one request line and return the response line (None for blank input)."""
        line = line.strip()
        if not line:
            return None

        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            return self._error(None, PARSE_ERROR, f"Parse error: {e}")
        if not isinstance(request, dict):
            return self._error(None, PARSE_ERROR, "Parse error: request must be an object")

        request_id = request.get("id")
        method = request.get("method", "")
        params = request.get("params") or {}

        try:
            result = self._dispatch(method, params)
        except LookupError as e:
            return self._error(request_id, METHOD_NOT_FOUND, str(e))
        except Exception as e:
            logger.exception(f"Request {method} failed")
            return self._error(request_id, INTERNAL_ERROR, str(e))
        return self._result(request_id, result)

    def call(self, tool_name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke a registered tool in-process."""
        handler = self._handlers.get(tool_name)
        if not handler:
            raise LookupError(
                f"Unknown tool: '{tool_name}'. "
                f"Available: {list(self._handlers.keys())}"
            )
        return handler.handle(arguments or {})

    def _dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "ping":
            return {"status": "ok", "server": self.name, "version": self.version}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            return self.call(params.get("name", ""), params.get("arguments") or {})

        raise LookupError(f"Unknown method: '{method}'")

    def _result(self, request_id: Any, result: Any) -> str:
        return json.dumps({
            "jsonrpc": "2.0",
            "id": request_id,
            "result": result,
        })

    def _error(self, request_id: Any, code: int, message: str) -> str:
        return json.dumps({
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        })
