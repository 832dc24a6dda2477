"""
LangChain adapters for the Godot tool handlers.

Turns registered ToolHandlers into LangChain StructuredTools so an agent
runtime can call them in-process, without going through the stdio server.

Usage:
    from godot_tools.langchain_tools import handler_to_langchain_tool, register_engine_tools

    # Single tool
    lc_tool = handler_to_langchain_tool(run_project_handler)

    # Everything the server knows about
    register_engine_tools(server, tool_registry)
"""

from __future__ import annotations

from typing import Any

from langchain_core.tools import StructuredTool

from godot_tools.errors import response_text
from godot_tools.server import StdioToolServer, ToolHandler


def handler_to_langchain_tool(
    handler: ToolHandler,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that calls a Godot tool handler.

    The tool's argument schema is the handler's JSON schema; the result is
    the flattened text of the handler's content envelope, prefixed with
    ``Error:`` when the handler reported failure. Exceptions escaping the
    handler come back as ``Error calling <tool>: ...`` text.
    """
    schema = handler.get_schema()

    def _call_handler(**kwargs: Any) -> str:
        """Proxy call to the Godot tool handler."""
        try:
            response = handler.handle(kwargs)
            text = response_text(response)
            if response.get("isError"):
                return f"Error: {text}"
            return text
        except Exception as e:
            return f"Error calling {handler.name}: {e}"

    return StructuredTool.from_function(
        func=_call_handler,
        name=handler.name,
        description=description_override or handler.description or handler.name,
        args_schema=schema["inputSchema"],
    )


def build_langchain_tools(server: StdioToolServer) -> list[StructuredTool]:
    return [handler_to_langchain_tool(h) for h in server.handlers]


def register_engine_tools(
    server: StdioToolServer,
    tool_registry: Any,
    domain_tags: dict[str, list[str]] | None = None,
    prompt_instructions: dict[str, str] | None = None,
) -> list[str]:
    """
    Register every handler of the server in an agent tool registry.

    Args:
        server: The StdioToolServer holding the handlers
        tool_registry: Any registry exposing ``register_langchain_tool``
        domain_tags: Optional {tool_name: [tags]} for categorization
        prompt_instructions: Optional {tool_name: instructions} for
                             system prompt injection

    Returns:
        List of registered tool names.
    """
    domain_tags = domain_tags or {}
    prompt_instructions = prompt_instructions or {}
    registered = []

    for handler in server.handlers:
        instructions = prompt_instructions.get(handler.name)
        if not instructions:
            instructions = _auto_prompt_instructions(handler.get_schema())

        tool_registry.register_langchain_tool(
            tool_id=handler.name,
            tool=handler_to_langchain_tool(handler),
            prompt_instructions=instructions,
            domain_tags=domain_tags.get(handler.name, ["godot"]),
        )
        registered.append(handler.name)

    return registered


def _auto_prompt_instructions(schema: dict) -> str:
    """Generate prompt instructions from a tool schema."""
    name = schema.get("name", "unknown")
    description = schema.get("description", "")
    input_schema = schema.get("inputSchema", {})
    params = input_schema.get("properties", {})
    required = set(input_schema.get("required", []))

    lines = [f"## Tool: {name}", description, ""]
    if params:
        lines.append("Parameters:")
        for pname, pinfo in params.items():
            ptype = pinfo.get("type", "any")
            pdesc = pinfo.get("description", "")
            marker = "" if pname in required else ", optional"
            lines.append(f"  - {pname} ({ptype}{marker}): {pdesc}")

    return "\n".join(lines)
