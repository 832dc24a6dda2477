"""
Godot Tools — drive a Godot engine from an external controller.

Architecture:
    ┌──────────────┐   stdio JSON-RPC   ┌──────────────┐   one-shot CLI   ┌──────────────┐
    │  Controller  │ ────────────────── │  Tool Server │ ───────────────► │ godot        │
    │ (agent / IDE)│                    │  (this pkg)  │   foreground run │ --headless   │
    └──────────────┘                    └──────┬───────┘ ───────────────► │ godot -d     │
                                               │                          └──────────────┘
                                               │ TCP, JSON lines   ┌─────────────────────┐
                                               └────────────────── │ BridgeClient inside │
                                                    (BridgeHost)   │ the running editor  │
                                                                   └─────────────────────┘

One-shot operations go through the OperationExecutor: parameters are
translated to the operations script's snake_case keys, serialized to JSON,
shell-quoted and passed to a blocking headless Godot invocation.

The ProcessSupervisor owns the single foreground run (``godot -d``) and its
captured output.

The BridgeClient runs inside the editor, ticked from its frame loop, and
keeps a reconnecting connection to the controller's BridgeHost.
"""

from godot_tools.bridge_client import BridgeClient
from godot_tools.bridge_host import BridgeHost
from godot_tools.config import GodotConfig
from godot_tools.executor import OperationExecutor, OperationResult
from godot_tools.locator import GodotLocator
from godot_tools.server import StdioToolServer, ToolHandler
from godot_tools.supervisor import ProcessSupervisor


# LangChain is only needed by agent integrations; lazy import keeps the server standalone
def handler_to_langchain_tool(*args, **kwargs):
    from godot_tools.langchain_tools import handler_to_langchain_tool as _impl
    return _impl(*args, **kwargs)


def register_engine_tools(*args, **kwargs):
    from godot_tools.langchain_tools import register_engine_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "BridgeClient",
    "BridgeHost",
    "GodotConfig",
    "GodotLocator",
    "OperationExecutor",
    "OperationResult",
    "ProcessSupervisor",
    "StdioToolServer",
    "ToolHandler",
    "handler_to_langchain_tool",
    "register_engine_tools",
]
