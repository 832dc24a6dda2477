"""
Tool handlers exposed by the Godot tool server.

Operation tools share one implementation (``OperationTool``) driven by an
``OperationSpec`` table; the foreground-run and bridge tools wrap the
supervisor, the project scanner and the bridge host directly.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from godot_tools.bridge_host import BridgeHost
from godot_tools.errors import (
    GodotToolsError,
    error_response,
    find_failure_marker,
    response_from_error,
    text_response,
)
from godot_tools.executor import OperationExecutor
from godot_tools.locator import GodotLocator, is_godot_44_or_later
from godot_tools.parameters import normalize_parameters
from godot_tools.projects import find_godot_projects, project_info
from godot_tools.server import StdioToolServer, ToolHandler
from godot_tools.supervisor import ProcessSupervisor, is_safe_path

logger = logging.getLogger(__name__)

_PROJECT_PATH = {"type": "string", "description": "Path to the Godot project directory"}
_SCENE_PATH = {"type": "string", "description": "Scene file path relative to the project (e.g. scenes/main.tscn)"}

_INVALID_PROJECT_SOLUTIONS = [
    "Ensure the path points to a directory containing a project.godot file",
    "Use list_projects to find valid Godot projects",
]
_UNSAFE_PATH_SOLUTIONS = [
    'Provide valid paths without ".." or other potentially unsafe characters',
]
_NO_PROCESS_SOLUTIONS = [
    "Use run_project to start a Godot project first",
    "Check if the Godot process crashed unexpectedly",
]


@dataclass(frozen=True)
class OperationSpec:
    """Static description of one operations-script entry point."""

    name: str
    operation: str
    description: str
    action: str
    parameters: dict[str, dict]
    required: tuple[str, ...]
    forwarded: tuple[str, ...]
    success: Callable[[dict[str, Any], str], str]
    solutions: tuple[str, ...]
    path_keys: tuple[str, ...] = ()
    must_exist: tuple[str, ...] = ()
    defaults: dict[str, Any] = field(default_factory=dict)
    requires_uids: bool = False


OPERATIONS: tuple[OperationSpec, ...] = (
    OperationSpec(
        name="create_scene",
        operation="create_scene",
        description="Create a new Godot scene file with a root node.",
        action="create scene",
        parameters={
            "projectPath": _PROJECT_PATH,
            "scenePath": _SCENE_PATH,
            "rootNodeType": {"type": "string", "description": "Root node class (default: Node2D)"},
        },
        required=("projectPath", "scenePath"),
        forwarded=("scenePath", "rootNodeType"),
        defaults={"rootNodeType": "Node2D"},
        path_keys=("scenePath",),
        success=lambda a, out: f"Scene created successfully at: {a['scenePath']}\n\nOutput: {out}",
        solutions=(
            "Check if the root node type is valid",
            "Ensure you have write permissions to the scene path",
            "Verify the scene path is valid",
        ),
    ),
    OperationSpec(
        name="add_node",
        operation="add_node",
        description="Add a node to an existing scene.",
        action="add node",
        parameters={
            "projectPath": _PROJECT_PATH,
            "scenePath": _SCENE_PATH,
            "parentNodePath": {"type": "string", "description": "Parent node path (default: root)"},
            "nodeType": {"type": "string", "description": "Node class to instantiate"},
            "nodeName": {"type": "string", "description": "Name of the new node"},
            "properties": {"type": "object", "description": "Properties to set on the node"},
        },
        required=("projectPath", "scenePath", "nodeType", "nodeName"),
        forwarded=("scenePath", "nodeType", "nodeName", "parentNodePath", "properties"),
        path_keys=("scenePath",),
        must_exist=("scenePath",),
        success=lambda a, out: (
            f"Node '{a['nodeName']}' of type '{a['nodeType']}' added successfully "
            f"to '{a['scenePath']}'.\n\nOutput: {out}"
        ),
        solutions=(
            "Check if the node type is valid",
            "Ensure the parent node path exists",
            "Verify the scene file is valid",
        ),
    ),
    OperationSpec(
        name="load_sprite",
        operation="load_sprite",
        description="Load a texture into a Sprite2D, Sprite3D or TextureRect node.",
        action="load sprite",
        parameters={
            "projectPath": _PROJECT_PATH,
            "scenePath": _SCENE_PATH,
            "nodePath": {"type": "string", "description": "Path to the sprite node"},
            "texturePath": {"type": "string", "description": "Texture file relative to the project"},
        },
        required=("projectPath", "scenePath", "nodePath", "texturePath"),
        forwarded=("scenePath", "nodePath", "texturePath"),
        path_keys=("scenePath", "texturePath"),
        must_exist=("scenePath", "texturePath"),
        success=lambda a, out: (
            f"Sprite loaded successfully with texture: {a['texturePath']}\n\nOutput: {out}"
        ),
        solutions=(
            "Check if the node path is correct",
            "Ensure the node is a Sprite2D, Sprite3D, or TextureRect",
            "Verify the texture file is a valid image format",
        ),
    ),
    OperationSpec(
        name="export_mesh_library",
        operation="export_mesh_library",
        description="Export a scene of 3D meshes as a MeshLibrary resource.",
        action="export mesh library",
        parameters={
            "projectPath": _PROJECT_PATH,
            "scenePath": _SCENE_PATH,
            "outputPath": {"type": "string", "description": "Where to write the .res file"},
            "meshItemNames": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Only export these mesh items",
            },
        },
        required=("projectPath", "scenePath", "outputPath"),
        forwarded=("scenePath", "outputPath", "meshItemNames"),
        path_keys=("scenePath", "outputPath"),
        must_exist=("scenePath",),
        success=lambda a, out: f"MeshLibrary exported successfully to: {a['outputPath']}\n\nOutput: {out}",
        solutions=(
            "Check if the scene contains valid 3D meshes",
            "Ensure the output path is valid",
            "Verify the scene file is valid",
        ),
    ),
    OperationSpec(
        name="save_scene",
        operation="save_scene",
        description="Save a scene, optionally under a new path.",
        action="save scene",
        parameters={
            "projectPath": _PROJECT_PATH,
            "scenePath": _SCENE_PATH,
            "newPath": {"type": "string", "description": "Save as a new file instead"},
        },
        required=("projectPath", "scenePath"),
        forwarded=("scenePath", "newPath"),
        path_keys=("scenePath", "newPath"),
        must_exist=("scenePath",),
        success=lambda a, out: (
            f"Scene saved successfully to: {a.get('newPath') or a['scenePath']}\n\nOutput: {out}"
        ),
        solutions=(
            "Check if the scene file is valid",
            "Ensure you have write permissions to the output path",
            "Verify the scene can be properly packed",
        ),
    ),
    OperationSpec(
        name="get_uid",
        operation="get_uid",
        description="Get the UID of a file (Godot 4.4+).",
        action="get UID",
        parameters={
            "projectPath": _PROJECT_PATH,
            "filePath": {"type": "string", "description": "File relative to the project"},
        },
        required=("projectPath", "filePath"),
        forwarded=("filePath",),
        path_keys=("filePath",),
        must_exist=("filePath",),
        requires_uids=True,
        success=lambda a, out: f"UID for {a['filePath']}: {out.strip()}",
        solutions=(
            "Check if the file is a valid Godot resource",
            "Ensure the file path is correct",
        ),
    ),
    OperationSpec(
        name="update_project_uids",
        operation="resave_resources",
        description="Resave every resource so UID references are up to date (Godot 4.4+).",
        action="update project UIDs",
        parameters={"projectPath": _PROJECT_PATH},
        required=("projectPath",),
        forwarded=("projectPath",),
        requires_uids=True,
        success=lambda a, out: f"Project UIDs updated successfully.\n\nOutput: {out}",
        solutions=(
            "Check if the project is valid",
            "Ensure you have write permissions to the project directory",
        ),
    ),
)


def _missing(args: dict[str, Any], keys: tuple[str, ...] | list[str]) -> list[str]:
    return [k for k in keys if args.get(k) in (None, "")]


def _check_project(project_path: str) -> dict[str, Any] | None:
    """Error envelope if the project path is unusable, else None."""
    if not is_safe_path(project_path):
        return error_response("Invalid project path", _UNSAFE_PATH_SOLUTIONS)
    if not (Path(project_path) / "project.godot").exists():
        return error_response(f"Not a valid Godot project: {project_path}", _INVALID_PROJECT_SOLUTIONS)
    return None


class OperationTool(ToolHandler):
    """One-shot headless operation through the operations script."""

    def __init__(self, spec: OperationSpec, executor: OperationExecutor):
        self.spec = spec
        self.executor = executor
        self.name = spec.name
        self.description = spec.description
        self.parameters = spec.parameters
        self.required = list(spec.required)

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        spec = self.spec
        args = normalize_parameters(params)

        missing = _missing(args, spec.required)
        if missing:
            return error_response(
                f"Missing required parameters: {', '.join(missing)}",
                [f"Provide {', '.join(spec.required)}"],
            )

        project_path = args["projectPath"]
        problem = _check_project(project_path)
        if problem:
            return problem

        for key in spec.path_keys:
            if args.get(key) and not is_safe_path(args[key]):
                return error_response("Invalid path", _UNSAFE_PATH_SOLUTIONS)
        for key in spec.must_exist:
            if not (Path(project_path) / args[key]).exists():
                return error_response(f"File does not exist: {args[key]}", [f"Ensure the {key} is correct"])

        payload = dict(spec.defaults)
        payload.update({k: args[k] for k in spec.forwarded if args.get(k) is not None})

        try:
            if spec.requires_uids:
                version = self.executor.locator.get_version()
                if not is_godot_44_or_later(version):
                    return error_response(
                        f"UIDs are only supported in Godot 4.4 or later. Current version: {version}",
                        [
                            "Upgrade to Godot 4.4 or later to use UIDs",
                            "Use resource paths instead of UIDs for this version of Godot",
                        ],
                    )
            result = self.executor.execute(spec.operation, payload, project_path)
        except GodotToolsError as e:
            return response_from_error(f"Failed to {spec.action}", e)

        if find_failure_marker(result.stderr):
            return error_response(f"Failed to {spec.action}: {result.stderr}", list(spec.solutions))
        return text_response(spec.success(args, result.stdout))


class RunProjectTool(ToolHandler):
    name = "run_project"
    description = "Run the Godot project in debug mode and capture its output."
    parameters = {
        "projectPath": _PROJECT_PATH,
        "scene": {"type": "string", "description": "Optional scene to run instead of the main scene"},
    }
    required = ["projectPath"]

    def __init__(self, supervisor: ProcessSupervisor):
        self.supervisor = supervisor

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        args = normalize_parameters(params)
        if not args.get("projectPath"):
            return error_response("Project path is required", ["Provide a valid path to a Godot project directory"])
        problem = _check_project(args["projectPath"])
        if problem:
            return problem

        try:
            self.supervisor.start(args["projectPath"], args.get("scene"))
        except GodotToolsError as e:
            return response_from_error("Failed to run Godot project", e)
        return text_response("Godot project started in debug mode. Use get_debug_output to see output.")


class GetDebugOutputTool(ToolHandler):
    name = "get_debug_output"
    description = "Get the captured output and errors of the running project."

    def __init__(self, supervisor: ProcessSupervisor):
        self.supervisor = supervisor

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        snapshot = self.supervisor.snapshot()
        if not snapshot["active"]:
            return error_response(snapshot["message"], _NO_PROCESS_SOLUTIONS)
        return text_response(json.dumps(
            {"output": snapshot["output"], "errors": snapshot["errors"]}, indent=2,
        ))


class StopProjectTool(ToolHandler):
    name = "stop_project"
    description = "Stop the running project and return its final output."

    def __init__(self, supervisor: ProcessSupervisor):
        self.supervisor = supervisor

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        stopped = self.supervisor.stop()
        if not stopped["stopped"]:
            return error_response(stopped["message"], [
                "Use run_project to start a Godot project first",
                "The process may have already terminated",
            ])
        return text_response(json.dumps({
            "message": stopped["message"],
            "finalOutput": stopped["output"],
            "finalErrors": stopped["errors"],
        }, indent=2))


class GetGodotVersionTool(ToolHandler):
    name = "get_godot_version"
    description = "Get the installed Godot version."

    def __init__(self, locator: GodotLocator):
        self.locator = locator

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            return text_response(self.locator.get_version())
        except GodotToolsError as e:
            return response_from_error("Failed to get Godot version", e)


class LaunchEditorTool(ToolHandler):
    name = "launch_editor"
    description = "Open the Godot editor for a project."
    parameters = {"projectPath": _PROJECT_PATH}
    required = ["projectPath"]

    def __init__(self, supervisor: ProcessSupervisor):
        self.supervisor = supervisor

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        args = normalize_parameters(params)
        if not args.get("projectPath"):
            return error_response("Project path is required", ["Provide a valid path to a Godot project directory"])
        problem = _check_project(args["projectPath"])
        if problem:
            return problem

        try:
            self.supervisor.launch_editor(args["projectPath"])
        except GodotToolsError as e:
            return response_from_error("Failed to launch Godot editor", e)
        return text_response(f"Godot editor launched successfully for project at {args['projectPath']}.")


class ListProjectsTool(ToolHandler):
    name = "list_projects"
    description = "List Godot projects in a directory."
    parameters = {
        "directory": {"type": "string", "description": "Directory to search"},
        "recursive": {"type": "boolean", "description": "Search subdirectories too (default: false)"},
    }
    required = ["directory"]

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        args = normalize_parameters(params)
        directory = args.get("directory")
        if not directory:
            return error_response("Directory is required", [
                "Provide a valid directory path to search for Godot projects",
            ])
        if not is_safe_path(directory):
            return error_response("Invalid directory path", _UNSAFE_PATH_SOLUTIONS)
        if not Path(directory).is_dir():
            return error_response(f"Directory does not exist: {directory}", [
                "Provide a valid directory path that exists on the system",
            ])

        try:
            projects = find_godot_projects(directory, bool(args.get("recursive")))
        except OSError as e:
            logger.error(f"Failed to list projects in {directory}: {e}")
            return error_response(f"Failed to list projects: {e}", [
                "Ensure the directory exists and is accessible",
                "Check if you have permission to read the directory",
            ])
        return text_response(json.dumps(projects, indent=2))


class GetProjectInfoTool(ToolHandler):
    name = "get_project_info"
    description = "Describe a Godot project: name, engine version and file counts."
    parameters = {"projectPath": _PROJECT_PATH}
    required = ["projectPath"]

    def __init__(self, locator: GodotLocator):
        self.locator = locator

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        args = normalize_parameters(params)
        if not args.get("projectPath"):
            return error_response("Project path is required", ["Provide a valid path to a Godot project directory"])
        problem = _check_project(args["projectPath"])
        if problem:
            return problem

        try:
            info = project_info(args["projectPath"], self.locator.get_version())
        except GodotToolsError as e:
            return response_from_error("Failed to get project info", e)
        return text_response(json.dumps(info, indent=2))


class BridgeStatusTool(ToolHandler):
    name = "bridge_status"
    description = "Report whether a Godot editor is connected to the live bridge."

    def __init__(self, host: BridgeHost):
        self.host = host

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        return text_response(json.dumps(self.host.status(), indent=2))


class InvokeRuntimeTool(ToolHandler):
    name = "invoke_runtime_tool"
    description = "Run a tool inside the connected Godot editor through the live bridge."
    parameters = {
        "tool": {"type": "string", "description": "Runtime tool name"},
        "args": {"type": "object", "description": "Arguments for the runtime tool"},
        "timeout": {"type": "number", "description": "Seconds to wait for the result"},
    }
    required = ["tool"]

    def __init__(self, host: BridgeHost):
        self.host = host

    def handle(self, params: dict[str, Any]) -> dict[str, Any]:
        tool = params.get("tool")
        if not tool:
            return error_response("Runtime tool name is required", ["Provide the tool parameter"])
        try:
            result = self.host.invoke_tool(tool, params.get("args") or {}, params.get("timeout"))
        except GodotToolsError as e:
            return response_from_error(f"Runtime tool {tool} failed", e)
        if isinstance(result, str):
            return text_response(result)
        return text_response(json.dumps(result, indent=2))


def register_godot_tools(
    server: StdioToolServer,
    executor: OperationExecutor,
    supervisor: ProcessSupervisor,
    bridge_host: BridgeHost | None = None,
) -> list[str]:
    """Register every handler on the server; returns the tool names."""
    handlers: list[ToolHandler] = [OperationTool(spec, executor) for spec in OPERATIONS]
    handlers += [
        RunProjectTool(supervisor),
        GetDebugOutputTool(supervisor),
        StopProjectTool(supervisor),
        GetGodotVersionTool(executor.locator),
        LaunchEditorTool(supervisor),
        ListProjectsTool(),
        GetProjectInfoTool(executor.locator),
    ]
    if bridge_host is not None:
        handlers += [BridgeStatusTool(bridge_host), InvokeRuntimeTool(bridge_host)]

    for handler in handlers:
        server.register(handler)
    return [h.name for h in handlers]
