"""
Parameter key translation between tool-facing and engine-script naming.

Tools accept camelCase keys (``projectPath``) and, for convenience, the
snake_case spelling of any known key. The operations script running inside
Godot reads snake_case keys (``project_path``). Translation is recursive
over nested maps; lists and scalars are left alone.
"""

from __future__ import annotations

import re
from typing import Any, Union

# Closed set of payload shapes: scalars, ordered lists, string-keyed maps.
ParamValue = Union[str, int, float, bool, None, list["ParamValue"], dict[str, "ParamValue"]]
Params = dict[str, ParamValue]

# snake_case → camelCase for every parameter the tool catalog knows about.
PARAMETER_MAPPINGS: dict[str, str] = {
    "project_path": "projectPath",
    "scene_path": "scenePath",
    "root_node_type": "rootNodeType",
    "parent_node_path": "parentNodePath",
    "node_type": "nodeType",
    "node_name": "nodeName",
    "texture_path": "texturePath",
    "node_path": "nodePath",
    "output_path": "outputPath",
    "mesh_item_names": "meshItemNames",
    "new_path": "newPath",
    "file_path": "filePath",
    "light_type": "lightType",
    "properties": "properties",
    "shadow_enabled": "shadowEnabled",
    "shadow_type": "shadowType",
    "player_type": "playerType",
    "stream_path": "streamPath",
    "bus_name": "busName",
    "volume_db": "volumeDb",
    "send_to": "sendTo",
    "layout_path": "layoutPath",
    "effect_type": "effectType",
    "particle_type": "particleType",
    "one_shot": "oneShot",
    "material_path": "materialPath",
    "region_path": "regionPath",
    "agent_type": "agentType",
    "link_type": "linkType",
    "peer_type": "peerType",
    "max_clients": "maxClients",
    "transfer_mode": "transferMode",
    "spawn_path": "spawnPath",
    "auto_spawn_list": "autoSpawnList",
    "root_path": "rootPath",
    "replication_interval": "replicationInterval",
    "method_name": "methodName",
    "rpc_mode": "rpcMode",
    "call_local": "callLocal",
    "channel": "channel",
    "joint_type": "jointType",
    "node_a": "nodeA",
    "node_b": "nodeB",
    "collision_layer": "collisionLayer",
    "collision_mask": "collisionMask",
    "is_3d": "is3d",
    "target_position": "targetPosition",
    "shape_type": "shapeType",
    "shape_properties": "shapeProperties",
    "animation_player_path": "animationPlayerPath",
    "tree_type": "treeType",
    "animation_tree_path": "animationTreePath",
    "state_name": "stateName",
    "animation_name": "animationName",
    "from_state": "fromState",
    "to_state": "toState",
    "parameter_name": "parameterName",
    "theme_path": "themePath",
    "base_theme": "baseTheme",
    "default_font": "defaultFont",
    "default_font_size": "defaultFontSize",
    "type_name": "typeName",
    "stylebox_path": "styleboxPath",
    "stylebox_type": "styleboxType",
    "anchor_preset": "anchorPreset",
    "layout_mode": "layoutMode",
}

REVERSE_PARAMETER_MAPPINGS: dict[str, str] = {
    camel: snake for snake, camel in PARAMETER_MAPPINGS.items()
}

_UPPER_RE = re.compile(r"[A-Z]")


def camel_to_snake(key: str) -> str:
    """``fooBarBaz`` → ``foo_bar_baz``. Pure; keys without capitals are unchanged."""
    return _UPPER_RE.sub(lambda m: "_" + m.group(0).lower(), key)


def normalize_parameters(params: Any) -> Any:
    """Rewrite known snake_case keys to their camelCase names, recursively."""
    if not isinstance(params, dict):
        return params

    result: Params = {}
    for key, value in params.items():
        normalized_key = key
        if "_" in key and key in PARAMETER_MAPPINGS:
            normalized_key = PARAMETER_MAPPINGS[key]
        result[normalized_key] = normalize_parameters(value) if isinstance(value, dict) else value
    return result


def to_engine_parameters(params: Any) -> Any:
    """Rewrite every key to the snake_case form the operations script reads."""
    if not isinstance(params, dict):
        return params

    result: Params = {}
    for key, value in params.items():
        snake_key = REVERSE_PARAMETER_MAPPINGS.get(key) or camel_to_snake(key)
        result[snake_key] = to_engine_parameters(value) if isinstance(value, dict) else value
    return result
