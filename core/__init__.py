"""
MINDGRAPH CORE - Central exports for the graph engine.

This module provides access to:
- Data model (MindMap, MapNode, MapEdge, Position, LayoutDirection)
- GraphStore (owned current map, mutation API, undo/redo)
- RelationIndex and cycle diagnostics
- Directional navigation and new-node placement
- LayoutCoordinator and the default layered layout engine
- Editor intents (keyboard actions)
"""

from core.schemas import (
    LayoutDirection,
    HandleSide,
    Position,
    MapNode,
    NodeDraft,
    MapEdge,
    MindMap,
    MapMeta,
    serialize_map,
    deserialize_map,
    map_to_builtins,
    map_from_builtins,
)
from core.graph_store import (
    GraphStore,
    MindGraphError,
    MapNotFoundError,
    MapDecodeError,
)
from core.relations import RelationIndex, root_nodes, detect_cycles, has_cycle
from core.navigation import Direction, nearest_in_direction
from core.placement import avoid_overlap, child_position, sibling_position
from core.layout import (
    LayoutCoordinator,
    LayoutEngine,
    LayeredLayoutEngine,
    LayoutGraph,
)
from core.intents import Action, EditorSession
from core.samples import create_sample_map

__all__ = [
    # Data model
    "LayoutDirection",
    "HandleSide",
    "Position",
    "MapNode",
    "NodeDraft",
    "MapEdge",
    "MindMap",
    "MapMeta",
    "serialize_map",
    "deserialize_map",
    "map_to_builtins",
    "map_from_builtins",
    # Store
    "GraphStore",
    "MindGraphError",
    "MapNotFoundError",
    "MapDecodeError",
    # Queries
    "RelationIndex",
    "root_nodes",
    "detect_cycles",
    "has_cycle",
    "Direction",
    "nearest_in_direction",
    "avoid_overlap",
    "child_position",
    "sibling_position",
    # Layout
    "LayoutCoordinator",
    "LayoutEngine",
    "LayeredLayoutEngine",
    "LayoutGraph",
    # Intents
    "Action",
    "EditorSession",
    "create_sample_map",
]
