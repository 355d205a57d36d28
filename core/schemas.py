"""
MINDGRAPH SCHEMAS - The Shape of a Map

This module defines the data structures owned by the graph engine:
- Position: a point on the float plane
- MapNode: a positioned unit of opaque rich-text content
- MapEdge: a directed, optionally labeled connection between two nodes
- MindMap: the whole document (nodes, edges, layout direction, metadata)
- MapMeta: the listing entry a persistence collaborator returns
- Serialization helpers for persistence and IPC

Design Principles:
1. IMMUTABLE SNAPSHOTS: every struct is frozen and collections are tuples, so a
   MindMap placed in the undo history can never change afterwards. Mutations
   build new structs with msgspec.structs.replace.
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. OPAQUE CONTENT: MapNode.content is passed through unexamined
4. STABLE IDS: ids are uuid4 hex strings, generated once and never reused
5. CAMELCASE WIRE FORMAT: field names are encoded as createdAt,
   layoutDirection, sourceHandle, ... to stay compatible with stored maps
"""
import msgspec
from typing import Optional, Dict, Any, List, Tuple, Mapping, Union
from datetime import datetime, timezone
from enum import Enum
import uuid


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """Generate a new UUID hex string for map/node/edge IDs."""
    return uuid.uuid4().hex


def text_content(text: str) -> str:
    """
    Build the serialized rich-text payload for a single line of plain text.

    The engine never parses content; this is only used to seed new nodes
    with the document shape the editor expects.
    """
    doc = {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": text}]},
        ],
    }
    return msgspec.json.encode(doc).decode("utf-8")


# =============================================================================
# ENUMERATIONS
# =============================================================================

class LayoutDirection(str, Enum):
    """Compass orientation the layered layout arranges nodes toward."""
    DOWN = "DOWN"
    RIGHT = "RIGHT"
    UP = "UP"
    LEFT = "LEFT"

    @property
    def is_vertical(self) -> bool:
        return self in (LayoutDirection.DOWN, LayoutDirection.UP)


# Order used by the "toggle layout direction" action
DIRECTION_CYCLE: Tuple[LayoutDirection, ...] = (
    LayoutDirection.DOWN,
    LayoutDirection.RIGHT,
    LayoutDirection.UP,
    LayoutDirection.LEFT,
)


class HandleSide(str, Enum):
    """Compass-side anchors an edge may attach to."""
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"


# =============================================================================
# GEOMETRY
# =============================================================================

class Position(msgspec.Struct, kw_only=True, frozen=True):
    """A point on the float plane (canvas coordinates, y grows downward)."""
    x: float = 0.0
    y: float = 0.0

    def translated(self, dx: float, dy: float) -> "Position":
        return Position(x=self.x + dx, y=self.y + dy)


PositionLike = Union[Position, Mapping[str, float], Tuple[float, float]]


def to_position(value: PositionLike) -> Position:
    """Coerce a Position, {"x", "y"} mapping or (x, y) pair into a Position."""
    if isinstance(value, Position):
        return value
    if isinstance(value, Mapping):
        return Position(x=float(value["x"]), y=float(value["y"]))
    x, y = value
    return Position(x=float(x), y=float(y))


# =============================================================================
# NODE / EDGE DATA
# =============================================================================

class MapNode(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """
    A positioned unit of content in the map.

    `content` is an opaque serialized rich-text payload. `width` and `height`
    are optional measured sizes; the layout falls back to configured defaults.
    """
    id: str
    content: str = ""
    position: Position = msgspec.field(default_factory=Position)
    width: Optional[float] = None
    height: Optional[float] = None


class NodeDraft(msgspec.Struct, kw_only=True, frozen=True):
    """A node that has not been given an id yet (input to GraphStore.add_node)."""
    content: str = ""
    position: Position = msgspec.field(default_factory=Position)
    width: Optional[float] = None
    height: Optional[float] = None


class MapEdge(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """
    A directed connection between two nodes.

    The engine guarantees source != target and at most one edge per ordered
    (source, target) pair. Handles are HandleSide values when set.
    """
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    label: Optional[str] = None


# Fields a caller may merge into existing nodes/edges. Identity is immutable.
NODE_MUTABLE_FIELDS = frozenset(("content", "position", "width", "height"))
EDGE_MUTABLE_FIELDS = frozenset(("source_handle", "target_handle", "label"))


# =============================================================================
# MAP DOCUMENT
# =============================================================================

class MindMap(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    The full mind-map document.

    Exactly one MindMap is "current" at a time and it is owned by the
    GraphStore. Because it is frozen with tuple collections, the same instance
    can safely be referenced from the undo history and from callers.
    """
    id: str
    name: str
    created_at: str
    updated_at: str
    layout_direction: LayoutDirection = LayoutDirection.RIGHT
    nodes: Tuple[MapNode, ...] = ()
    edges: Tuple[MapEdge, ...] = ()

    def node_ids(self) -> Tuple[str, ...]:
        return tuple(n.id for n in self.nodes)

    def find_node(self, node_id: str) -> Optional[MapNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def find_edge(self, edge_id: str) -> Optional[MapEdge]:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def has_edge_between(self, source: str, target: str) -> bool:
        """True if an edge with exactly this ordered (source, target) exists."""
        return any(e.source == source and e.target == target for e in self.edges)


class MapMeta(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """Listing entry returned by persistence collaborators."""
    file_id: str
    name: str
    updated_at: str


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders, reused across the application
_json_encoder = msgspec.json.Encoder()
_map_decoder = msgspec.json.Decoder(type=MindMap)
_meta_list_decoder = msgspec.json.Decoder(type=List[MapMeta])

_msgpack_encoder = msgspec.msgpack.Encoder()
_msgpack_map_decoder = msgspec.msgpack.Decoder(type=MindMap)


def serialize_map(mind_map: MindMap) -> bytes:
    """Serialize a MindMap to JSON bytes (camelCase field names)."""
    return _json_encoder.encode(mind_map)


def deserialize_map(data: Union[bytes, str]) -> MindMap:
    """
    Deserialize JSON bytes to a MindMap.

    Raises:
        msgspec.ValidationError / msgspec.DecodeError on malformed input
    """
    return _map_decoder.decode(data)


def serialize_map_msgpack(mind_map: MindMap) -> bytes:
    """Serialize a MindMap to msgpack bytes (more compact than JSON)."""
    return _msgpack_encoder.encode(mind_map)


def deserialize_map_msgpack(data: bytes) -> MindMap:
    """Deserialize msgpack bytes to a MindMap."""
    return _msgpack_map_decoder.decode(data)


def serialize_meta_list(entries: List[MapMeta]) -> bytes:
    return _json_encoder.encode(entries)


def deserialize_meta_list(data: bytes) -> List[MapMeta]:
    return _meta_list_decoder.decode(data)


def map_to_builtins(mind_map: MindMap) -> Dict[str, Any]:
    """Convert a MindMap to plain dicts/lists/strings (round-trippable)."""
    return msgspec.to_builtins(mind_map)


def map_from_builtins(data: Mapping[str, Any]) -> MindMap:
    """Build a MindMap from plain structured data (inverse of map_to_builtins)."""
    return msgspec.convert(data, type=MindMap)
