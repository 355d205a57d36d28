"""
MINDGRAPH GRAPH STORE - The Owner of the Current Map

This is the most critical file in the system. It owns the one "current"
MindMap, exposes the whole mutation API, and keeps the linear undo/redo
history. Every other component reads a snapshot from here and writes back
through these methods.

Architecture (Snapshot + Cursor):
  Caller (keyboard intents, canvas, layout)
  - Calls: store.add_node(draft, parent_id), store.undo(), ...

  Store (This File)
  - _current_map: MindMap          (frozen, replaced on every mutation)
  - _history: List[MindMap]        (immutable snapshots, bounded)
  - _history_index: int            (cursor; history[index] is the state
                                    undo/redo last landed on)

  Observers
  - EventBus (typed GraphEvent), plain callbacks, MutationLogger journal

History Model:
- A checkpoint is taken immediately BEFORE every discrete mutation. It drops
  the redo tail and makes the entry under the cursor equal the pre-mutation
  map; after the mutation the resulting map is appended so redo can return
  to it.
- update_node_positions never touches the history (continuous drag / layout
  streaming must not flood the undo stack). Its effect is folded into the
  cursor's entry by the next checkpoint, so undo keeps laid-out positions.
- The history holds at most `config.history.limit` entries; the oldest is
  evicted first.

Error Philosophy:
  Invalid mutations (self-loop, duplicate ordered edge, deleting the last
  node, no current map) are rejected by returning None / "" or doing nothing.
  They are logged at DEBUG and never raised.

Thread Safety:
  NOT thread-safe. The store is mutated by one logical actor (the UI event
  loop); every operation runs to completion before the next one starts.
"""
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union, Any

import msgspec

from core.schemas import (
    DIRECTION_CYCLE,
    EDGE_MUTABLE_FIELDS,
    NODE_MUTABLE_FIELDS,
    LayoutDirection,
    MapEdge,
    MapNode,
    MindMap,
    NodeDraft,
    Position,
    PositionLike,
    generate_id,
    now_utc,
    text_content,
    to_position,
)
from core.relations import RelationIndex
from infrastructure.config import EngineConfig
from infrastructure.event_bus import EventBus, EventType, GraphEvent, make_event
from infrastructure.logger import MutationLogger, MutationType


logger = logging.getLogger("mindgraph.graph_store")


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class MindGraphError(Exception):
    """Base exception for the collaborator layer (persistence, loading)."""
    pass


class MapNotFoundError(MindGraphError):
    """Raised when a persisted map id is unknown."""
    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"Map not found: {file_id}")


class MapDecodeError(MindGraphError):
    """Raised when a persisted payload cannot be decoded into a MindMap."""
    pass


Listener = Callable[[GraphEvent], None]
PositionUpdates = Union[
    Mapping[str, PositionLike],
    Iterable[Union[Tuple[str, PositionLike], Mapping[str, Any]]],
]


# =============================================================================
# GRAPH STORE
# =============================================================================

class GraphStore:
    """
    Owned-state container for the current mind map.

    Usage:
        store = GraphStore()
        store.create_map("Ideas")

        root_id = store.current_map.nodes[0].id
        child_id = store.add_node(NodeDraft(content="..."), parent_id=root_id)
        store.add_edge(child_id, root_id)      # reverse edge is allowed

        store.undo()
        store.redo()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        event_bus: Optional[EventBus] = None,
        mutation_logger: Optional[MutationLogger] = None,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize a store with no current map.

        Args:
            config: Engine tunables (history bound, default direction, labels)
            event_bus: Optional bus that receives a GraphEvent per mutation
            mutation_logger: Optional journal of applied mutations
            id_factory: Id generator (uuid4 hex by default). Must never repeat.
            clock: Timestamp source for createdAt/updatedAt
        """
        self._config = config or EngineConfig()
        self._event_bus = event_bus
        self._journal = mutation_logger
        self._new_id = id_factory or generate_id
        self._now = clock or now_utc

        self._current_map: Optional[MindMap] = None
        self._current_file_id: Optional[str] = None
        self._dirty: bool = False

        self._history: List[MindMap] = []
        self._history_index: int = -1

        self._listeners: List[Listener] = []

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def current_map(self) -> Optional[MindMap]:
        """The current snapshot. Frozen; safe to hold on to."""
        return self._current_map

    @property
    def current_file_id(self) -> Optional[str]:
        """Persistence id of the current map, if it was loaded or saved."""
        return self._current_file_id

    @property
    def is_dirty(self) -> bool:
        """True when the map changed since it was created, loaded or saved."""
        return self._dirty

    @property
    def history(self) -> Tuple[MindMap, ...]:
        return tuple(self._history)

    @property
    def history_index(self) -> int:
        return self._history_index

    @property
    def history_limit(self) -> int:
        return self._config.history.limit

    @property
    def can_undo(self) -> bool:
        return self._history_index > 0

    @property
    def can_redo(self) -> bool:
        return self._history_index < len(self._history) - 1

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def subscribe(self, listener: Listener) -> None:
        """Register a callback invoked with a GraphEvent after each change."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, event_type: EventType, **payload: Any) -> None:
        event = make_event(event_type, "graph_store", **payload)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Store listener failed on {event_type.value}: {e}", exc_info=True)

        if self._event_bus is not None:
            self._event_bus.publish(event)

    def _record(self, mutation_type: MutationType, **fields: Any) -> None:
        if self._journal is None:
            return
        map_id = self._current_map.id if self._current_map else None
        self._journal.record(
            mutation_type,
            map_id=map_id,
            history_index=self._history_index,
            **fields,
        )

    # =========================================================================
    # MAP LIFECYCLE
    # =========================================================================

    def _empty_map(self, name: Optional[str]) -> MindMap:
        timestamp = self._now()
        root = MapNode(
            id=self._new_id(),
            content=text_content(self._config.root_label),
            position=Position(x=0.0, y=0.0),
        )
        return MindMap(
            id=self._new_id(),
            name=name or self._config.default_map_name,
            created_at=timestamp,
            updated_at=timestamp,
            layout_direction=LayoutDirection(self._config.default_direction),
            nodes=(root,),
            edges=(),
        )

    def _reset(self, mind_map: MindMap, file_id: Optional[str]) -> None:
        self._current_map = mind_map
        self._current_file_id = file_id
        self._dirty = False
        self._history = [mind_map]
        self._history_index = 0

    def create_map(self, name: Optional[str] = None) -> MindMap:
        """
        Replace the current map with a fresh one.

        The new map has exactly one root node at the origin, the configured
        default layout direction and no edges. History is reset to a single
        entry. Confirming the discard of unsaved work is the caller's job.
        """
        mind_map = self._empty_map(name)
        self._reset(mind_map, None)

        logger.debug(f"Created map {mind_map.id} ({mind_map.name!r})")
        self._record(MutationType.MAP_CREATED, node_id=mind_map.nodes[0].id)
        self._publish(EventType.MAP_CREATED, map_id=mind_map.id, name=mind_map.name)
        return mind_map

    def set_current_map(self, mind_map: MindMap, source_id: Optional[str] = None) -> None:
        """
        Replace the current map verbatim (e.g. after loading from storage).

        History is reset to a single entry equal to the loaded map and the
        dirty flag is cleared.

        Args:
            mind_map: The map to adopt
            source_id: Persistence file id the map came from, if any
        """
        self._reset(mind_map, source_id)

        logger.debug(f"Loaded map {mind_map.id} from {source_id or 'memory'}")
        self._record(MutationType.MAP_LOADED, detail=source_id or "")
        self._publish(EventType.MAP_LOADED, map_id=mind_map.id, file_id=source_id)

    def update_map(self, **fields: Any) -> None:
        """
        Merge map-level metadata (name, ...) without a history checkpoint.

        Structure fields (nodes, edges, id, created_at) cannot be replaced
        through this method; use the node/edge API or set_current_map.
        """
        if self._current_map is None:
            return

        allowed = {k: v for k, v in fields.items() if k in ("name",)}
        ignored = set(fields) - set(allowed)
        if ignored:
            logger.debug(f"update_map ignoring fields: {sorted(ignored)}")
        if not allowed:
            return

        self._commit(msgspec.structs.replace(self._current_map, **allowed))
        self._record(MutationType.MAP_UPDATED, detail=",".join(sorted(allowed)))
        self._publish(EventType.MAP_UPDATED, fields=sorted(allowed))

    def set_dirty(self, dirty: bool) -> None:
        """Set the dirty flag (persistence clears it after a successful save)."""
        self._dirty = dirty

    def mark_saved(self, file_id: str) -> None:
        """Record the persistence id the current map was saved under."""
        self._current_file_id = file_id
        self._dirty = False

    # =========================================================================
    # HISTORY
    # =========================================================================

    def checkpoint(self) -> None:
        """
        Take a history snapshot of the current map before a mutation.

        Drops any redo tail. Changes made since the cursor's entry without a
        checkpoint (position updates, metadata) are folded into that entry,
        so each discrete mutation costs exactly one undo step.
        """
        if self._current_map is None:
            return

        del self._history[self._history_index + 1:]
        if not self._history:
            self._push(self._current_map)
        elif self._history[-1] is not self._current_map:
            self._history[-1] = self._current_map

    def _push(self, mind_map: MindMap) -> None:
        self._history.append(mind_map)
        while len(self._history) > self.history_limit:
            self._history.pop(0)
        self._history_index = len(self._history) - 1

    def _commit(self, mind_map: MindMap, checkpointed: bool = False) -> None:
        """Install a new current map, stamping updated_at and the dirty flag."""
        mind_map = msgspec.structs.replace(mind_map, updated_at=self._now())
        self._current_map = mind_map
        self._dirty = True
        if checkpointed:
            self._push(mind_map)

    def undo(self) -> None:
        """Step the history cursor back one entry. No-op at the oldest entry."""
        if self._history_index <= 0:
            return

        self._history_index -= 1
        self._current_map = self._history[self._history_index]
        self._dirty = True

        self._record(MutationType.UNDO)
        self._publish(EventType.HISTORY_MOVED, action="undo", history_index=self._history_index)

    def redo(self) -> None:
        """Step the history cursor forward one entry. No-op at the newest entry."""
        if self._history_index >= len(self._history) - 1:
            return

        self._history_index += 1
        self._current_map = self._history[self._history_index]
        self._dirty = True

        self._record(MutationType.REDO)
        self._publish(EventType.HISTORY_MOVED, action="redo", history_index=self._history_index)

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================

    def get_node(self, node_id: str) -> Optional[MapNode]:
        if self._current_map is None:
            return None
        return self._current_map.find_node(node_id)

    def add_node(
        self,
        draft: Union[NodeDraft, MapNode, Mapping[str, Any], None] = None,
        parent_id: Optional[str] = None,
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None,
    ) -> str:
        """
        Append a node with a freshly generated id.

        If `parent_id` refers to an existing node, an edge parent -> new node
        is appended as well (with the given handles).

        Args:
            draft: Content/position/size of the node. A MapNode's id is ignored.
            parent_id: Optional node to connect from
            source_handle: Anchor on the parent side of the new edge
            target_handle: Anchor on the new node's side of the edge

        Returns:
            The new node id, or "" when there is no current map
        """
        current = self._current_map
        if current is None:
            logger.debug("add_node ignored: no current map")
            return ""

        fields = _draft_fields(draft)

        self.checkpoint()

        node = MapNode(id=self._new_id(), **fields)
        edges = current.edges
        edge_id = None
        if parent_id is not None and current.find_node(parent_id) is not None:
            edge_id = self._new_id()
            edges = edges + (MapEdge(
                id=edge_id,
                source=parent_id,
                target=node.id,
                source_handle=source_handle,
                target_handle=target_handle,
            ),)

        self._commit(
            msgspec.structs.replace(current, nodes=current.nodes + (node,), edges=edges),
            checkpointed=True,
        )

        self._record(MutationType.NODE_CREATED, node_id=node.id, source_id=parent_id, edge_id=edge_id)
        self._publish(EventType.NODE_CREATED, node_id=node.id, parent_id=parent_id, edge_id=edge_id)
        return node.id

    def update_node(self, node_id: str, **fields: Any) -> None:
        """
        Merge fields into a node (content, position, width, height).

        No-op if the node does not exist. `id` cannot be changed.
        """
        current = self._current_map
        if current is None or current.find_node(node_id) is None:
            logger.debug(f"update_node ignored: unknown node {node_id}")
            return

        updates = _node_updates(fields)
        if not updates:
            return

        self.checkpoint()

        nodes = tuple(
            msgspec.structs.replace(n, **updates) if n.id == node_id else n
            for n in current.nodes
        )
        self._commit(msgspec.structs.replace(current, nodes=nodes), checkpointed=True)

        self._record(MutationType.NODE_UPDATED, node_id=node_id, detail=",".join(sorted(updates)))
        self._publish(EventType.NODE_UPDATED, node_id=node_id, fields=sorted(updates))

    def delete_node(self, node_id: str) -> None:
        """
        Remove a node and every edge incident to it, atomically.

        Refused (no-op, no checkpoint) when the node is the last one in the
        map. Unknown ids are a no-op.
        """
        current = self._current_map
        if current is None or current.find_node(node_id) is None:
            return
        if len(current.nodes) <= 1:
            logger.debug(f"delete_node refused: {node_id} is the last node")
            return

        self.checkpoint()

        removed_edges = [e.id for e in current.edges if e.source == node_id or e.target == node_id]
        self._commit(
            msgspec.structs.replace(
                current,
                nodes=tuple(n for n in current.nodes if n.id != node_id),
                edges=tuple(e for e in current.edges if e.source != node_id and e.target != node_id),
            ),
            checkpointed=True,
        )

        self._record(MutationType.NODE_DELETED, node_id=node_id, count=len(removed_edges))
        self._publish(EventType.NODE_DELETED, node_id=node_id, removed_edge_ids=removed_edges)

    def update_node_positions(self, positions: PositionUpdates) -> None:
        """
        Bulk-merge node positions WITHOUT a history checkpoint.

        Used for live drag feedback and for applying layout results. Ids that
        no longer exist are skipped silently, so a stale layout result can
        only move nodes, never resurrect or corrupt structure.

        Args:
            positions: {id: position}, [(id, position)], or
                       [{"id": ..., "position": ...}]
        """
        current = self._current_map
        if current is None:
            return

        position_map = _position_map(positions)
        if not position_map:
            return

        moved = 0
        nodes = []
        for node in current.nodes:
            new_position = position_map.get(node.id)
            if new_position is None:
                nodes.append(node)
            else:
                nodes.append(msgspec.structs.replace(node, position=new_position))
                moved += 1

        skipped = len(position_map) - moved
        if skipped:
            logger.debug(f"update_node_positions skipped {skipped} unknown id(s)")
        if moved == 0:
            return

        self._commit(msgspec.structs.replace(current, nodes=tuple(nodes)))

        self._record(MutationType.POSITIONS_UPDATED, count=moved)
        self._publish(EventType.POSITIONS_UPDATED, node_ids=[n for n in position_map if current.find_node(n)])

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def get_edge(self, edge_id: str) -> Optional[MapEdge]:
        if self._current_map is None:
            return None
        return self._current_map.find_edge(edge_id)

    def add_edge(
        self,
        source: str,
        target: str,
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None,
        label: Optional[str] = None,
    ) -> Optional[str]:
        """
        Connect two nodes.

        Returns None (no mutation, no checkpoint) for a self-loop, for an
        ordered (source, target) pair that already has an edge, or when an
        endpoint is missing. The reverse direction is a distinct edge.

        Returns:
            The new edge id, or None if rejected
        """
        current = self._current_map
        if current is None:
            return None

        if source == target:
            logger.debug(f"add_edge rejected: self-loop on {source}")
            return None
        if current.has_edge_between(source, target):
            logger.debug(f"add_edge rejected: duplicate {source} -> {target}")
            return None
        if current.find_node(source) is None or current.find_node(target) is None:
            logger.debug(f"add_edge rejected: missing endpoint {source} -> {target}")
            return None

        self.checkpoint()

        edge = MapEdge(
            id=self._new_id(),
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
            label=label,
        )
        self._commit(msgspec.structs.replace(current, edges=current.edges + (edge,)), checkpointed=True)

        self._record(MutationType.EDGE_CREATED, edge_id=edge.id, source_id=source, target_id=target)
        self._publish(EventType.EDGE_CREATED, edge_id=edge.id, source_id=source, target_id=target)
        return edge.id

    def update_edge(self, edge_id: str, **fields: Any) -> None:
        """
        Merge fields into an edge (source_handle, target_handle, label).

        Endpoints are immutable: reconnecting is delete_edge + add_edge so the
        self-loop and duplicate rules cannot be bypassed. No-op if absent.
        """
        current = self._current_map
        if current is None or current.find_edge(edge_id) is None:
            logger.debug(f"update_edge ignored: unknown edge {edge_id}")
            return

        updates = {k: v for k, v in fields.items() if k in EDGE_MUTABLE_FIELDS}
        ignored = set(fields) - set(updates)
        if ignored:
            logger.debug(f"update_edge ignoring fields: {sorted(ignored)}")
        if not updates:
            return

        self.checkpoint()

        edges = tuple(
            msgspec.structs.replace(e, **updates) if e.id == edge_id else e
            for e in current.edges
        )
        self._commit(msgspec.structs.replace(current, edges=edges), checkpointed=True)

        self._record(MutationType.EDGE_UPDATED, edge_id=edge_id, detail=",".join(sorted(updates)))
        self._publish(EventType.EDGE_UPDATED, edge_id=edge_id, fields=sorted(updates))

    def delete_edge(self, edge_id: str) -> None:
        """Remove an edge. No-op if absent."""
        current = self._current_map
        if current is None:
            return
        edge = current.find_edge(edge_id)
        if edge is None:
            return

        self.checkpoint()

        self._commit(
            msgspec.structs.replace(current, edges=tuple(e for e in current.edges if e.id != edge_id)),
            checkpointed=True,
        )

        self._record(MutationType.EDGE_DELETED, edge_id=edge_id, source_id=edge.source, target_id=edge.target)
        self._publish(EventType.EDGE_DELETED, edge_id=edge_id, source_id=edge.source, target_id=edge.target)

    # =========================================================================
    # LAYOUT DIRECTION
    # =========================================================================

    def set_layout_direction(self, direction: Union[LayoutDirection, str]) -> None:
        """
        Change the map's layout direction (checkpointed).

        Does not relayout; compose with LayoutCoordinator.apply_layout.
        """
        current = self._current_map
        if current is None:
            return

        direction = LayoutDirection(direction)

        self.checkpoint()
        self._commit(msgspec.structs.replace(current, layout_direction=direction), checkpointed=True)

        self._record(MutationType.DIRECTION_CHANGED, detail=direction.value)
        self._publish(EventType.LAYOUT_DIRECTION_CHANGED, direction=direction.value)

    def cycle_layout_direction(self) -> Optional[LayoutDirection]:
        """Advance DOWN -> RIGHT -> UP -> LEFT -> DOWN and return the new direction."""
        current = self._current_map
        if current is None:
            return None

        index = DIRECTION_CYCLE.index(current.layout_direction)
        next_direction = DIRECTION_CYCLE[(index + 1) % len(DIRECTION_CYCLE)]
        self.set_layout_direction(next_direction)
        return next_direction

    # =========================================================================
    # DERIVED VIEWS
    # =========================================================================

    def relations(self) -> RelationIndex:
        """Build a fresh RelationIndex from the current snapshot (not cached)."""
        if self._current_map is None:
            return RelationIndex.build((), ())
        return RelationIndex.build(self._current_map.nodes, self._current_map.edges)

    def __repr__(self) -> str:
        if self._current_map is None:
            return "GraphStore(no map)"
        return (
            f"GraphStore(nodes={len(self._current_map.nodes)}, "
            f"edges={len(self._current_map.edges)}, "
            f"history={self._history_index + 1}/{len(self._history)})"
        )


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _draft_fields(draft: Union[NodeDraft, MapNode, Mapping[str, Any], None]) -> Dict[str, Any]:
    if draft is None:
        return {}
    if isinstance(draft, (NodeDraft, MapNode)):
        source = {f: getattr(draft, f) for f in NODE_MUTABLE_FIELDS}
    else:
        source = {k: v for k, v in draft.items() if k in NODE_MUTABLE_FIELDS}
    return _node_updates(source)


def _node_updates(fields: Mapping[str, Any]) -> Dict[str, Any]:
    updates = {}
    for key, value in fields.items():
        if key not in NODE_MUTABLE_FIELDS:
            logger.debug(f"Ignoring node field {key!r}")
            continue
        if key == "position":
            value = to_position(value)
        updates[key] = value
    return updates


def _position_map(positions: PositionUpdates) -> Dict[str, Position]:
    if isinstance(positions, Mapping):
        return {node_id: to_position(p) for node_id, p in positions.items()}

    result: Dict[str, Position] = {}
    for item in positions:
        if isinstance(item, Mapping):
            result[item["id"]] = to_position(item["position"])
        else:
            node_id, position = item
            result[node_id] = to_position(position)
    return result
