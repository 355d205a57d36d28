"""
Unit tests for core/graph_store.py - GraphStore

Tests the owned current map and its mutation API including:
- Map lifecycle (create, load, metadata)
- Node and edge mutations and their rejection rules
- Undo/redo history (checkpoints, boundaries, eviction)
- History-exempt position updates
- Change notification (listeners, event bus, mutation journal)
"""
import random

import pytest

from core.graph_store import GraphStore
from core.schemas import LayoutDirection, MapNode, NodeDraft, Position
from infrastructure.config import EngineConfig, HistoryConfig
from infrastructure.event_bus import EventBus, EventType
from infrastructure.logger import MutationLogger, MutationType


def root_id(store: GraphStore) -> str:
    return store.current_map.nodes[0].id


# =============================================================================
# MAP LIFECYCLE TESTS
# =============================================================================

def test_create_map_has_single_root_at_origin(fresh_store):
    """
    Validate the shape of a freshly created map.

    Verifies:
    - Exactly one node, positioned at the origin
    - No edges, default layout direction RIGHT
    - History reset to one entry, cursor at 0, not dirty
    """
    mind_map = fresh_store.create_map("Ideas")

    assert mind_map is fresh_store.current_map
    assert mind_map.name == "Ideas"
    assert len(mind_map.nodes) == 1
    assert mind_map.nodes[0].position == Position(x=0.0, y=0.0)
    assert mind_map.edges == ()
    assert mind_map.layout_direction == LayoutDirection.RIGHT
    assert fresh_store.history == (mind_map,)
    assert fresh_store.history_index == 0
    assert not fresh_store.is_dirty
    assert not fresh_store.can_undo
    assert not fresh_store.can_redo


def test_create_map_uses_configured_defaults(id_factory, clock):
    """
    Validate that map name and direction come from configuration.

    Verifies:
    - Unnamed maps get default_map_name
    - default_direction is applied
    - Root content carries the configured root label
    """
    config = EngineConfig(default_direction="DOWN", default_map_name="Untitled", root_label="Centre")
    store = GraphStore(config=config, id_factory=id_factory, clock=clock)

    mind_map = store.create_map()

    assert mind_map.name == "Untitled"
    assert mind_map.layout_direction == LayoutDirection.DOWN
    assert "Centre" in mind_map.nodes[0].content


def test_create_map_replaces_current_and_resets_history(store_with_map):
    """
    Validate that create_map discards the previous map and its history.

    Verifies:
    - Old history is gone
    - File id is cleared
    """
    store_with_map.add_node(NodeDraft(), parent_id=root_id(store_with_map))
    store_with_map.mark_saved("file-1")

    fresh = store_with_map.create_map("Second")

    assert store_with_map.history == (fresh,)
    assert store_with_map.current_file_id is None


def test_set_current_map_resets_history_and_dirty(store_with_map, sample_map):
    """
    Validate loading a map verbatim.

    Verifies:
    - The map object is adopted unchanged
    - History is [map] with cursor 0
    - Dirty flag cleared and source id recorded
    """
    store_with_map.add_node(NodeDraft())
    assert store_with_map.is_dirty

    store_with_map.set_current_map(sample_map, "drive-123")

    assert store_with_map.current_map is sample_map
    assert store_with_map.history == (sample_map,)
    assert store_with_map.history_index == 0
    assert not store_with_map.is_dirty
    assert store_with_map.current_file_id == "drive-123"


def test_update_map_renames_without_checkpoint(store_with_map):
    """
    Validate map-level metadata updates.

    Verifies:
    - Name changes, updated_at moves forward
    - No history entry is added
    - Structural fields are not replaceable this way
    """
    before = store_with_map.current_map

    store_with_map.update_map(name="Renamed", nodes=())

    after = store_with_map.current_map
    assert after.name == "Renamed"
    assert after.nodes == before.nodes
    assert after.updated_at > before.updated_at
    assert len(store_with_map.history) == 1
    assert store_with_map.is_dirty


def test_set_dirty_and_mark_saved(store_with_map):
    store_with_map.set_dirty(True)
    assert store_with_map.is_dirty

    store_with_map.mark_saved("abc")
    assert not store_with_map.is_dirty
    assert store_with_map.current_file_id == "abc"


# =============================================================================
# NODE OPERATIONS TESTS
# =============================================================================

def test_add_node_with_parent_creates_edge(store_with_map):
    """
    Validate add_node with an existing parent.

    Verifies:
    - A fresh id is returned and the node is appended
    - An edge parent -> new node is appended with the given handles
    - Exactly one checkpoint is recorded
    """
    parent = root_id(store_with_map)

    new_id = store_with_map.add_node(
        NodeDraft(content="child", position=Position(x=200, y=0)),
        parent_id=parent,
        source_handle="right",
        target_handle="left",
    )

    mind_map = store_with_map.current_map
    assert new_id and new_id != parent
    assert mind_map.find_node(new_id).content == "child"
    assert len(mind_map.edges) == 1
    edge = mind_map.edges[0]
    assert (edge.source, edge.target) == (parent, new_id)
    assert (edge.source_handle, edge.target_handle) == ("right", "left")
    assert len(store_with_map.history) == 2
    assert store_with_map.history_index == 1


def test_add_node_with_missing_parent_adds_no_edge(store_with_map):
    """
    Validate add_node with a parent id that does not exist.

    Verifies:
    - The node is still added
    - No dangling edge is created
    """
    new_id = store_with_map.add_node(NodeDraft(), parent_id="ghost")

    assert store_with_map.get_node(new_id) is not None
    assert store_with_map.current_map.edges == ()


def test_add_node_without_map_returns_empty_id(fresh_store):
    """
    Validate that mutations with no current map are silent no-ops.

    Verifies:
    - add_node returns ""
    - No history is created
    """
    assert fresh_store.add_node(NodeDraft()) == ""
    assert fresh_store.current_map is None
    assert fresh_store.history == ()


def test_add_node_accepts_mapping_and_ignores_draft_id(store_with_map):
    from_dict = store_with_map.add_node({"content": "x", "position": {"x": 5, "y": 6}, "id": "forced"})
    from_node = store_with_map.add_node(MapNode(id="forced", content="y"))

    assert from_dict != "forced"
    assert from_node != "forced"
    assert store_with_map.get_node(from_dict).position == Position(x=5.0, y=6.0)
    assert store_with_map.get_node(from_node).content == "y"


def test_update_node_merges_fields(store_with_map):
    """
    Validate update_node merging.

    Verifies:
    - Given fields change, others are kept
    - id cannot be rewritten
    - A checkpoint is taken
    """
    node_id = root_id(store_with_map)

    store_with_map.update_node(node_id, content="edited", position=(10, 20), id="other")

    node = store_with_map.get_node(node_id)
    assert node.content == "edited"
    assert node.position == Position(x=10.0, y=20.0)
    assert store_with_map.get_node("other") is None
    assert len(store_with_map.history) == 2


def test_update_node_absent_is_noop(store_with_map):
    before = store_with_map.current_map

    store_with_map.update_node("ghost", content="x")

    assert store_with_map.current_map is before
    assert len(store_with_map.history) == 1
    assert not store_with_map.is_dirty


def test_delete_node_removes_incident_edges(store_with_map):
    """
    Validate that deleting a node removes every incident edge atomically.

    Verifies:
    - Incoming and outgoing edges are gone
    - Unrelated edges survive
    """
    root = root_id(store_with_map)
    a = store_with_map.add_node(NodeDraft(), parent_id=root)
    b = store_with_map.add_node(NodeDraft(), parent_id=a)
    c = store_with_map.add_node(NodeDraft(), parent_id=root)
    store_with_map.add_edge(b, c)

    store_with_map.delete_node(a)

    mind_map = store_with_map.current_map
    assert mind_map.find_node(a) is None
    assert [(e.source, e.target) for e in mind_map.edges] == [(root, c), (b, c)]


def test_delete_last_node_is_refused(store_with_map):
    """
    Validate that the sole node of a map cannot be deleted.

    Verifies:
    - The map still has exactly one node
    - No checkpoint is taken for the refusal
    """
    store_with_map.delete_node(root_id(store_with_map))

    assert len(store_with_map.current_map.nodes) == 1
    assert len(store_with_map.history) == 1
    assert not store_with_map.is_dirty


def test_delete_unknown_node_is_noop(store_with_map):
    store_with_map.add_node(NodeDraft())
    history = store_with_map.history

    store_with_map.delete_node("ghost")

    assert store_with_map.history == history


# =============================================================================
# POSITION UPDATES (HISTORY-EXEMPT)
# =============================================================================

def test_update_node_positions_does_not_touch_history(store_with_map):
    """
    Validate that bulk position updates bypass the undo history.

    Verifies:
    - history and history_index are unchanged
    - Positions are merged and the map is dirty
    """
    a = store_with_map.add_node(NodeDraft(), parent_id=root_id(store_with_map))
    history = store_with_map.history
    index = store_with_map.history_index

    for step in range(10):
        store_with_map.update_node_positions({a: Position(x=step, y=step)})

    assert store_with_map.history == history
    assert store_with_map.history_index == index
    assert store_with_map.get_node(a).position == Position(x=9.0, y=9.0)
    assert store_with_map.is_dirty


def test_update_node_positions_accepts_several_shapes_and_skips_unknown(store_with_map):
    root = root_id(store_with_map)
    a = store_with_map.add_node(NodeDraft())

    store_with_map.update_node_positions([(root, (1, 2)), ("ghost", (9, 9))])
    store_with_map.update_node_positions([{"id": a, "position": {"x": 3, "y": 4}}])

    assert store_with_map.get_node(root).position == Position(x=1.0, y=2.0)
    assert store_with_map.get_node(a).position == Position(x=3.0, y=4.0)
    assert store_with_map.get_node("ghost") is None
    assert len(store_with_map.current_map.nodes) == 2


def test_update_node_positions_with_only_unknown_ids_changes_nothing(store_with_map):
    store_with_map.mark_saved("saved")
    before = store_with_map.current_map
    events = []
    store_with_map.subscribe(events.append)

    store_with_map.update_node_positions({"ghost": (1, 1), "gone": (2, 2)})

    assert store_with_map.current_map is before
    assert not store_with_map.is_dirty
    assert events == []


def test_position_updates_are_folded_into_next_checkpoint(store_with_map):
    """
    Validate that undo returns to the laid-out state, not the pre-drag one.

    Verifies:
    - One undo step per discrete mutation
    - The restored map carries positions set after its checkpoint
    """
    root = root_id(store_with_map)
    a = store_with_map.add_node(NodeDraft(), parent_id=root)
    store_with_map.update_node_positions({a: (300, 40)})
    store_with_map.add_node(NodeDraft(), parent_id=root)

    assert len(store_with_map.history) == 3

    store_with_map.undo()

    assert len(store_with_map.current_map.nodes) == 2
    assert store_with_map.get_node(a).position == Position(x=300.0, y=40.0)


# =============================================================================
# EDGE OPERATIONS TESTS
# =============================================================================

def test_add_edge_rejects_self_loop(store_with_map):
    """
    Validate self-loop rejection.

    Verifies:
    - Returns None
    - Edge count and history unchanged
    """
    root = root_id(store_with_map)

    assert store_with_map.add_edge(root, root) is None
    assert store_with_map.current_map.edges == ()
    assert len(store_with_map.history) == 1


def test_add_edge_rejects_duplicate_but_allows_reverse(store_with_map):
    """
    Validate ordered-pair uniqueness.

    Verifies:
    - Second (a, b) returns None, one such edge remains
    - (b, a) is a distinct, permitted edge
    """
    a = root_id(store_with_map)
    b = store_with_map.add_node(NodeDraft())

    first = store_with_map.add_edge(a, b, label="leads to")
    duplicate = store_with_map.add_edge(a, b)
    reverse = store_with_map.add_edge(b, a)

    assert first is not None
    assert duplicate is None
    assert reverse is not None and reverse != first
    pairs = [(e.source, e.target) for e in store_with_map.current_map.edges]
    assert pairs == [(a, b), (b, a)]
    assert store_with_map.get_edge(first).label == "leads to"


def test_add_edge_rejects_missing_endpoint(store_with_map):
    assert store_with_map.add_edge(root_id(store_with_map), "ghost") is None
    assert store_with_map.current_map.edges == ()


def test_update_edge_merges_but_keeps_endpoints(store_with_map):
    """
    Validate edge updates.

    Verifies:
    - Label and handles merge
    - source/target are immutable
    """
    a = root_id(store_with_map)
    b = store_with_map.add_node(NodeDraft())
    edge_id = store_with_map.add_edge(a, b)

    store_with_map.update_edge(edge_id, label="why", target_handle="top", source="ghost")

    edge = store_with_map.get_edge(edge_id)
    assert edge.label == "why"
    assert edge.target_handle == "top"
    assert edge.source == a


def test_delete_edge(store_with_map):
    a = root_id(store_with_map)
    b = store_with_map.add_node(NodeDraft(), parent_id=a)
    edge_id = store_with_map.current_map.edges[0].id

    store_with_map.delete_edge(edge_id)
    store_with_map.delete_edge("ghost")

    assert store_with_map.current_map.edges == ()
    assert store_with_map.get_node(b) is not None
    assert len(store_with_map.history) == 3


def test_edge_events_reach_bus_and_journal(id_factory, clock):
    """
    Validate that edge mutations complete with a bus and journal attached.

    Verifies:
    - add_edge / delete_edge return normally and publish once each
    - Event payloads name the endpoints as source_id / target_id
    - The journal records the same endpoints
    """
    bus = EventBus()
    journal = MutationLogger()
    seen = []
    bus.subscribe(EventType.EDGE_CREATED, seen.append)
    bus.subscribe(EventType.EDGE_DELETED, seen.append)
    store = GraphStore(event_bus=bus, mutation_logger=journal, id_factory=id_factory, clock=clock)
    store.create_map()
    a = root_id(store)
    b = store.add_node(NodeDraft())

    edge_id = store.add_edge(a, b)
    store.delete_edge(edge_id)

    assert store.current_map.edges == ()
    assert [e.type for e in seen] == [EventType.EDGE_CREATED, EventType.EDGE_DELETED]
    for published in seen:
        assert published.source == "graph_store"
        assert published.payload == {"edge_id": edge_id, "source_id": a, "target_id": b}

    journaled = journal.get_events_for_node(b)[-2:]
    assert [e.mutation_type for e in journaled] == [
        MutationType.EDGE_CREATED.value,
        MutationType.EDGE_DELETED.value,
    ]
    assert all((e.source_id, e.target_id) == (a, b) for e in journaled)


# =============================================================================
# LAYOUT DIRECTION TESTS
# =============================================================================

def test_set_layout_direction_checkpoints(store_with_map):
    store_with_map.set_layout_direction("DOWN")

    assert store_with_map.current_map.layout_direction == LayoutDirection.DOWN
    assert len(store_with_map.history) == 2

    store_with_map.undo()
    assert store_with_map.current_map.layout_direction == LayoutDirection.RIGHT


def test_cycle_layout_direction_order(store_with_map):
    """
    Validate the toggle order DOWN -> RIGHT -> UP -> LEFT -> DOWN.
    """
    store_with_map.set_layout_direction(LayoutDirection.DOWN)

    seen = [store_with_map.cycle_layout_direction() for _ in range(4)]

    assert seen == [
        LayoutDirection.RIGHT,
        LayoutDirection.UP,
        LayoutDirection.LEFT,
        LayoutDirection.DOWN,
    ]


# =============================================================================
# UNDO / REDO TESTS
# =============================================================================

def test_undo_redo_at_boundaries_are_noops(store_with_map):
    before = store_with_map.current_map

    store_with_map.undo()
    store_with_map.redo()

    assert store_with_map.current_map is before
    assert store_with_map.history_index == 0
    assert not store_with_map.is_dirty


def test_undo_n_mutations_restores_original_bit_for_bit(store_with_map):
    """
    Validate undo fidelity.

    Verifies:
    - N undos after N checkpointed mutations restore the original map exactly
    - N redos restore the final map exactly
    """
    original = store_with_map.current_map
    root = root_id(store_with_map)

    a = store_with_map.add_node(NodeDraft(content="a"), parent_id=root)
    b = store_with_map.add_node(NodeDraft(content="b"), parent_id=root)
    store_with_map.add_edge(a, b)
    store_with_map.update_node(a, content="a2")
    store_with_map.set_layout_direction("UP")
    store_with_map.delete_node(b)
    final = store_with_map.current_map

    for _ in range(6):
        store_with_map.undo()
    assert store_with_map.current_map == original
    assert not store_with_map.can_undo

    for _ in range(6):
        store_with_map.redo()
    assert store_with_map.current_map == final
    assert not store_with_map.can_redo


def test_undo_marks_dirty(store_with_map):
    store_with_map.add_node(NodeDraft())
    store_with_map.mark_saved("f")

    store_with_map.undo()

    assert store_with_map.is_dirty


def test_new_mutation_drops_redo_tail(store_with_map):
    root = root_id(store_with_map)
    store_with_map.add_node(NodeDraft(content="first"), parent_id=root)
    store_with_map.undo()

    store_with_map.add_node(NodeDraft(content="second"), parent_id=root)

    assert not store_with_map.can_redo
    assert len(store_with_map.history) == 2
    contents = [n.content for n in store_with_map.current_map.nodes[1:]]
    assert contents == ["second"]


def test_history_is_bounded_with_oldest_evicted(id_factory, clock):
    """
    Validate the history retention bound.

    Verifies:
    - History never exceeds the limit
    - The oldest entries are the ones evicted
    - Undo stops at the oldest retained entry
    """
    store = GraphStore(
        config=EngineConfig(history=HistoryConfig(limit=5)),
        id_factory=id_factory,
        clock=clock,
    )
    store.create_map()
    for i in range(10):
        store.add_node(NodeDraft(content=str(i)))

    assert len(store.history) == 5
    assert store.history_index == 4

    for _ in range(10):
        store.undo()

    # Oldest retained entry: root plus nodes "0".."5"
    assert len(store.current_map.nodes) == 7


def test_default_history_limit_is_fifty(store_with_map):
    for i in range(60):
        store_with_map.add_node(NodeDraft(content=str(i)))

    assert store_with_map.history_limit == 50
    assert len(store_with_map.history) == 50


# =============================================================================
# PROPERTY TESTS
# =============================================================================

@pytest.mark.parametrize("seed", range(10))
def test_random_mutations_never_leave_dangling_edges(fresh_store, seed):
    """
    Validate referential integrity under random add/edge/delete sequences.

    Verifies:
    - Every edge references two present nodes after every step
    - The map never loses its last node
    """
    rng = random.Random(seed)
    fresh_store.create_map()

    for _ in range(80):
        ids = list(fresh_store.current_map.node_ids())
        op = rng.random()
        if op < 0.4:
            fresh_store.add_node(NodeDraft(), parent_id=rng.choice(ids + ["ghost"]))
        elif op < 0.7:
            fresh_store.add_edge(rng.choice(ids), rng.choice(ids))
        else:
            fresh_store.delete_node(rng.choice(ids))

        mind_map = fresh_store.current_map
        present = set(mind_map.node_ids())
        assert mind_map.nodes
        for edge in mind_map.edges:
            assert edge.source in present and edge.target in present
            assert edge.source != edge.target
        pairs = [(e.source, e.target) for e in mind_map.edges]
        assert len(pairs) == len(set(pairs))


# =============================================================================
# NOTIFICATION TESTS
# =============================================================================

def test_listener_receives_events_and_can_unsubscribe(store_with_map):
    events = []
    store_with_map.subscribe(events.append)

    node_id = store_with_map.add_node(NodeDraft(), parent_id=root_id(store_with_map))
    store_with_map.unsubscribe(events.append)
    store_with_map.add_node(NodeDraft())

    assert [e.type for e in events] == [EventType.NODE_CREATED]
    assert events[0].payload["node_id"] == node_id
    assert events[0].source == "graph_store"


def test_failing_listener_does_not_break_mutation(store_with_map):
    def broken(event):
        raise RuntimeError("listener bug")

    store_with_map.subscribe(broken)

    node_id = store_with_map.add_node(NodeDraft())

    assert store_with_map.get_node(node_id) is not None


def test_events_published_to_injected_bus(id_factory, clock):
    bus = EventBus()
    seen = []
    bus.subscribe_all(seen.append)
    store = GraphStore(event_bus=bus, id_factory=id_factory, clock=clock)

    store.create_map()
    store.add_node(NodeDraft())
    store.update_node_positions({store.current_map.nodes[0].id: (1, 1)})
    store.undo()

    assert [e.type for e in seen] == [
        EventType.MAP_CREATED,
        EventType.NODE_CREATED,
        EventType.POSITIONS_UPDATED,
        EventType.HISTORY_MOVED,
    ]


def test_mutation_journal_records_applied_mutations(id_factory, clock):
    journal = MutationLogger()
    store = GraphStore(mutation_logger=journal, id_factory=id_factory, clock=clock)

    store.create_map()
    root = store.current_map.nodes[0].id
    child = store.add_node(NodeDraft(), parent_id=root)
    store.add_edge(child, child)          # rejected, not journaled
    store.undo()

    types = [e.mutation_type for e in journal.get_recent_events()]
    assert types == [
        MutationType.MAP_CREATED.value,
        MutationType.NODE_CREATED.value,
        MutationType.UNDO.value,
    ]
    created = journal.get_events_by_type(MutationType.NODE_CREATED.value)[0]
    assert created.node_id == child
    assert created.source_id == root


def test_relations_built_from_current_snapshot(store_with_map):
    root = root_id(store_with_map)
    child = store_with_map.add_node(NodeDraft(), parent_id=root)

    relations = store_with_map.relations()

    assert relations.children_of(root) == [child]
    assert relations.parents_of(child) == [root]


def test_relations_without_map_is_empty(fresh_store):
    assert fresh_store.relations().parents_of("x") == []
