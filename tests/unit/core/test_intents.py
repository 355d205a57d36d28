"""
Unit tests for core/intents.py - key resolution and EditorSession actions
"""
import pytest

from core.graph_store import GraphStore
from core.intents import (
    DEFAULT_KEYBINDS,
    Action,
    EditorSession,
    action_for_key,
    normalize_key,
)
from core.schemas import LayoutDirection


# =============================================================================
# KEY RESOLUTION
# =============================================================================

def test_normalize_key_orders_modifiers():
    assert normalize_key("Z", ctrl=True, shift=True) == "Ctrl+Shift+z"
    assert normalize_key("ArrowUp") == "ArrowUp"
    assert normalize_key("s", ctrl=True, alt=True) == "Ctrl+Alt+s"


@pytest.mark.parametrize("key,ctrl,shift,expected", [
    ("Tab", False, False, Action.CREATE_CHILD_NODE),
    ("Enter", False, False, Action.CREATE_SIBLING_NODE),
    ("z", True, False, Action.UNDO),
    ("Z", True, True, Action.REDO),
    ("d", True, False, Action.TOGGLE_LAYOUT_DIRECTION),
    ("ArrowLeft", False, False, Action.SELECT_PREV_SIBLING),
])
def test_default_bindings(key, ctrl, shift, expected):
    assert action_for_key(key, ctrl=ctrl, shift=shift) is expected


def test_unbound_key_resolves_to_nothing():
    assert action_for_key("q") is None
    assert action_for_key("z") is None


def test_custom_keybinds_replace_defaults():
    keybinds = dict(DEFAULT_KEYBINDS)
    keybinds[Action.UNDO] = "Alt+u"

    assert action_for_key("u", alt=True, keybinds=keybinds) is Action.UNDO
    assert action_for_key("z", ctrl=True, keybinds=keybinds) is None


# =============================================================================
# NODE CREATION
# =============================================================================

@pytest.fixture
def session(store_with_map: GraphStore) -> EditorSession:
    return EditorSession(store_with_map)


def root_id(session: EditorSession) -> str:
    return session.store.current_map.nodes[0].id


@pytest.mark.asyncio
async def test_create_child_connects_selects_and_lays_out(session):
    """
    Verifies:
    - A child node and a parent -> child edge are added
    - The new node becomes the selection
    - The map is relaid out (child one layer to the right of the root)
    """
    root = root_id(session)
    session.select(root)

    assert await session.dispatch(Action.CREATE_CHILD_NODE)

    mind_map = session.store.current_map
    child = session.selected_node_id
    assert len(mind_map.nodes) == 2
    assert [(e.source, e.target) for e in mind_map.edges] == [(root, child)]
    assert session.store.get_node(child).position.x == 260
    assert '"New node"' in session.store.get_node(child).content


@pytest.mark.asyncio
async def test_create_child_without_selection_does_nothing(session):
    assert not await session.dispatch(Action.CREATE_CHILD_NODE)
    assert len(session.store.current_map.nodes) == 1


@pytest.mark.asyncio
async def test_create_sibling_shares_first_parent(session):
    root = root_id(session)
    session.select(root)
    await session.dispatch(Action.CREATE_CHILD_NODE)
    child = session.selected_node_id

    assert await session.dispatch(Action.CREATE_SIBLING_NODE)

    sibling = session.selected_node_id
    assert sibling != child
    assert session.store.relations().parents_of(sibling) == [root]
    assert session.store.relations().siblings_of(child) == [sibling]


@pytest.mark.asyncio
async def test_sibling_of_root_is_independent(session):
    session.select(root_id(session))

    assert await session.dispatch(Action.CREATE_SIBLING_NODE)

    mind_map = session.store.current_map
    assert len(mind_map.nodes) == 2
    assert mind_map.edges == ()


@pytest.mark.asyncio
async def test_sibling_without_selection_selects_first_node(session):
    assert await session.dispatch(Action.CREATE_SIBLING_NODE)

    assert session.selected_node_id == root_id(session)
    assert len(session.store.current_map.nodes) == 1


# =============================================================================
# DELETE / EDIT
# =============================================================================

@pytest.mark.asyncio
async def test_delete_clears_selection(session):
    session.select(root_id(session))
    await session.dispatch(Action.CREATE_CHILD_NODE)
    child = session.selected_node_id

    assert await session.dispatch(Action.DELETE_NODE)

    assert session.selected_node_id is None
    assert session.store.get_node(child) is None
    assert len(session.store.current_map.nodes) == 1


@pytest.mark.asyncio
async def test_delete_of_last_node_reports_no_change(session):
    root = root_id(session)
    session.select(root)
    events = []
    session.store.subscribe(events.append)

    assert not await session.dispatch(Action.DELETE_NODE)

    assert session.selected_node_id == root
    assert session.store.get_node(root) is not None
    assert not session.store.can_undo
    assert events == []


@pytest.mark.asyncio
async def test_editing_swallows_keys_until_escape(session):
    root = root_id(session)
    session.select(root)
    await session.dispatch(Action.EDIT_NODE)
    assert session.editing_node_id == root

    assert not await session.handle_key("Tab")
    assert len(session.store.current_map.nodes) == 1

    assert await session.handle_key("Escape")
    assert session.editing_node_id is None

    assert await session.handle_key("Tab")
    assert len(session.store.current_map.nodes) == 2


@pytest.mark.asyncio
async def test_finish_edit_without_editing_reports_no_change(session):
    assert not await session.dispatch(Action.FINISH_EDIT)


# =============================================================================
# NAVIGATION
# =============================================================================

@pytest.mark.asyncio
async def test_arrow_navigation_on_sample_map(store_with_sample_map):
    """
    root -> research (right), research -> ask (up), ask -> research (down),
    research -> root (left)
    """
    session = EditorSession(store_with_sample_map)
    root, ask, research = (n.id for n in store_with_sample_map.current_map.nodes[:3])
    session.select(root)

    assert await session.dispatch(Action.SELECT_NEXT_SIBLING)
    assert session.selected_node_id == research
    assert await session.dispatch(Action.SELECT_PARENT)
    assert session.selected_node_id == ask
    assert await session.dispatch(Action.SELECT_CHILD)
    assert session.selected_node_id == research
    assert await session.dispatch(Action.SELECT_PREV_SIBLING)
    assert session.selected_node_id == root


@pytest.mark.asyncio
async def test_navigation_starts_from_first_node(store_with_sample_map):
    session = EditorSession(store_with_sample_map)

    assert await session.handle_key("ArrowRight")

    first = store_with_sample_map.current_map.nodes[0]
    assert session.selected_node_id != first.id


@pytest.mark.asyncio
async def test_navigation_restores_last_selection(session):
    root = root_id(session)
    session.select(root)
    session.select(None)

    assert await session.dispatch(Action.SELECT_PARENT)
    assert session.selected_node_id == root


@pytest.mark.asyncio
async def test_navigation_with_nothing_in_direction(session):
    session.select(root_id(session))

    assert not await session.dispatch(Action.SELECT_CHILD)


# =============================================================================
# HISTORY / DIRECTION / VIEW
# =============================================================================

@pytest.mark.asyncio
async def test_undo_redo_report_availability(session):
    assert not await session.dispatch(Action.UNDO)
    assert not await session.dispatch(Action.REDO)

    session.select(root_id(session))
    await session.dispatch(Action.CREATE_CHILD_NODE)

    assert await session.handle_key("z", ctrl=True)
    assert len(session.store.current_map.nodes) == 1
    assert await session.handle_key("Z", ctrl=True, shift=True)
    assert len(session.store.current_map.nodes) == 2


@pytest.mark.asyncio
async def test_toggle_direction_cycles_and_relays(session):
    root = root_id(session)
    session.select(root)
    await session.dispatch(Action.CREATE_CHILD_NODE)
    child = session.selected_node_id

    assert await session.dispatch(Action.TOGGLE_LAYOUT_DIRECTION)

    assert session.store.current_map.layout_direction is LayoutDirection.UP
    assert session.store.get_node(child).position.y == 0
    assert session.store.get_node(root).position.y == 140


@pytest.mark.asyncio
@pytest.mark.parametrize("action", [Action.SAVE, Action.ZOOM_IN, Action.ZOOM_OUT, Action.FIT_VIEW])
async def test_view_actions_are_not_engine_actions(session, action):
    assert not await session.dispatch(action)


@pytest.mark.asyncio
async def test_actions_accept_their_string_values(session):
    session.select(root_id(session))

    assert await session.dispatch("createChildNode")
    assert len(session.store.current_map.nodes) == 2
