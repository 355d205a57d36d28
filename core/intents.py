"""
MINDGRAPH INTENTS - Keyboard Actions Composed From Engine Operations

The keyboard collaborator resolves raw key presses to a fixed set of named
actions. EditorSession carries the selection state an editor keeps next to
the map (selected / last selected / editing node) and turns each action into
GraphStore, RelationIndex, navigation, placement and layout calls.

Key strings use the "Ctrl+Shift+z" form: modifiers in Ctrl, Shift, Alt order,
then the key. Single-character keys are compared case-insensitively.
"""
import logging
from enum import Enum
from typing import Dict, Mapping, Optional, Union

from core.graph_store import GraphStore
from core.layout import LayoutCoordinator
from core.navigation import Direction, nearest_in_direction
from core.placement import avoid_overlap, child_position, overlap_axis_for, sibling_position
from core.schemas import MapNode, NodeDraft, text_content


logger = logging.getLogger("mindgraph.intents")


class Action(str, Enum):
    CREATE_CHILD_NODE = "createChildNode"
    CREATE_SIBLING_NODE = "createSiblingNode"
    DELETE_NODE = "deleteNode"
    EDIT_NODE = "editNode"
    FINISH_EDIT = "finishEdit"
    SELECT_PARENT = "selectParent"
    SELECT_CHILD = "selectChild"
    SELECT_PREV_SIBLING = "selectPrevSibling"
    SELECT_NEXT_SIBLING = "selectNextSibling"
    UNDO = "undo"
    REDO = "redo"
    SAVE = "save"
    ZOOM_IN = "zoomIn"
    ZOOM_OUT = "zoomOut"
    FIT_VIEW = "fitView"
    TOGGLE_LAYOUT_DIRECTION = "toggleLayoutDirection"


DEFAULT_KEYBINDS: Dict[Action, str] = {
    Action.CREATE_CHILD_NODE: "Tab",
    Action.CREATE_SIBLING_NODE: "Enter",
    Action.DELETE_NODE: "Delete",
    Action.EDIT_NODE: "F2",
    Action.FINISH_EDIT: "Escape",
    Action.SELECT_PARENT: "ArrowUp",
    Action.SELECT_CHILD: "ArrowDown",
    Action.SELECT_PREV_SIBLING: "ArrowLeft",
    Action.SELECT_NEXT_SIBLING: "ArrowRight",
    Action.UNDO: "Ctrl+z",
    Action.REDO: "Ctrl+Shift+z",
    Action.SAVE: "Ctrl+s",
    Action.ZOOM_IN: "Ctrl+=",
    Action.ZOOM_OUT: "Ctrl+-",
    Action.FIT_VIEW: "Ctrl+0",
    Action.TOGGLE_LAYOUT_DIRECTION: "Ctrl+d",
}

# Handled by the rendering collaborator; the engine has nothing to do
VIEW_ACTIONS = frozenset((Action.SAVE, Action.ZOOM_IN, Action.ZOOM_OUT, Action.FIT_VIEW))

_NAVIGATION = {
    Action.SELECT_PARENT: Direction.UP,
    Action.SELECT_CHILD: Direction.DOWN,
    Action.SELECT_PREV_SIBLING: Direction.LEFT,
    Action.SELECT_NEXT_SIBLING: Direction.RIGHT,
}


def _canonical(binding: str) -> str:
    *modifiers, key = binding.split("+")
    if len(key) == 1:
        key = key.lower()
    return "+".join([*modifiers, key])


def normalize_key(key: str, ctrl: bool = False, shift: bool = False, alt: bool = False) -> str:
    """Render a key press as a binding string, e.g. ("Z", ctrl, shift) -> "Ctrl+Shift+z"."""
    parts = []
    if ctrl:
        parts.append("Ctrl")
    if shift:
        parts.append("Shift")
    if alt:
        parts.append("Alt")
    parts.append(key.lower() if len(key) == 1 else key)
    return "+".join(parts)


def action_for_key(
    key: str,
    ctrl: bool = False,
    shift: bool = False,
    alt: bool = False,
    keybinds: Optional[Mapping[Action, str]] = None,
) -> Optional[Action]:
    """Resolve a key press to its bound action, or None."""
    pressed = normalize_key(key, ctrl, shift, alt)
    for action, binding in (keybinds or DEFAULT_KEYBINDS).items():
        if _canonical(binding) == pressed:
            return Action(action)
    return None


# =============================================================================
# EDITOR SESSION
# =============================================================================

class EditorSession:
    """
    Selection state plus the action dispatcher of one editor view.

    Usage:
        session = EditorSession(store, coordinator)
        session.select(root_id)
        await session.dispatch(Action.CREATE_CHILD_NODE)
        await session.handle_key("ArrowUp")
    """

    def __init__(
        self,
        store: GraphStore,
        coordinator: Optional[LayoutCoordinator] = None,
        keybinds: Optional[Mapping[Action, str]] = None,
    ):
        self.store = store
        self.coordinator = coordinator or LayoutCoordinator(config=store.config.layout)
        self.keybinds: Dict[Action, str] = dict(keybinds or DEFAULT_KEYBINDS)

        self.selected_node_id: Optional[str] = None
        self.last_selected_node_id: Optional[str] = None
        self.editing_node_id: Optional[str] = None

    # =========================================================================
    # SELECTION
    # =========================================================================

    def select(self, node_id: Optional[str]) -> None:
        """Select a node; deselecting keeps the last selection for fallback."""
        self.selected_node_id = node_id
        if node_id is not None:
            self.last_selected_node_id = node_id

    @property
    def active_node_id(self) -> Optional[str]:
        """The selected node, or the last selected one when nothing is."""
        return self.selected_node_id or self.last_selected_node_id

    def _active_node(self) -> Optional[MapNode]:
        node_id = self.active_node_id
        return self.store.get_node(node_id) if node_id else None

    # =========================================================================
    # DISPATCH
    # =========================================================================

    async def handle_key(self, key: str, ctrl: bool = False, shift: bool = False, alt: bool = False) -> bool:
        """
        Resolve and dispatch a raw key press.

        While a node is being edited only Escape is honoured (it ends the edit).
        """
        if self.editing_node_id is not None:
            if key == "Escape":
                self.editing_node_id = None
                return True
            return False

        action = action_for_key(key, ctrl, shift, alt, self.keybinds)
        if action is None:
            return False
        return await self.dispatch(action)

    async def dispatch(self, action: Union[Action, str]) -> bool:
        """
        Perform an action.

        Returns:
            True if engine or selection state changed
        """
        action = Action(action)
        logger.debug(f"Dispatching {action.value}")

        if action in VIEW_ACTIONS:
            return False
        if action in _NAVIGATION:
            return self._navigate(_NAVIGATION[action])
        if action is Action.CREATE_CHILD_NODE:
            return await self._create_child()
        if action is Action.CREATE_SIBLING_NODE:
            return await self._create_sibling()
        if action is Action.DELETE_NODE:
            return await self._delete()
        if action is Action.EDIT_NODE:
            return self._edit()
        if action is Action.FINISH_EDIT:
            changed = self.editing_node_id is not None
            self.editing_node_id = None
            return changed
        if action is Action.UNDO:
            if not self.store.can_undo:
                return False
            self.store.undo()
            return True
        if action is Action.REDO:
            if not self.store.can_redo:
                return False
            self.store.redo()
            return True
        if action is Action.TOGGLE_LAYOUT_DIRECTION:
            return await self._toggle_direction()
        return False

    # =========================================================================
    # ACTIONS
    # =========================================================================

    def _new_draft(self, position) -> NodeDraft:
        return NodeDraft(
            content=text_content(self.store.config.new_node_label),
            position=position,
        )

    async def _create_child(self) -> bool:
        mind_map = self.store.current_map
        active = self._active_node()
        if mind_map is None or active is None:
            return False

        direction = mind_map.layout_direction
        placement = self.store.config.placement
        position = avoid_overlap(
            child_position(active, direction, placement),
            mind_map.nodes,
            overlap_axis_for(direction),
            placement,
        )

        new_id = self.store.add_node(self._new_draft(position), parent_id=active.id)
        if not new_id:
            return False
        self.select(new_id)
        await self.coordinator.apply_layout(self.store)
        return True

    async def _create_sibling(self) -> bool:
        mind_map = self.store.current_map
        if mind_map is None:
            return False

        active = self._active_node()
        if active is None:
            if not mind_map.nodes:
                return False
            self.select(mind_map.nodes[0].id)
            return True

        parents = self.store.relations().parent_nodes(active.id)
        # No parent: the sibling becomes an independent node
        parent_id = parents[0].id if parents else None

        direction = mind_map.layout_direction
        placement = self.store.config.placement
        position = avoid_overlap(
            sibling_position(active, direction, placement),
            mind_map.nodes,
            overlap_axis_for(direction),
            placement,
        )

        new_id = self.store.add_node(self._new_draft(position), parent_id=parent_id)
        if not new_id:
            return False
        self.select(new_id)
        await self.coordinator.apply_layout(self.store)
        return True

    async def _delete(self) -> bool:
        node_id = self.active_node_id
        if node_id is None or self.store.current_map is None:
            return False

        count = len(self.store.current_map.nodes)
        self.store.delete_node(node_id)
        if len(self.store.current_map.nodes) == count:
            # Refused (last node) or already gone
            return False
        self.select(None)
        await self.coordinator.apply_layout(self.store)
        return True

    def _edit(self) -> bool:
        node_id = self.active_node_id
        if node_id is None:
            return False
        self.select(node_id)
        self.editing_node_id = node_id
        return True

    def _navigate(self, direction: Direction) -> bool:
        mind_map = self.store.current_map
        if mind_map is None or not mind_map.nodes:
            return False

        node_id = self.active_node_id
        if node_id is None or mind_map.find_node(node_id) is None:
            node_id = mind_map.nodes[0].id

        target = nearest_in_direction(node_id, direction, mind_map.nodes, self.store.config.navigation)
        if target is not None:
            self.select(target.id)
            return True

        fallback = self.last_selected_node_id
        if self.selected_node_id is None and fallback and mind_map.find_node(fallback):
            self.select(fallback)
            return True
        return False

    async def _toggle_direction(self) -> bool:
        if self.store.current_map is None:
            return False
        self.store.cycle_layout_direction()
        await self.coordinator.apply_layout(self.store)
        return True
