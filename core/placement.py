"""
MINDGRAPH PLACEMENT - Where a New Node Goes

Position allocation for nodes created from the keyboard (child / sibling of
the active node). Pointer-created nodes use the drop coordinates instead and
never come through here.

The allocator is deliberately approximate: it slides a candidate position in
fixed steps until it clears every existing node, and after a bounded number of
attempts it accepts whatever it has. A slightly overlapping node is fine; the
next relayout tidies it.
"""
from typing import Iterable, Optional, Tuple, Union

from core.schemas import HandleSide, LayoutDirection, MapNode, Position, PositionLike, to_position
from infrastructure.config import PlacementConfig


AXES = ("x", "y", "both")


def overlaps(a: Position, b: Position, config: Optional[PlacementConfig] = None) -> bool:
    """Two positions overlap when both separations are under the thresholds."""
    config = config or PlacementConfig()
    return abs(a.x - b.x) < config.overlap_width and abs(a.y - b.y) < config.overlap_height


def avoid_overlap(
    candidate: PositionLike,
    existing_nodes: Iterable[MapNode],
    axis: str = "y",
    config: Optional[PlacementConfig] = None,
) -> Position:
    """
    Slide `candidate` until it no longer overlaps any existing node.

    Args:
        candidate: Initial position
        existing_nodes: Nodes already on the canvas
        axis: "x", "y" or "both" (shift diagonally)
        config: Thresholds and step; defaults to PlacementConfig()

    Returns:
        The first non-overlapping position, or the last one tried after
        `max_attempts` shifts
    """
    if axis not in AXES:
        raise ValueError(f"axis must be one of {AXES}, got {axis!r}")

    config = config or PlacementConfig()
    position = to_position(candidate)
    occupied = [n.position for n in existing_nodes]

    dx = config.step if axis in ("x", "both") else 0.0
    dy = config.step if axis in ("y", "both") else 0.0

    for _ in range(config.max_attempts):
        if not any(overlaps(position, other, config) for other in occupied):
            return position
        position = position.translated(dx, dy)

    return position


def child_position(
    parent: Union[MapNode, PositionLike],
    direction: Union[LayoutDirection, str],
    config: Optional[PlacementConfig] = None,
) -> Position:
    """Initial spot for a new child: one step downstream of the parent."""
    config = config or PlacementConfig()
    origin = parent.position if isinstance(parent, MapNode) else to_position(parent)
    direction = LayoutDirection(direction)

    if direction is LayoutDirection.DOWN:
        return origin.translated(0.0, config.child_offset_vertical)
    if direction is LayoutDirection.UP:
        return origin.translated(0.0, -config.child_offset_vertical)
    if direction is LayoutDirection.RIGHT:
        return origin.translated(config.child_offset_horizontal, 0.0)
    return origin.translated(-config.child_offset_horizontal, 0.0)


def sibling_position(
    node: Union[MapNode, PositionLike],
    direction: Union[LayoutDirection, str],
    config: Optional[PlacementConfig] = None,
) -> Position:
    """Initial spot for a new sibling: beside `node`, across the layout flow."""
    config = config or PlacementConfig()
    origin = node.position if isinstance(node, MapNode) else to_position(node)

    if LayoutDirection(direction).is_vertical:
        return origin.translated(config.sibling_offset_horizontal, 0.0)
    return origin.translated(0.0, config.sibling_offset_vertical)


def overlap_axis_for(direction: Union[LayoutDirection, str]) -> str:
    """Axis a new child or sibling slides along: across the layout flow."""
    return "x" if LayoutDirection(direction).is_vertical else "y"


def default_handles(
    direction: Union[LayoutDirection, str],
    source_handle: Optional[str] = None,
) -> Tuple[str, str]:
    """
    (source, target) anchors for a child created by dragging a connection
    onto empty canvas. An explicit source handle wins.
    """
    if LayoutDirection(direction) is LayoutDirection.RIGHT:
        return source_handle or HandleSide.RIGHT.value, HandleSide.LEFT.value
    return source_handle or HandleSide.BOTTOM.value, HandleSide.TOP.value
