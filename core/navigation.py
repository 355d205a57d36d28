"""
Directional nearest-neighbour selection for arrow-key navigation.

Purely geometric: the graph topology is ignored, so navigation works on
freshly created nodes that have not been laid out yet.
"""
import math
from enum import Enum
from typing import Iterable, Optional, Union

from core.schemas import MapNode
from infrastructure.config import NavigationConfig


class Direction(str, Enum):
    """Compass direction of a navigation query."""
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


def is_in_direction(
    dx: float,
    dy: float,
    direction: Union[Direction, str],
    config: Optional[NavigationConfig] = None,
) -> bool:
    """
    True when offset (dx, dy) points dominantly toward `direction`.

    The primary axis offset must exceed `min_offset` in the right sign AND be
    larger than `dominance_ratio` times the offset on the other axis.
    """
    config = config or NavigationConfig()
    direction = Direction(direction)
    threshold = config.min_offset
    ratio = config.dominance_ratio

    if direction is Direction.UP:
        return dy < -threshold and abs(dy) > abs(dx) * ratio
    if direction is Direction.DOWN:
        return dy > threshold and abs(dy) > abs(dx) * ratio
    if direction is Direction.LEFT:
        return dx < -threshold and abs(dx) > abs(dy) * ratio
    return dx > threshold and abs(dx) > abs(dy) * ratio


def nearest_in_direction(
    node_id: str,
    direction: Union[Direction, str],
    nodes: Iterable[MapNode],
    config: Optional[NavigationConfig] = None,
) -> Optional[MapNode]:
    """
    Find the closest node lying in `direction` from `node_id`.

    Args:
        node_id: Reference node
        direction: "up", "down", "left" or "right"
        nodes: Candidate nodes (the reference node may be among them)
        config: Thresholds; defaults to NavigationConfig()

    Returns:
        The qualifying node with the smallest Euclidean distance (first in
        input order on ties), or None if the reference node is absent or
        nothing qualifies
    """
    nodes = list(nodes)
    current = next((n for n in nodes if n.id == node_id), None)
    if current is None:
        return None

    best: Optional[MapNode] = None
    best_distance = math.inf

    for node in nodes:
        if node.id == node_id:
            continue
        dx = node.position.x - current.position.x
        dy = node.position.y - current.position.y
        if not is_in_direction(dx, dy, direction, config):
            continue
        distance = math.hypot(dx, dy)
        # Strict comparison keeps the earliest node on ties
        if distance < best_distance:
            best = node
            best_distance = distance

    return best
