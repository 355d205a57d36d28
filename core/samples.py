"""
First-run demonstration map.

A small DAG that shows off what a plain tree cannot: three nodes have more
than one parent and everything converges on a single final idea.

    root -> ask -> awareness
    root -> research -> discovery      (also from awareness)
    root -> talk -> inspiration        (also from discovery)
    awareness, discovery, inspiration -> next idea

Labels are injectable so the translation layer can localise them.
"""
from typing import Callable, Dict, Mapping, Optional

from core.schemas import (
    HandleSide,
    LayoutDirection,
    MapEdge,
    MapNode,
    MindMap,
    Position,
    generate_id,
    now_utc,
    text_content,
)


DEFAULT_LABELS: Dict[str, str] = {
    "name": "Growing an idea",
    "root": "Start from one idea",
    "ask": "Ask questions",
    "research": "Research",
    "talk": "Talk to people",
    "awareness": "Awareness",
    "discovery": "Discovery",
    "inspiration": "Inspiration",
    "nextIdea": "On to the next idea",
}

# key -> (x, y)
_LAYOUT = {
    "root": (0, 150),
    "ask": (250, 0),
    "research": (250, 150),
    "talk": (250, 300),
    "awareness": (500, 0),
    "discovery": (500, 150),
    "inspiration": (500, 300),
    "nextIdea": (750, 150),
}

# (source, target, flows sideways). Sideways edges attach right -> left,
# cross-links between same-column nodes attach bottom -> top.
_LINKS = (
    ("root", "ask", True),
    ("root", "research", True),
    ("root", "talk", True),
    ("ask", "awareness", True),
    ("research", "discovery", True),
    ("talk", "inspiration", True),
    ("awareness", "discovery", False),
    ("discovery", "inspiration", False),
    ("awareness", "nextIdea", True),
    ("discovery", "nextIdea", True),
    ("inspiration", "nextIdea", True),
)


def create_sample_map(
    labels: Optional[Mapping[str, str]] = None,
    id_factory: Optional[Callable[[], str]] = None,
    clock: Optional[Callable[[], str]] = None,
) -> MindMap:
    """
    Build the demonstration map (8 nodes, 11 edges, direction RIGHT).

    Args:
        labels: Overrides for DEFAULT_LABELS (any subset of its keys)
        id_factory: Id generator, uuid4 hex by default
        clock: Timestamp source, UTC now by default
    """
    text = dict(DEFAULT_LABELS)
    if labels:
        text.update(labels)
    new_id = id_factory or generate_id
    timestamp = (clock or now_utc)()

    ids = {key: new_id() for key in _LAYOUT}

    nodes = tuple(
        MapNode(
            id=ids[key],
            content=text_content(text[key]),
            position=Position(x=float(x), y=float(y)),
        )
        for key, (x, y) in _LAYOUT.items()
    )

    edges = []
    for source, target, sideways in _LINKS:
        if sideways:
            source_handle, target_handle = HandleSide.RIGHT, HandleSide.LEFT
        else:
            source_handle, target_handle = HandleSide.BOTTOM, HandleSide.TOP
        edges.append(MapEdge(
            id=new_id(),
            source=ids[source],
            target=ids[target],
            source_handle=source_handle.value,
            target_handle=target_handle.value,
        ))

    return MindMap(
        id=new_id(),
        name=text["name"],
        created_at=timestamp,
        updated_at=timestamp,
        layout_direction=LayoutDirection.RIGHT,
        nodes=nodes,
        edges=tuple(edges),
    )
