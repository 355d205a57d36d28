"""
MINDGRAPH RELATIONS - Parent/Child/Sibling Queries Over a Multi-Parent Graph

A mind map is not a tree: a node may have several parents and the edge set
may even contain cycles. RelationIndex derives the adjacency the editor needs
(who are my parents, children, siblings) from a (nodes, edges) snapshot.

Design Philosophy:
- Built fresh on demand, never maintained incrementally. Multi-parent edits
  make incremental adjacency bookkeeping easy to get wrong, and maps are small.
- Orders are deterministic: edge-insertion order, deduplicated.
- Cycles are data, not errors. Traversals here are cycle-safe and
  detect_cycles only reports them.
"""
import rustworkx as rx
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.schemas import MapEdge, MapNode


# =============================================================================
# RUSTWORKX BRIDGE
# =============================================================================

def build_digraph(
    nodes: Iterable[MapNode],
    edges: Iterable[MapEdge],
) -> Tuple[rx.PyDiGraph, Dict[str, int]]:
    """
    Mirror a node/edge snapshot into a rustworkx PyDiGraph.

    Node payloads are node ids, edge payloads are edge ids. Edges whose
    endpoints are not among `nodes` are skipped.

    Returns:
        (graph, node_id -> graph index)
    """
    graph = rx.PyDiGraph()
    index: Dict[str, int] = {}
    for node in nodes:
        if node.id not in index:
            index[node.id] = graph.add_node(node.id)
    for edge in edges:
        src = index.get(edge.source)
        tgt = index.get(edge.target)
        if src is not None and tgt is not None:
            graph.add_edge(src, tgt, edge.id)
    return graph, index


# =============================================================================
# RELATION INDEX
# =============================================================================

class RelationIndex:
    """
    Derived parent/child/sibling adjacency for one snapshot.

    Usage:
        rel = RelationIndex.build(current_map.nodes, current_map.edges)
        rel.parents_of(node_id)      # ["p1", "p2"]
        rel.siblings_of(node_id)     # union over parents, self excluded
        rel.next_sibling(node_id)    # MapNode, ordered by position
    """

    def __init__(
        self,
        nodes: Sequence[MapNode],
        parents: Dict[str, List[str]],
        children: Dict[str, List[str]],
        siblings: Dict[str, List[str]],
        graph: rx.PyDiGraph,
        index: Dict[str, int],
    ):
        self._nodes = tuple(nodes)
        self._by_id = {n.id: n for n in self._nodes}
        self._parents = parents
        self._children = children
        self._siblings = siblings
        self._graph = graph
        self._index = index

    @classmethod
    def build(cls, nodes: Iterable[MapNode], edges: Iterable[MapEdge]) -> "RelationIndex":
        nodes = tuple(nodes)
        edges = tuple(edges)

        parents: Dict[str, List[str]] = {n.id: [] for n in nodes}
        children: Dict[str, List[str]] = {n.id: [] for n in nodes}

        for edge in edges:
            parent_list = parents.get(edge.target)
            child_list = children.get(edge.source)
            # Both endpoints must be present for the edge to count
            if parent_list is None or child_list is None:
                continue
            if edge.source not in parent_list:
                parent_list.append(edge.source)
            if edge.target not in child_list:
                child_list.append(edge.target)

        siblings: Dict[str, List[str]] = {}
        for node in nodes:
            found: Dict[str, None] = {}
            for parent in parents[node.id]:
                for child in children[parent]:
                    if child != node.id:
                        found.setdefault(child, None)
            siblings[node.id] = list(found)

        graph, index = build_digraph(nodes, edges)
        return cls(nodes, parents, children, siblings, graph, index)

    # =========================================================================
    # ID QUERIES
    # =========================================================================

    def parents_of(self, node_id: str) -> List[str]:
        return list(self._parents.get(node_id, ()))

    def children_of(self, node_id: str) -> List[str]:
        return list(self._children.get(node_id, ()))

    def siblings_of(self, node_id: str) -> List[str]:
        """Other children of every parent of `node_id`, without duplicates."""
        return list(self._siblings.get(node_id, ()))

    def descendants_of(self, node_id: str) -> List[str]:
        """
        Every node reachable from `node_id` (the node itself excluded, even
        when it lies on a cycle). Returned in map node order.
        """
        idx = self._index.get(node_id)
        if idx is None:
            return []
        reachable = rx.descendants(self._graph, idx)
        return [n.id for n in self._nodes if self._index[n.id] in reachable and n.id != node_id]

    # =========================================================================
    # NODE QUERIES
    # =========================================================================

    def _nodes_in(self, ids: List[str]) -> List[MapNode]:
        wanted = set(ids)
        return [n for n in self._nodes if n.id in wanted]

    def parent_nodes(self, node_id: str) -> List[MapNode]:
        return self._nodes_in(self._parents.get(node_id, []))

    def child_nodes(self, node_id: str) -> List[MapNode]:
        return self._nodes_in(self._children.get(node_id, []))

    def sibling_nodes(self, node_id: str) -> List[MapNode]:
        return self._nodes_in(self._siblings.get(node_id, []))

    def next_sibling(self, node_id: str) -> Optional[MapNode]:
        """
        The sibling after `node_id` in (x, y) reading order, wrapping to the
        first sibling when none lies further right/down.
        """
        current = self._by_id.get(node_id)
        siblings = self.sibling_nodes(node_id)
        if current is None or not siblings:
            return None

        ordered = sorted(siblings, key=_reading_order)
        here = _reading_order(current)
        for sibling in ordered:
            if _reading_order(sibling) > here:
                return sibling
        return ordered[0]

    def prev_sibling(self, node_id: str) -> Optional[MapNode]:
        """Mirror of next_sibling, wrapping to the last sibling."""
        current = self._by_id.get(node_id)
        siblings = self.sibling_nodes(node_id)
        if current is None or not siblings:
            return None

        ordered = sorted(siblings, key=_reading_order, reverse=True)
        here = _reading_order(current)
        for sibling in ordered:
            if _reading_order(sibling) < here:
                return sibling
        return ordered[0]

    def __repr__(self) -> str:
        return f"RelationIndex(nodes={len(self._nodes)}, edges={self._graph.num_edges()})"


def _reading_order(node: MapNode) -> Tuple[float, float]:
    return (node.position.x, node.position.y)


# =============================================================================
# SNAPSHOT-LEVEL QUERIES
# =============================================================================

def root_nodes(nodes: Iterable[MapNode], edges: Iterable[MapEdge]) -> List[MapNode]:
    """Nodes with no incoming edge, in input order."""
    has_parent = {e.target for e in edges}
    return [n for n in nodes if n.id not in has_parent]


def detect_cycles(edges: Iterable[MapEdge]) -> List[List[str]]:
    """
    Report directed cycles found by a depth-first walk of `edges`.

    Each cycle is the DFS path from the revisited node's first occurrence
    to the node that closed the back edge, followed by the revisited node
    again, e.g. ["a", "b", "c", "a"]. Start nodes are taken in order of first
    appearance in `edges`. Not every elementary cycle is reported, one per
    back edge found.
    """
    adjacency: Dict[str, List[str]] = {}
    order: Dict[str, None] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, []).append(edge.target)
        order.setdefault(edge.source, None)
        order.setdefault(edge.target, None)

    cycles: List[List[str]] = []
    visited = set()

    for start in order:
        if start in visited:
            continue

        visited.add(start)
        path = [start]
        on_stack = {start}
        stack = [iter(adjacency.get(start, ()))]

        while stack:
            neighbor = next(stack[-1], None)
            if neighbor is None:
                stack.pop()
                on_stack.discard(path.pop())
                continue
            if neighbor not in visited:
                visited.add(neighbor)
                path.append(neighbor)
                on_stack.add(neighbor)
                stack.append(iter(adjacency.get(neighbor, ())))
            elif neighbor in on_stack:
                start_at = path.index(neighbor)
                cycles.append(path[start_at:] + [neighbor])

    return cycles


def has_cycle(nodes: Iterable[MapNode], edges: Iterable[MapEdge]) -> bool:
    graph, _ = build_digraph(nodes, edges)
    return not rx.is_directed_acyclic_graph(graph)
