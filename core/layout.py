"""
MINDGRAPH LAYOUT - Layered Layout Orchestration

The layout algorithm itself is an external collaborator consumed through a
small contract: a node/edge graph annotated with per-node sizes and a
direction goes in, a position per node id comes out. LayoutCoordinator owns
everything around that call:

- Building the contract input from a map snapshot (default sizes, spacing)
- The cooperative suspend point (engines are awaited, never block the loop)
- Failure fallback: a broken engine degrades to "positions unchanged"
- Selective relayout: lay out a selection plus its immediate neighbourhood
  and translate only the selection, anchored on its first node
- Writing results back into the GraphStore by id (history-exempt)

Architecture:
    LayoutCoordinator
      - engine: LayoutEngine        (any object with `async compute(graph)`)
      - config: LayoutConfig

    LayeredLayoutEngine (default engine, rustworkx)
      1. Greedy cycle breaking (Eades-Lin-Smyth feedback arc set)
      2. Longest-path layering via rx.topological_generations
      3. Barycenter sweeps to reduce crossings inside layers
      4. Coordinates per direction (DOWN / UP / RIGHT / LEFT)

Concurrency:
    There is no cancellation. A result that arrives after the map changed is
    still applied by id: vanished ids are skipped, structure is never touched.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

import msgspec
import rustworkx as rx

from core.schemas import LayoutDirection, MapEdge, MapNode, Position, to_position
from infrastructure.config import LayoutConfig
from infrastructure.event_bus import EventBus, EventType, make_event


logger = logging.getLogger("mindgraph.layout")


# =============================================================================
# ENGINE CONTRACT
# =============================================================================

class LayoutNodeSpec(msgspec.Struct, kw_only=True, frozen=True):
    id: str
    width: float
    height: float


class LayoutEdgeSpec(msgspec.Struct, kw_only=True, frozen=True):
    id: str
    source: str
    target: str


class LayoutGraph(msgspec.Struct, kw_only=True, frozen=True):
    """Input handed to a layout engine."""
    nodes: Tuple[LayoutNodeSpec, ...]
    edges: Tuple[LayoutEdgeSpec, ...]
    direction: LayoutDirection = LayoutDirection.RIGHT
    node_spacing: float = 50.0          # Between nodes of the same layer
    layer_spacing: float = 80.0         # Between consecutive layers


class LayoutEngine(Protocol):
    """Anything that can turn a LayoutGraph into positions, asynchronously."""

    async def compute(self, graph: LayoutGraph) -> Dict[str, Position]:
        ...


# =============================================================================
# DEFAULT ENGINE (rustworkx)
# =============================================================================

def greedy_fas_ordering(node_count: int, edges: Sequence[Tuple[int, int]]) -> List[int]:
    """
    Order nodes so that few edges point backwards (Eades, Lin, Smyth 1993).

    Repeatedly peels sinks to the back and sources to the front; when only
    cycles remain, the node with the largest out-degree surplus goes to the
    front. Reversing every edge that points backwards in the result yields a
    DAG. Ties resolve by node index, so the ordering is deterministic.
    """
    succ: List[List[int]] = [[] for _ in range(node_count)]
    pred: List[List[int]] = [[] for _ in range(node_count)]
    for s, t in edges:
        succ[s].append(t)
        pred[t].append(s)

    out_deg = [len(s) for s in succ]
    in_deg = [len(p) for p in pred]
    active = [True] * node_count
    front: List[int] = []
    back: List[int] = []

    def remove(v: int) -> None:
        active[v] = False
        for t in succ[v]:
            if active[t]:
                in_deg[t] -= 1
        for s in pred[v]:
            if active[s]:
                out_deg[s] -= 1

    while len(front) + len(back) < node_count:
        changed = True
        while changed:
            changed = False
            for v in range(node_count):
                if active[v] and out_deg[v] == 0:
                    remove(v)
                    back.append(v)
                    changed = True
            for v in range(node_count):
                if active[v] and in_deg[v] == 0:
                    remove(v)
                    front.append(v)
                    changed = True

        remaining = [v for v in range(node_count) if active[v]]
        if remaining:
            best = max(remaining, key=lambda v: out_deg[v] - in_deg[v])
            remove(best)
            front.append(best)

    return front + back[::-1]


class LayeredLayoutEngine:
    """
    Default layered (Sugiyama-style) engine built on rustworkx.

    Coordinates are top-left corners; the first layer starts at 0 on the flow
    axis and layers are centred on the widest one across the flow.
    """

    def __init__(self, crossing_sweeps: int = 4):
        self.crossing_sweeps = crossing_sweeps

    async def compute(self, graph: LayoutGraph) -> Dict[str, Position]:
        return await asyncio.to_thread(self.compute_sync, graph)

    def compute_sync(self, graph: LayoutGraph) -> Dict[str, Position]:
        if not graph.nodes:
            return {}

        dag = self._acyclic_graph(graph)
        layers = [sorted(gen) for gen in rx.topological_generations(dag)]
        layers = self._order_layers(dag, layers)
        return self._assign_coordinates(graph, dag, layers)

    def _acyclic_graph(self, graph: LayoutGraph) -> rx.PyDiGraph:
        """Mirror the graph into rustworkx with back edges reversed."""
        dag = rx.PyDiGraph()
        index: Dict[str, int] = {}
        for spec in graph.nodes:
            if spec.id not in index:
                index[spec.id] = dag.add_node(spec.id)

        pairs: List[Tuple[int, int]] = []
        seen = set()
        for edge in graph.edges:
            s = index.get(edge.source)
            t = index.get(edge.target)
            if s is None or t is None or s == t or (s, t) in seen:
                continue
            seen.add((s, t))
            pairs.append((s, t))

        rank = {v: i for i, v in enumerate(greedy_fas_ordering(len(index), pairs))}

        added = set()
        for s, t in pairs:
            if rank[s] > rank[t]:
                s, t = t, s
            # a->b plus b->a collapses into one layering constraint
            if (s, t) not in added:
                added.add((s, t))
                dag.add_edge(s, t, None)
        return dag

    def _order_layers(self, dag: rx.PyDiGraph, layers: List[List[int]]) -> List[List[int]]:
        position = {v: i for layer in layers for i, v in enumerate(layer)}

        def reorder(layer: List[int], neighbours) -> List[int]:
            def barycenter(v: int) -> float:
                ns = list(neighbours(v))
                if not ns:
                    return float(position[v])
                return sum(position[u] for u in ns) / len(ns)

            ordered = sorted(layer, key=lambda v: (barycenter(v), position[v]))
            for i, v in enumerate(ordered):
                position[v] = i
            return ordered

        for _ in range(self.crossing_sweeps):
            for i in range(1, len(layers)):
                layers[i] = reorder(layers[i], dag.predecessor_indices)
            for i in range(len(layers) - 2, -1, -1):
                layers[i] = reorder(layers[i], dag.successor_indices)
        return layers

    def _assign_coordinates(
        self,
        graph: LayoutGraph,
        dag: rx.PyDiGraph,
        layers: List[List[int]],
    ) -> Dict[str, Position]:
        sizes = {spec.id: (spec.width, spec.height) for spec in graph.nodes}
        vertical = graph.direction.is_vertical
        mirrored = graph.direction in (LayoutDirection.UP, LayoutDirection.LEFT)

        def along(v: int) -> float:
            w, h = sizes[dag[v]]
            return h if vertical else w

        def across(v: int) -> float:
            w, h = sizes[dag[v]]
            return w if vertical else h

        spans = [
            sum(across(v) for v in layer) + graph.node_spacing * (len(layer) - 1)
            for layer in layers
        ]
        widest = max(spans)

        placed: Dict[int, Tuple[float, float]] = {}
        flow = 0.0
        for layer, span in zip(layers, spans):
            cross = (widest - span) / 2
            for v in layer:
                placed[v] = (flow, cross)
                cross += across(v) + graph.node_spacing
            flow += max(along(v) for v in layer) + graph.layer_spacing
        total = flow - graph.layer_spacing

        positions: Dict[str, Position] = {}
        for v, (main, cross) in placed.items():
            if mirrored:
                main = total - main - along(v)
            x, y = (cross, main) if vertical else (main, cross)
            positions[dag[v]] = Position(x=x, y=y)
        return positions


# =============================================================================
# LAYOUT COORDINATOR
# =============================================================================

class LayoutCoordinator:
    """
    Runs layout engines against map snapshots and merges results back.

    Usage:
        coordinator = LayoutCoordinator()
        await coordinator.apply_layout(store)
        await coordinator.apply_layout_subset(store, [branch_root, *branch])
    """

    def __init__(
        self,
        engine: Optional[LayoutEngine] = None,
        config: Optional[LayoutConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config or LayoutConfig()
        self.engine = engine or LayeredLayoutEngine(self.config.crossing_sweeps)
        self._event_bus = event_bus

    def build_graph(
        self,
        nodes: Iterable[MapNode],
        edges: Iterable[MapEdge],
        direction: Union[LayoutDirection, str],
    ) -> LayoutGraph:
        """Translate a snapshot into the engine contract (default sizes filled in)."""
        return LayoutGraph(
            nodes=tuple(
                LayoutNodeSpec(
                    id=n.id,
                    width=n.width or self.config.node_width,
                    height=n.height or self.config.node_height,
                )
                for n in nodes
            ),
            edges=tuple(
                LayoutEdgeSpec(id=e.id, source=e.source, target=e.target)
                for e in edges
            ),
            direction=LayoutDirection(direction),
            node_spacing=self.config.node_spacing,
            layer_spacing=self.config.layer_spacing,
        )

    async def layout(
        self,
        nodes: Sequence[MapNode],
        edges: Sequence[MapEdge],
        direction: Union[LayoutDirection, str],
    ) -> Dict[str, Position]:
        """
        Compute positions for every node.

        Never raises for engine failures: any exception from the engine is
        logged and every node keeps its current position. Ids the engine
        omits keep their current position too; ids it invents are dropped.
        """
        nodes = list(nodes)
        if not nodes:
            return {}

        existing = {n.id: n.position for n in nodes}
        graph = self.build_graph(nodes, edges, direction)

        try:
            result = await self.engine.compute(graph)
            positions: Dict[str, Position] = {}
            for node_id, current in existing.items():
                computed = result.get(node_id)
                positions[node_id] = current if computed is None else to_position(computed)
            missing = sum(1 for node_id in existing if node_id not in result)
        except Exception:
            logger.exception(f"Layout engine failed for {len(nodes)} nodes; keeping positions")
            return existing

        if missing:
            logger.warning(f"Layout engine returned no position for {missing} node(s)")
        return positions

    async def layout_subset(
        self,
        selected_ids: Iterable[str],
        nodes: Sequence[MapNode],
        edges: Sequence[MapEdge],
        direction: Union[LayoutDirection, str],
    ) -> Dict[str, Position]:
        """
        Relayout only `selected_ids`, holding every other node fixed.

        The engine sees the selection plus every node one edge away from it.
        The engine's positions for the selection are then shifted by the
        difference between the first selected node's pre- and post-layout
        position, so the selection keeps the engine's relative arrangement
        while its first node stays where the user put it.

        Returns:
            New positions for the selected ids only
        """
        nodes = list(nodes)
        edges = list(edges)
        known = {n.id: n for n in nodes}

        selected: List[str] = []
        for node_id in selected_ids:
            if node_id in known and node_id not in selected:
                selected.append(node_id)
        if not selected:
            return {}

        chosen = set(selected)
        involved = set(chosen)
        for edge in edges:
            if edge.source in chosen and edge.target in known:
                involved.add(edge.target)
            if edge.target in chosen and edge.source in known:
                involved.add(edge.source)

        sub_nodes = [n for n in nodes if n.id in involved]
        sub_edges = [e for e in edges if e.source in involved and e.target in involved]

        computed = await self.layout(sub_nodes, sub_edges, direction)

        # Shift the engine's frame so the first selected node stays put
        anchor = selected[0]
        before = known[anchor].position
        after = computed.get(anchor, before)
        dx = before.x - after.x
        dy = before.y - after.y

        return {node_id: computed[node_id].translated(dx, dy) for node_id in selected}

    # =========================================================================
    # STORE INTEGRATION
    # =========================================================================

    async def apply_layout(
        self,
        store,
        direction: Union[LayoutDirection, str, None] = None,
    ) -> Dict[str, Position]:
        """
        Lay out the store's current map and merge the result by id.

        Uses the map's own layout direction unless one is given.
        """
        snapshot = store.current_map
        if snapshot is None:
            return {}

        positions = await self.layout(
            snapshot.nodes,
            snapshot.edges,
            direction or snapshot.layout_direction,
        )
        store.update_node_positions(positions)
        self._announce(snapshot.id, positions, subset=False)
        return positions

    async def apply_layout_subset(self, store, selected_ids: Iterable[str]) -> Dict[str, Position]:
        """Selective relayout of the store's current map."""
        snapshot = store.current_map
        if snapshot is None:
            return {}

        positions = await self.layout_subset(
            selected_ids,
            snapshot.nodes,
            snapshot.edges,
            snapshot.layout_direction,
        )
        store.update_node_positions(positions)
        self._announce(snapshot.id, positions, subset=True)
        return positions

    def _announce(self, map_id: str, positions: Dict[str, Position], subset: bool) -> None:
        if self._event_bus is None or not positions:
            return
        self._event_bus.publish(make_event(
            EventType.LAYOUT_APPLIED,
            "layout",
            map_id=map_id,
            node_ids=list(positions),
            subset=subset,
        ))
