"""
MINDGRAPH GRAPH INVARIANTS - Structural Checks for a Map Snapshot

The GraphStore guarantees these properties for every map it builds. Maps that
arrive from outside (storage, other tools) bypass the mutation API, so this
module re-checks them and reports what it finds.

Invariants Checked:
1. Referential integrity: every edge endpoint is a present node (ERROR)
2. No self-loops (ERROR)
3. At most one edge per ordered (source, target) pair (ERROR)
4. Node and edge ids are unique (ERROR)
5. A map has at least one node (ERROR)
6. Cycles (INFO): permitted data, reported for diagnostics only

Design Philosophy:
- Report, don't raise. Loading a slightly broken map is better than losing it.
- Checks are O(V+E); graph metrics use rustworkx primitives.
"""
import rustworkx as rx
from typing import List, Tuple, Dict, Any, Optional
from dataclasses import dataclass, field
from enum import Enum
from collections import Counter

from core.schemas import MindMap
from core.relations import build_digraph, detect_cycles, root_nodes


# =============================================================================
# INVARIANT RESULTS
# =============================================================================

class InvariantSeverity(Enum):
    """Severity levels for invariant violations."""
    ERROR = "error"      # Breaks an engine guarantee
    WARNING = "warning"  # Should be investigated
    INFO = "info"        # For metrics/diagnostics


@dataclass
class InvariantViolation:
    """A specific invariant violation."""
    invariant: str           # Name of the invariant
    severity: InvariantSeverity
    message: str
    nodes_involved: List[str] = field(default_factory=list)
    edges_involved: List[str] = field(default_factory=list)


@dataclass
class InvariantReport:
    """Complete invariant validation report."""
    valid: bool
    violations: List[InvariantViolation]
    metrics: Dict[str, Any]

    @property
    def errors(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.ERROR]

    @property
    def warnings(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.WARNING]

    @property
    def infos(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.INFO]


# =============================================================================
# MAP INVARIANTS
# =============================================================================

class MapInvariants:
    """
    Validators over a MindMap snapshot.

    Every check returns (is_valid, violation or None).
    """

    @staticmethod
    def validate_referential_integrity(mind_map: MindMap) -> Tuple[bool, Optional[InvariantViolation]]:
        """Every edge must reference two nodes present in the map."""
        present = set(mind_map.node_ids())
        dangling = [e for e in mind_map.edges if e.source not in present or e.target not in present]

        if not dangling:
            return True, None

        missing = sorted({
            endpoint
            for e in dangling
            for endpoint in (e.source, e.target)
            if endpoint not in present
        })
        return False, InvariantViolation(
            invariant="referential_integrity",
            severity=InvariantSeverity.ERROR,
            message=f"{len(dangling)} edge(s) reference missing nodes",
            nodes_involved=missing[:10],
            edges_involved=[e.id for e in dangling[:10]],
        )

    @staticmethod
    def validate_no_self_loops(mind_map: MindMap) -> Tuple[bool, Optional[InvariantViolation]]:
        loops = [e for e in mind_map.edges if e.source == e.target]
        if not loops:
            return True, None
        return False, InvariantViolation(
            invariant="no_self_loops",
            severity=InvariantSeverity.ERROR,
            message=f"{len(loops)} self-loop edge(s)",
            nodes_involved=sorted({e.source for e in loops}),
            edges_involved=[e.id for e in loops],
        )

    @staticmethod
    def validate_unique_ordered_edges(mind_map: MindMap) -> Tuple[bool, Optional[InvariantViolation]]:
        """
        At most one edge per ordered (source, target).

        a->b together with b->a is fine; two a->b edges are not.
        """
        seen = set()
        duplicates = []
        for edge in mind_map.edges:
            pair = (edge.source, edge.target)
            if pair in seen:
                duplicates.append(edge)
            seen.add(pair)

        if not duplicates:
            return True, None
        return False, InvariantViolation(
            invariant="unique_ordered_edges",
            severity=InvariantSeverity.ERROR,
            message=f"{len(duplicates)} duplicate edge(s) between the same ordered pair",
            edges_involved=[e.id for e in duplicates],
        )

    @staticmethod
    def validate_unique_ids(mind_map: MindMap) -> Tuple[bool, Optional[InvariantViolation]]:
        node_counts = Counter(mind_map.node_ids())
        edge_counts = Counter(e.id for e in mind_map.edges)
        repeated_nodes = sorted(i for i, c in node_counts.items() if c > 1)
        repeated_edges = sorted(i for i, c in edge_counts.items() if c > 1)

        if not repeated_nodes and not repeated_edges:
            return True, None
        return False, InvariantViolation(
            invariant="unique_ids",
            severity=InvariantSeverity.ERROR,
            message=f"Repeated ids: {len(repeated_nodes)} node(s), {len(repeated_edges)} edge(s)",
            nodes_involved=repeated_nodes,
            edges_involved=repeated_edges,
        )

    @staticmethod
    def validate_non_empty(mind_map: MindMap) -> Tuple[bool, Optional[InvariantViolation]]:
        if mind_map.nodes:
            return True, None
        return False, InvariantViolation(
            invariant="non_empty",
            severity=InvariantSeverity.ERROR,
            message="Map has no nodes",
        )

    @staticmethod
    def report_cycles(mind_map: MindMap) -> Tuple[bool, Optional[InvariantViolation]]:
        """
        Cycles are tolerated. This always passes; a found cycle is an INFO entry.
        """
        cycles = detect_cycles(mind_map.edges)
        if not cycles:
            return True, None

        involved: Dict[str, None] = {}
        for cycle in cycles:
            for node_id in cycle:
                involved.setdefault(node_id, None)
        return True, InvariantViolation(
            invariant="cycles",
            severity=InvariantSeverity.INFO,
            message=f"{len(cycles)} cycle(s) detected",
            nodes_involved=list(involved)[:10],
        )

    @staticmethod
    def compute_metrics(mind_map: MindMap) -> Dict[str, Any]:
        graph, _ = build_digraph(mind_map.nodes, mind_map.edges)
        return {
            'node_count': len(mind_map.nodes),
            'edge_count': len(mind_map.edges),
            'root_count': len(root_nodes(mind_map.nodes, mind_map.edges)),
            'multi_parent_count': sum(
                1 for idx in graph.node_indices() if len(set(graph.predecessor_indices(idx))) > 1
            ),
            'weakly_connected_components': (
                rx.number_weakly_connected_components(graph) if graph.num_nodes() else 0
            ),
            'is_dag': rx.is_directed_acyclic_graph(graph),
        }

    @staticmethod
    def validate_all(mind_map: MindMap) -> InvariantReport:
        """
        Run every check and return a comprehensive report.

        Returns:
            InvariantReport; `valid` is False only for ERROR-level violations
        """
        checks = (
            MapInvariants.validate_non_empty,
            MapInvariants.validate_unique_ids,
            MapInvariants.validate_referential_integrity,
            MapInvariants.validate_no_self_loops,
            MapInvariants.validate_unique_ordered_edges,
            MapInvariants.report_cycles,
        )

        violations = []
        for check in checks:
            _, violation = check(mind_map)
            if violation:
                violations.append(violation)

        is_valid = all(v.severity != InvariantSeverity.ERROR for v in violations)

        return InvariantReport(
            valid=is_valid,
            violations=violations,
            metrics=MapInvariants.compute_metrics(mind_map),
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def validate_map(mind_map: MindMap) -> InvariantReport:
    """Convenience function to validate a map."""
    return MapInvariants.validate_all(mind_map)


def get_map_metrics(mind_map: MindMap) -> Dict[str, Any]:
    """Get basic map metrics without full validation."""
    return MapInvariants.compute_metrics(mind_map)
