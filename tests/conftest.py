"""
Pytest configuration and shared fixtures for the mindgraph test suite.
"""
import itertools
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


class CountingIds:
    """Deterministic id factory: n1, n2, n3, ..."""

    def __init__(self, prefix: str = "n"):
        self._prefix = prefix
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self._prefix}{next(self._counter)}"


class TickingClock:
    """Deterministic clock: every call is one second later than the last."""

    def __init__(self):
        self._counter = itertools.count()

    def __call__(self) -> str:
        tick = next(self._counter)
        return f"2024-01-01T00:{tick // 60:02d}:{tick % 60:02d}+00:00"


@pytest.fixture
def id_factory():
    return CountingIds()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def fresh_store(id_factory, clock):
    """Provide a GraphStore with no current map."""
    from core.graph_store import GraphStore
    return GraphStore(id_factory=id_factory, clock=clock)


@pytest.fixture
def store_with_map(fresh_store):
    """Provide a store whose current map is a fresh one-node map."""
    fresh_store.create_map("Test map")
    return fresh_store


@pytest.fixture
def sample_map(clock):
    from core.samples import create_sample_map
    return create_sample_map(id_factory=CountingIds("s"), clock=clock)


@pytest.fixture
def store_with_sample_map(fresh_store, sample_map):
    """Provide a store holding the 8-node demonstration map."""
    fresh_store.set_current_map(sample_map)
    return fresh_store


def make_node(node_id: str, x: float = 0.0, y: float = 0.0, **kwargs):
    from core.schemas import MapNode, Position
    return MapNode(id=node_id, position=Position(x=x, y=y), **kwargs)


def make_edge(source: str, target: str, edge_id=None, **kwargs):
    from core.schemas import MapEdge
    return MapEdge(id=edge_id or f"{source}->{target}", source=source, target=target, **kwargs)


@pytest.fixture
def node_factory():
    return make_node


@pytest.fixture
def edge_factory():
    return make_edge
