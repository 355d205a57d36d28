"""
MINDGRAPH PERSISTENCE - Map Repositories and Tabular Export

The graph engine treats storage as an external collaborator with a four-call
contract (list / load / save / delete). This module defines that contract and
ships two local implementations:

- InMemoryMapRepository: serialized maps in a dict (tests, scratch sessions)
- FileMapRepository: one msgspec JSON document per map in a directory

Maps loaded from storage bypassed the mutation API, so load() re-checks the
structural invariants and logs what it finds. A map with problems is still
returned; losing a user's map over a dangling edge would be worse.

Tabular export (polars) turns a map into node/edge frames for analysis and
writes them as parquet, mirroring the graph database's export helpers.
"""
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, Union

import msgspec
import polars as pl

from core.graph_invariants import validate_map
from core.graph_store import GraphStore, MapDecodeError, MapNotFoundError
from core.schemas import MapMeta, MindMap, deserialize_map, generate_id, serialize_map


logger = logging.getLogger("mindgraph.persistence")

_FILE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


# =============================================================================
# REPOSITORY CONTRACT
# =============================================================================

class MapRepository(Protocol):
    """Storage collaborator used by the editor shell."""

    def list(self) -> List[MapMeta]:
        ...

    def load(self, file_id: str) -> MindMap:
        ...

    def save(self, mind_map: MindMap, file_id: Optional[str] = None) -> str:
        ...

    def delete(self, file_id: str) -> None:
        ...


def _decode(data: bytes, file_id: str) -> MindMap:
    try:
        mind_map = deserialize_map(data)
    except (msgspec.DecodeError, msgspec.ValidationError) as e:
        raise MapDecodeError(f"Cannot decode map {file_id}: {e}") from e

    report = validate_map(mind_map)
    for violation in report.errors:
        logger.warning(f"Map {file_id}: {violation.invariant}: {violation.message}")
    return mind_map


def _newest_first(entries: List[MapMeta]) -> List[MapMeta]:
    return sorted(entries, key=lambda m: m.updated_at, reverse=True)


# =============================================================================
# IN-MEMORY REPOSITORY
# =============================================================================

class InMemoryMapRepository:
    """
    Repository backed by a dict of serialized maps.

    Maps are stored encoded so that load() always returns a fresh decode,
    exactly as a real backend would.
    """

    def __init__(self):
        self._documents: Dict[str, bytes] = {}

    def list(self) -> List[MapMeta]:
        entries = []
        for file_id, data in self._documents.items():
            mind_map = deserialize_map(data)
            entries.append(MapMeta(file_id=file_id, name=mind_map.name, updated_at=mind_map.updated_at))
        return _newest_first(entries)

    def load(self, file_id: str) -> MindMap:
        if file_id not in self._documents:
            raise MapNotFoundError(file_id)
        return _decode(self._documents[file_id], file_id)

    def save(self, mind_map: MindMap, file_id: Optional[str] = None) -> str:
        file_id = file_id or generate_id()
        self._documents[file_id] = serialize_map(mind_map)
        return file_id

    def delete(self, file_id: str) -> None:
        if self._documents.pop(file_id, None) is None:
            raise MapNotFoundError(file_id)

    def __len__(self) -> int:
        return len(self._documents)


# =============================================================================
# FILE REPOSITORY
# =============================================================================

class FileMapRepository:
    """
    Repository storing each map as `<file_id>.json` inside one directory.

    Writes go to a temporary sibling first and are moved into place, so a
    crash mid-save never leaves a truncated document behind.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, file_id: str) -> Path:
        if not _FILE_ID.match(file_id):
            raise ValueError(f"Invalid map file id: {file_id!r}")
        return self.directory / f"{file_id}{self.SUFFIX}"

    def list(self) -> List[MapMeta]:
        entries = []
        for path in self.directory.glob(f"*{self.SUFFIX}"):
            file_id = path.stem
            try:
                mind_map = deserialize_map(path.read_bytes())
            except (OSError, msgspec.DecodeError, msgspec.ValidationError) as e:
                logger.warning(f"Skipping unreadable map file {path.name}: {e}")
                continue
            entries.append(MapMeta(file_id=file_id, name=mind_map.name, updated_at=mind_map.updated_at))
        return _newest_first(entries)

    def load(self, file_id: str) -> MindMap:
        path = self._path_for(file_id)
        if not path.exists():
            raise MapNotFoundError(file_id)
        return _decode(path.read_bytes(), file_id)

    def save(self, mind_map: MindMap, file_id: Optional[str] = None) -> str:
        file_id = file_id or generate_id()
        path = self._path_for(file_id)
        tmp_path = path.with_suffix(".tmp")

        tmp_path.write_bytes(serialize_map(mind_map))
        os.replace(tmp_path, path)

        logger.debug(f"Saved map {mind_map.id} as {path.name}")
        return file_id

    def delete(self, file_id: str) -> None:
        path = self._path_for(file_id)
        if not path.exists():
            raise MapNotFoundError(file_id)
        path.unlink()


# =============================================================================
# STORE INTEGRATION
# =============================================================================

def open_map(store: GraphStore, repository: MapRepository, file_id: str) -> MindMap:
    """Load a map and make it the store's current map (history reset, clean)."""
    mind_map = repository.load(file_id)
    store.set_current_map(mind_map, file_id)
    return mind_map


def save_current_map(store: GraphStore, repository: MapRepository) -> Optional[str]:
    """
    Save the store's current map under its file id (a new one on first save)
    and clear the dirty flag.

    Returns:
        The file id, or None when there is no current map
    """
    mind_map = store.current_map
    if mind_map is None:
        return None
    file_id = repository.save(mind_map, store.current_file_id)
    store.mark_saved(file_id)
    return file_id


# =============================================================================
# TABULAR EXPORT (polars)
# =============================================================================

NODE_SCHEMA = {
    "id": pl.Utf8,
    "content": pl.Utf8,
    "x": pl.Float64,
    "y": pl.Float64,
    "width": pl.Float64,
    "height": pl.Float64,
}

EDGE_SCHEMA = {
    "id": pl.Utf8,
    "source": pl.Utf8,
    "target": pl.Utf8,
    "source_handle": pl.Utf8,
    "target_handle": pl.Utf8,
    "label": pl.Utf8,
}


def nodes_frame(mind_map: MindMap) -> pl.DataFrame:
    """One row per node with its position flattened to x / y columns."""
    nodes = mind_map.nodes
    return pl.DataFrame(
        {
            "id": [n.id for n in nodes],
            "content": [n.content for n in nodes],
            "x": [n.position.x for n in nodes],
            "y": [n.position.y for n in nodes],
            "width": [n.width for n in nodes],
            "height": [n.height for n in nodes],
        },
        schema=NODE_SCHEMA,
    )


def edges_frame(mind_map: MindMap) -> pl.DataFrame:
    edges = mind_map.edges
    return pl.DataFrame(
        {
            "id": [e.id for e in edges],
            "source": [e.source for e in edges],
            "target": [e.target for e in edges],
            "source_handle": [e.source_handle for e in edges],
            "target_handle": [e.target_handle for e in edges],
            "label": [e.label for e in edges],
        },
        schema=EDGE_SCHEMA,
    )


def export_parquet(mind_map: MindMap, path: Union[str, Path]) -> Tuple[Path, Path]:
    """
    Save a map as two parquet files.

    Creates:
    - {path}.nodes.parquet
    - {path}.edges.parquet

    Args:
        path: Base path (without extension)

    Returns:
        (nodes_path, edges_path)
    """
    path = Path(path)
    nodes_path = path.parent / f"{path.name}.nodes.parquet"
    edges_path = path.parent / f"{path.name}.edges.parquet"

    nodes_frame(mind_map).write_parquet(nodes_path)
    edges_frame(mind_map).write_parquet(edges_path)
    return nodes_path, edges_path
