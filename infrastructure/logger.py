"""
MINDGRAPH MUTATION LOGGER - The Edit Journal

Structured record of every mutation the GraphStore applies, kept for
debugging "how did my map end up like this" reports and for replaying what
happened before an undo/redo.

Architecture:
- MutationLogger: Core logging interface
- JournalFile: Optional newline-delimited JSON journal, one file per day
- EventBuffer: In-memory ring buffer for recent events

Usage:
    journal = MutationLogger()
    store = GraphStore(mutation_logger=journal)
    ...
    for event in journal.get_events_for_node(node_id):
        print(f"{event.timestamp}: {event.mutation_type}")

Plain diagnostics (rejected mutations, layout failures) go through the
standard `logging` module; this journal only records applied mutations.
"""
import msgspec
from typing import Optional, List, Any, Callable
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from collections import deque
import threading
import logging


logger = logging.getLogger("mindgraph.logger")


# =============================================================================
# EVENT TYPES
# =============================================================================

class MutationType(str, Enum):
    """Kinds of map mutations recorded in the journal."""
    MAP_CREATED = "MAP_CREATED"
    MAP_LOADED = "MAP_LOADED"
    MAP_UPDATED = "MAP_UPDATED"
    NODE_CREATED = "NODE_CREATED"
    NODE_UPDATED = "NODE_UPDATED"
    NODE_DELETED = "NODE_DELETED"
    POSITIONS_UPDATED = "POSITIONS_UPDATED"
    EDGE_CREATED = "EDGE_CREATED"
    EDGE_UPDATED = "EDGE_UPDATED"
    EDGE_DELETED = "EDGE_DELETED"
    DIRECTION_CHANGED = "DIRECTION_CHANGED"
    UNDO = "UNDO"
    REDO = "REDO"


class MutationEvent(msgspec.Struct, kw_only=True):
    """A single applied mutation."""
    timestamp: str
    sequence: int
    mutation_type: str                  # MutationType value
    map_id: Optional[str] = None
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    history_index: Optional[int] = None
    count: int = 0                      # Nodes touched by bulk operations
    detail: str = ""


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LoggerConfig:
    """Configuration for the mutation logger."""
    enable_file_log: bool = False       # Enable file-based logging
    log_path: Optional[Path] = None     # Path for log files
    buffer_size: int = 10000            # In-memory buffer size

    def __post_init__(self):
        if self.log_path is None:
            self.log_path = Path("./workspace/logs")


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer holding the most recent journal entries.

    Also hands out the journal's sequence numbers, so an entry evicted from
    the ring still leaves a gap that `select(after=...)` callers can detect.
    """

    def __init__(self, max_size: int = 10000):
        self._entries: deque[MutationEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: MutationEvent) -> None:
        with self._lock:
            self._entries.append(event)

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def last(self, n: int) -> List[MutationEvent]:
        with self._lock:
            if n <= 0:
                return []
            return list(self._entries)[-n:]

    def select(
        self,
        node_id: Optional[str] = None,
        map_id: Optional[str] = None,
        mutation_type: Optional[str] = None,
        after: Optional[int] = None,
    ) -> List[MutationEvent]:
        """Entries matching every given filter, oldest first."""
        with self._lock:
            return [
                e for e in self._entries
                if (node_id is None or node_id in (e.node_id, e.source_id, e.target_id))
                and (map_id is None or e.map_id == map_id)
                and (mutation_type is None or e.mutation_type == mutation_type)
                and (after is None or e.sequence > after)
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# JOURNAL FILE
# =============================================================================

class JournalFile:
    """
    Append-only newline-delimited JSON journal, one file per UTC day.

    Each write opens the day's file in append mode, so a journal that spans
    midnight simply continues in the next day's file.
    """

    def __init__(self, directory: Path):
        self.directory = directory
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()
        self._decoder = msgspec.json.Decoder(type=MutationEvent)

        directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, day: str) -> Path:
        return self.directory / f"mutations_{day}.jsonl"

    def write(self, event: MutationEvent) -> None:
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        line = self._encoder.encode(event) + b"\n"
        with self._lock:
            try:
                with self.path_for(day).open("ab") as fh:
                    fh.write(line)
            except OSError as e:
                logger.warning(f"Could not append to mutation journal: {e}")

    def read(self, day: str) -> List[MutationEvent]:
        """Entries journaled on `day` (YYYY-MM-DD). Corrupt lines are skipped."""
        path = self.path_for(day)
        if not path.exists():
            return []

        entries = []
        for line in path.read_bytes().splitlines():
            if not line.strip():
                continue
            try:
                entries.append(self._decoder.decode(line))
            except msgspec.DecodeError:
                logger.warning(f"Skipping corrupt journal line in {path.name}")
        return entries


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

class MutationLogger:
    """
    Records applied map mutations.

    Every entry goes to the in-memory ring buffer; when `enable_file_log` is
    set it is also appended to the day's journal file. Journal subscribers
    are called synchronously and their failures are logged, never raised.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()

        self._buffer = EventBuffer(self.config.buffer_size)
        self._file: Optional[JournalFile] = None

        if self.config.enable_file_log and self.config.log_path:
            self._file = JournalFile(self.config.log_path)

        self._subscribers: List[Callable[[MutationEvent], None]] = []

    @property
    def journal_file(self) -> Optional[JournalFile]:
        return self._file

    def _emit(self, event: MutationEvent) -> None:
        self._buffer.append(event)

        if self._file is not None:
            self._file.write(event)

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Journal subscriber error: {e}", exc_info=True)

    def record(self, mutation_type: MutationType, **fields: Any) -> MutationEvent:
        """
        Record one applied mutation.

        Args:
            mutation_type: What happened
            **fields: Any MutationEvent field (map_id, node_id, edge_id, ...)

        Returns:
            The recorded event
        """
        event = MutationEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            sequence=self._buffer.next_sequence(),
            mutation_type=mutation_type.value,
            **fields,
        )
        self._emit(event)
        return event

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        return self._buffer.last(n)

    def get_events_for_node(self, node_id: str) -> List[MutationEvent]:
        """Entries touching a node, including edges it is an endpoint of."""
        return self._buffer.select(node_id=node_id)

    def get_events_for_map(self, map_id: str) -> List[MutationEvent]:
        return self._buffer.select(map_id=map_id)

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        return self._buffer.select(mutation_type=mutation_type)

    def get_events_after(self, sequence: int) -> List[MutationEvent]:
        return self._buffer.select(after=sequence)

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)
