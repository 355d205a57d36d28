"""
Lightweight event bus for decoupled map change notifications.

Follows publisher-subscriber pattern so the rendering layer, the persistence
layer (dirty prompts) and diagnostics can react to GraphStore mutations
without the store knowing about them.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Supports both sync and async handlers
- Non-blocking (async handlers scheduled via create_task)
- Explicitly owned: the composition root creates one bus and hands it to the
  GraphStore and LayoutCoordinator; there is no module-level instance
- Type-safe events via msgspec

Architecture:
    GraphStore / LayoutCoordinator → EventBus → [Renderer, Autosave, Logger]

Usage:
    bus = EventBus()
    store = GraphStore(event_bus=bus)

    def on_node_created(event: GraphEvent):
        print(f"Node created: {event.payload['node_id']}")

    bus.subscribe(EventType.NODE_CREATED, on_node_created)
"""
from typing import Callable, List, Dict, Any, Optional
from enum import Enum
import msgspec
import asyncio
import time
from collections import defaultdict
import logging


logger = logging.getLogger("mindgraph.event_bus")


class EventType(str, Enum):
    """Types of events published by the graph engine."""
    MAP_CREATED = "map_created"
    MAP_LOADED = "map_loaded"
    MAP_UPDATED = "map_updated"
    NODE_CREATED = "node_created"
    NODE_UPDATED = "node_updated"
    NODE_DELETED = "node_deleted"
    POSITIONS_UPDATED = "positions_updated"
    EDGE_CREATED = "edge_created"
    EDGE_UPDATED = "edge_updated"
    EDGE_DELETED = "edge_deleted"
    LAYOUT_DIRECTION_CHANGED = "layout_direction_changed"
    HISTORY_MOVED = "history_moved"
    LAYOUT_APPLIED = "layout_applied"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    Event emitted when the current map changes.

    Attributes:
        type: Type of event (NODE_CREATED, EDGE_CREATED, etc.)
        payload: Event-specific data (node_id, edge_id, etc.)
        timestamp: Unix timestamp when event occurred
        source: Component that emitted the event ("graph_store", "layout")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


def make_event(event_type: EventType, source: str, **payload: Any) -> GraphEvent:
    """Build a GraphEvent stamped with the current time."""
    return GraphEvent(
        type=event_type,
        payload=payload,
        timestamp=time.time(),
        source=source,
    )


class EventBus:
    """
    Event bus for map change notifications.

    Thread Safety:
        NOT thread-safe. The engine is mutated from a single event loop, so
        publishing always happens on that loop's thread.

    Performance:
        - O(1) event publishing
        - O(n) notification per event type (where n = subscriber count)
        - Non-blocking for async handlers (fire-and-forget)
    """

    def __init__(self):
        """Initialize empty subscriber lists."""
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._async_subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._pending: set = set()

    def subscribe(self, event_type: EventType, handler: Callable[[GraphEvent], None]):
        """
        Subscribe to events with a synchronous handler.

        Args:
            event_type: Type of event to listen for
            handler: Callable that takes GraphEvent as argument
        """
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed sync handler to {event_type.value}")

    def subscribe_async(self, event_type: EventType, handler: Callable[[GraphEvent], Any]):
        """
        Subscribe to events with an async handler.

        Args:
            event_type: Type of event to listen for
            handler: Async callable that takes GraphEvent as argument
        """
        if handler not in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].append(handler)
            logger.debug(f"Subscribed async handler to {event_type.value}")

    def subscribe_all(self, handler: Callable[[GraphEvent], None]):
        """Subscribe a synchronous handler to every event type."""
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def publish(self, event: GraphEvent):
        """
        Publish an event to all subscribers.

        Sync handlers run immediately. Async handlers are scheduled on the
        running loop. Exceptions in handlers are logged but don't propagate,
        so a faulty subscriber can never abort a mutation.
        """
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )

        for handler in list(self._subscribers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in sync handler for {event.type.value}: {e}",
                    exc_info=True
                )

        for handler in list(self._async_subscribers[event.type]):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    f"Cannot schedule async handler for {event.type.value}: "
                    "no event loop running"
                )
                continue
            task = loop.create_task(handler(event))
            # Keep a reference until the task finishes
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """
        Unsubscribe from events.

        Args:
            event_type: Type of event to unsubscribe from
            handler: Handler to remove (must be same instance)
        """
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed sync handler from {event_type.value}")

        if handler in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed async handler from {event_type.value}")

    def clear_subscribers(self, event_type: Optional[EventType] = None):
        """
        Clear all subscribers for an event type (or all types).

        Args:
            event_type: Event type to clear (None = all types)
        """
        if event_type is None:
            self._subscribers.clear()
            self._async_subscribers.clear()
            logger.info("Cleared all event subscribers")
        else:
            self._subscribers[event_type].clear()
            self._async_subscribers[event_type].clear()
            logger.info(f"Cleared subscribers for {event_type.value}")

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """
        Get count of subscribers for an event type.

        Args:
            event_type: Event type to count (None = all types)

        Returns:
            Total number of subscribers (sync + async)
        """
        if event_type is None:
            total = sum(len(handlers) for handlers in self._subscribers.values())
            total += sum(len(handlers) for handlers in self._async_subscribers.values())
            return total
        return (
            len(self._subscribers[event_type]) +
            len(self._async_subscribers[event_type])
        )
