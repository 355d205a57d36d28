"""
MINDGRAPH INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: EngineConfig loaded from TOML and MINDGRAPH_* environment variables
- event_bus: Typed change notifications with sync and async subscribers
- logger: Mutation journal (ring buffer plus optional JSONL files)
- persistence: Map repositories and polars export (import it directly;
  it depends on core)
"""

from infrastructure.config import EngineConfig, ConfigError, load_config
from infrastructure.event_bus import EventBus, EventType, GraphEvent
from infrastructure.logger import MutationLogger, MutationType, LoggerConfig

__all__ = [
    "EngineConfig",
    "ConfigError",
    "load_config",
    "EventBus",
    "EventType",
    "GraphEvent",
    "MutationLogger",
    "MutationType",
    "LoggerConfig",
]
