"""
MINDGRAPH CONFIG - Engine Tunables

The numeric constants the graph engine relies on (history bound, navigation
thresholds, placement offsets, layout spacing) live in one typed structure
instead of being scattered through the code. Defaults equal the behavior of
the editor; a deployment can override them from TOML or the environment.

Resolution order (later wins):
1. EngineConfig() defaults
2. config/mindgraph.toml (or MINDGRAPH_CONFIG, or an explicit path)
3. MINDGRAPH_* environment variables

Usage:
    from infrastructure.config import load_config

    config = load_config()            # at the composition root
    store = GraphStore(config=config)
    coordinator = LayoutCoordinator(config=config)
"""
import msgspec
import os
import warnings
from typing import Optional, Dict, Any, Literal
from pathlib import Path


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "mindgraph.toml"


class ConfigError(ValueError):
    """Raised when an explicitly requested configuration cannot be used."""
    pass


# =============================================================================
# CONFIG SECTIONS
# =============================================================================

class HistoryConfig(msgspec.Struct, kw_only=True, frozen=True):
    limit: int = 50                     # Max snapshots retained, oldest evicted


class NavigationConfig(msgspec.Struct, kw_only=True, frozen=True):
    min_offset: float = 10.0            # Ignore near-coincident nodes
    dominance_ratio: float = 0.5        # |primary| must exceed ratio * |secondary|


class PlacementConfig(msgspec.Struct, kw_only=True, frozen=True):
    overlap_width: float = 150.0        # Horizontal separation that still overlaps
    overlap_height: float = 60.0        # Vertical separation that still overlaps
    step: float = 100.0                 # Shift per attempt
    max_attempts: int = 20
    child_offset_vertical: float = 120.0    # DOWN/UP child distance
    child_offset_horizontal: float = 200.0  # RIGHT/LEFT child distance
    sibling_offset_vertical: float = 100.0  # Sibling gap in RIGHT/LEFT layouts
    sibling_offset_horizontal: float = 200.0  # Sibling gap in DOWN/UP layouts


class LayoutConfig(msgspec.Struct, kw_only=True, frozen=True):
    node_width: float = 180.0           # Used when a node has no measured width
    node_height: float = 60.0
    node_spacing: float = 50.0          # Between nodes of the same layer
    layer_spacing: float = 80.0         # Between consecutive layers
    crossing_sweeps: int = 4            # Barycenter passes (down + up = 1 sweep)


class EngineConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Complete engine configuration."""
    default_direction: Literal["DOWN", "RIGHT", "UP", "LEFT"] = "RIGHT"
    default_map_name: str = "New map"
    root_label: str = "Root"
    new_node_label: str = "New node"
    history: HistoryConfig = msgspec.field(default_factory=HistoryConfig)
    navigation: NavigationConfig = msgspec.field(default_factory=NavigationConfig)
    placement: PlacementConfig = msgspec.field(default_factory=PlacementConfig)
    layout: LayoutConfig = msgspec.field(default_factory=LayoutConfig)


# =============================================================================
# LOADING
# =============================================================================

def load_toml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Read the raw TOML configuration.

    Args:
        path: Explicit file. If None, uses MINDGRAPH_CONFIG or the bundled
              config/mindgraph.toml.

    Returns:
        Dict with all configuration sections ({} when the default file is
        missing or unreadable)

    Raises:
        ConfigError: If an explicit path cannot be read or parsed
    """
    import tomllib

    explicit = path is not None or "MINDGRAPH_CONFIG" in os.environ
    config_path = Path(path or os.environ.get("MINDGRAPH_CONFIG") or DEFAULT_CONFIG_PATH)

    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        return {}

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        if explicit:
            raise ConfigError(f"Failed to load config from {config_path}: {e}") from e
        warnings.warn(f"Failed to load config from TOML: {e}")
        return {}


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Layer MINDGRAPH_* environment variables over the raw config dict."""
    data = dict(raw)

    limit = os.getenv("MINDGRAPH_HISTORY_LIMIT")
    if limit:
        history = dict(data.get("history", {}))
        try:
            history["limit"] = int(limit)
        except ValueError as e:
            raise ConfigError(f"MINDGRAPH_HISTORY_LIMIT must be an integer, got {limit!r}") from e
        data["history"] = history

    direction = os.getenv("MINDGRAPH_DEFAULT_DIRECTION")
    if direction:
        data["default_direction"] = direction.upper()

    return data


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """
    Build an EngineConfig from TOML and environment overrides.

    Raises:
        ConfigError: If the merged configuration has invalid values
    """
    raw = _apply_env_overrides(load_toml_config(path))
    try:
        config = msgspec.convert(raw, type=EngineConfig)
    except msgspec.ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if config.history.limit < 1:
        raise ConfigError("history.limit must be at least 1")
    return config
