"""Configuration loading for gridsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .marks import Brush, BrushMode, MarkKind


@dataclass
class NodeConfig:
    name: str = "gridsync-node"


@dataclass
class GridConfig:
    width: int = 30
    height: int = 30
    mark_kind: str = "bool"  # "bool", "intensity" or "color"

    @property
    def kind(self) -> MarkKind:
        return MarkKind(self.mark_kind)


@dataclass
class BrushConfig:
    mode: str = "toggle"  # "toggle" or "fixed"
    mark: str = "1"  # Text form of the peer's mark, e.g. "1", "200", "#ff8800"


@dataclass
class LogConfig:
    """Configuration for the shared authoritative update log."""

    db_path: str = "~/.gridsync/log.db"
    poll_interval_seconds: float = 0.5
    batch_size: int = 100


@dataclass
class SnapshotConfig:
    db_path: str = "~/.gridsync/snapshot.db"


@dataclass
class MQTTConfig:
    """Configuration for the ephemeral preview channel."""

    enabled: bool = False
    broker: str = "localhost"
    port: int = 1883
    preview_topic: str = "gridsync/preview"
    username: str | None = None
    password: str | None = None


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    grid: GridConfig = field(default_factory=GridConfig)
    brush: BrushConfig = field(default_factory=BrushConfig)
    log: LogConfig = field(default_factory=LogConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)

    def make_brush(self) -> Brush:
        """Build the brush described by the brush and grid sections."""
        return Brush(
            mark=self.grid.kind.parse(self.brush.mark),
            mode=BrushMode(self.brush.mode),
        )


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with GRIDSYNC_ prefix."""
    return os.environ.get(f"GRIDSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Grid overrides
    if width := _get_env("GRID_WIDTH"):
        config.grid.width = int(width)
    if height := _get_env("GRID_HEIGHT"):
        config.grid.height = int(height)
    if mark_kind := _get_env("GRID_MARK_KIND"):
        config.grid.mark_kind = mark_kind

    # Brush overrides
    if mode := _get_env("BRUSH_MODE"):
        config.brush.mode = mode
    if mark := _get_env("BRUSH_MARK"):
        config.brush.mark = mark

    # Storage overrides
    if log_path := _get_env("LOG_DB_PATH"):
        config.log.db_path = log_path
    if poll_interval := _get_env("LOG_POLL_INTERVAL"):
        config.log.poll_interval_seconds = float(poll_interval)
    if batch_size := _get_env("LOG_BATCH_SIZE"):
        config.log.batch_size = int(batch_size)
    if snapshot_path := _get_env("SNAPSHOT_DB_PATH"):
        config.snapshot.db_path = snapshot_path

    # MQTT overrides
    if mqtt_enabled := _get_env("MQTT_ENABLED"):
        config.mqtt.enabled = _is_true(mqtt_enabled)
    if broker := _get_env("MQTT_BROKER"):
        config.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.mqtt.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.mqtt.password = password

    return config


def _validate(config: Config) -> None:
    if config.grid.width <= 0 or config.grid.height <= 0:
        raise ValueError(
            f"Grid dimensions must be positive, got {config.grid.width}x{config.grid.height}"
        )
    if config.log.batch_size <= 0:
        raise ValueError(f"Log batch size must be positive, got {config.log.batch_size}")
    try:
        MarkKind(config.grid.mark_kind)
    except ValueError as e:
        raise ValueError(f"Unknown mark kind: {config.grid.mark_kind!r}") from e
    try:
        BrushMode(config.brush.mode)
    except ValueError as e:
        raise ValueError(f"Unknown brush mode: {config.brush.mode!r}") from e
    config.make_brush()


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If the grid or brush settings are invalid.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            if "grid" in data:
                grid_data = data["grid"]
                config.grid = GridConfig(
                    width=grid_data.get("width", config.grid.width),
                    height=grid_data.get("height", config.grid.height),
                    mark_kind=grid_data.get("mark_kind", config.grid.mark_kind),
                )

            if "brush" in data:
                brush_data = data["brush"]
                mark = brush_data.get("mark", config.brush.mark)
                # Unquoted "#rrggbb" is a YAML comment and loads as null
                if mark is None:
                    raise ValueError(
                        "brush.mark is empty; quote color marks, e.g. mark: '#ff8800'"
                    )
                config.brush = BrushConfig(
                    mode=brush_data.get("mode", config.brush.mode),
                    mark=str(mark),
                )

            if "log" in data:
                log_data = data["log"]
                config.log = LogConfig(
                    db_path=log_data.get("db_path", config.log.db_path),
                    poll_interval_seconds=log_data.get(
                        "poll_interval_seconds", config.log.poll_interval_seconds
                    ),
                    batch_size=log_data.get("batch_size", config.log.batch_size),
                )

            if "snapshot" in data:
                config.snapshot = SnapshotConfig(
                    db_path=data["snapshot"].get("db_path", config.snapshot.db_path)
                )

            if "mqtt" in data:
                mqtt_data = data["mqtt"]
                config.mqtt = MQTTConfig(
                    enabled=mqtt_data.get("enabled", config.mqtt.enabled),
                    broker=mqtt_data.get("broker", config.mqtt.broker),
                    port=mqtt_data.get("port", config.mqtt.port),
                    preview_topic=mqtt_data.get(
                        "preview_topic", config.mqtt.preview_topic
                    ),
                    username=mqtt_data.get("username"),
                    password=mqtt_data.get("password"),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    _validate(config)
    return config
