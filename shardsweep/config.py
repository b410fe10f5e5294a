"""
Configuration for shardsweep runs.

Settings are resolved in three layers, later layers winning:
- Defaults on ``HarnessConfig``
- A TOML file (top-level keys, or a ``[shardsweep]`` table)
- Environment variables prefixed with ``SHARDSWEEP_`` (e.g. ``SHARDSWEEP_BATCH_SIZE=50``)

CLI flags are applied on top by the caller via ``HarnessConfig.replace``.
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import toml

from shardsweep.errors import ConfigError
from shardsweep.models import TransferMethod

ENV_PREFIX = "SHARDSWEEP_"

DEFAULT_HOSTS = [
    "http://127.0.0.1:6333",
    "http://127.0.0.2:6333",
    "http://127.0.0.3:6333",
]


@dataclass
class HarnessConfig:
    """All tunables of a harness run. Durations are in seconds."""

    # Cluster
    hosts: List[str] = field(default_factory=lambda: list(DEFAULT_HOSTS))
    api_key: Optional[str] = None
    connect_timeout: float = 10.0
    request_timeout: float = 20.0

    # Collection layout
    collection: str = "benchmark"
    shard_count: int = 1
    shard_id: int = 0
    segment_count: int = 3
    replication_factor: Optional[int] = None  # defaults to the number of hosts
    write_consistency_factor: int = 1
    indexing_threshold: int = 1
    dim: int = 128

    # Workload
    batch_size: int = 25
    point_count: int = 200
    shuffle_points: bool = False
    payload_key: str = "key"
    counter_key: str = "counter"
    wait: bool = True
    scroll_reads: bool = False
    update_retries: int = 100
    update_retry_interval: float = 0.05

    # Checks
    check_retries: int = 25
    check_retry_delay: float = 0.1
    always_check: bool = True
    cross_check: bool = False
    wait_green: bool = False

    # Fault injection
    transfers: bool = True
    transfer_methods: List[TransferMethod] = field(
        default_factory=lambda: [TransferMethod.STREAM_RECORDS, TransferMethod.WAL_DELTA]
    )
    transfer_startup_delay: float = 1.0
    cancel_optimizers: bool = False
    optimizer_cancel_interval: float = 1.0
    poll_interval: float = 0.05
    poll_max: float = 120.0

    # Run control
    seed: Optional[int] = None
    max_rounds: Optional[int] = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        try:
            self.transfer_methods = [TransferMethod(method) for method in self.transfer_methods]
        except ValueError as e:
            raise ConfigError(f"unknown transfer method: {e}") from e
        self.validate()

    @property
    def effective_replication_factor(self) -> int:
        return self.replication_factor or len(self.hosts)

    def validate(self) -> None:
        if not self.hosts:
            raise ConfigError("at least one host is required")
        for name in ("batch_size", "point_count", "update_retries", "check_retries", "dim"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1, got {getattr(self, name)}")
        for name in ("update_retry_interval", "check_retry_delay", "poll_interval", "poll_max"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative, got {getattr(self, name)}")
        if self.transfers and not self.transfer_methods:
            raise ConfigError("transfers are enabled but no transfer methods are configured")
        if self.scroll_reads and self.shuffle_points:
            raise ConfigError("scroll_reads and shuffle_points are incompatible")

    def replace(self, **changes: Any) -> "HarnessConfig":
        """Return a copy with ``changes`` applied; ``None`` values are ignored."""
        changes = {key: value for key, value in changes.items() if value is not None}
        return dataclasses.replace(self, **changes)


def _coerce(name: str, raw: str, current: Any) -> Any:
    """Convert an environment string to the type of the current field value."""
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{ENV_PREFIX}{name.upper()}: expected a boolean, got {raw!r}")
    if isinstance(current, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(current, int):
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigError(f"{ENV_PREFIX}{name.upper()}: expected an integer, got {raw!r}") from e
    if isinstance(current, float):
        try:
            return float(raw)
        except ValueError as e:
            raise ConfigError(f"{ENV_PREFIX}{name.upper()}: expected a number, got {raw!r}") from e
    if name in ("seed", "max_rounds", "replication_factor"):
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigError(f"{ENV_PREFIX}{name.upper()}: expected an integer, got {raw!r}") from e
    return raw


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect ``SHARDSWEEP_*`` overrides for known fields."""
    environ = os.environ if environ is None else environ
    defaults = HarnessConfig()
    overrides: Dict[str, Any] = {}

    for config_field in dataclasses.fields(HarnessConfig):
        raw = environ.get(ENV_PREFIX + config_field.name.upper())
        if raw is None:
            continue
        overrides[config_field.name] = _coerce(
            config_field.name, raw, getattr(defaults, config_field.name)
        )

    return overrides


def load_config(path: Optional[Union[str, Path]] = None,
                environ: Optional[Mapping[str, str]] = None) -> HarnessConfig:
    """
    Build a ``HarnessConfig`` from an optional TOML file plus environment overrides.

    Raises:
        ConfigError: on unreadable files, unknown keys or invalid values
    """
    values: Dict[str, Any] = {}

    if path is not None:
        try:
            data = toml.load(str(path))
        except (OSError, toml.TomlDecodeError) as e:
            raise ConfigError(f"failed to read config {path}: {e}") from e
        values.update(data.get("shardsweep", data))

    values.update(env_overrides(environ))

    known = {config_field.name for config_field in dataclasses.fields(HarnessConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

    try:
        return HarnessConfig(**values)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid config: {e}") from e
