"""Configuration loading for the server and the bulk loader."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

import yaml

logger = logging.getLogger(__name__)

BACKENDS: tuple[str, ...] = ("cassandra", "redis", "etcd")
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR")


def split_endpoints(value: Any) -> list[str]:
    """Normalise endpoints given as a list or a comma-separated string."""
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        raise ValueError(f"endpoints: list or comma-separated string required, got {type(value).__name__}")
    endpoints = [item.strip() for item in items if item.strip()]
    if not endpoints:
        raise ValueError("endpoints: at least one endpoint required")
    return endpoints


@dataclass(frozen=True)
class Settings:
    """Runtime settings, passed explicitly to every component.

    Attributes:
        backend: Store holding the records: cassandra, redis or etcd.
        endpoints: Backend nodes as ``host`` or ``host:port``.
        keyspace: Cassandra keyspace.
        create_schema: Create the Cassandra keyspace and tables on connect.
        cluster: Use a Redis cluster client rather than a single-node client.
        timeout: Backend request timeout, in seconds.
        host: DNS listener bind address.
        port: DNS listener port (UDP and TCP).
        verbose: Log every query at INFO level.
        log_level: Logging level name.
        workers: Bulk loader worker threads.
        queue_size: Bound of the bulk loader line queue.
        retry_attempts: Attempts per upsert on transient errors.
        retry_initial_delay: First backoff delay, in seconds.
        retry_max_delay: Backoff delay cap, in seconds.
        stop_on_fatal: Stop a bulk load at the first fatal error.
    """

    backend: str = "cassandra"
    endpoints: list[str] = field(default_factory=lambda: ["127.0.0.1"])
    keyspace: str = "dns"
    create_schema: bool = False
    cluster: bool = True
    timeout: float = 5.0
    host: str = "127.0.0.1"
    port: int = 8053
    verbose: bool = False
    log_level: str = "INFO"
    workers: int = 4
    queue_size: int = 1000
    retry_attempts: int = 5
    retry_initial_delay: float = 0.1
    retry_max_delay: float = 5.0
    stop_on_fatal: bool = False

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(f"backend: expected one of {', '.join(BACKENDS)}, got {self.backend!r}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level: expected one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")
        if not 0 < self.port < 65536:
            raise ValueError(f"port: {self.port} out of range")
        for name in ("workers", "queue_size", "retry_attempts"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name}: must be at least 1")
        for name in ("timeout", "retry_initial_delay", "retry_max_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name}: must not be negative")

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "Settings":
        """Build settings from a mapping, coercing scalar types.

        Raises:
            ValueError: On unknown keys or values of the wrong type.
        """
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"unknown setting(s): {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, raw in data.items():
            default = known[key].default
            try:
                if key == "endpoints":
                    values[key] = split_endpoints(raw)
                elif key == "backend":
                    values[key] = str(raw).strip().lower()
                elif key == "log_level":
                    values[key] = str(raw).strip().upper()
                elif isinstance(default, bool):
                    if not isinstance(raw, bool):
                        raise TypeError(f"boolean required, got {raw!r}")
                    values[key] = raw
                elif isinstance(default, int):
                    values[key] = int(raw)
                elif isinstance(default, float):
                    values[key] = float(raw)
                else:
                    values[key] = str(raw)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"invalid {key}: {exc}") from exc
        return cls(**values)

    @classmethod
    def load(cls, path: str | None, force: bool = False) -> "Settings":
        """Load settings from a YAML file.

        Args:
            path: Path to the YAML file, or None for defaults.
            force: Raise if the file is missing instead of using defaults.

        Raises:
            ValueError: On invalid YAML structure or values.
            FileNotFoundError: If the file is missing and `force=True`.
        """
        if path is None:
            return cls()
        if not os.path.exists(path):
            if force:
                raise FileNotFoundError(path)
            logger.debug("no configuration at %s, using defaults", path)
            return cls()

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML parsing error: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"configuration must be a mapping, got {type(data).__name__}")

        settings = cls.from_mapping(data)
        logger.info("configuration loaded from %s: backend=%s", path, settings.backend)
        return settings

    def override(self, **changes: Any) -> "Settings":
        """Copy with the non-None `changes` applied (CLI flags)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if "endpoints" in changes:
            changes["endpoints"] = split_endpoints(changes["endpoints"])
        return replace(self, **changes)
