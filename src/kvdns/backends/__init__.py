"""Record stores and the factory selecting one of them."""
from __future__ import annotations

import importlib

from ..config import Settings
from .base import Backend

# Modules are imported on demand so only the selected store's client library
# has to be installed.
BACKEND_CLASSES: dict[str, str] = {
    "cassandra": "kvdns.backends.cassandra_store:CassandraBackend",
    "redis": "kvdns.backends.redis_store:RedisBackend",
    "etcd": "kvdns.backends.etcd_store:EtcdBackend",
}


def get_backend_class(name: str) -> type[Backend]:
    """Resolve a backend name to its class.

    Raises:
        ValueError: If no backend has that name.
    """
    target = BACKEND_CLASSES.get(name.strip().lower())
    if target is None:
        raise ValueError(f"unknown backend {name!r}; expected one of {', '.join(BACKEND_CLASSES)}")
    module_name, _, attr = target.partition(":")
    return getattr(importlib.import_module(module_name), attr)


def create_backend(settings: Settings) -> Backend:
    """Instantiate the backend named by `settings.backend` (not yet connected)."""
    return get_backend_class(settings.backend)(settings)


__all__ = ["Backend", "BACKEND_CLASSES", "create_backend", "get_backend_class"]
