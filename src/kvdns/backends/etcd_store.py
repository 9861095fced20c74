"""etcd record store (through the etcd v3 JSON gateway).

Every ``"<name>:<TYPE>"`` key holds one flat value: comma-joined
``"<ttl> <payload>"`` entries for multi-value types, ``"<ttl>,seg,seg"`` for
TXT and a single entry for SOA. Merges read the value and commit with a
compare-and-swap transaction, retried when another writer got in first.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import etcd3gw
from etcd3gw import exceptions as etcd_errors

from ..codec import (
    ENTRY_SEPARATOR,
    backend_key,
    decode_entries,
    decode_entry,
    decode_text,
    encode_entry,
    merge_entry,
    merge_text,
)
from ..config import Settings
from ..errors import FatalError, NotFoundError, TransientError
from ..records import Record
from .base import Backend, parse_endpoint

logger = logging.getLogger(__name__)

DEFAULT_PORT = 2379


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class EtcdBackend(Backend):
    """Record store backed by an etcd cluster.

    Args:
        settings: Runtime settings; `endpoints` and `timeout` apply.
        client: Pre-built client, used as is instead of connecting.
    """

    name = "etcd"
    transient_errors = (
        etcd_errors.ConnectionFailedError,
        etcd_errors.ConnectionTimeoutError,
        etcd_errors.InternalServerError,
    )

    def __init__(self, settings: Settings, client: Optional[Any] = None) -> None:
        super().__init__(settings)
        self.client = client

    def connect(self) -> None:
        """Use the first endpoint that reports its status.

        Raises:
            TransientError: If no endpoint answers.
        """
        if self.client is not None:
            return
        last_error: Exception | None = None
        for endpoint in self.settings.endpoints:
            host, port = parse_endpoint(endpoint, DEFAULT_PORT)
            client = etcd3gw.client(host=host, port=port, timeout=self.settings.timeout or None)
            try:
                client.status()
            except self.transient_errors as exc:
                logger.warning("etcd endpoint %s:%d unavailable: %s", host, port, exc)
                last_error = exc
                continue
            self.client = client
            logger.info("connected to etcd at %s:%d", host, port)
            return
        raise TransientError(f"etcd: no endpoint of {self.settings.endpoints} answered: {last_error}")

    def disconnect(self) -> None:
        if self.client is not None:
            self.client.session.close()
            self.client = None

    def _get(self, key: str) -> str | None:
        values = self.client.get(key)
        if not values:
            return None
        return _text(values[0])

    def _lookup(self, name: str, rtype: str) -> list[Record]:
        key = backend_key(name, rtype)
        value = self._get(key)
        if not value:
            raise NotFoundError(key)
        if rtype == "SOA":
            return [decode_entry(name, rtype, value)]
        if rtype == "TXT":
            return decode_text(name, value.split(ENTRY_SEPARATOR))
        return decode_entries(name, rtype, value.split(ENTRY_SEPARATOR))

    def _upsert(self, record: Record) -> None:
        key = backend_key(record.name, record.rtype)
        if record.rtype == "SOA":
            self.client.put(key, encode_entry(record))
            logger.debug("etcd: upserted %s", key)
            return

        if record.rtype == "TXT":
            additions = list(record.rdata.segments)
        else:
            additions = [encode_entry(record)]
        for item in additions:
            if ENTRY_SEPARATOR in item:
                raise FatalError(f"etcd: {key} value {item!r} contains {ENTRY_SEPARATOR!r}")

        def attempt() -> bool:
            current = self._get(key)
            existing = current.split(ENTRY_SEPARATOR) if current else []
            merged: list[str] | None = existing
            if record.rtype == "TXT":
                for segment in additions:
                    merged = merge_text(merged, record.ttl, segment) or merged
            else:
                merged = merge_entry(existing, additions[0])
            if merged is None or merged == existing:
                return True
            value = ENTRY_SEPARATOR.join(merged)
            if current is None:
                return bool(self.client.create(key, value))
            return bool(self.client.replace(key, current, value))

        self.compare_and_set(key, attempt)
        logger.debug("etcd: upserted %s", key)
