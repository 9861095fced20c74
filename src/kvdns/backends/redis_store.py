"""Redis (cluster) record store.

Keys are ``"<name>:<TYPE>"``. Multi-value types are lists of
``"<ttl> <payload>"`` entries, TXT is a list holding the ttl then the
segments, SOA is a plain string. Merges run as Lua scripts so concurrent
loaders cannot lose each other's entries.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from redis import Redis
from redis import exceptions as redis_errors
from redis.cluster import ClusterNode, RedisCluster

from ..codec import (
    backend_key,
    decode_entries,
    decode_entry,
    decode_text,
    encode_entry,
    entry_payload,
)
from ..config import Settings
from ..errors import NotFoundError
from ..records import Record
from .base import Backend, parse_endpoint

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6379

# KEYS[1]: list key; ARGV[1]: entry; ARGV[2]: entry payload.
# Replaces the entry with the same payload, else appends.
MERGE_ENTRY_SCRIPT = """
local entries = redis.call('LRANGE', KEYS[1], 0, -1)
for i, entry in ipairs(entries) do
  local sep = string.find(entry, ' ', 1, true)
  if sep and string.sub(entry, sep + 1) == ARGV[2] then
    if entry == ARGV[1] then
      return 0
    end
    redis.call('LSET', KEYS[1], i - 1, ARGV[1])
    return 1
  end
end
redis.call('RPUSH', KEYS[1], ARGV[1])
return 1
"""

# KEYS[1]: TXT list key; ARGV[1]: ttl; ARGV[2]: segment.
# Same ttl appends a missing segment, another ttl replaces the list.
MERGE_TEXT_SCRIPT = """
local ttl = redis.call('LINDEX', KEYS[1], 0)
if ttl == ARGV[1] then
  local segments = redis.call('LRANGE', KEYS[1], 1, -1)
  for _, segment in ipairs(segments) do
    if segment == ARGV[2] then
      return 0
    end
  end
  redis.call('RPUSH', KEYS[1], ARGV[2])
  return 1
end
redis.call('DEL', KEYS[1])
redis.call('RPUSH', KEYS[1], ARGV[1], ARGV[2])
return 1
"""


class RedisBackend(Backend):
    """Record store backed by a Redis cluster (or a single Redis node).

    Args:
        settings: Runtime settings; `endpoints`, `cluster` and `timeout` apply.
        client: Pre-built client, used as is instead of connecting.
    """

    name = "redis"
    transient_errors = (
        redis_errors.ConnectionError,
        redis_errors.TimeoutError,
        redis_errors.BusyLoadingError,
        redis_errors.ClusterDownError,
        redis_errors.TryAgainError,
    )

    def __init__(self, settings: Settings, client: Optional[Any] = None) -> None:
        super().__init__(settings)
        self.client = client
        self._merge_entry = None
        self._merge_text = None

    def connect(self) -> None:
        """Create the client and register the merge scripts.

        Raises:
            TransientError: If no node answers.
            FatalError: On any other client error.
        """
        try:
            if self.client is None:
                self.client = self._build_client()
                self.client.ping()
            self._merge_entry = self.client.register_script(MERGE_ENTRY_SCRIPT)
            self._merge_text = self.client.register_script(MERGE_TEXT_SCRIPT)
        except Exception as exc:
            raise self.classify(exc) from exc
        logger.info("connected to redis at %s", ",".join(self.settings.endpoints))

    def _build_client(self) -> Any:
        nodes = [parse_endpoint(e, DEFAULT_PORT) for e in self.settings.endpoints]
        timeout = self.settings.timeout or None
        if self.settings.cluster:
            return RedisCluster(
                startup_nodes=[ClusterNode(host, port) for host, port in nodes],
                decode_responses=True,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        host, port = nodes[0]
        if len(nodes) > 1:
            logger.warning("single-node redis: ignoring endpoints after %s:%d", host, port)
        return Redis(
            host=host,
            port=port,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )

    def disconnect(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None

    def _lookup(self, name: str, rtype: str) -> list[Record]:
        key = backend_key(name, rtype)
        if rtype == "SOA":
            value = self.client.get(key)
            if value is None:
                raise NotFoundError(key)
            return [decode_entry(name, rtype, value)]

        values = self.client.lrange(key, 0, -1)
        if rtype == "TXT":
            return decode_text(name, values)
        return decode_entries(name, rtype, values)

    def _upsert(self, record: Record) -> None:
        key = backend_key(record.name, record.rtype)
        if record.rtype == "SOA":
            self.client.set(key, encode_entry(record))
        elif record.rtype == "TXT":
            for segment in record.rdata.segments:
                self._merge_text(keys=[key], args=[str(record.ttl), segment])
        else:
            entry = encode_entry(record)
            self._merge_entry(keys=[key], args=[entry, entry_payload(entry)])
        logger.debug("redis: upserted %s", key)
