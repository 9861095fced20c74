"""Cassandra record store.

One ``domain_<type>`` table per record type, partitioned by
``domain_name``. The payload columns of multi-value types are clustering
columns, so inserting a payload that already exists overwrites its ttl
instead of adding a row. SOA and TXT have one row per name; TXT segments live
in a ``list<text>`` column updated with lightweight transactions.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from cassandra import ConsistencyLevel, OperationTimedOut, Timeout, Unavailable
from cassandra.cluster import Cluster, NoHostAvailable
from cassandra.connection import ConnectionException
from cassandra.query import dict_factory

from ..codec import (
    INTEGER_COLUMNS,
    TABLE_COLUMNS,
    decode_rows,
    encode_text,
    merge_text,
    table_name,
    to_columns,
)
from ..config import Settings
from ..records import MULTI_VALUE_TYPES, SUPPORTED_TYPES, Record
from .base import Backend, parse_endpoint

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9042


def _column_type(column: str) -> str:
    if column == "txt":
        return "list<text>"
    if column == "preference":
        return "int"
    if column in INTEGER_COLUMNS:
        return "bigint"
    return "text"


def table_ddl(rtype: str) -> str:
    """CREATE TABLE statement of the `rtype` table."""
    payload = TABLE_COLUMNS[rtype]
    columns = ["domain_name text", "class int", "ttl bigint"]
    columns += [f"{column} {_column_type(column)}" for column in payload]
    key = ("domain_name",) + payload if rtype in MULTI_VALUE_TYPES else ("domain_name",)
    return (
        f"CREATE TABLE IF NOT EXISTS {table_name(rtype)} "
        f"({', '.join(columns)}, PRIMARY KEY ({key[0]}{''.join(', ' + c for c in key[1:])}))"
    )


def keyspace_ddl(keyspace: str, replication_factor: int) -> str:
    return (
        f"CREATE KEYSPACE IF NOT EXISTS {keyspace} WITH replication = "
        f"{{'class': 'SimpleStrategy', 'replication_factor': {replication_factor}}}"
    )


def _insert_columns(rtype: str) -> tuple[str, ...]:
    return ("domain_name", "class", "ttl") + TABLE_COLUMNS[rtype]


class CassandraBackend(Backend):
    """Record store backed by a Cassandra cluster.

    Args:
        settings: Runtime settings; `endpoints`, `keyspace`, `create_schema`
            and `timeout` apply.
        session: Pre-built session, used as is instead of connecting.
    """

    name = "cassandra"
    transient_errors = (OperationTimedOut, Timeout, Unavailable, NoHostAvailable, ConnectionException)

    def __init__(self, settings: Settings, session: Optional[Any] = None) -> None:
        super().__init__(settings)
        self.cluster: Optional[Cluster] = None
        self.session = session
        self._select: dict[str, Any] = {}
        self._insert: dict[str, Any] = {}
        self._text_create = None
        self._text_update = None

    def connect(self) -> None:
        """Open the session and prepare every statement.

        Raises:
            TransientError: If no contact point answers.
            FatalError: On schema or authentication problems.
        """
        try:
            if self.session is None:
                self.session = self._open_session()
            self._prepare()
        except Exception as exc:
            raise self.classify(exc) from exc
        logger.info("connected to cassandra keyspace %s", self.settings.keyspace)

    def _open_session(self) -> Any:
        contact_points = [parse_endpoint(e, DEFAULT_PORT) for e in self.settings.endpoints]
        self.cluster = Cluster(
            contact_points=[host for host, _ in contact_points],
            port=contact_points[0][1],
        )
        session = self.cluster.connect()
        if self.settings.create_schema:
            replication = min(3, len(contact_points))
            session.execute(keyspace_ddl(self.settings.keyspace, replication))
        session.set_keyspace(self.settings.keyspace)
        session.default_consistency_level = ConsistencyLevel.QUORUM
        session.default_timeout = self.settings.timeout or None
        session.row_factory = dict_factory
        if self.settings.create_schema:
            for rtype in SUPPORTED_TYPES:
                session.execute(table_ddl(rtype))
            logger.info("cassandra schema ensured in keyspace %s", self.settings.keyspace)
        return session

    def _prepare(self) -> None:
        for rtype in SUPPORTED_TYPES:
            table = table_name(rtype)
            columns = _insert_columns(rtype)
            self._select[rtype] = self.session.prepare(f"SELECT * FROM {table} WHERE domain_name = ?")
            self._insert[rtype] = self.session.prepare(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))})"
            )
        self._text_create = self.session.prepare(
            "INSERT INTO domain_txt (domain_name, class, ttl, txt) VALUES (?, ?, ?, ?) IF NOT EXISTS"
        )
        self._text_update = self.session.prepare(
            "UPDATE domain_txt SET ttl = ?, class = ?, txt = ? WHERE domain_name = ? IF ttl = ? AND txt = ?"
        )

    def disconnect(self) -> None:
        if self.cluster is not None:
            self.cluster.shutdown()
            self.cluster = None
        elif self.session is not None:
            self.session.shutdown()
        self.session = None

    def _rows(self, rtype: str, name: str) -> Iterable[dict]:
        return self.session.execute(self._select[rtype], [name])

    def _lookup(self, name: str, rtype: str) -> list[Record]:
        return decode_rows(rtype, self._rows(rtype, name))

    def _upsert(self, record: Record) -> None:
        if record.rtype == "TXT":
            self._upsert_text(record)
            return
        columns = to_columns(record)
        self.session.execute(self._insert[record.rtype], [columns[c] for c in _insert_columns(record.rtype)])
        logger.debug("cassandra: upserted %s %s", record.name, record.rtype)

    def _upsert_text(self, record: Record) -> None:
        segments = list(record.rdata.segments)

        def attempt() -> bool:
            row = next(iter(self._rows("TXT", record.name)), None)
            if row is None:
                result = self.session.execute(
                    self._text_create, [record.name, record.rclass, record.ttl, segments]
                )
                return result.was_applied

            stored = list(row["txt"] or [])
            current = encode_text(row["ttl"], stored)
            merged = current
            for segment in segments:
                merged = merge_text(merged, record.ttl, segment) or merged
            if merged == current:
                return True
            result = self.session.execute(
                self._text_update,
                [record.ttl, record.rclass, merged[1:], record.name, row["ttl"], row["txt"]],
            )
            return result.was_applied

        self.compare_and_set(f"{record.name}:TXT", attempt)
        logger.debug("cassandra: upserted %s TXT", record.name)
