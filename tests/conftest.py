"""
Brief: Shared pytest configuration and in-memory backend clients.

Inputs:
  - None

Outputs:
  - Fixtures: settings, etcd_client, etcd_backend, driver, cassandra_session
"""

from __future__ import annotations

import os
import re
import sys
from typing import Any, Dict, List, Optional

import pytest

# Ensure 'src' is on sys.path so 'kvdns' is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from kvdns.backends.etcd_store import EtcdBackend  # noqa: E402
from kvdns.codec import TABLE_COLUMNS  # noqa: E402
from kvdns.config import Settings  # noqa: E402
from kvdns.driver import Driver  # noqa: E402


class FakeEtcdSession:
    """Brief: Stand-in for the requests session held by the etcd client."""

    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeEtcdClient:
    """Brief: Minimal in-memory etcd3gw client substitute.

    Inputs:
      - conflicts: number of replace() calls that report a lost race.

    Outputs:
      - FakeEtcdClient with get/put/create/replace over a dict, recording
        every write in `writes`.
    """

    def __init__(self, conflicts: int = 0) -> None:
        self.store: Dict[str, str] = {}
        self.writes: List[str] = []
        self.conflicts = conflicts
        self.session = FakeEtcdSession()

    def status(self) -> Dict[str, Any]:
        return {"version": "3.5.0"}

    def get(self, key: str) -> List[str]:
        if key in self.store:
            return [self.store[key]]
        return []

    def put(self, key: str, value: str) -> bool:
        self.store[key] = value
        self.writes.append(key)
        return True

    def create(self, key: str, value: str) -> bool:
        if key in self.store:
            return False
        return self.put(key, value)

    def replace(self, key: str, initial_value: str, new_value: str) -> bool:
        if self.conflicts > 0:
            self.conflicts -= 1
            return False
        if self.store.get(key) != initial_value:
            return False
        return self.put(key, new_value)


class FakeResult(list):
    """Brief: Cassandra ResultSet substitute carrying `was_applied`."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, was_applied: bool = True) -> None:
        super().__init__(rows or [])
        self.was_applied = was_applied


class FakePrepared:
    def __init__(self, query: str) -> None:
        self.query_string = query


_SELECT = re.compile(r"SELECT \* FROM (\w+) WHERE domain_name = \?$")
_INSERT = re.compile(r"INSERT INTO (\w+) \(([^)]*)\) VALUES \([^)]*\)( IF NOT EXISTS)?$")
_UPDATE = re.compile(r"UPDATE (\w+) SET (.+) WHERE domain_name = \? IF (.+)$")


class FakeCassandraSession:
    """Brief: In-memory Cassandra session understanding the statements kvdns prepares.

    Inputs:
      - None

    Outputs:
      - FakeCassandraSession with `tables` mapping table -> primary key -> row.
        Rows of multi-value tables are keyed by every payload column, like
        the clustering columns of the real schema.
    """

    SINGLE_ROW_TABLES = ("domain_soa", "domain_txt")

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[tuple, Dict[str, Any]]] = {}
        self.executed: List[str] = []
        self.shut_down = False
        self.fail_with: Optional[BaseException] = None

    def prepare(self, query: str) -> FakePrepared:
        return FakePrepared(query)

    def shutdown(self) -> None:
        self.shut_down = True

    def _key(self, table: str, row: Dict[str, Any]) -> tuple:
        if table in self.SINGLE_ROW_TABLES:
            return (row["domain_name"],)
        clustering = TABLE_COLUMNS[table[len("domain_") :].upper()]
        return (row["domain_name"],) + tuple(row[column] for column in clustering)

    def execute(self, statement: FakePrepared, params: List[Any]) -> FakeResult:
        if self.fail_with is not None:
            raise self.fail_with
        query = statement.query_string
        self.executed.append(query)

        match = _SELECT.match(query)
        if match:
            rows = self.tables.get(match.group(1), {})
            found = [dict(row) for key, row in sorted(rows.items()) if row["domain_name"] == params[0]]
            return FakeResult(found)

        match = _INSERT.match(query)
        if match:
            table = self.tables.setdefault(match.group(1), {})
            columns = [c.strip() for c in match.group(2).split(",")]
            row = dict(zip(columns, params))
            key = self._key(match.group(1), row)
            if match.group(3) and key in table:
                return FakeResult([table[key]], was_applied=False)
            table[key] = row
            return FakeResult()

        match = _UPDATE.match(query)
        if match:
            table = self.tables.setdefault(match.group(1), {})
            assignments = [a.split(" = ")[0].strip() for a in match.group(2).split(", ")]
            conditions = [c.split(" = ")[0].strip() for c in match.group(3).split(" AND ")]
            values = list(params)
            updates = dict(zip(assignments, values[: len(assignments)]))
            name = values[len(assignments)]
            expected = dict(zip(conditions, values[len(assignments) + 1 :]))
            row = table.get((name,))
            if row is None or any(row.get(c) != v for c, v in expected.items()):
                return FakeResult(was_applied=False)
            row.update(updates)
            return FakeResult()

        raise AssertionError(f"unexpected statement: {query}")


@pytest.fixture
def settings() -> Settings:
    """Brief: Default settings with fast retries."""
    return Settings(retry_initial_delay=0.0, retry_max_delay=0.0)


@pytest.fixture
def etcd_client() -> FakeEtcdClient:
    return FakeEtcdClient()


@pytest.fixture
def etcd_backend(etcd_client: FakeEtcdClient) -> EtcdBackend:
    """Brief: Connected etcd backend over the in-memory client."""
    backend = EtcdBackend(Settings(backend="etcd"), client=etcd_client)
    backend.connect()
    return backend


@pytest.fixture
def driver(etcd_backend: EtcdBackend) -> Driver:
    return Driver(etcd_backend)


@pytest.fixture
def cassandra_session() -> FakeCassandraSession:
    return FakeCassandraSession()
