"""Common behaviour of the record stores."""
from __future__ import annotations

import logging
from typing import Callable

from ..codec import lookup_name, parse_line
from ..config import Settings
from ..errors import FatalError, KvdnsError, NotFoundError, TransientError, UnsupportedTypeError
from ..records import RDATA_TYPES, Record

logger = logging.getLogger(__name__)


def parse_endpoint(endpoint: str, default_port: int) -> tuple[str, int]:
    """Split ``host[:port]`` (``[v6]:port`` for IPv6) into host and port.

    Raises:
        ValueError: If the port is not a number.
    """
    endpoint = endpoint.strip()
    if endpoint.startswith("["):
        host, _, rest = endpoint[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    elif endpoint.count(":") == 1:
        host, _, port = endpoint.partition(":")
    else:
        host, port = endpoint, ""
    if not port:
        return host, default_port
    if not port.isdigit():
        raise ValueError(f"invalid port in endpoint {endpoint!r}")
    return host, int(port)


class Backend:
    """Base class for record stores.

    Subclasses implement `connect`, `disconnect`, `_lookup` and `_upsert` and
    list the library exceptions worth retrying in `transient_errors`. Every
    other library exception surfaces as `FatalError`.

    Args:
        settings: Runtime settings (endpoints, timeouts, ...).
    """

    name: str = "backend"
    transient_errors: tuple[type[BaseException], ...] = ()
    # Bound of optimistic compare-and-set rounds before giving up.
    cas_attempts: int = 8

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def connect(self) -> None:
        raise NotImplementedError("Backend.connect() must be implemented by a subclass")

    def disconnect(self) -> None:
        raise NotImplementedError("Backend.disconnect() must be implemented by a subclass")

    def _lookup(self, name: str, rtype: str) -> list[Record]:
        raise NotImplementedError("Backend._lookup() must be implemented by a subclass")

    def _upsert(self, record: Record) -> None:
        raise NotImplementedError("Backend._upsert() must be implemented by a subclass")

    def lookup(self, name: str, rtype: str) -> list[Record]:
        """Return the records stored for (name, rtype).

        Args:
            name: Queried owner name.
            rtype: Record type mnemonic.

        Returns:
            Matching records; empty when nothing is stored.

        Raises:
            UnsupportedTypeError: If `rtype` is not stored by this server.
            TransientError: On timeouts and lost connections.
            FatalError: On corrupt data and permanent backend errors.
        """
        if rtype not in RDATA_TYPES:
            raise UnsupportedTypeError(f"unsupported record type {rtype!r}")
        try:
            return self._lookup(lookup_name(name, rtype), rtype)
        except NotFoundError:
            return []
        except KvdnsError:
            raise
        except Exception as exc:
            raise self.classify(exc) from exc

    def upsert(self, line: str) -> None:
        """Parse a tab-separated RR line and merge it into the store."""
        self.upsert_record(parse_line(line))

    def upsert_record(self, record: Record) -> None:
        """Merge one record into the store, touching exactly one key."""
        try:
            self._upsert(record)
        except KvdnsError:
            raise
        except Exception as exc:
            raise self.classify(exc) from exc

    def classify(self, exc: BaseException) -> KvdnsError:
        """Wrap a library exception into the error taxonomy."""
        if isinstance(exc, self.transient_errors):
            return TransientError(f"{self.name}: {exc}")
        return FatalError(f"{self.name}: {type(exc).__name__}: {exc}")

    def compare_and_set(self, key: str, attempt: Callable[[], bool]) -> None:
        """Run `attempt` until it commits.

        Args:
            key: Key being written, for messages.
            attempt: Reads the current value and tries a conditional write;
                returns False when a concurrent writer got in first.

        Raises:
            TransientError: After `cas_attempts` lost races.
        """
        for _ in range(self.cas_attempts):
            if attempt():
                return
            logger.debug("%s: concurrent update on %s, retrying", self.name, key)
        raise TransientError(f"{self.name}: {key} still contended after {self.cas_attempts} attempts")
