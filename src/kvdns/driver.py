"""Backend-agnostic facade used by the DNS listeners and the bulk loader."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dnslib import QTYPE, RCODE

from .backends import Backend, create_backend
from .config import Settings
from .errors import FatalError, TransientError, UnsupportedTypeError
from .records import RDATA_TYPES, Record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Answer:
    """Records answering one question, with the response code to send.

    Attributes:
        records: Answer section, in backend order.
        rcode: NOERROR (0), SERVFAIL (2), NXDOMAIN (3) or NOTIMP (4).
    """

    records: list[Record] = field(default_factory=list)
    rcode: int = RCODE.NOERROR


class Driver:
    """Single entry point over whichever backend is configured.

    `connect`, `lookup`, `upsert` and `disconnect` delegate to the backend and
    let its errors through unchanged; `resolve` maps outcomes to rcodes for
    the wire layer. One driver, and so one backend session, is shared by every
    handler and worker of the process.

    Args:
        backend: Store implementation.
        verbose: Log every resolved question at INFO instead of DEBUG.
    """

    def __init__(self, backend: Backend, verbose: bool = False) -> None:
        self.backend = backend
        self.verbose = verbose

    @classmethod
    def from_settings(cls, settings: Settings) -> "Driver":
        """Build a driver around the backend named in `settings`."""
        return cls(create_backend(settings), verbose=settings.verbose)

    def connect(self) -> None:
        self.backend.connect()

    def disconnect(self) -> None:
        self.backend.disconnect()

    def lookup(self, name: str, rtype: str) -> list[Record]:
        return self.backend.lookup(name, rtype)

    def upsert(self, line: str) -> None:
        self.backend.upsert(line)

    def resolve(self, qname: str, qtype: int) -> Answer:
        """Answer a question.

        Args:
            qname: Queried name.
            qtype: Numeric DNS type (`dnslib.QTYPE`).

        Returns:
            Answer: Records and rcode. Backend failures become SERVFAIL and
            are logged; they are not raised.
        """
        rtype = QTYPE.get(qtype)
        log = logger.info if self.verbose else logger.debug
        log("query: %s %s", qname, rtype)

        if rtype not in RDATA_TYPES:
            return Answer(rcode=RCODE.NOTIMP)
        try:
            records = self.lookup(qname, rtype)
        except UnsupportedTypeError:
            return Answer(rcode=RCODE.NOTIMP)
        except (TransientError, FatalError) as exc:
            logger.error("lookup %s %s failed: %s", qname, rtype, exc)
            return Answer(rcode=RCODE.SERVFAIL)

        if not records:
            return Answer(rcode=RCODE.NXDOMAIN)
        return Answer(records=records)
