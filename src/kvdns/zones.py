"""Zone files as a source of RR lines for the bulk loader."""
from __future__ import annotations

import logging
import os
from typing import Iterator, Optional

from dnslib import CLASS, QTYPE, RR, DNSLabel
from dnslib.dns import DNSError

from .records import RDATA_TYPES

logger = logging.getLogger(__name__)


def rr_lines(rr: RR) -> list[str]:
    """Tab-separated RR lines for one parsed record (one per TXT segment)."""
    rtype = QTYPE.get(rr.rtype)
    head = f"{rr.rname}\t{rr.ttl}\t{CLASS.get(rr.rclass)}\t{rtype}\t"
    if rtype == "TXT":
        return [head + segment.decode("utf-8", errors="replace") for segment in rr.rdata.data]
    return [head + rr.rdata.toZone()]


def parse_zone(text: str, origin: Optional[str] = None) -> list[RR]:
    """Parse zone text and keep the records of the zone.

    Only the first SOA is kept. The zone is `origin` when given, else the SOA
    owner; records outside it are dropped.

    Raises:
        ValueError: If the zone has no SOA record.
    """
    records = RR.fromZone(text, origin=origin or "")
    soa: Optional[RR] = None
    kept: list[RR] = []
    for rr in records:
        if rr.rtype == QTYPE.SOA:
            if soa is not None:
                continue
            soa = rr
        kept.append(rr)
    if soa is None:
        raise ValueError("SOA record not found")

    zone = DNSLabel(origin) if origin else soa.rname
    logger.info("zone parsed: %s", zone)
    return [rr for rr in kept if rr.rname.matchSuffix(zone)]


def zone_lines(path: str, origin: Optional[str] = None) -> Iterator[str]:
    """Yield the RR lines of one zone file; unsupported types are skipped."""
    with open(path, "r", encoding="utf-8") as f:
        records = parse_zone(f.read(), origin)
    skipped = 0
    for rr in records:
        if QTYPE.get(rr.rtype) not in RDATA_TYPES:
            skipped += 1
            continue
        yield from rr_lines(rr)
    if skipped:
        logger.info("%s: skipped %d records of unsupported types", path, skipped)


def directory_lines(path: str) -> Iterator[str]:
    """Yield the RR lines of every zone file in `path`, in name order.

    Files that fail to parse are logged and skipped.
    """
    for entry in sorted(os.listdir(path)):
        file_path = os.path.join(path, entry)
        if not os.path.isfile(file_path):
            continue
        try:
            lines = list(zone_lines(file_path))
        except (DNSError, ValueError, KeyError, OSError) as exc:
            logger.error("error parsing %s: %s", file_path, exc)
            continue
        yield from lines
