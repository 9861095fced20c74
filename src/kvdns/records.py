"""Canonical resource records and their type-specific data."""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import ClassVar, Sequence, Union

from dnslib import A, CNAME, MX, NS, PTR, QTYPE, RD, RR, SOA, TXT, DNSLabel
from dnslib import buffer as dns_buffer
from dnslib.dns import RDMAP, DNSError

U16_MAX = 0xFFFF
U32_MAX = 0xFFFFFFFF

# Stable order, also the order used for `domain_<type>` tables.
SUPPORTED_TYPES: tuple[str, ...] = ("A", "NS", "CNAME", "SOA", "PTR", "HINFO", "MX", "TXT")
# Types stored as a collection of independent "<ttl> <payload>" entries.
MULTI_VALUE_TYPES: frozenset[str] = frozenset({"A", "NS", "CNAME", "PTR", "HINFO", "MX"})


def parse_uint(value: object, limit: int, field: str) -> int:
    """Parse an unsigned decimal bounded by `limit`.

    Args:
        value: Text or int to convert.
        limit: Largest accepted value (inclusive).
        field: Field name used in the error message.

    Returns:
        The parsed integer.

    Raises:
        ValueError: If the value is not an unsigned decimal in range.
    """
    if isinstance(value, bool):
        raise ValueError(f"{field}: expected unsigned decimal, got {value!r}")
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        if not (text.isascii() and text.isdigit()):
            raise ValueError(f"{field}: expected unsigned decimal, got {value!r}")
        number = int(text)
    if number < 0 or number > limit:
        raise ValueError(f"{field}: {number} out of range 0..{limit}")
    return number


def canonical_name(name: str) -> str:
    """Lower-case an owner name and make it fully qualified."""
    name = name.strip().lower()
    if not name.endswith("."):
        name += "."
    return name


def reverse_name(name: str) -> str:
    """Canonicalise a PTR owner name.

    Raw addresses (``192.0.2.10``, ``2001:db8::1``, with or without a trailing
    dot) become their ``in-addr.arpa.`` / ``ip6.arpa.`` form; anything else is
    only normalised with `canonical_name`.
    """
    bare = name.strip().rstrip(".")
    try:
        return ipaddress.ip_address(bare).reverse_pointer + "."
    except ValueError:
        return canonical_name(name)


class HinfoRdata(RD):
    """HINFO rdata: two character-strings (dnslib ships no HINFO class)."""

    attrs = ("cpu", "os")

    def __init__(self, cpu: str, os: str) -> None:
        self.cpu = cpu.encode() if isinstance(cpu, str) else cpu
        self.os = os.encode() if isinstance(os, str) else os

    @classmethod
    def parse(cls, buffer, length: int) -> "HinfoRdata":
        try:
            values = []
            for _ in range(2):
                (size,) = buffer.unpack("!B")
                values.append(buffer.get(size))
            return cls(*values)
        except dns_buffer.BufferError as exc:
            raise DNSError(f"Error unpacking HINFO [offset={buffer.offset}]: {exc}") from exc

    @classmethod
    def fromZone(cls, rd: Sequence[str], origin=None) -> "HinfoRdata":
        if len(rd) != 2:
            raise DNSError(f"HINFO: expected 2 character-strings, got {len(rd)}")
        return cls(rd[0].strip('"'), rd[1].strip('"'))

    def pack(self, buffer) -> None:
        for value in (self.cpu, self.os):
            buffer.pack("!B", len(value))
            buffer.append(value)

    def toZone(self) -> str:
        return '"%s" "%s"' % (self.cpu.decode(errors="replace"), self.os.decode(errors="replace"))


# Zone files and wire replies resolve rdata classes through this map.
RDMAP["HINFO"] = HinfoRdata


def _character_string(value: str, rtype: str) -> str:
    if len(value.encode()) > 255:
        raise ValueError(f"{rtype}: character-string longer than 255 bytes: {value[:32]!r}...")
    return value


def _one(fields: Sequence[str], rtype: str) -> str:
    if len(fields) != 1 or not fields[0]:
        raise ValueError(f"{rtype}: expected 1 field, got {len(fields)}")
    return fields[0]


@dataclass(frozen=True, slots=True)
class Address:
    """A record data."""

    address: str
    rtype: ClassVar[str] = "A"

    def fields(self) -> tuple[str, ...]:
        return (self.address,)

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "Address":
        return cls(str(ipaddress.IPv4Address(_one(fields, cls.rtype))))

    def to_rdata(self) -> RD:
        return A(self.address)


@dataclass(frozen=True, slots=True)
class NameServer:
    """NS record data."""

    nameserver: str
    rtype: ClassVar[str] = "NS"

    def fields(self) -> tuple[str, ...]:
        return (self.nameserver,)

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "NameServer":
        return cls(_one(fields, cls.rtype))

    def to_rdata(self) -> RD:
        return NS(DNSLabel(self.nameserver))


@dataclass(frozen=True, slots=True)
class CanonicalName:
    """CNAME record data."""

    target: str
    rtype: ClassVar[str] = "CNAME"

    def fields(self) -> tuple[str, ...]:
        return (self.target,)

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "CanonicalName":
        return cls(_one(fields, cls.rtype))

    def to_rdata(self) -> RD:
        return CNAME(DNSLabel(self.target))


@dataclass(frozen=True, slots=True)
class Pointer:
    """PTR record data."""

    pointer: str
    rtype: ClassVar[str] = "PTR"

    def fields(self) -> tuple[str, ...]:
        return (self.pointer,)

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "Pointer":
        return cls(_one(fields, cls.rtype))

    def to_rdata(self) -> RD:
        return PTR(DNSLabel(self.pointer))


@dataclass(frozen=True, slots=True)
class HostInfo:
    """HINFO record data."""

    cpu: str
    os: str
    rtype: ClassVar[str] = "HINFO"

    def fields(self) -> tuple[str, ...]:
        return (self.cpu, self.os)

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "HostInfo":
        if len(fields) != 2 or not all(fields):
            raise ValueError(f"HINFO: expected 2 fields, got {len(fields)}")
        return cls(_character_string(fields[0], cls.rtype), _character_string(fields[1], cls.rtype))

    def to_rdata(self) -> RD:
        return HinfoRdata(self.cpu, self.os)


@dataclass(frozen=True, slots=True)
class MailExchange:
    """MX record data."""

    preference: int
    exchange: str
    rtype: ClassVar[str] = "MX"

    def fields(self) -> tuple[str, ...]:
        return (str(self.preference), self.exchange)

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "MailExchange":
        if len(fields) != 2 or not fields[1]:
            raise ValueError(f"MX: expected 2 fields, got {len(fields)}")
        return cls(parse_uint(fields[0], U16_MAX, "preference"), fields[1])

    def to_rdata(self) -> RD:
        return MX(DNSLabel(self.exchange), preference=self.preference)


@dataclass(frozen=True, slots=True)
class StartOfAuthority:
    """SOA record data."""

    mname: str
    rname: str
    serial: int
    refresh: int
    retry: int
    expire: int
    minimum: int
    rtype: ClassVar[str] = "SOA"
    timers: ClassVar[tuple[str, ...]] = ("serial", "refresh", "retry", "expire", "minimum")

    def fields(self) -> tuple[str, ...]:
        return (self.mname, self.rname) + tuple(str(getattr(self, t)) for t in self.timers)

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "StartOfAuthority":
        if len(fields) != 7 or not fields[0] or not fields[1]:
            raise ValueError(f"SOA: expected 7 fields, got {len(fields)}")
        timers = [parse_uint(v, U32_MAX, t) for v, t in zip(fields[2:], cls.timers)]
        return cls(fields[0], fields[1], *timers)

    def to_rdata(self) -> RD:
        return SOA(
            DNSLabel(self.mname),
            DNSLabel(self.rname),
            (self.serial, self.refresh, self.retry, self.expire, self.minimum),
        )


@dataclass(frozen=True, slots=True)
class Text:
    """TXT record data: ordered segments sharing one ttl."""

    segments: tuple[str, ...]
    rtype: ClassVar[str] = "TXT"

    def fields(self) -> tuple[str, ...]:
        return self.segments

    @classmethod
    def from_fields(cls, fields: Sequence[str]) -> "Text":
        if not fields:
            raise ValueError("TXT: expected at least 1 segment")
        return cls(tuple(_character_string(segment, cls.rtype) for segment in fields))

    def to_rdata(self) -> RD:
        return TXT(list(self.segments))


RecordData = Union[
    Address, NameServer, CanonicalName, Pointer, HostInfo, MailExchange, StartOfAuthority, Text
]

RDATA_TYPES: dict[str, type] = {
    cls.rtype: cls
    for cls in (Address, NameServer, CanonicalName, StartOfAuthority, Pointer, HostInfo, MailExchange, Text)
}


@dataclass(frozen=True, slots=True)
class Record:
    """Single DNS resource record.

    Attributes:
        name (str): Owner name, lower-case, fully qualified.
        rtype (str): Record type mnemonic, one of `SUPPORTED_TYPES`.
        ttl (int): Time to live, in seconds.
        rdata (RecordData): Type-specific data.
        rclass (int): DNS class, IN (1) unless stated otherwise.
    """

    name: str
    rtype: str
    ttl: int
    rdata: RecordData
    rclass: int = 1

    def to_rr(self) -> RR:
        """Build the `dnslib.RR` sent on the wire."""
        return RR(
            DNSLabel(self.name),
            getattr(QTYPE, self.rtype),
            rclass=self.rclass,
            ttl=self.ttl,
            rdata=self.rdata.to_rdata(),
        )
