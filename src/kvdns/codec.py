"""Translation between RR lines, records and the backend layouts.

Two layouts exist. The flat layout (Redis, etcd) keeps each entry of a
multi-value key as ``"<ttl> <payload>"`` where the payload is the space-joined
rdata fields, stores SOA as a single entry of the same shape, and stores TXT
as the ttl followed by its segments. The column layout (Cassandra) maps rdata
fields onto columns of a ``domain_<type>`` table.
"""
from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from dnslib import CLASS

from .errors import CorruptRecordError, FatalError, UnsupportedTypeError
from .records import (
    RDATA_TYPES,
    U16_MAX,
    U32_MAX,
    Record,
    Text,
    canonical_name,
    parse_uint,
    reverse_name,
)

# Separator between entries of one etcd value.
ENTRY_SEPARATOR = ","

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "A": ("address",),
    "NS": ("nsdname",),
    "CNAME": ("domain_cname",),
    "SOA": ("mname", "rname", "serial", "refresh", "retry", "expire", "minimum"),
    "PTR": ("ptrdname",),
    "HINFO": ("cpu", "os"),
    "MX": ("preference", "exchange"),
    "TXT": ("txt",),
}
INTEGER_COLUMNS = frozenset({"serial", "refresh", "retry", "expire", "minimum", "preference"})

CLASS_CODES: dict[str, int] = {str(v).upper(): int(k) for k, v in CLASS.forward.items()}
CLASS_CODES["HS"] = CLASS_CODES.get("HESIOD", 4)


def backend_key(name: str, rtype: str) -> str:
    """Key of a (name, type) pair in the key-value backends."""
    return f"{name}:{rtype}"


def table_name(rtype: str) -> str:
    return f"domain_{rtype.lower()}"


def parse_class(value: str) -> int:
    """Resolve a class mnemonic (``IN``) or decimal value."""
    text = value.strip().upper()
    if text in CLASS_CODES:
        return CLASS_CODES[text]
    return parse_uint(text, U16_MAX, "class")


def split_rdata(rtype: str, rdata: str) -> list[str]:
    """Split the rdata column of an input line into rdata fields.

    TXT keeps its text as a single segment without surrounding quotes; every
    other type is split on whitespace.
    """
    rdata = rdata.strip()
    if rtype == "TXT":
        return [rdata.strip('"')]
    fields = rdata.split()
    if rtype == "HINFO":
        return [field.strip('"') for field in fields]
    return fields


def parse_line(line: str) -> Record:
    """Parse one ``name TTL class TYPE rdata`` tab-separated line.

    Args:
        line: Input line, with or without its newline.

    Returns:
        Record: Canonical record; PTR owners are in reverse-lookup form.

    Raises:
        UnsupportedTypeError: If TYPE is not a supported record type.
        FatalError: On any other malformed content.
    """
    tokens = line.rstrip("\r\n").split("\t")
    if len(tokens) < 5:
        raise FatalError(f"expected 5 tab-separated fields, got {len(tokens)}: {line!r}")

    name = tokens[0].strip()
    rtype = tokens[3].strip().upper()
    if rtype not in RDATA_TYPES:
        raise UnsupportedTypeError(f"unsupported record type {rtype!r}: {line!r}")
    if not name:
        raise FatalError(f"empty owner name: {line!r}")

    try:
        ttl = parse_uint(tokens[1], U32_MAX, "ttl")
        rclass = parse_class(tokens[2])
        rdata = RDATA_TYPES[rtype].from_fields(split_rdata(rtype, "\t".join(tokens[4:])))
    except ValueError as exc:
        raise FatalError(f"malformed {rtype} line {line!r}: {exc}") from exc

    owner = reverse_name(name) if rtype == "PTR" else canonical_name(name)
    return Record(name=owner, rtype=rtype, ttl=ttl, rdata=rdata, rclass=rclass)


def lookup_name(name: str, rtype: str) -> str:
    """Normalise a queried name the same way upserts normalise owners."""
    return reverse_name(name) if rtype == "PTR" else canonical_name(name)


# Flat layout


def encode_entry(record: Record) -> str:
    """Entry string ``"<ttl> <payload>"`` of a multi-value or SOA record."""
    return " ".join((str(record.ttl),) + record.rdata.fields())


def entry_payload(entry: str) -> str:
    """Payload of an entry, i.e. the entry without its ttl."""
    return entry.partition(" ")[2]


def decode_entry(name: str, rtype: str, entry: str) -> Record:
    """Rebuild one record from an entry string.

    Raises:
        CorruptRecordError: If the entry does not decode for `rtype`.
    """
    ttl, _, payload = entry.partition(" ")
    try:
        rdata = RDATA_TYPES[rtype].from_fields(payload.split())
        return Record(name=name, rtype=rtype, ttl=parse_uint(ttl, U32_MAX, "ttl"), rdata=rdata)
    except ValueError as exc:
        raise CorruptRecordError(f"cannot decode {rtype} entry {entry!r} of {name}: {exc}") from exc


def decode_entries(name: str, rtype: str, entries: Iterable[str]) -> list[Record]:
    """One record per stored entry, in storage order."""
    return [decode_entry(name, rtype, entry) for entry in entries if entry]


def merge_entry(entries: Sequence[str], entry: str) -> list[str] | None:
    """Merge a new entry into the entries of a multi-value key.

    An entry with the same payload is replaced in place (ttl update), else the
    entry is appended.

    Returns:
        The merged entries, or None when `entry` is already stored verbatim.
    """
    payload = entry_payload(entry)
    merged = list(entries)
    for i, existing in enumerate(merged):
        if entry_payload(existing) == payload:
            if existing == entry:
                return None
            merged[i] = entry
            return merged
    merged.append(entry)
    return merged


def encode_text(ttl: int, segments: Iterable[str]) -> list[str]:
    """Flat TXT value: ttl first, then the segments."""
    return [str(ttl), *segments]


def decode_text(name: str, values: Sequence[str]) -> list[Record]:
    """Rebuild the TXT record of `name` from its flat value.

    Returns:
        A single record carrying every segment, or an empty list.
    """
    if not values:
        return []
    try:
        ttl = parse_uint(values[0], U32_MAX, "ttl")
        rdata = Text.from_fields(list(values[1:]))
    except ValueError as exc:
        raise CorruptRecordError(f"cannot decode TXT value {list(values)!r} of {name}: {exc}") from exc
    return [Record(name=name, rtype="TXT", ttl=ttl, rdata=rdata)]


def merge_text(values: Sequence[str], ttl: int, segment: str) -> list[str] | None:
    """Merge a TXT segment into a flat TXT value.

    A matching ttl appends the segment unless already present; a different
    ttl replaces the whole set.

    Returns:
        The new flat value, or None when nothing changes.
    """
    if values and values[0] == str(ttl):
        if segment in values[1:]:
            return None
        return [*values, segment]
    return encode_text(ttl, [segment])


# Column layout


def to_columns(record: Record) -> dict[str, object]:
    """Column values of `record` for its ``domain_<type>`` table."""
    columns: dict[str, object] = {
        "domain_name": record.name,
        "class": record.rclass,
        "ttl": record.ttl,
    }
    if record.rtype == "TXT":
        columns["txt"] = list(record.rdata.segments)
        return columns
    for column, value in zip(TABLE_COLUMNS[record.rtype], record.rdata.fields()):
        columns[column] = int(value) if column in INTEGER_COLUMNS else value
    return columns


def _column(row: Mapping[str, object], column: str) -> object:
    value = row[column]
    if value is None:
        raise ValueError(f"column {column} is null")
    return value


def from_row(rtype: str, row: Mapping[str, object]) -> Record:
    """Rebuild a record from one ``domain_<type>`` row.

    Raises:
        CorruptRecordError: If a column is missing, null or out of range.
    """
    try:
        if rtype == "TXT":
            rdata = Text.from_fields([str(s) for s in (row["txt"] or ())])
        else:
            fields = [str(_column(row, c)) for c in TABLE_COLUMNS[rtype]]
            rdata = RDATA_TYPES[rtype].from_fields(fields)
        return Record(
            name=str(_column(row, "domain_name")),
            rtype=rtype,
            ttl=parse_uint(_column(row, "ttl"), U32_MAX, "ttl"),
            rdata=rdata,
            rclass=parse_uint(_column(row, "class"), U16_MAX, "class"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise CorruptRecordError(f"cannot decode {table_name(rtype)} row {dict(row)!r}: {exc}") from exc


def decode_rows(rtype: str, rows: Iterable[Mapping[str, object]]) -> list[Record]:
    return [from_row(rtype, row) for row in rows]
