"""Asyncio UDP and TCP handlers for the authoritative DNS server."""
from __future__ import annotations

import asyncio
import logging
import struct
from typing import Any, Optional

from dnslib import OPCODE, QTYPE, RCODE, DNSHeader, DNSRecord
from dnslib.dns import DNSError

from .driver import Driver

logger = logging.getLogger(__name__)

# Largest UDP reply without EDNS0.
UDP_PAYLOAD = 512


def udp_limit(request: DNSRecord) -> int:
    """Largest UDP reply the client accepts (EDNS0 OPT size, at least 512)."""
    for rr in request.ar:
        if rr.rtype == QTYPE.OPT:
            return max(UDP_PAYLOAD, rr.rclass)
    return UDP_PAYLOAD


def empty_reply(request: DNSRecord, rcode: int = RCODE.NOERROR) -> DNSRecord:
    """Authoritative reply echoing the questions of `request`, without answers."""
    reply = DNSRecord(
        DNSHeader(id=request.header.id, qr=1, aa=1, ra=0, rd=request.header.rd),
        questions=list(request.questions),
    )
    reply.header.rcode = rcode
    return reply


def servfail(data: bytes) -> Optional[bytes]:
    """Packed SERVFAIL for raw request bytes, or None if they do not parse."""
    try:
        return empty_reply(DNSRecord.parse(data), RCODE.SERVFAIL).pack()
    except DNSError:
        return None


def build_reply(driver: Driver, request: DNSRecord) -> DNSRecord:
    """Build the authoritative reply to a parsed request.

    Args:
        driver: Driver answering the question.
        request: Parsed request.

    Returns:
        DNSRecord: Reply with `aa` set and the rcode from the driver.
    """
    if request.header.opcode != OPCODE.QUERY:
        return empty_reply(request, RCODE.NOTIMP)
    if not request.questions:
        return empty_reply(request, RCODE.FORMERR)

    answer = driver.resolve(str(request.q.qname), request.q.qtype)
    reply = empty_reply(request, answer.rcode)
    try:
        for record in answer.records:
            reply.add_answer(record.to_rr())
    except (DNSError, ValueError) as exc:
        logger.error("cannot encode answer for %s: %s", request.q.qname, exc)
        return empty_reply(request, RCODE.SERVFAIL)
    return reply


def handle_query(driver: Driver, data: bytes, udp: bool = False) -> Optional[bytes]:
    """Turn one DNS message into the packed reply.

    Any failure past request parsing answers SERVFAIL.

    Args:
        driver: Driver answering the question.
        data: Raw request bytes.
        udp: Truncate (TC bit) replies larger than the client accepts.

    Returns:
        Packed reply, or None when the request cannot be parsed.
    """
    try:
        request = DNSRecord.parse(data)
    except DNSError:
        logger.debug("failed to parse request")
        return None

    try:
        reply = build_reply(driver, request)
        packed = reply.pack()
    except Exception as exc:  # last-resort guard, the client still gets an answer
        logger.exception("cannot answer %s: %s", request.q.qname, exc)
        return empty_reply(request, RCODE.SERVFAIL).pack()
    if udp and len(packed) > udp_limit(request):
        packed = reply.truncate().pack()
    return packed


class DNSUDPProtocol(asyncio.DatagramProtocol):
    """Authoritative DNS handler over UDP.

    Backend lookups block, so each datagram is answered from the loop's
    default executor. Pending answers are kept in `_tasks` until done.

    Attributes:
        transport: Active UDP transport or None until connected.
        driver: Shared driver answering questions.
    """

    def __init__(self, driver: Driver) -> None:
        self.transport: asyncio.DatagramTransport | None = None
        self.driver = driver
        self._tasks: set[asyncio.Task] = set()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]
        sock = self.transport.get_extra_info("socket")
        logger.info("UDP listening on %s", sock.getsockname() if sock else "?")

    def datagram_received(self, data: bytes, addr: Any) -> None:
        logger.debug("received %d bytes from %s", len(data), addr)
        task = asyncio.ensure_future(self._respond(data, addr))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _respond(self, data: bytes, addr: Any) -> None:
        loop = asyncio.get_running_loop()
        try:
            packed = await loop.run_in_executor(None, handle_query, self.driver, data, True)
        except Exception as exc:
            logger.exception("failed to answer %s: %s", addr, exc)
            packed = servfail(data)
        if packed is None or self.transport is None:
            return
        try:
            self.transport.sendto(packed, addr)
        except (OSError, RuntimeError) as exc:
            logger.warning("failed to send response to %s: %s", addr, exc)


class DNSTCPHandler:
    """Authoritative DNS handler over TCP (two-byte length prefixed messages).

    Instances are passed to `asyncio.start_server` as the client callback.
    """

    def __init__(self, driver: Driver) -> None:
        self.driver = driver

    async def _answer(self, data: bytes) -> Optional[bytes]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, handle_query, self.driver, data, False)
        except Exception as exc:
            logger.exception("failed to answer TCP query: %s", exc)
            return servfail(data)

    async def __call__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        try:
            while True:
                try:
                    (length,) = struct.unpack("!H", await reader.readexactly(2))
                    data = await reader.readexactly(length)
                except asyncio.IncompleteReadError:
                    break
                packed = await self._answer(data)
                if packed is None:
                    break
                writer.write(struct.pack("!H", len(packed)) + packed)
                await writer.drain()
        except (ConnectionError, OSError) as exc:
            logger.debug("TCP connection with %s dropped: %s", peer, exc)
        except Exception as exc:
            logger.exception("TCP connection with %s failed: %s", peer, exc)
        finally:
            writer.close()
