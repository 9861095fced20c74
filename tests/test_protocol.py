"""
Brief: Tests for DNS message handling over UDP semantics and the TCP handler.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import asyncio
import struct

from dnslib import EDNS0, OPCODE, QTYPE, RCODE, DNSHeader, DNSQuestion, DNSRecord

from kvdns import protocol
from kvdns.driver import Answer
from kvdns.protocol import DNSTCPHandler, DNSUDPProtocol, build_reply, handle_query, udp_limit
from kvdns.records import HostInfo, Record


def _ask(driver, name, qtype="A", udp=False):
    data = handle_query(driver, DNSRecord.question(name, qtype).pack(), udp=udp)
    return DNSRecord.parse(data)


def test_answer_is_authoritative(driver):
    driver.upsert("example.com.\t300\tIN\tA\t192.0.2.10")
    reply = _ask(driver, "example.com")
    assert reply.header.aa == 1
    assert reply.header.qr == 1
    assert reply.header.rcode == RCODE.NOERROR
    assert [str(rr.rdata) for rr in reply.rr] == ["192.0.2.10"]
    assert reply.rr[0].ttl == 300


def test_mx_and_txt_answers(driver):
    driver.upsert("example.com.\t300\tIN\tMX\t10 mail1.example.com.")
    driver.upsert("example.com.\t300\tIN\tMX\t20 mail2.example.com.")
    driver.upsert('example.com.\t300\tIN\tTXT\t"first"')
    driver.upsert('example.com.\t300\tIN\tTXT\t"second"')
    assert [rr.rdata.preference for rr in _ask(driver, "example.com", "MX").rr] == [10, 20]
    (txt,) = _ask(driver, "example.com", "TXT").rr
    assert txt.rdata.data == [b"first", b"second"]


def test_missing_name_is_nxdomain(driver):
    reply = _ask(driver, "missing.example.com")
    assert reply.header.rcode == RCODE.NXDOMAIN
    assert reply.rr == []


def test_unsupported_type_is_notimp(driver):
    assert _ask(driver, "example.com", "AAAA").header.rcode == RCODE.NOTIMP


def test_other_opcodes_are_notimp(driver):
    request = DNSRecord(DNSHeader(id=9, opcode=OPCODE.STATUS), q=DNSQuestion("example.com."))
    assert build_reply(driver, request).header.rcode == RCODE.NOTIMP


def test_request_without_question_is_formerr(driver):
    reply = DNSRecord.parse(handle_query(driver, DNSRecord(DNSHeader(id=7)).pack()))
    assert reply.header.rcode == RCODE.FORMERR
    assert reply.header.id == 7
    assert reply.questions == []


def test_garbage_is_dropped(driver):
    assert handle_query(driver, b"\x00\x01") is None


def test_large_udp_reply_is_truncated(driver):
    """
    Brief: A reply over 512 bytes sets TC on UDP but is sent whole on TCP.

    Inputs:
      - driver: etcd-backed driver fixture

    Outputs:
      - None: Asserts the TC bit and answer counts
    """
    for i in range(60):
        driver.upsert(f"big.example.com.\t300\tIN\tA\t192.0.2.{i}")
    udp = _ask(driver, "big.example.com", udp=True)
    assert udp.header.tc == 1
    assert udp.rr == []
    tcp = _ask(driver, "big.example.com", udp=False)
    assert tcp.header.tc == 0
    assert len(tcp.rr) == 60


def test_udp_limit_honours_edns0():
    request = DNSRecord.question("example.com")
    assert udp_limit(request) == 512
    request.add_ar(EDNS0(udp_len=4096))
    assert udp_limit(request) == 4096


def test_tcp_handler_answers_length_prefixed_messages(driver):
    driver.upsert("example.com.\t300\tIN\tNS\tns1.example.com.")

    async def exchange():
        server = await asyncio.start_server(DNSTCPHandler(driver), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        query = DNSRecord.question("example.com", "NS").pack()
        writer.write(struct.pack("!H", len(query)) + query)
        await writer.drain()
        (length,) = struct.unpack("!H", await reader.readexactly(2))
        data = await reader.readexactly(length)
        writer.close()
        server.close()
        await server.wait_closed()
        return DNSRecord.parse(data)

    reply = asyncio.run(exchange())
    assert reply.header.rcode == RCODE.NOERROR
    assert str(reply.rr[0].rdata) == "ns1.example.com."


class OversizedDriver:
    """Brief: Driver stand-in answering with an HINFO record too long for the wire."""

    def resolve(self, qname, qtype):
        return Answer(records=[Record("host.example.com.", "HINFO", 60, HostInfo("X" * 300, "LINUX"))])


class FakeDatagramTransport:
    def __init__(self):
        self.sent = []

    def get_extra_info(self, name):
        return None

    def sendto(self, data, addr):
        self.sent.append((data, addr))


def test_unpackable_answer_is_servfail():
    reply = DNSRecord.parse(handle_query(OversizedDriver(), DNSRecord.question("host.example.com", "HINFO").pack()))
    assert reply.header.rcode == RCODE.SERVFAIL
    assert reply.rr == []
    assert str(reply.q.qname) == "host.example.com."


def _udp_exchange(driver, query):
    async def run():
        transport = FakeDatagramTransport()
        udp = DNSUDPProtocol(driver)
        udp.connection_made(transport)
        udp.datagram_received(query, ("192.0.2.1", 5353))
        assert len(udp._tasks) == 1
        await asyncio.gather(*udp._tasks)
        await asyncio.sleep(0)
        return udp, transport

    return asyncio.run(run())


def test_udp_answers_servfail_when_packing_fails():
    """
    Brief: A reply that cannot be packed still reaches the client as SERVFAIL and the task is released.

    Inputs:
      - None

    Outputs:
      - None: Asserts one SERVFAIL datagram and no pending tasks
    """
    udp, transport = _udp_exchange(OversizedDriver(), DNSRecord.question("host.example.com", "HINFO").pack())
    assert udp._tasks == set()
    ((data, addr),) = transport.sent
    assert addr == ("192.0.2.1", 5353)
    assert DNSRecord.parse(data).header.rcode == RCODE.SERVFAIL


def test_udp_answers_servfail_when_handler_crashes(monkeypatch, driver):
    def crash(*args):
        raise RuntimeError("bug")

    monkeypatch.setattr(protocol, "handle_query", crash)
    query = DNSRecord.question("example.com", "A")
    udp, transport = _udp_exchange(driver, query.pack())
    ((data, _),) = transport.sent
    reply = DNSRecord.parse(data)
    assert (reply.header.id, reply.header.rcode) == (query.header.id, RCODE.SERVFAIL)


def test_tcp_answers_servfail_when_handler_crashes(monkeypatch, driver):
    def crash(*args):
        raise RuntimeError("bug")

    monkeypatch.setattr(protocol, "handle_query", crash)

    async def exchange():
        server = await asyncio.start_server(DNSTCPHandler(driver), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        query = DNSRecord.question("example.com", "A").pack()
        writer.write(struct.pack("!H", len(query)) + query)
        await writer.drain()
        (length,) = struct.unpack("!H", await reader.readexactly(2))
        data = await reader.readexactly(length)
        writer.close()
        server.close()
        await server.wait_closed()
        return DNSRecord.parse(data)

    assert asyncio.run(exchange()).header.rcode == RCODE.SERVFAIL
