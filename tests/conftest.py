# tests/conftest.py
import socket
import struct

import pytest

from echoPing import icmp


def ipv4_header(payload_length, ihl=5):
    header = struct.pack("!BBHHHBBH4s4s", 0x40 | ihl, 0, ihl * 4 + payload_length,
                         0, 0, 64, 1, 0, bytes([127, 0, 0, 1]), bytes([127, 0, 0, 1]))
    return header + bytes(ihl * 4 - len(header))


class LoopbackSocket:
    """
    Замена сырого сокета на loopback: входящие пакеты читаются из socketpair.
    Как и настоящий сырой сокет, при respond сначала получает копию
    собственного запроса, затем ответ. Фильтр типов ICMP, установленный
    через setsockopt, применяется к входящим пакетам
    """

    def __init__(self, variant, respond=True, ihl=5):
        self.variant = variant
        self.respond = respond
        self.ihl = ihl
        self.inbound, self.peer = socket.socketpair(socket.AF_UNIX, socket.SOCK_DGRAM)
        self.sent = []
        self.options = []
        self.blocked = frozenset()
        self.closed = False

    def setsockopt(self, level, option, value):
        self.options.append((level, option, value))
        if (level, option) == (icmp.SOL_RAW, icmp.ICMP_FILTER):
            mask, = icmp.ICMP_FILTER_MASK.unpack(value)
            self.blocked = frozenset(t for t in range(32) if mask >> t & 1)
        elif (level, option) == (socket.IPPROTO_ICMPV6, icmp.ICMP6_FILTER):
            words = icmp.ICMP6_FILTER_MASK.unpack(value)
            self.blocked = frozenset(t for t in range(256) if words[t >> 5] >> (t & 31) & 1)

    def fileno(self):
        return self.inbound.fileno()

    def sendto(self, data, address):
        self.sent.append((bytes(data), address))
        if self.respond:
            self.inject_raw(bytes(data))
            request = icmp.parse_message(self.variant.proto, data)
            self.inject_echo(self.variant.echo_reply, request.identifier,
                             request.sequence, request.data)
        return len(data)

    def inject_raw(self, icmp_bytes):
        if icmp_bytes and icmp_bytes[0] in self.blocked:
            return
        if self.variant is icmp.ICMPv4:
            icmp_bytes = ipv4_header(len(icmp_bytes), self.ihl) + icmp_bytes
        self.peer.send(icmp_bytes)

    def inject_echo(self, icmp_type, identifier, sequence, data=b"ping"):
        self.inject_raw(icmp.ECHO_HEADER.pack(icmp_type, 0, 0, identifier, sequence) + data)

    def recvfrom(self, size):
        return self.inbound.recvfrom(size)

    def recvmsg(self, size, ancsize=0):
        return self.inbound.recvmsg(size, ancsize)

    def sent_messages(self):
        return [icmp.parse_message(self.variant.proto, data) for data, _ in self.sent]

    def close(self):
        if not self.closed:
            self.closed = True
            self.inbound.close()
            self.peer.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FailingSocket:
    """
    сокет, на котором любая отправка завершается ошибкой
    """

    def __init__(self):
        self.attempts = 0

    def sendto(self, data, address):
        self.attempts += 1
        raise OSError(101, "Network is unreachable")


@pytest.fixture
def loopback():
    created = []

    def factory(variant=icmp.ICMPv4, respond=True, ihl=5, configured=True):
        sock = LoopbackSocket(variant, respond=respond, ihl=ihl)
        if configured:
            variant.configure(sock, 64, 0)
        created.append(sock)
        return sock

    yield factory
    for sock in created:
        sock.close()


@pytest.fixture
def failing_socket():
    return FailingSocket()
