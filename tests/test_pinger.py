import errno
import ipaddress
import socket
import time
import uuid
from unittest import mock

import pytest

from pingkit.icmp import (
    PROTOCOL_ICMP,
    Echo,
    ICMPv4Type,
    Message,
    parse_message,
)
from pingkit.logger import NoopLogger
from pingkit.packetconn import PacketConn
from pingkit.pinger import (
    ExpBackoff,
    Packet,
    Pinger,
    ReceivedPacket,
    bytes_to_time,
    is_ipv4,
    new_pinger,
    time_to_bytes,
)


class FakeConn(PacketConn):
    def __init__(self):
        self.sent = []
        self.closed = False
        self.ttl = None
        self.flag_ttl = False

    def close(self):
        self.closed = True

    def icmp_request_type(self):
        return ICMPv4Type.ECHO

    def read_from(self, size):
        time.sleep(0.001)
        raise TimeoutError("no data")

    def set_flag_ttl(self):
        self.flag_ttl = True

    def set_read_deadline(self, deadline):
        pass

    def write_to(self, data, dst):
        self.sent.append((bytes(data), dst))
        return len(data)

    def set_ttl(self, ttl):
        self.ttl = ttl


class BadWriteConn(FakeConn):
    def write_to(self, data, dst):
        raise OSError("bad write")


class BadReadConn(FakeConn):
    def read_from(self, size):
        raise OSError("bad read")


class EchoConn(FakeConn):
    def read_from(self, size):
        if not self.sent:
            time.sleep(0.001)
            raise TimeoutError("no data")
        raw, dst = self.sent[-1]
        msg = parse_message(PROTOCOL_ICMP, raw)
        reply = Message(type=ICMPv4Type.ECHO_REPLY, body=msg.body).marshal()
        time.sleep(0.01)
        return reply, 64, str(dst)


class FlakyConn(FakeConn):
    def __init__(self):
        super().__init__()
        self.attempts = 0

    def write_to(self, data, dst):
        self.attempts += 1
        if self.attempts == 1:
            raise OSError(errno.ENOBUFS, "no buffer space")
        return super().write_to(data, dst)


def make_test_pinger():
    pinger = Pinger("127.0.0.1")
    pinger.set_ip_addr(ipaddress.ip_address("127.0.0.1"))
    pinger.privileged = True
    pinger.id = 123
    pinger.size = 0
    pinger.logger = NoopLogger()
    return pinger


def send_one(pinger):
    conn = FakeConn()
    pinger.send_icmp(conn)
    return conn.sent[-1][0]


def make_reply(raw, msg_type=ICMPv4Type.ECHO_REPLY, ident=None, data=None):
    body = parse_message(PROTOCOL_ICMP, raw).body
    echo = Echo(
        id=body.id if ident is None else ident,
        seq=body.seq,
        data=body.data if data is None else data,
    )
    reply = Message(type=msg_type, body=echo).marshal()
    return ReceivedPacket(data=reply, nbytes=len(reply), ttl=24)


def test_process_packet():
    pinger = make_test_pinger()
    received = []
    pinger.on_recv = received.append
    packet = make_reply(send_one(pinger))
    pinger.process_packet(packet)
    assert len(received) == 1
    assert received[0].seq == 0
    assert received[0].ttl == 24
    assert received[0].addr == "127.0.0.1"
    assert pinger.packets_recv == 1


def test_process_packet_ignore_non_echo_replies():
    pinger = make_test_pinger()
    received = []
    pinger.on_recv = received.append
    packet = make_reply(send_one(pinger), msg_type=ICMPv4Type.DESTINATION_UNREACHABLE)
    pinger.process_packet(packet)
    assert received == []
    assert pinger.packets_recv == 0


def test_process_packet_id_mismatch():
    pinger = make_test_pinger()
    received = []
    pinger.on_recv = received.append
    packet = make_reply(send_one(pinger), ident=999999)
    pinger.process_packet(packet)
    assert received == []
    assert pinger.packets_recv == 0


def test_process_packet_tracker_mismatch():
    pinger = make_test_pinger()
    received = []
    pinger.on_recv = received.append
    raw = send_one(pinger)
    body = parse_message(PROTOCOL_ICMP, raw).body
    data = time_to_bytes(time.time_ns()) + uuid.uuid4().bytes
    pinger.process_packet(make_reply(raw, data=data))
    assert body.seq == 0
    assert received == []
    assert pinger.packets_recv_duplicates == 0


def test_process_packet_large_packet():
    pinger = make_test_pinger()
    pinger.size = 4096
    received = []
    pinger.on_recv = received.append
    raw = send_one(pinger)
    assert len(parse_message(PROTOCOL_ICMP, raw).body.data) == 4096
    pinger.process_packet(make_reply(raw))
    assert len(received) == 1


def test_process_packet_packet_too_small():
    pinger = make_test_pinger()
    reply = Message(
        type=ICMPv4Type.ECHO_REPLY, body=Echo(id=123, seq=0, data=b"foo")
    ).marshal()
    with pytest.raises(ValueError):
        pinger.process_packet(ReceivedPacket(data=reply, nbytes=len(reply), ttl=24))


def test_process_packet_ignores_duplicate_sequence():
    pinger = make_test_pinger()
    received = []
    duplicates = []
    pinger.on_recv = received.append
    pinger.on_duplicate_recv = duplicates.append
    packet = make_reply(send_one(pinger))
    pinger.process_packet(packet)
    pinger.process_packet(packet)
    assert len(received) == 1
    assert len(duplicates) == 1
    assert pinger.packets_recv_duplicates == 1


def test_process_packet_unparsable_raises():
    pinger = make_test_pinger()
    with pytest.raises(ValueError):
        pinger.process_packet(ReceivedPacket(data=b"\x00", nbytes=1, ttl=1))


def test_send_icmp_payload_layout():
    pinger = make_test_pinger()
    pinger.size = 30
    sent = []
    pinger.on_send = sent.append
    raw = send_one(pinger)
    msg = parse_message(PROTOCOL_ICMP, raw)
    assert msg.type == ICMPv4Type.ECHO
    assert msg.body.id == 123
    assert msg.body.seq == 0
    assert len(msg.body.data) == 30
    assert msg.body.data[8:24] == pinger.current_tracker().bytes
    assert msg.body.data[24:] == b"\x01" * 6
    assert sent[0].nbytes == len(raw)
    assert pinger.packets_sent == 1
    assert pinger.sequence == 1


def test_send_icmp_retries_on_enobufs():
    pinger = make_test_pinger()
    conn = FlakyConn()
    pinger.send_icmp(conn)
    assert conn.attempts == 2
    assert len(conn.sent) == 1
    assert pinger.packets_sent == 1


def test_send_icmp_sequence_wraps_to_new_tracker():
    pinger = make_test_pinger()
    first = pinger.current_tracker()
    pinger.sequence = 65535
    send_one(pinger)
    assert pinger.sequence == 0
    assert pinger.current_tracker() != first


def test_build_payload_contains_timestamp():
    pinger = make_test_pinger()
    before = time.time_ns()
    payload = pinger.build_payload(pinger.current_tracker())
    after = time.time_ns()
    assert before <= bytes_to_time(payload) <= after
    assert len(payload) == 24


def test_resolve_localhost():
    pinger = Pinger("localhost")
    pinger.resolve()
    assert pinger.addr == "localhost"
    assert str(pinger.ip_addr) != "localhost"
    assert pinger.privileged is False
    pinger.privileged = True
    assert pinger.privileged is True


def test_resolve_ip_literals():
    pinger = new_pinger("127.0.0.1")
    assert pinger.addr == "127.0.0.1"
    assert is_ipv4(pinger.ip_addr)
    pinger = new_pinger("::1")
    assert pinger.addr == "::1"
    assert pinger.ip_addr == ipaddress.ip_address("::1")
    assert not is_ipv4(pinger.ip_addr)


def test_empty_addr():
    with pytest.raises(ValueError):
        new_pinger("")


def test_set_addr_failure_keeps_old_addr():
    pinger = Pinger("127.0.0.1")
    with mock.patch("socket.getaddrinfo", side_effect=socket.gaierror("no such host")):
        with pytest.raises(OSError):
            pinger.set_addr("wtf.invalid.")
    assert pinger.addr == "127.0.0.1"


def test_set_ip_addr():
    pinger = Pinger("localhost")
    target = ipaddress.ip_address("192.0.2.7")
    pinger.set_ip_addr(target)
    assert pinger.addr == "192.0.2.7"
    assert pinger.ip_addr == target


def test_set_network():
    pinger = Pinger("127.0.0.1")
    assert pinger.network == "ip"
    pinger.set_network("ip6")
    assert pinger.network == "ip6"
    pinger.set_network("bogus")
    assert pinger.network == "ip"


def test_statistics_sunny():
    pinger = Pinger("127.0.0.1")
    pinger.packets_sent = 10
    for _ in range(10):
        pinger.update_statistics(Packet(rtt=1000))
    stats = pinger.statistics()
    assert stats.packets_recv == 10
    assert stats.packets_sent == 10
    assert stats.packet_loss == 0
    assert stats.min_rtt == 1000
    assert stats.max_rtt == 1000
    assert stats.avg_rtt == 1000
    assert stats.std_dev_rtt == 0


def test_statistics_lossy():
    pinger = Pinger("127.0.0.1")
    pinger.packets_sent = 20
    for rtt in (10, 1000, 1000, 10000, 1000, 800, 1000, 40, 100000, 1000):
        pinger.update_statistics(Packet(rtt=rtt))
    stats = pinger.statistics()
    assert stats.packets_recv == 10
    assert stats.packets_sent == 20
    assert stats.packet_loss == 50
    assert stats.min_rtt == 10
    assert stats.max_rtt == 100000
    assert stats.avg_rtt == 11585
    assert stats.std_dev_rtt == 29603


def test_run_rejects_small_size():
    pinger = Pinger("127.0.0.1")
    pinger.size = 10
    with pytest.raises(ValueError, match="size 10"):
        pinger.run()


def test_run_bad_write():
    pinger = new_pinger("127.0.0.1")
    pinger.count = 1
    pinger.logger = NoopLogger()
    with pytest.raises(OSError, match="bad write"):
        pinger.run_with(BadWriteConn())
    stats = pinger.statistics()
    assert stats.packets_sent == 0
    assert stats.packets_recv == 0


def test_run_bad_read():
    pinger = new_pinger("127.0.0.1")
    pinger.count = 1
    pinger.logger = NoopLogger()
    with pytest.raises(OSError, match="bad read"):
        pinger.run_with(BadReadConn())
    stats = pinger.statistics()
    assert stats.packets_sent == 1
    assert stats.packets_recv == 0


def test_run_ok():
    pinger = new_pinger("127.0.0.1")
    pinger.count = 1
    pinger.logger = NoopLogger()
    events = []
    finished = []
    pinger.on_setup = lambda: events.append("setup")
    pinger.on_recv = events.append
    pinger.on_finish = finished.append
    conn = EchoConn()
    pinger.run_with(conn)
    stats = pinger.statistics()
    assert conn.flag_ttl is True
    assert events[0] == "setup"
    assert events[1].ttl == 64
    assert stats.packets_sent == 1
    assert stats.packets_recv == 1
    assert 10_000_000 <= stats.min_rtt < 500_000_000
    assert finished[0].packets_recv == 1


def test_run_stops_at_timeout():
    pinger = new_pinger("127.0.0.1")
    pinger.interval = 0.05
    pinger.timeout = 0.3
    pinger.logger = NoopLogger()
    start = time.monotonic()
    pinger.run_with(FakeConn())
    elapsed = time.monotonic() - start
    assert 0.25 <= elapsed < 3
    assert pinger.packets_sent >= 2
    assert pinger.packets_recv == 0


def test_run_after_stop_sends_once():
    pinger = new_pinger("127.0.0.1")
    pinger.logger = NoopLogger()
    pinger.stop()
    conn = FakeConn()
    pinger.run_with(conn)
    assert len(conn.sent) == 1
    assert pinger.packets_sent == 1


def test_exp_backoff_bounds():
    backoff = ExpBackoff(1.0, 3)
    first = backoff.next()
    assert first in (0.0, 1.0)
    for _ in range(50):
        value = backoff.next()
        assert 0 <= value < 8
        assert value == int(value)


def test_time_bytes_round_trip():
    assert time_to_bytes(1) == b"\x00" * 7 + b"\x01"
    assert time_to_bytes(0x0102030405060708) == bytes(range(1, 9))
    now = time.time_ns()
    assert bytes_to_time(time_to_bytes(now)) == now


@pytest.mark.parametrize(
    "ip, expected",
    [("127.0.0.1", True), ("::1", False), ("::ffff:1.2.3.4", True)],
)
def test_is_ipv4(ip, expected):
    assert is_ipv4(ip) is expected
    assert is_ipv4(ipaddress.ip_address(ip)) is expected