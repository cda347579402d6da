"""The ICMP echo sender/receiver."""

from __future__ import annotations

import errno
import ipaddress
import queue
import random
import socket
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from .icmp import (
    PROTOCOL_ICMP,
    PROTOCOL_IPV6_ICMP,
    Echo,
    ICMPParseError,
    ICMPv4Type,
    ICMPv6Type,
    Message,
    parse_message,
)
from .logger import NoopLogger, StdLogger
from .packetconn import listen_packet
from .platform import match_id, message_length
from .stats import RttTracker

TIME_SLICE_LENGTH = 8
TRACKER_LENGTH = 16
MIN_SIZE = TIME_SLICE_LENGTH + TRACKER_LENGTH

_MAX_SEQUENCE = 65535
_POLL = 0.05


@dataclass
class Packet:
    """A sent or received echo packet; ``rtt`` is in nanoseconds."""

    rtt: int = 0
    ip_addr: Optional[Any] = None
    addr: str = ""
    nbytes: int = 0
    seq: int = 0
    ttl: int = 0
    id: int = 0


@dataclass
class ReceivedPacket:
    """Raw bytes read from a connection, before decoding."""

    data: bytes
    nbytes: int
    ttl: int


class ExpBackoff:
    """Randomised exponential backoff; delays are in seconds."""

    def __init__(self, base_delay, max_exp):
        self.base_delay = base_delay
        self.max_exp = max_exp
        self._exp = 0

    def next(self):
        """Return the next delay."""
        if self._exp < self.max_exp:
            self._exp += 1
        return self.base_delay * random.randrange(1 << self._exp)


def is_ipv4(ip):
    """Whether ``ip`` is an IPv4 address, including IPv4-mapped IPv6 ones."""
    if isinstance(ip, str):
        ip = ipaddress.ip_address(ip)
    if isinstance(ip, ipaddress.IPv4Address):
        return True
    return isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None


def time_to_bytes(nanoseconds):
    """Encode nanoseconds since the epoch as 8 big-endian bytes."""
    value = int(nanoseconds) & 0xFFFFFFFFFFFFFFFF
    return value.to_bytes(8, "big")


def bytes_to_time(data):
    """Decode 8 big-endian bytes into nanoseconds since the epoch."""
    return int.from_bytes(bytes(data[:TIME_SLICE_LENGTH]), "big", signed=True)


class Pinger:
    """Sends ICMP echo requests to one host and collects the replies.

    ``interval`` and ``timeout`` are in seconds (``timeout`` None means no
    limit); round-trip times are in nanoseconds.
    """

    def __init__(self, addr):
        self.count = -1
        self.interval = 1.0
        self.timeout: Optional[float] = None
        self.debug = False
        self.size = MIN_SIZE
        self.ttl = 64
        self.source = ""
        self.packets_sent = 0
        self.packets_recv_duplicates = 0
        self.sequence = 0
        self.logger = StdLogger()

        self.on_setup: Optional[Callable[[], None]] = None
        self.on_send: Optional[Callable[[Packet], None]] = None
        self.on_recv: Optional[Callable[[Packet], None]] = None
        self.on_finish: Optional[Callable[[Any], None]] = None
        self.on_duplicate_recv: Optional[Callable[[Packet], None]] = None

        self._addr = addr
        self._ipaddr = None
        self._ipv4 = False
        self._network = "ip"
        self._protocol = "udp"
        self._id = random.randrange(0xFFFF)
        first = uuid.uuid4()
        self._trackers: List[uuid.UUID] = [first]
        self._awaiting: Dict[uuid.UUID, Set[int]] = {first: set()}
        self._rtt = RttTracker(True)
        self._done = threading.Event()

    # -- configuration ---------------------------------------------------

    @property
    def addr(self):
        """The target host as given, or the address set by ``set_ip_addr``."""
        return self._addr

    @property
    def ip_addr(self):
        """The resolved address of the target host."""
        return self._ipaddr

    @property
    def network(self):
        """One of "ip", "ip4" or "ip6"."""
        return self._network

    @property
    def privileged(self):
        """True for raw ICMP sockets, False for unprivileged datagram ones."""
        return self._protocol == "icmp"

    @privileged.setter
    def privileged(self, value):
        self._protocol = "icmp" if value else "udp"

    @property
    def id(self):
        """The ICMP identifier."""
        return self._id

    @id.setter
    def id(self, value):
        self._id = value

    @property
    def record_rtts(self):
        """Whether every round-trip time is kept."""
        return self._rtt.record_rtts

    @record_rtts.setter
    def record_rtts(self, value):
        self._rtt.record_rtts = value

    @property
    def packets_recv(self):
        """Number of (non-duplicate) replies received."""
        return self._rtt.packets_recv

    def set_network(self, network):
        """Choose address family for resolution: "ip4", "ip6" or anything else for both."""
        self._network = network if network in ("ip4", "ip6") else "ip"

    def set_ip_addr(self, ip_addr):
        """Target ``ip_addr`` directly, without resolving."""
        if isinstance(ip_addr, str):
            ip_addr = ipaddress.ip_address(ip_addr)
        self._ipv4 = is_ipv4(ip_addr)
        self._ipaddr = ip_addr
        self._addr = str(ip_addr)

    def resolve(self):
        """Look up the address of the target host."""
        if not self._addr:
            raise ValueError("addr cannot be empty")
        family = {"ip4": socket.AF_INET, "ip6": socket.AF_INET6}.get(
            self._network, socket.AF_UNSPEC
        )
        infos = socket.getaddrinfo(self._addr, None, family)
        addresses = [
            ipaddress.ip_address(info[4][0])
            for info in infos
            if info[0] in (socket.AF_INET, socket.AF_INET6)
        ]
        if not addresses:
            raise OSError(f"no suitable address found for {self._addr}")
        chosen = next(
            (a for a in addresses if isinstance(a, ipaddress.IPv4Address)), addresses[0]
        )
        self._ipv4 = is_ipv4(chosen)
        self._ipaddr = chosen

    def set_addr(self, addr):
        """Resolve and target ``addr``; the old address is kept on failure."""
        old = self._addr
        self._addr = addr
        try:
            self.resolve()
        except Exception:
            self._addr = old
            raise

    # -- running ---------------------------------------------------------

    def run(self):
        """Ping until finished, stopped or timed out; blocks meanwhile."""
        if self.size < MIN_SIZE:
            raise ValueError(
                f"size {self.size} is less than minimum required size {MIN_SIZE}"
            )
        if self._ipaddr is None:
            self.resolve()
        try:
            conn = listen_packet(self._ipv4, self.privileged, self.source)
        except OSError:
            self.stop()
            raise
        with conn:
            conn.set_ttl(self.ttl)
            self.run_with(conn)

    def run_with(self, conn):
        """Ping over an already open connection."""
        conn.set_flag_ttl()
        try:
            if self.on_setup is not None:
                self.on_setup()
            received: "queue.Queue[ReceivedPacket]" = queue.Queue(maxsize=5)
            errors: List[BaseException] = []
            errors_lock = threading.Lock()

            def worker(target):
                try:
                    target(conn, received)
                except BaseException as exc:  # reported to the caller below
                    with errors_lock:
                        errors.append(exc)
                finally:
                    self.stop()

            threads = [
                threading.Thread(target=worker, args=(self._recv_icmp,), daemon=True),
                threading.Thread(target=worker, args=(self._run_loop,), daemon=True),
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            if errors:
                raise errors[0]
        finally:
            self._finish()

    def stop(self):
        """Ask a running pinger to finish."""
        self._done.set()

    def _finish(self):
        if self.on_finish is not None:
            self.on_finish(self.statistics())

    def _run_loop(self, conn, received):
        logger = self.logger or NoopLogger()
        start = time.monotonic()
        timeout_at = None if self.timeout is None else start + self.timeout
        next_tick = start + self.interval
        ticking = True

        self.send_icmp(conn)

        while True:
            if self._done.is_set():
                return
            now = time.monotonic()
            if timeout_at is not None and now >= timeout_at:
                return
            if ticking and now >= next_tick:
                while next_tick <= now:
                    next_tick += self.interval
                if self.count > 0 and self.packets_sent >= self.count:
                    ticking = False
                    continue
                try:
                    self.send_icmp(conn)
                except OSError as exc:
                    logger.fatal("sending packet: %s", exc)
            else:
                wait = _POLL
                if ticking:
                    wait = min(wait, next_tick - now)
                if timeout_at is not None:
                    wait = min(wait, timeout_at - now)
                try:
                    item = received.get(timeout=max(wait, 0))
                except queue.Empty:
                    continue
                try:
                    self.process_packet(item)
                except ValueError as exc:
                    logger.fatal("processing received packet: %s", exc)
            if self.count > 0 and self.packets_recv >= self.count:
                return

    def _recv_icmp(self, conn, received):
        # Start at 50 microseconds, growing to at most about 100 ms.
        backoff = ExpBackoff(50e-6, 11)
        delay = backoff.next()
        while not self._done.is_set():
            conn.set_read_deadline(time.time() + delay)
            try:
                data, ttl, _src = conn.read_from(
                    message_length(self.size, self._ipv4)
                )
            except TimeoutError:
                delay = backoff.next()
                continue
            item = ReceivedPacket(data=bytes(data), nbytes=len(data), ttl=ttl)
            while not self._done.is_set():
                try:
                    received.put(item, timeout=_POLL)
                    break
                except queue.Full:
                    continue

    # -- statistics ------------------------------------------------------

    def statistics(self):
        """Snapshot of the statistics, valid while running or after."""
        return self._rtt.statistics(
            self.packets_sent, self.packets_recv_duplicates, self._addr, self._ipaddr
        )

    def update_statistics(self, packet):
        """Account for a received packet."""
        self._rtt.update(packet.rtt)

    # -- packets ---------------------------------------------------------

    def current_tracker(self):
        """The tracker UUID put into outgoing packets."""
        return self._trackers[-1]

    def build_payload(self, tracker):
        """Echo data: send timestamp, tracker UUID, then padding to ``size``."""
        payload = time_to_bytes(time.time_ns()) + tracker.bytes
        remain = self.size - MIN_SIZE
        if remain > 0:
            payload += b"\x01" * remain
        return payload

    def _packet_tracker(self, data):
        tracker = uuid.UUID(bytes=bytes(data[TIME_SLICE_LENGTH:MIN_SIZE]))
        return tracker if tracker in self._trackers else None

    def process_packet(self, received):
        """Decode a received packet and update statistics and callbacks."""
        received_at = time.time_ns()
        proto = PROTOCOL_ICMP if self._ipv4 else PROTOCOL_IPV6_ICMP
        try:
            msg = parse_message(proto, received.data)
        except ICMPParseError as exc:
            raise ICMPParseError(f"error parsing icmp message: {exc}") from exc

        expected = ICMPv4Type.ECHO_REPLY if self._ipv4 else ICMPv6Type.ECHO_REPLY
        if not (isinstance(msg.type, type(expected)) and msg.type == expected):
            return

        body = msg.body
        if not isinstance(body, Echo):
            raise ValueError(f"invalid ICMP echo reply; body: {body!r}")

        packet = Packet(
            nbytes=received.nbytes,
            ip_addr=self._ipaddr,
            addr=self._addr,
            ttl=received.ttl,
            id=self._id,
        )
        if not match_id(self.privileged, self._id, body.id):
            return
        if len(body.data) < MIN_SIZE:
            raise ValueError(
                f"insufficient data received; got: {len(body.data)} {bytes(body.data)!r}"
            )
        tracker = self._packet_tracker(body.data)
        if tracker is None:
            return

        packet.rtt = received_at - bytes_to_time(body.data)
        packet.seq = body.seq
        awaiting = self._awaiting[tracker]
        if body.seq not in awaiting:
            self.packets_recv_duplicates += 1
            if self.on_duplicate_recv is not None:
                self.on_duplicate_recv(packet)
            return
        awaiting.discard(body.seq)
        self.update_statistics(packet)

        if self.on_recv is not None:
            self.on_recv(packet)

    def send_icmp(self, conn):
        """Send one echo request over ``conn``."""
        tracker = self.current_tracker()
        echo = Echo(id=self._id, seq=self.sequence, data=self.build_payload(tracker))
        raw = Message(type=conn.icmp_request_type(), code=0, body=echo).marshal()

        while True:
            try:
                conn.write_to(raw, self._ipaddr)
            except OSError as exc:
                if exc.errno == errno.ENOBUFS:
                    continue
                raise
            break

        if self.on_send is not None:
            self.on_send(
                Packet(
                    nbytes=len(raw),
                    ip_addr=self._ipaddr,
                    addr=self._addr,
                    seq=self.sequence,
                    id=self._id,
                )
            )
        self._awaiting[tracker].add(self.sequence)
        self.packets_sent += 1
        self.sequence += 1
        if self.sequence > _MAX_SEQUENCE:
            fresh = uuid.uuid4()
            self._trackers.append(fresh)
            self._awaiting[fresh] = set()
            self.sequence = 0


def new_pinger(addr):
    """Create a pinger for ``addr`` and resolve it."""
    pinger = Pinger(addr)
    pinger.resolve()
    return pinger