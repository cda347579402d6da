"""ICMP packet connections over sockets."""

from __future__ import annotations

import socket
import struct
import sys
import time
from abc import ABC, abstractmethod

from .icmp import ICMPv4Type, ICMPv6Type

_IP_RECVTTL = getattr(socket, "IP_RECVTTL", 24 if sys.platform == "darwin" else 12)
_IP_TTL = getattr(socket, "IP_TTL", 2)
_IPV6_RECVHOPLIMIT = getattr(socket, "IPV6_RECVHOPLIMIT", 51)
_IPV6_HOPLIMIT = getattr(socket, "IPV6_HOPLIMIT", 52)
_IPV6_UNICAST_HOPS = getattr(socket, "IPV6_UNICAST_HOPS", 16)
_IPPROTO_ICMPV6 = getattr(socket, "IPPROTO_ICMPV6", 58)


class PacketConn(ABC):
    """A connection that sends and receives ICMP messages."""

    @abstractmethod
    def close(self):
        """Close the connection."""

    @abstractmethod
    def icmp_request_type(self):
        """ICMP type used for echo requests on this connection."""

    @abstractmethod
    def read_from(self, size):
        """Read one message; return ``(data, ttl, source)``, ttl -1 if unknown.

        Raises TimeoutError when the read deadline passes.
        """

    @abstractmethod
    def set_flag_ttl(self):
        """Ask the kernel to report the TTL / hop limit of received packets."""

    @abstractmethod
    def set_read_deadline(self, deadline):
        """Set the absolute time (``time.time()`` seconds) reads give up at."""

    @abstractmethod
    def write_to(self, data, dst):
        """Send ``data`` to address ``dst``; return the number of bytes sent."""

    @abstractmethod
    def set_ttl(self, ttl):
        """Set the TTL / hop limit used for outgoing packets."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class ICMPConn(PacketConn):
    """Socket-backed ICMP connection."""

    def __init__(self, sock, ipv4, raw):
        self.sock = sock
        self.ipv4 = ipv4
        self.raw = raw
        self.ttl = 64
        self.deadline = None

    def close(self):
        self.sock.close()

    def icmp_request_type(self):
        return ICMPv4Type.ECHO if self.ipv4 else ICMPv6Type.ECHO_REQUEST

    def set_ttl(self, ttl):
        self.ttl = ttl

    def set_read_deadline(self, deadline):
        self.deadline = deadline

    def set_flag_ttl(self):
        try:
            if self.ipv4:
                self.sock.setsockopt(socket.IPPROTO_IP, _IP_RECVTTL, 1)
            else:
                self.sock.setsockopt(_IPPROTO_ICMPV6 and socket.IPPROTO_IPV6, _IPV6_RECVHOPLIMIT, 1)
        except OSError:
            if not sys.platform.startswith("win"):
                raise

    def write_to(self, data, dst):
        if self.ipv4:
            self.sock.setsockopt(socket.IPPROTO_IP, _IP_TTL, self.ttl)
        else:
            self.sock.setsockopt(socket.IPPROTO_IPV6, _IPV6_UNICAST_HOPS, self.ttl)
        return self.sock.sendto(bytes(data), (str(dst), 0))

    def _apply_deadline(self):
        if self.deadline is None:
            self.sock.settimeout(None)
            return
        remaining = self.deadline - time.time()
        if remaining <= 0:
            raise TimeoutError("read deadline exceeded")
        self.sock.settimeout(remaining)

    def read_from(self, size):
        self._apply_deadline()
        ttl = -1
        try:
            if hasattr(self.sock, "recvmsg"):
                data, ancdata, _flags, src = self.sock.recvmsg(size, socket.CMSG_SPACE(4))
                ttl = self._ttl_from(ancdata)
            else:
                data, src = self.sock.recvfrom(size)
        except socket.timeout as exc:
            raise TimeoutError("read deadline exceeded") from exc
        if self.ipv4 and (self.raw or sys.platform == "darwin") and data:
            data = data[(data[0] & 0x0F) * 4:]
        host = src[0] if isinstance(src, tuple) else src
        return data, ttl, host

    def _ttl_from(self, ancdata):
        if self.ipv4:
            wanted = {(socket.IPPROTO_IP, _IP_TTL), (socket.IPPROTO_IP, _IP_RECVTTL)}
        else:
            wanted = {(socket.IPPROTO_IPV6, _IPV6_HOPLIMIT)}
        for level, kind, payload in ancdata:
            if (level, kind) in wanted and payload:
                if len(payload) >= 4:
                    return struct.unpack("=i", payload[:4])[0]
                return payload[0]
        return -1


class ICMPv4Conn(ICMPConn):
    """ICMP over IPv4."""

    def __init__(self, sock, ipv4=True, raw=False):
        super().__init__(sock, True, raw)


class ICMPv6Conn(ICMPConn):
    """ICMPv6 over IPv6."""

    def __init__(self, sock, ipv4=False, raw=False):
        super().__init__(sock, False, raw)


def listen_packet(ipv4, privileged, source=""):
    """Open an ICMP socket; raw when privileged, datagram otherwise."""
    kind = socket.SOCK_RAW if privileged else socket.SOCK_DGRAM
    if ipv4:
        sock = socket.socket(socket.AF_INET, kind, socket.IPPROTO_ICMP)
    else:
        sock = socket.socket(socket.AF_INET6, kind, _IPPROTO_ICMPV6)
    try:
        if source:
            sock.bind((source, 0))
    except OSError:
        sock.close()
        raise
    return ICMPv4Conn(sock, raw=privileged) if ipv4 else ICMPv6Conn(sock, raw=privileged)