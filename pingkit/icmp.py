"""Encoding and decoding of ICMP echo messages."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Union

PROTOCOL_ICMP = 1
PROTOCOL_IPV6_ICMP = 58


class ICMPv4Type(IntEnum):
    ECHO_REPLY = 0
    DESTINATION_UNREACHABLE = 3
    REDIRECT = 5
    ECHO = 8
    TIME_EXCEEDED = 11
    PARAMETER_PROBLEM = 12


class ICMPv6Type(IntEnum):
    DESTINATION_UNREACHABLE = 1
    PACKET_TOO_BIG = 2
    TIME_EXCEEDED = 3
    PARAMETER_PROBLEM = 4
    ECHO_REQUEST = 128
    ECHO_REPLY = 129


class ICMPParseError(ValueError):
    """Raised when bytes cannot be decoded as an ICMP message."""


_ECHO_TYPES = {
    ICMPv4Type.ECHO,
    ICMPv4Type.ECHO_REPLY,
    ICMPv6Type.ECHO_REQUEST,
    ICMPv6Type.ECHO_REPLY,
}


@dataclass
class Echo:
    """Body of an echo request or reply."""

    id: int
    seq: int
    data: bytes = b""

    def marshal(self):
        return struct.pack(">HH", self.id & 0xFFFF, self.seq & 0xFFFF) + bytes(self.data)


@dataclass
class Message:
    """An ICMP message with an echo body or raw body bytes."""

    type: Union[ICMPv4Type, ICMPv6Type, int]
    code: int = 0
    body: Union[Echo, bytes] = b""
    checksum: int = field(default=0)

    def marshal(self):
        body = self.body.marshal() if isinstance(self.body, Echo) else bytes(self.body)
        header = bytearray(struct.pack(">BBH", int(self.type), self.code, 0))
        raw = bytes(header) + body
        # The kernel fills in the ICMPv6 checksum, which covers a pseudo-header.
        if not isinstance(self.type, ICMPv6Type):
            value = checksum(raw)
            raw = raw[:2] + struct.pack(">H", value) + raw[4:]
        return raw


def checksum(data):
    """Internet checksum (one's complement of the one's complement sum)."""
    data = bytes(data)
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f">{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def parse_message(protocol, data):
    """Decode ``data`` as an ICMP message of the given IP protocol number."""
    data = bytes(data)
    if protocol == PROTOCOL_ICMP:
        enum = ICMPv4Type
    elif protocol == PROTOCOL_IPV6_ICMP:
        enum = ICMPv6Type
    else:
        raise ICMPParseError(f"unknown protocol {protocol}")
    if len(data) < 4:
        raise ICMPParseError("message too short")
    kind, code, csum = struct.unpack(">BBH", data[:4])
    try:
        msg_type = enum(kind)
    except ValueError:
        msg_type = kind
    rest = data[4:]
    if msg_type in _ECHO_TYPES:
        if len(rest) < 4:
            raise ICMPParseError("message too short")
        ident, seq = struct.unpack(">HH", rest[:4])
        body = Echo(id=ident, seq=seq, data=rest[4:])
    else:
        body = rest
    return Message(type=msg_type, code=code, body=body, checksum=csum)