"""Behaviour that differs between operating systems."""

from __future__ import annotations

import sys

IPV4_HEADER_LEN = 20
IPV6_HEADER_LEN = 40
ICMP_HEADER_LEN = 8


def _system(system):
    if system is not None:
        return system.lower()
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform.startswith("win"):
        return "windows"
    return sys.platform


def message_length(size, ipv4, system=None):
    """Buffer length needed to read a reply carrying ``size`` payload bytes."""
    length = size + ICMP_HEADER_LEN
    if _system(system) == "windows":
        length += IPV4_HEADER_LEN if ipv4 else IPV6_HEADER_LEN
    return length


def match_id(privileged, expected, received, system=None):
    """Whether a reply's ICMP identifier should be accepted."""
    if _system(system) == "linux":
        # Unprivileged sockets on Linux rewrite the identifier.
        return not privileged or received == expected
    return received == expected