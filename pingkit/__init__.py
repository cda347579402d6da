"""ICMP echo (ping) library and command-line tool with round-trip statistics."""

__version__ = "0.1.0"