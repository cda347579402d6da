"""Command-line front end that behaves like the traditional ping command."""

from __future__ import annotations

import argparse
import math
import re
import signal
import sys
import threading
from fractions import Fraction

from .pinger import new_pinger

USAGE = """
Usage:

    ping [-c count] [-i interval] [-t timeout] [--privileged] host

Examples:

    # ping example.com continuously
    ping www.example.com

    # ping example.com 5 times
    ping -c 5 www.example.com

    # ping example.com 5 times at 500ms intervals
    ping -c 5 -i 500ms www.example.com

    # ping example.com for 10 seconds
    ping -t 10s www.example.com

    # Send a privileged raw ICMP ping
    sudo ping --privileged www.example.com

    # Send ICMP messages with a 100-byte payload
    ping -s 100 1.1.1.1
"""

_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")
_MAX_DURATION = (1 << 63) - 1
_SECOND = 1_000_000_000


def parse_duration(text):
    """Parse a duration such as "1h2m3.5s" or "500ms" into nanoseconds."""
    original = text
    rest = text
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0
    if not rest:
        raise ValueError(f'time: invalid duration "{original}"')

    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        whole, frac, unit = match.group(1), match.group(2), match.group(3)
        if not whole and not frac:
            raise ValueError(f'time: invalid duration "{original}"')
        if not unit:
            raise ValueError(f'time: missing unit in duration "{original}"')
        if unit not in _UNITS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{original}"')
        scale = _UNITS[unit]
        value = Fraction(int(whole or "0")) * scale
        if frac:
            value += int(Fraction(int(frac), 10 ** len(frac)) * scale)
        total += value
        if total > _MAX_DURATION + (1 if negative else 0):
            raise ValueError(f'time: invalid duration "{original}"')
        pos = match.end()

    result = int(total)
    return -result if negative else result


def _with_fraction(value, digits):
    whole, frac = divmod(value, 10**digits)
    if not frac:
        return str(whole)
    return f"{whole}." + f"{frac:0{digits}d}".rstrip("0")


def format_duration(nanoseconds):
    """Render nanoseconds the way durations are conventionally printed, e.g. "1m2.5s"."""
    value = int(nanoseconds)
    negative = value < 0
    magnitude = abs(value)
    if magnitude == 0:
        return "0s"
    if magnitude < 1_000:
        text = f"{magnitude}ns"
    elif magnitude < 1_000_000:
        text = _with_fraction(magnitude, 3) + "\u00b5s"
    elif magnitude < _SECOND:
        text = _with_fraction(magnitude, 6) + "ms"
    else:
        hours, rem = divmod(magnitude, 3600 * _SECOND)
        minutes, rem = divmod(rem, 60 * _SECOND)
        text = ""
        if hours:
            text += f"{hours}h"
        if hours or minutes:
            text += f"{minutes}m"
        text += _with_fraction(rem, 9) + "s"
    return "-" + text if negative else text


def _format_float(value):
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _format_addr(addr):
    return "<nil>" if addr is None else str(addr)


def _parse_int(text):
    body = text.lstrip("+-")
    sign = -1 if text.startswith("-") else 1
    lowered = body.lower()
    if lowered.startswith(("0x", "0o", "0b")):
        return sign * int(body, 0)
    if len(body) > 1 and body.startswith("0") and "_" not in body:
        return sign * int(body, 8)
    return int(text, 10)


def _duration_arg(text):
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f'invalid value "{text}": {exc}') from exc


def _int_arg(text):
    try:
        return _parse_int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f'invalid value "{text}": parse error') from exc


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        sys.stderr.write(message + "\n")
        sys.stdout.write(USAGE)
        raise SystemExit(2)

    def print_help(self, file=None):
        sys.stdout.write(USAGE)


def _build_parser():
    parser = _Parser(prog="ping", add_help=False, allow_abbrev=False)
    parser.add_argument("-h", "--h", "-help", "--help", action="store_true", dest="help")
    parser.add_argument("-t", "--t", type=_duration_arg, default=100000 * _SECOND, dest="timeout")
    parser.add_argument("-i", "--i", type=_duration_arg, default=_SECOND, dest="interval")
    parser.add_argument("-c", "--c", type=_int_arg, default=-1, dest="count")
    parser.add_argument("-s", "--s", type=_int_arg, default=24, dest="size")
    parser.add_argument("-l", "--l", type=_int_arg, default=64, dest="ttl")
    parser.add_argument("-privileged", "--privileged", action="store_true", dest="privileged")
    parser.add_argument("args", nargs=argparse.REMAINDER)
    return parser


def _on_recv(pkt):
    print(
        f"{pkt.nbytes} bytes from {_format_addr(pkt.ip_addr)}: icmp_seq={pkt.seq} "
        f"time={format_duration(pkt.rtt)} ttl={pkt.ttl}"
    )


def _on_duplicate_recv(pkt):
    print(
        f"{pkt.nbytes} bytes from {_format_addr(pkt.ip_addr)}: icmp_seq={pkt.seq} "
        f"time={format_duration(pkt.rtt)} ttl={pkt.ttl} (DUP!)"
    )


def _on_finish(stats):
    print(f"\n--- {stats.addr} ping statistics ---")
    print(
        f"{stats.packets_sent} packets transmitted, {stats.packets_recv} packets received, "
        f"{stats.packets_recv_duplicates} duplicates, "
        f"{_format_float(stats.packet_loss)}% packet loss"
    )
    print(
        "round-trip min/avg/max/stddev = "
        f"{format_duration(stats.min_rtt)}/{format_duration(stats.avg_rtt)}/"
        f"{format_duration(stats.max_rtt)}/{format_duration(stats.std_dev_rtt)}"
    )


def main(argv=None):
    """Run the ping command with ``argv`` (defaults to the process arguments)."""
    if argv is None:
        argv = sys.argv[1:]
    parser = _build_parser()
    options = parser.parse_args(list(argv))
    if options.help:
        sys.stdout.write(USAGE)
        raise SystemExit(0)

    if not options.args:
        sys.stdout.write(USAGE)
        return 0

    host = options.args[0]
    try:
        pinger = new_pinger(host)
    except (OSError, ValueError) as exc:
        print("ERROR:", exc)
        return 0

    pinger.on_recv = _on_recv
    pinger.on_duplicate_recv = _on_duplicate_recv
    pinger.on_finish = _on_finish
    pinger.count = options.count
    pinger.size = options.size
    pinger.interval = options.interval / _SECOND
    pinger.timeout = options.timeout / _SECOND
    pinger.ttl = options.ttl
    pinger.privileged = options.privileged

    print(f"PING {pinger.addr} ({_format_addr(pinger.ip_addr)}):")

    if options.interval <= 0 or options.timeout <= 0:
        print("Failed to ping target host: non-positive interval for ticker")
        return 0

    in_main = threading.current_thread() is threading.main_thread()
    previous = None
    if in_main:
        previous = signal.signal(signal.SIGINT, lambda signum, frame: pinger.stop())
    try:
        pinger.run()
    except (OSError, ValueError) as exc:
        print("Failed to ping target host:", exc)
    finally:
        if in_main:
            signal.signal(signal.SIGINT, previous)
    return 0


if __name__ == "__main__":
    sys.exit(main())