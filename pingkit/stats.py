"""Round-trip time statistics."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class Statistics:
    """Statistics of a running or finished ping; durations are nanoseconds."""

    packets_recv: int = 0
    packets_sent: int = 0
    packets_recv_duplicates: int = 0
    packet_loss: float = 0.0
    ip_addr: Optional[Any] = None
    addr: str = ""
    rtts: List[int] = field(default_factory=list)
    min_rtt: int = 0
    max_rtt: int = 0
    avg_rtt: int = 0
    std_dev_rtt: int = 0


def _trunc_div(a, b):
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _loss(sent, recv):
    lost = sent - recv
    if sent == 0:
        if lost == 0:
            return math.nan
        return math.copysign(math.inf, lost)
    return lost / sent * 100


class RttTracker:
    """Accumulates round-trip times with Welford's online algorithm."""

    def __init__(self, record_rtts=True):
        self.record_rtts = record_rtts
        self.packets_recv = 0
        self.rtts: List[int] = []
        self.min_rtt = 0
        self.max_rtt = 0
        self.avg_rtt = 0
        self.std_dev_rtt = 0
        self._m2 = 0
        self._lock = threading.Lock()

    def update(self, rtt):
        """Account for one received packet with the given round-trip time."""
        rtt = int(rtt)
        with self._lock:
            self.packets_recv += 1
            if self.record_rtts:
                self.rtts.append(rtt)
            if self.packets_recv == 1 or rtt < self.min_rtt:
                self.min_rtt = rtt
            if rtt > self.max_rtt:
                self.max_rtt = rtt
            count = self.packets_recv
            delta = rtt - self.avg_rtt
            self.avg_rtt += _trunc_div(delta, count)
            delta2 = rtt - self.avg_rtt
            self._m2 += delta * delta2
            self.std_dev_rtt = int(math.sqrt(_trunc_div(self._m2, count)))

    def statistics(self, packets_sent, packets_recv_duplicates, addr, ip_addr):
        """Return a snapshot of the statistics."""
        with self._lock:
            return Statistics(
                packets_recv=self.packets_recv,
                packets_sent=packets_sent,
                packets_recv_duplicates=packets_recv_duplicates,
                packet_loss=_loss(packets_sent, self.packets_recv),
                ip_addr=ip_addr,
                addr=addr,
                rtts=list(self.rtts),
                min_rtt=self.min_rtt,
                max_rtt=self.max_rtt,
                avg_rtt=self.avg_rtt,
                std_dev_rtt=self.std_dev_rtt,
            )