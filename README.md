# pingkit

A small ICMP echo (ping) library with a command-line tool. It sends echo
requests to one host, matches the replies to the requests it sent, counts
duplicates and keeps round-trip statistics: minimum, average, maximum and
standard deviation.

It has no dependencies outside the standard library.

## Installation

```
pip install pingkit
```

## Command line

```
pingkit [-c count] [-i interval] [-t timeout] [-s size] [-l ttl] [--privileged] host
```

| Option         | Meaning                                         | Default    |
|----------------|-------------------------------------------------|------------|
| `-c`           | stop after this many replies (negative: never)  | `-1`       |
| `-i`           | time between requests                           | `1s`       |
| `-t`           | stop after this much time in all                | `100000s`  |
| `-s`           | payload size in bytes (at least 24)             | `24`       |
| `-l`           | TTL / hop limit of outgoing packets             | `64`       |
| `--privileged` | use raw ICMP sockets instead of datagram ones   | off        |

Durations are written as a number and a unit, such as `500ms`, `10s` or
`1m30s`; the units are `ns`, `us`, `ms`, `s`, `m` and `h`.

Examples:

```
# ping continuously until Ctrl-C
pingkit example.com

# five replies, requests at 500ms intervals
pingkit -c 5 -i 500ms example.com

# stop after 10 seconds
pingkit -t 10s example.com

# raw ICMP sockets (needs administrator rights)
pingkit --privileged example.com

# 100-byte payload
pingkit -s 100 127.0.0.1
```

Each reply is printed with its size, sequence number, round-trip time and TTL;
duplicate replies are marked `(DUP!)`. When the run ends, by count, timeout or
Ctrl-C, a summary of sent, received and duplicate packets, packet loss and
round-trip times is printed. With no host the usage text is printed.

By default the tool sends "unprivileged" pings over datagram ICMP sockets,
which the operating system must allow (on Linux, see the
`net.ipv4.ping_group_range` setting). `--privileged` uses raw sockets instead.

## Library

```python
from pingkit.pinger import new_pinger

pinger = new_pinger("example.com")   # resolves the name
pinger.count = 3
pinger.on_recv = lambda pkt: print(pkt.seq, pkt.rtt)
pinger.run()  # blocks until finished

stats = pinger.statistics()
print(stats.packets_sent, stats.packets_recv, stats.packet_loss)
print(stats.min_rtt, stats.avg_rtt, stats.max_rtt, stats.std_dev_rtt)
```

`Pinger` settings:

- `count`, `size`, `ttl`, `source` (local address to bind to).
- `interval` and `timeout` in seconds; `timeout = None` means no limit.
- `privileged`: raw sockets when true, datagram sockets when false.
- `record_rtts`: keep every round-trip time in `Statistics.rtts`.
- `id`: the ICMP identifier (random by default).
- `logger`: a `pingkit.logger.Logger`, such as `StdLogger` (wraps a
  `logging.Logger`) or `NoopLogger`.

Round-trip times are integer nanoseconds. `Pinger.stop()` can be called from
another thread to end a run early. The callbacks `on_setup`, `on_send`,
`on_recv`, `on_duplicate_recv` and `on_finish` report progress; `on_finish`
receives the final `Statistics`. `Pinger.set_network("ip4")` or `"ip6"`
restricts name resolution to one address family, and `set_addr` /
`set_ip_addr` change the target.

`resolve()` raises `ValueError` for an empty address and `OSError` when the
name cannot be resolved; `run()` raises `ValueError` when `size` is below 24.
When no packet has been sent, `Statistics.packet_loss` is NaN.

A run can use any object that provides the `pingkit.packetconn.PacketConn`
interface, passed to `Pinger.run_with(conn)`; this is useful in tests.
`pingkit.packetconn.listen_packet` opens the socket-backed connection that
`run()` uses.

Lower-level pieces:

- `pingkit.icmp`: `Message`, `Echo`, `parse_message` and `checksum` for
  encoding and decoding ICMP echo messages.
- `pingkit.stats`: `RttTracker`, which keeps the running statistics, and
  `Statistics`.

## What it does not do

pingkit pings a single host per `Pinger` and reports echo replies only. It
does not trace routes, report ICMP errors such as "destination unreachable",
or send anything other than echo requests.