"""Bandwidth arithmetic and the clock used by BBR.

Bandwidth is in bits per second; times and durations are integer nanoseconds.
"""

from __future__ import annotations

import time

NANOS_PER_SECOND = 1_000_000_000

BITS_PER_SECOND = 1
BYTES_PER_SECOND = 8 * BITS_PER_SECOND

INF_BANDWIDTH = (1 << 64) - 1


def _div_toward_zero(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def bandwidth_from_delta(byte_count: int, delta: int) -> int:
    """Return the bandwidth of byte_count bytes delivered over delta nanoseconds."""
    return byte_count * NANOS_PER_SECOND // delta * BYTES_PER_SECOND


def bytes_from_bandwidth_and_time_delta(bandwidth: int, delta: int) -> int:
    """Return how many bytes a bandwidth delivers over delta nanoseconds."""
    return _div_toward_zero(bandwidth * delta, NANOS_PER_SECOND * 8)


def time_delta_from_bytes_and_bandwidth(byte_count: int, bandwidth: int) -> int:
    """Return how many nanoseconds a bandwidth takes to deliver byte_count bytes."""
    return _div_toward_zero(byte_count * 8 * NANOS_PER_SECOND, bandwidth)


class DefaultClock:
    """A clock reading the system wall time."""

    def now(self) -> int:
        """Return the current time in nanoseconds since the epoch."""
        return time.time_ns()