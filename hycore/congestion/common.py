"""Pacing and packet-event types shared by the congestion controllers.

Times are integer nanoseconds and durations are integer nanoseconds.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

NANOS_PER_SECOND = 1_000_000_000

INITIAL_PACKET_SIZE_IPV4 = 1252
MIN_PACING_DELAY = 1_000_000  # 1 ms
MAX_BURST_PACKETS = 10

_MAX_BUDGET = (1 << 62) - 1


def _div_toward_zero(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


@dataclass(frozen=True)
class AckedPacketInfo:
    """A packet reported as acknowledged in a congestion event."""

    packet_number: int
    bytes_acked: int
    receive_time: int = 0


@dataclass(frozen=True)
class LostPacketInfo:
    """A packet reported as lost in a congestion event."""

    packet_number: int
    bytes_lost: int


class Pacer:
    """A token-bucket pacer; get_bandwidth returns the rate in bytes per second."""

    def __init__(self, get_bandwidth: Callable[[], int]) -> None:
        self._get_bandwidth = get_bandwidth
        self._budget_at_last_sent = MAX_BURST_PACKETS * INITIAL_PACKET_SIZE_IPV4
        self._max_datagram_size = INITIAL_PACKET_SIZE_IPV4
        self._last_sent_time: int | None = None

    def sent_packet(self, send_time: int, size: int) -> None:
        """Spend budget for a packet sent at send_time."""
        budget = self.budget(send_time)
        self._budget_at_last_sent = 0 if size > budget else budget - size
        self._last_sent_time = send_time

    def budget(self, now: int) -> int:
        """Return how many bytes may be sent at the given time."""
        if self._last_sent_time is None:
            return self._max_burst_size()
        elapsed = now - self._last_sent_time
        budget = self._budget_at_last_sent + _div_toward_zero(
            self._get_bandwidth() * elapsed, NANOS_PER_SECOND
        )
        if budget < 0:
            budget = _MAX_BUDGET
        return min(self._max_burst_size(), budget)

    def _max_burst_size(self) -> int:
        return max(
            (MIN_PACING_DELAY + 1_000_000) * self._get_bandwidth() // NANOS_PER_SECOND,
            MAX_BURST_PACKETS * self._max_datagram_size,
        )

    def time_until_send(self) -> int | None:
        """Return when the next packet may be sent, or None if it may be sent now."""
        if self._budget_at_last_sent >= self._max_datagram_size:
            return None
        deficit = self._max_datagram_size - self._budget_at_last_sent
        delay = -(-(deficit * NANOS_PER_SECOND) // self._get_bandwidth())
        return (self._last_sent_time or 0) + max(MIN_PACING_DELAY, delay)

    def set_max_datagram_size(self, size: int) -> None:
        """Change the datagram size that the burst size is based on."""
        self._max_datagram_size = size