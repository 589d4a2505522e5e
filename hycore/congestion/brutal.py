"""A fixed-rate congestion controller that compensates for measured loss."""

from __future__ import annotations

import os
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from hycore.congestion.common import (
    INITIAL_PACKET_SIZE_IPV4,
    NANOS_PER_SECOND,
    AckedPacketInfo,
    LostPacketInfo,
    Pacer,
)

PKT_INFO_SLOT_COUNT = 5  # one slot per second
MIN_SAMPLE_COUNT = 50
MIN_ACK_RATE = 0.8
CONGESTION_WINDOW_MULTIPLIER = 2

DEBUG_ENV = "HYSTERIA_BRUTAL_DEBUG"
DEBUG_PRINT_INTERVAL = 2

_DEFAULT_CONGESTION_WINDOW = 10240
_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})


class _RTTStats(Protocol):
    def smoothed_rtt(self) -> int: ...


@dataclass
class _PktInfo:
    timestamp: int = 0
    ack_count: int = 0
    loss_count: int = 0


class BrutalSender:
    """Sends at a fixed rate, divided by the recent acknowledgement rate."""

    def __init__(self, bps: int) -> None:
        self._bps = bps
        self._max_datagram_size = INITIAL_PACKET_SIZE_IPV4
        self._rtt_stats: _RTTStats | None = None
        self._slots = [_PktInfo() for _ in range(PKT_INFO_SLOT_COUNT)]
        self._ack_rate = 1.0
        self._debug = os.environ.get(DEBUG_ENV, "") in _TRUE_STRINGS
        self._last_ack_print_timestamp = 0
        self._pacer = Pacer(lambda: int(self._bps / self._ack_rate))

    @property
    def _rtt(self) -> _RTTStats:
        if self._rtt_stats is None:
            raise RuntimeError("RTT stats provider is not set")
        return self._rtt_stats

    def set_rtt_stats_provider(self, provider: _RTTStats) -> None:
        """Set the source of smoothed RTT values, in nanoseconds."""
        self._rtt_stats = provider

    def time_until_send(self, bytes_in_flight: int) -> int | None:
        """Return when the next packet may be sent, or None for now."""
        return self._pacer.time_until_send()

    def has_pacing_budget(self, now: int) -> bool:
        """Return whether a full datagram may be sent at the given time."""
        return self._pacer.budget(now) >= self._max_datagram_size

    def can_send(self, bytes_in_flight: int) -> bool:
        """Return whether the congestion window allows more data in flight."""
        return bytes_in_flight < self.get_congestion_window()

    def get_congestion_window(self) -> int:
        """Return the congestion window in bytes."""
        rtt = self._rtt.smoothed_rtt()
        if rtt <= 0:
            return _DEFAULT_CONGESTION_WINDOW
        return int(
            self._bps * (rtt / NANOS_PER_SECOND) * CONGESTION_WINDOW_MULTIPLIER / self._ack_rate
        )

    def on_packet_sent(
        self,
        sent_time: int,
        bytes_in_flight: int,
        packet_number: int,
        size: int,
        is_retransmittable: bool,
    ) -> None:
        """Account a sent packet with the pacer."""
        self._pacer.sent_packet(sent_time, size)

    def on_congestion_event_ex(
        self,
        prior_in_flight: int,
        event_time: int,
        acked_packets: Sequence[AckedPacketInfo],
        lost_packets: Sequence[LostPacketInfo],
    ) -> None:
        """Record acknowledgements and losses and update the acknowledgement rate."""
        timestamp = event_time // NANOS_PER_SECOND
        slot = self._slots[timestamp % PKT_INFO_SLOT_COUNT]
        if slot.timestamp == timestamp:
            slot.loss_count += len(lost_packets)
            slot.ack_count += len(acked_packets)
        else:
            slot.timestamp = timestamp
            slot.ack_count = len(acked_packets)
            slot.loss_count = len(lost_packets)
        self._update_ack_rate(timestamp)

    def set_max_datagram_size(self, size: int) -> None:
        """Change the maximum datagram size."""
        self._max_datagram_size = size
        self._pacer.set_max_datagram_size(size)
        if self._debug:
            self._debug_print(f"SetMaxDatagramSize: {size}")

    def in_slow_start(self) -> bool:
        """Return False: there is no slow start."""
        return False

    def in_recovery(self) -> bool:
        """Return False: there is no recovery phase."""
        return False

    def _update_ack_rate(self, timestamp: int) -> None:
        min_timestamp = timestamp - PKT_INFO_SLOT_COUNT
        recent = [info for info in self._slots if info.timestamp >= min_timestamp]
        ack_count = sum(info.ack_count for info in recent)
        loss_count = sum(info.loss_count for info in recent)
        total = ack_count + loss_count
        if total < MIN_SAMPLE_COUNT:
            self._ack_rate = 1.0
            self._maybe_print_ack_rate(
                timestamp,
                f"Not enough samples (total={total}, ack={ack_count}, loss={loss_count}, ",
            )
            return
        rate = ack_count / total
        if rate < MIN_ACK_RATE:
            self._ack_rate = MIN_ACK_RATE
            self._maybe_print_ack_rate(
                timestamp,
                f"ACK rate too low: {rate:.2f}, clamped to {MIN_ACK_RATE:.2f} "
                f"(total={total}, ack={ack_count}, loss={loss_count}, ",
            )
            return
        self._ack_rate = rate
        self._maybe_print_ack_rate(
            timestamp,
            f"ACK rate: {rate:.2f} (total={total}, ack={ack_count}, loss={loss_count}, ",
        )

    def _maybe_print_ack_rate(self, timestamp: int, prefix: str) -> None:
        if self._debug and timestamp - self._last_ack_print_timestamp >= DEBUG_PRINT_INTERVAL:
            self._last_ack_print_timestamp = timestamp
            rtt_ms = self._rtt.smoothed_rtt() // 1_000_000
            self._debug_print(f"{prefix}rtt={rtt_ms})")

    @staticmethod
    def _debug_print(message: str) -> None:
        print(f"[BrutalSender] [{time.strftime('%H:%M:%S')}] {message}", flush=True)