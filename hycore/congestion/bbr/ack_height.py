"""Ack aggregation tracking for the bandwidth sampler.

Times are integer nanoseconds, bandwidth is in bits per second and
round-trip counts are plain integers.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

from hycore.congestion.bbr.bandwidth import bytes_from_bandwidth_and_time_delta
from hycore.congestion.bbr.packet_queue import INVALID_PACKET_NUMBER
from hycore.congestion.bbr.windowed_filter import WindowedFilter, max_filter


@dataclass(frozen=True)
class ExtraAckedEvent:
    """Bytes acknowledged beyond what the estimated bandwidth explains."""

    extra_acked: int = 0
    bytes_acked: int = 0
    time_delta: int = 0
    round: int = 0


def _compare_extra_acked(a: ExtraAckedEvent, b: ExtraAckedEvent) -> int:
    return max_filter(a.extra_acked, b.extra_acked)


class MaxAckHeightTracker:
    """Tracks the degree of ack aggregation ("ack height") after every ack event."""

    def __init__(self, window_length: int) -> None:
        self._filter: WindowedFilter[ExtraAckedEvent, int] = WindowedFilter(
            window_length, _compare_extra_acked, ExtraAckedEvent()
        )
        self.aggregation_epoch_start_time: int | None = None
        self.aggregation_epoch_bytes = 0
        self.last_sent_packet_number_before_epoch = INVALID_PACKET_NUMBER
        self.num_ack_aggregation_epochs = 0
        self.ack_aggregation_bandwidth_threshold = 1.0
        self.start_new_aggregation_epoch_after_full_round = False
        self.reduce_extra_acked_on_bandwidth_increase = False

    def get(self) -> int:
        """Return the largest recent ack height in bytes."""
        return self._filter.best.extra_acked

    def _start_epoch(self, ack_time: int, bytes_acked: int, last_sent_packet_number: int) -> None:
        self.aggregation_epoch_bytes = bytes_acked
        self.aggregation_epoch_start_time = ack_time
        self.last_sent_packet_number_before_epoch = last_sent_packet_number
        self.num_ack_aggregation_epochs += 1

    def update(
        self,
        bandwidth_estimate: int,
        is_new_max_bandwidth: bool,
        round_trip_count: int,
        last_sent_packet_number: int,
        last_acked_packet_number: int,
        ack_time: int,
        bytes_acked: int,
    ) -> int:
        """Record an ack event; return the bytes acknowledged beyond the expected amount."""
        if self.reduce_extra_acked_on_bandwidth_increase and is_new_max_bandwidth:
            saved = (self._filter.best, self._filter.second_best, self._filter.third_best)
            self._filter.clear()
            for event in saved:
                expected = bytes_from_bandwidth_and_time_delta(bandwidth_estimate, event.time_delta)
                if expected < event.bytes_acked:
                    self._filter.update(
                        dataclasses.replace(event, extra_acked=event.bytes_acked - expected),
                        event.round,
                    )

        force_new_epoch = (
            self.start_new_aggregation_epoch_after_full_round
            and self.last_sent_packet_number_before_epoch != INVALID_PACKET_NUMBER
            and last_acked_packet_number != INVALID_PACKET_NUMBER
            and last_acked_packet_number > self.last_sent_packet_number_before_epoch
        )
        if self.aggregation_epoch_start_time is None or force_new_epoch:
            self._start_epoch(ack_time, bytes_acked, last_sent_packet_number)
            return 0

        aggregation_delta = ack_time - self.aggregation_epoch_start_time
        expected_bytes_acked = bytes_from_bandwidth_and_time_delta(
            bandwidth_estimate, aggregation_delta
        )
        # The ack rate fell to the estimated bandwidth: begin a new epoch.
        if self.aggregation_epoch_bytes <= int(
            self.ack_aggregation_bandwidth_threshold * expected_bytes_acked
        ):
            self._start_epoch(ack_time, bytes_acked, last_sent_packet_number)
            return 0

        self.aggregation_epoch_bytes += bytes_acked
        extra_bytes_acked = self.aggregation_epoch_bytes - expected_bytes_acked
        self._filter.update(
            ExtraAckedEvent(
                extra_acked=expected_bytes_acked,
                bytes_acked=self.aggregation_epoch_bytes,
                time_delta=aggregation_delta,
            ),
            round_trip_count,
        )
        return extra_bytes_acked

    def set_filter_window_length(self, length: int) -> None:
        """Change the filter window length, in round trips."""
        self._filter.window_length = length

    def reset(self, new_height: int, new_time: int) -> None:
        """Replace every recorded height with new_height at round new_time."""
        self._filter.reset(ExtraAckedEvent(extra_acked=new_height, round=new_time), new_time)


@dataclass
class AckPoint:
    """A point on the ack line: a time and the total bytes acknowledged by then."""

    ack_time: int = 0
    total_bytes_acked: int = 0


@dataclass
class RecentAckPoints:
    """The two most recent ack points at distinct times."""

    _points: list[AckPoint] = field(default_factory=lambda: [AckPoint(), AckPoint()])

    def update(self, ack_time: int, total_bytes_acked: int) -> None:
        """Record the total bytes acknowledged at a time."""
        latest = self._points[1]
        if ack_time < latest.ack_time:
            latest.ack_time = ack_time
        elif ack_time > latest.ack_time:
            self._points[0] = dataclasses.replace(latest)
            latest.ack_time = ack_time
        latest.total_bytes_acked = total_bytes_acked

    def clear(self) -> None:
        """Forget both points."""
        self._points = [AckPoint(), AckPoint()]

    def most_recent_point(self) -> AckPoint:
        """Return a copy of the most recent point."""
        return dataclasses.replace(self._points[1])

    def less_recent_point(self) -> AckPoint:
        """Return a copy of the older point, or of the newest if the older one is unset."""
        if self._points[0].total_bytes_acked != 0:
            return dataclasses.replace(self._points[0])
        return dataclasses.replace(self._points[1])