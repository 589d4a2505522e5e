"""Per-packet bandwidth sampling for BBR.

The sampler records the connection state at the moment each packet is sent
and, when the packet is acknowledged, derives a bandwidth sample from the
slopes of two curves: bytes sent over time and bytes acknowledged over time.
The sample is the smaller of the send rate and the ack rate.

Once on_app_limited() is called, every packet sent afterwards yields an
app-limited sample until a packet sent after that call is acknowledged.

Times and durations are integer nanoseconds, bandwidth is in bits per second.
An unset time is None.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from dataclasses import dataclass, field

from hycore.congestion.bbr.ack_height import AckPoint, MaxAckHeightTracker, RecentAckPoints
from hycore.congestion.bbr.bandwidth import INF_BANDWIDTH, bandwidth_from_delta
from hycore.congestion.bbr.packet_queue import INVALID_PACKET_NUMBER, PacketNumberIndexedQueue
from hycore.congestion.bbr.ringbuffer import RingBuffer
from hycore.congestion.common import AckedPacketInfo, LostPacketInfo

INF_RTT = (1 << 63) - 1
DEFAULT_CONNECTION_STATE_MAP_QUEUE_SIZE = 256
DEFAULT_CANDIDATES_BUFFER_SIZE = 256


@dataclass(frozen=True)
class SendTimeState:
    """The connection state captured when a packet was sent."""

    is_valid: bool = False
    is_app_limited: bool = False
    total_bytes_sent: int = 0
    total_bytes_acked: int = 0
    total_bytes_lost: int = 0
    bytes_in_flight: int = 0


@dataclass
class BandwidthSample:
    """A bandwidth and RTT sample derived from one acknowledged packet."""

    bandwidth: int = 0
    rtt: int = 0
    send_rate: int = INF_BANDWIDTH
    state_at_send: SendTimeState = field(default_factory=SendTimeState)


@dataclass
class CongestionEventSample:
    """The combined samples of all packets in one congestion event."""

    sample_max_bandwidth: int = 0
    sample_is_app_limited: bool = False
    sample_rtt: int = INF_RTT
    sample_max_inflight: int = 0
    last_packet_send_state: SendTimeState = field(default_factory=SendTimeState)
    extra_acked: int = 0


@dataclass(frozen=True)
class ConnectionStateOnSentPacket:
    """A sent packet and the state of the connection when it was sent."""

    sent_time: int
    size: int
    total_bytes_sent_at_last_acked_packet: int
    last_acked_packet_sent_time: int | None
    last_acked_packet_ack_time: int | None
    send_time_state: SendTimeState


def _valid_state(packet: ConnectionStateOnSentPacket) -> SendTimeState:
    return dataclasses.replace(packet.send_time_state, is_valid=True)


class BandwidthSampler:
    """Tracks sent and acknowledged packets and yields a bandwidth sample per ack."""

    def __init__(self, max_ack_height_tracker_window_length: int) -> None:
        self.total_bytes_sent = 0
        self.total_bytes_acked = 0
        self.total_bytes_lost = 0
        self.total_bytes_neutered = 0
        self._total_bytes_sent_at_last_acked_packet = 0
        self._last_acked_packet_sent_time: int | None = None
        self._last_acked_packet_ack_time: int | None = None
        self.last_sent_packet = INVALID_PACKET_NUMBER
        self.last_acked_packet = INVALID_PACKET_NUMBER
        self.is_app_limited = False
        self.end_of_app_limited_phase = INVALID_PACKET_NUMBER
        self._connection_state_map: PacketNumberIndexedQueue[ConnectionStateOnSentPacket] = (
            PacketNumberIndexedQueue(DEFAULT_CONNECTION_STATE_MAP_QUEUE_SIZE)
        )
        self._recent_ack_points = RecentAckPoints()
        self._a0_candidates: RingBuffer[AckPoint] = RingBuffer(DEFAULT_CANDIDATES_BUFFER_SIZE)
        self.max_ack_height_tracker = MaxAckHeightTracker(max_ack_height_tracker_window_length)
        self._total_bytes_acked_after_last_ack_event = 0
        self._overestimate_avoidance = False
        self.limit_max_ack_height_tracker_by_send_rate = False

    @property
    def max_ack_height(self) -> int:
        """The largest recent ack aggregation in bytes."""
        return self.max_ack_height_tracker.get()

    @property
    def num_ack_aggregation_epochs(self) -> int:
        """The number of ack aggregation epochs started so far."""
        return self.max_ack_height_tracker.num_ack_aggregation_epochs

    @property
    def is_overestimate_avoidance_enabled(self) -> bool:
        """Whether overestimate avoidance is on."""
        return self._overestimate_avoidance

    def enable_overestimate_avoidance(self) -> None:
        """Turn on overestimate avoidance; it cannot be turned off again."""
        if self._overestimate_avoidance:
            return
        self._overestimate_avoidance = True
        self.max_ack_height_tracker.ack_aggregation_bandwidth_threshold = 2.0

    def reset_max_ack_height_tracker(self, new_height: int, new_time: int) -> None:
        """Replace every recorded ack height with new_height at round new_time."""
        self.max_ack_height_tracker.reset(new_height, new_time)

    def on_packet_sent(
        self,
        sent_time: int,
        packet_number: int,
        size: int,
        bytes_in_flight: int,
        is_retransmittable: bool,
    ) -> None:
        """Record a sent packet; bytes_in_flight excludes the packet itself."""
        self.last_sent_packet = packet_number
        if not is_retransmittable:
            return

        self.total_bytes_sent += size

        # With nothing in flight, the start of this transmission serves as the
        # A_0 point, which gives samples at the beginning of the connection.
        if bytes_in_flight == 0:
            self._last_acked_packet_ack_time = sent_time
            if self._overestimate_avoidance:
                self._recent_ack_points.clear()
                self._recent_ack_points.update(sent_time, self.total_bytes_acked)
                self._a0_candidates.clear()
                self._a0_candidates.push_back(self._recent_ack_points.most_recent_point())
            self._total_bytes_sent_at_last_acked_packet = self.total_bytes_sent
            # Ack compression is no concern here: the send rate is effectively infinite.
            self._last_acked_packet_sent_time = sent_time

        self._connection_state_map.emplace(
            packet_number,
            ConnectionStateOnSentPacket(
                sent_time=sent_time,
                size=size,
                total_bytes_sent_at_last_acked_packet=self._total_bytes_sent_at_last_acked_packet,
                last_acked_packet_sent_time=self._last_acked_packet_sent_time,
                last_acked_packet_ack_time=self._last_acked_packet_ack_time,
                send_time_state=SendTimeState(
                    is_valid=True,
                    is_app_limited=self.is_app_limited,
                    total_bytes_sent=self.total_bytes_sent,
                    total_bytes_acked=self.total_bytes_acked,
                    total_bytes_lost=self.total_bytes_lost,
                    bytes_in_flight=bytes_in_flight + size,
                ),
            ),
        )

    def on_congestion_event(
        self,
        ack_time: int,
        acked_packets: Sequence[AckedPacketInfo],
        lost_packets: Sequence[LostPacketInfo],
        max_bandwidth: int,
        est_bandwidth_upper_bound: int,
        round_trip_count: int,
    ) -> CongestionEventSample:
        """Process the acks and losses of one event and return the combined sample."""
        event = CongestionEventSample()

        last_lost_state = SendTimeState()
        for lost in lost_packets:
            state = self.on_packet_lost(lost.packet_number, lost.bytes_lost)
            if state.is_valid:
                last_lost_state = state

        if not acked_packets:
            event.last_packet_send_state = last_lost_state
            return event

        last_acked_state = SendTimeState()
        max_send_rate = 0
        for acked in acked_packets:
            sample = self._on_packet_acknowledged(ack_time, acked.packet_number)
            if not sample.state_at_send.is_valid:
                continue
            last_acked_state = sample.state_at_send
            if sample.rtt != 0:
                event.sample_rtt = min(event.sample_rtt, sample.rtt)
            if sample.bandwidth > event.sample_max_bandwidth:
                event.sample_max_bandwidth = sample.bandwidth
                event.sample_is_app_limited = sample.state_at_send.is_app_limited
            if sample.send_rate != INF_BANDWIDTH:
                max_send_rate = max(max_send_rate, sample.send_rate)
            inflight_sample = self.total_bytes_acked - last_acked_state.total_bytes_acked
            if inflight_sample > event.sample_max_inflight:
                event.sample_max_inflight = inflight_sample

        if not last_lost_state.is_valid:
            event.last_packet_send_state = last_acked_state
        elif not last_acked_state.is_valid:
            event.last_packet_send_state = last_lost_state
        elif lost_packets[-1].packet_number > acked_packets[-1].packet_number:
            # A late loss alarm may declare a packet lost after a later one was acked.
            event.last_packet_send_state = last_lost_state
        else:
            event.last_packet_send_state = last_acked_state

        is_new_max_bandwidth = event.sample_max_bandwidth > max_bandwidth
        max_bandwidth = max(max_bandwidth, event.sample_max_bandwidth)
        if self.limit_max_ack_height_tracker_by_send_rate:
            max_bandwidth = max(max_bandwidth, max_send_rate)

        event.extra_acked = self._on_ack_event_end(
            min(est_bandwidth_upper_bound, max_bandwidth), is_new_max_bandwidth, round_trip_count
        )
        return event

    def on_packet_lost(self, packet_number: int, bytes_lost: int) -> SendTimeState:
        """Record a lost packet; return its send state, invalid if it is unknown."""
        self.total_bytes_lost += bytes_lost
        packet = self._connection_state_map.get_entry(packet_number)
        if packet is None:
            return SendTimeState()
        return _valid_state(packet)

    def on_packet_neutered(self, packet_number: int) -> None:
        """Forget a packet that will be neither acknowledged nor lost."""

        def count(packet: ConnectionStateOnSentPacket) -> None:
            self.total_bytes_neutered += packet.size

        self._connection_state_map.remove(packet_number, count)

    def on_app_limited(self) -> None:
        """Enter the app-limited phase, ending at the most recently sent packet."""
        self.is_app_limited = True
        self.end_of_app_limited_phase = self.last_sent_packet

    def remove_obsolete_packets(self, least_unacked: int) -> None:
        """Forget every packet below least_unacked."""
        self._connection_state_map.remove_up_to(least_unacked)

    def _choose_a0_point(self, total_bytes_acked: int) -> AckPoint | None:
        candidates = self._a0_candidates
        if not candidates:
            return None
        if len(candidates) == 1:
            return dataclasses.replace(candidates.front())

        for i in range(1, len(candidates)):
            if candidates[i].total_bytes_acked > total_bytes_acked:
                a0 = dataclasses.replace(candidates[i - 1])
                for _ in range(i - 1):
                    candidates.pop_front()
                return a0

        a0 = dataclasses.replace(candidates.back())
        # The bound shrinks as elements are popped, so this keeps roughly half.
        popped = 0
        while popped < len(candidates) - 1:
            candidates.pop_front()
            popped += 1
        return a0

    def _on_packet_acknowledged(self, ack_time: int, packet_number: int) -> BandwidthSample:
        sample = BandwidthSample()
        self.last_acked_packet = packet_number
        packet = self._connection_state_map.get_entry(packet_number)
        if packet is None:
            return sample

        self.total_bytes_acked += packet.size
        self._total_bytes_sent_at_last_acked_packet = packet.send_time_state.total_bytes_sent
        self._last_acked_packet_sent_time = packet.sent_time
        self._last_acked_packet_ack_time = ack_time
        if self._overestimate_avoidance:
            self._recent_ack_points.update(ack_time, self.total_bytes_acked)

        if self.is_app_limited and (
            self.end_of_app_limited_phase == INVALID_PACKET_NUMBER
            or packet_number > self.end_of_app_limited_phase
        ):
            self.is_app_limited = False

        # Nothing had been acknowledged when this packet was sent: no sample.
        if packet.last_acked_packet_sent_time is None:
            return sample

        # An infinite send rate means only the ack rate is used.
        send_rate = INF_BANDWIDTH
        if packet.sent_time > packet.last_acked_packet_sent_time:
            send_rate = bandwidth_from_delta(
                packet.send_time_state.total_bytes_sent
                - packet.total_bytes_sent_at_last_acked_packet,
                packet.sent_time - packet.last_acked_packet_sent_time,
            )

        a0 = None
        if self._overestimate_avoidance:
            a0 = self._choose_a0_point(packet.send_time_state.total_bytes_acked)
        if a0 is None:
            a0 = AckPoint(
                ack_time=packet.last_acked_packet_ack_time or 0,
                total_bytes_acked=packet.send_time_state.total_bytes_acked,
            )

        # The ack time must move forward, or the slope is undefined.
        ack_delta = ack_time - a0.ack_time
        if ack_delta <= 0:
            return sample

        ack_rate = bandwidth_from_delta(self.total_bytes_acked - a0.total_bytes_acked, ack_delta)
        sample.bandwidth = min(send_rate, ack_rate)
        # Delayed acknowledgement time is not accounted for here.
        sample.rtt = ack_time - packet.sent_time
        sample.send_rate = send_rate
        sample.state_at_send = _valid_state(packet)
        return sample

    def _on_ack_event_end(
        self, bandwidth_estimate: int, is_new_max_bandwidth: bool, round_trip_count: int
    ) -> int:
        newly_acked_bytes = self.total_bytes_acked - self._total_bytes_acked_after_last_ack_event
        if newly_acked_bytes == 0:
            return 0
        self._total_bytes_acked_after_last_ack_event = self.total_bytes_acked
        extra_acked = self.max_ack_height_tracker.update(
            bandwidth_estimate,
            is_new_max_bandwidth,
            round_trip_count,
            self.last_sent_packet,
            self.last_acked_packet,
            self._last_acked_packet_ack_time or 0,
            newly_acked_bytes,
        )
        # A new aggregation epoch: the last point of the previous one becomes an A0 candidate.
        if self._overestimate_avoidance and extra_acked == 0:
            self._a0_candidates.push_back(self._recent_ack_points.less_recent_point())
        return extra_acked