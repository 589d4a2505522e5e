from hycore.congestion.bbr.bandwidth import INF_BANDWIDTH, bandwidth_from_delta
from hycore.congestion.bbr.packet_queue import INVALID_PACKET_NUMBER
from hycore.congestion.bbr.sampler import INF_RTT, BandwidthSampler, SendTimeState
from hycore.congestion.common import AckedPacketInfo, LostPacketInfo

MS = 1_000_000
SIZE = 1000


def _send(sampler, count, start=1):
    """Send packets start..start+count-1, one per millisecond, each of SIZE bytes."""
    in_flight = 0
    for offset, number in enumerate(range(start, start + count)):
        sampler.on_packet_sent(offset * MS, number, SIZE, in_flight, True)
        in_flight += SIZE


def _ack(sampler, ack_time, numbers, lost=(), round_trip=1):
    return sampler.on_congestion_event(
        ack_time,
        [AckedPacketInfo(n, SIZE) for n in numbers],
        [LostPacketInfo(n, SIZE) for n in lost],
        0,
        INF_BANDWIDTH,
        round_trip,
    )


def test_sent_bytes_count_only_retransmittable():
    sampler = BandwidthSampler(10)
    _send(sampler, 3)
    sampler.on_packet_sent(5 * MS, 4, SIZE, 3 * SIZE, False)
    assert sampler.total_bytes_sent == 3 * SIZE
    assert sampler.last_sent_packet == 4


def test_first_ack_sample():
    sampler = BandwidthSampler(10)
    _send(sampler, 3)
    event = _ack(sampler, 10 * MS, [1])
    assert event.sample_max_bandwidth == bandwidth_from_delta(SIZE, 10 * MS)
    assert event.sample_rtt == 10 * MS
    assert event.last_packet_send_state.is_valid
    assert event.last_packet_send_state.total_bytes_sent == SIZE
    assert sampler.total_bytes_acked == SIZE
    assert sampler.last_acked_packet == 1


def test_first_event_starts_aggregation_epoch():
    sampler = BandwidthSampler(10)
    _send(sampler, 2)
    event = _ack(sampler, 10 * MS, [1])
    assert event.extra_acked == 0
    assert sampler.num_ack_aggregation_epochs == 1


def test_loss_only_event():
    sampler = BandwidthSampler(10)
    _send(sampler, 3)
    event = _ack(sampler, 10 * MS, [], lost=[2])
    assert sampler.total_bytes_lost == SIZE
    assert event.last_packet_send_state.total_bytes_sent == 2 * SIZE
    assert event.sample_rtt == INF_RTT
    assert event.sample_max_bandwidth == 0


def test_unknown_lost_packet_has_invalid_state():
    sampler = BandwidthSampler(10)
    state = sampler.on_packet_lost(42, 500)
    assert state == SendTimeState()
    assert sampler.total_bytes_lost == 500


def test_neutered_packet_is_forgotten():
    sampler = BandwidthSampler(10)
    _send(sampler, 2)
    sampler.on_packet_neutered(1)
    assert sampler.total_bytes_neutered == SIZE
    assert not sampler.on_packet_lost(1, SIZE).is_valid
    assert sampler.on_packet_lost(2, SIZE).is_valid


def test_remove_obsolete_packets():
    sampler = BandwidthSampler(10)
    _send(sampler, 4)
    sampler.remove_obsolete_packets(3)
    assert not sampler.on_packet_lost(1, SIZE).is_valid
    assert not sampler.on_packet_lost(2, SIZE).is_valid
    assert sampler.on_packet_lost(3, SIZE).is_valid


def test_app_limited_phase():
    sampler = BandwidthSampler(10)
    _send(sampler, 2)
    sampler.on_app_limited()
    assert sampler.is_app_limited
    assert sampler.end_of_app_limited_phase == 2
    sampler.on_packet_sent(2 * MS, 3, SIZE, 2 * SIZE, True)

    _ack(sampler, 10 * MS, [1])
    assert sampler.is_app_limited

    event = _ack(sampler, 12 * MS, [3])
    assert not sampler.is_app_limited
    assert event.sample_is_app_limited
    assert event.last_packet_send_state.is_app_limited


def test_later_loss_determines_last_send_state():
    sampler = BandwidthSampler(10)
    _send(sampler, 3)
    event = _ack(sampler, 10 * MS, [1], lost=[3])
    assert event.last_packet_send_state.total_bytes_sent == 3 * SIZE

    sampler2 = BandwidthSampler(10)
    _send(sampler2, 3)
    event2 = _ack(sampler2, 10 * MS, [3], lost=[1])
    assert event2.last_packet_send_state.total_bytes_sent == 3 * SIZE
    assert sampler2.total_bytes_acked == SIZE


def test_sample_bounded_by_send_rate():
    sampler = BandwidthSampler(10)
    _send(sampler, 4)
    _ack(sampler, 10 * MS, [1])
    event = _ack(sampler, 11 * MS, [2, 3, 4])
    send_rate = bandwidth_from_delta(3 * SIZE, 3 * MS)
    assert 0 < event.sample_max_bandwidth <= send_rate
    assert event.sample_rtt <= 11 * MS - 3 * MS
    assert event.sample_max_inflight > 0


def test_overestimate_avoidance():
    sampler = BandwidthSampler(10)
    sampler.enable_overestimate_avoidance()
    sampler.enable_overestimate_avoidance()
    assert sampler.is_overestimate_avoidance_enabled
    assert sampler.max_ack_height_tracker.ack_aggregation_bandwidth_threshold == 2.0
    _send(sampler, 3)
    event = _ack(sampler, 10 * MS, [1])
    assert event.sample_max_bandwidth == bandwidth_from_delta(SIZE, 10 * MS)
    event = _ack(sampler, 20 * MS, [2, 3])
    assert event.sample_max_bandwidth > 0
    assert sampler.total_bytes_acked == 3 * SIZE


def test_reset_max_ack_height_tracker():
    sampler = BandwidthSampler(10)
    sampler.reset_max_ack_height_tracker(777, 3)
    assert sampler.max_ack_height == 777


def test_unknown_ack_gives_invalid_send_state():
    sampler = BandwidthSampler(10)
    event = _ack(sampler, 10 * MS, [9])
    assert not event.last_packet_send_state.is_valid
    assert event.sample_max_bandwidth == 0
    assert sampler.last_acked_packet == 9
    assert sampler.end_of_app_limited_phase == INVALID_PACKET_NUMBER