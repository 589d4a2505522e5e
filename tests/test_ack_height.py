from hycore.congestion.bbr.ack_height import (
    AckPoint,
    ExtraAckedEvent,
    MaxAckHeightTracker,
    RecentAckPoints,
)
from hycore.congestion.bbr.bandwidth import bytes_from_bandwidth_and_time_delta

BANDWIDTH = 8_000_000  # bits per second


def _aggregate(tracker, round_trip_count=5):
    first = tracker.update(BANDWIDTH, False, round_trip_count, 10, 1, 0, 1000)
    second = tracker.update(BANDWIDTH, False, round_trip_count, 11, 2, 500_000, 5000)
    return first, second


def test_new_tracker_has_no_height():
    tracker = MaxAckHeightTracker(10)
    assert tracker.get() == 0
    assert tracker.num_ack_aggregation_epochs == 0


def test_first_update_starts_epoch():
    tracker = MaxAckHeightTracker(10)
    assert tracker.update(BANDWIDTH, False, 1, 7, 3, 100, 1000) == 0
    assert tracker.num_ack_aggregation_epochs == 1
    assert tracker.aggregation_epoch_start_time == 100
    assert tracker.aggregation_epoch_bytes == 1000
    assert tracker.last_sent_packet_number_before_epoch == 7


def test_aggregation_records_extra_bytes():
    tracker = MaxAckHeightTracker(10)
    first, second = _aggregate(tracker)
    assert first == 0
    assert second == 5500
    assert tracker.aggregation_epoch_bytes == 6000
    assert tracker.get() == bytes_from_bandwidth_and_time_delta(BANDWIDTH, 500_000)
    assert tracker.num_ack_aggregation_epochs == 1


def test_slow_acks_start_new_epoch():
    tracker = MaxAckHeightTracker(10)
    tracker.update(BANDWIDTH, False, 1, 10, 1, 0, 1000)
    # Exactly the expected number of bytes over one millisecond.
    result = tracker.update(BANDWIDTH, False, 1, 11, 2, 1_000_000, 1000)
    assert result == 0
    assert tracker.num_ack_aggregation_epochs == 2
    assert tracker.get() == 0


def test_high_threshold_always_resets():
    tracker = MaxAckHeightTracker(10)
    tracker.ack_aggregation_bandwidth_threshold = 1000.0
    _, second = _aggregate(tracker)
    assert second == 0
    assert tracker.num_ack_aggregation_epochs == 2


def test_full_round_forces_new_epoch():
    tracker = MaxAckHeightTracker(10)
    tracker.start_new_aggregation_epoch_after_full_round = True
    tracker.update(BANDWIDTH, False, 1, 10, 1, 0, 1000)
    result = tracker.update(BANDWIDTH, False, 1, 20, 11, 500_000, 5000)
    assert result == 0
    assert tracker.num_ack_aggregation_epochs == 2
    assert tracker.last_sent_packet_number_before_epoch == 20


def test_reset_sets_height():
    tracker = MaxAckHeightTracker(10)
    tracker.reset(1234, 5)
    assert tracker.get() == 1234


def test_window_keeps_old_height():
    tracker = MaxAckHeightTracker(10)
    tracker.reset(100_000, 0)
    _aggregate(tracker, round_trip_count=5)
    assert tracker.get() == 100_000


def test_shorter_window_expires_old_height():
    tracker = MaxAckHeightTracker(10)
    tracker.set_filter_window_length(2)
    tracker.reset(100_000, 0)
    _aggregate(tracker, round_trip_count=5)
    assert tracker.get() == bytes_from_bandwidth_and_time_delta(BANDWIDTH, 500_000)


def test_bandwidth_increase_clears_unexplained_heights():
    tracker = MaxAckHeightTracker(10)
    tracker.reset(100_000, 0)
    tracker.reduce_extra_acked_on_bandwidth_increase = True
    assert tracker.update(BANDWIDTH, True, 1, 10, 1, 0, 1000) == 0
    assert tracker.get() == 0


def test_extra_acked_event_defaults_are_zero():
    event = ExtraAckedEvent()
    assert (event.extra_acked, event.bytes_acked, event.time_delta, event.round) == (0, 0, 0, 0)


def test_recent_ack_points_single_point():
    points = RecentAckPoints()
    points.update(10, 100)
    assert points.most_recent_point() == AckPoint(10, 100)
    assert points.less_recent_point() == AckPoint(10, 100)


def test_recent_ack_points_two_points():
    points = RecentAckPoints()
    points.update(10, 100)
    points.update(20, 200)
    assert points.most_recent_point() == AckPoint(20, 200)
    assert points.less_recent_point() == AckPoint(10, 100)


def test_recent_ack_points_earlier_time_replaces_latest():
    points = RecentAckPoints()
    points.update(10, 100)
    points.update(20, 200)
    points.update(15, 250)
    assert points.most_recent_point() == AckPoint(15, 250)
    assert points.less_recent_point() == AckPoint(10, 100)


def test_recent_ack_points_same_time_updates_bytes():
    points = RecentAckPoints()
    points.update(10, 100)
    points.update(10, 300)
    assert points.most_recent_point() == AckPoint(10, 300)


def test_recent_ack_points_returns_copies():
    points = RecentAckPoints()
    points.update(10, 100)
    copy = points.most_recent_point()
    copy.total_bytes_acked = 999
    assert points.most_recent_point().total_bytes_acked == 100


def test_recent_ack_points_clear():
    points = RecentAckPoints()
    points.update(10, 100)
    points.update(20, 200)
    points.clear()
    assert points.most_recent_point() == AckPoint()
    assert points.less_recent_point() == AckPoint()