from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from meta_tracker.frame_source import SyntheticSource
from meta_tracker.loop import FrameLoop
from meta_tracker.tracker import MetaMarkerPoseTracker, estimate_axes
from meta_tracker.transforms import rotate_vector
from meta_tracker.tracking_types import CornerSet, MarkerDetection, vec3

from fakes import black_frame, respond, square_markers


CORNERS = CornerSet(1, 2, 3, 4)  # UL, UR, LL, LR


def _results(**positions):
    ids = {"ul": 1, "ur": 2, "ll": 3, "lr": 4}
    return {
        ids[name]: MarkerDetection(ids[name], vec3(*p), vec3())
        for name, p in positions.items()
    }


SQUARE = dict(ul=(0, 1, 5), ur=(1, 1, 5), ll=(0, 0, 5), lr=(1, 0, 5))


def test_estimate_axes_on_unit_square():
    position, right, forward = estimate_axes(CORNERS, _results(**SQUARE))
    assert np.allclose(position, [0.5, 0.5, 5.0])
    assert np.allclose(right, [1.0, 0.0, 0.0])
    assert np.allclose(forward, [0.0, 1.0, 0.0])
    assert np.dot(right, forward) == pytest.approx(0.0)
    assert np.linalg.norm(right) == pytest.approx(1.0)
    assert np.linalg.norm(forward) == pytest.approx(1.0)


def test_estimate_axes_with_three_corners():
    """UL, UR and LL still give one pair for each estimate."""
    partial = {k: v for k, v in SQUARE.items() if k != "lr"}
    position, right, forward = estimate_axes(CORNERS, _results(**partial))
    assert np.allclose(position, [0.5, 0.5, 5.0])
    assert np.allclose(right, [1.0, 0.0, 0.0])
    assert np.allclose(forward, [0.0, 1.0, 0.0])


def test_estimate_axes_needs_every_estimate():
    """A single diagonal gives a position but no axes."""
    assert estimate_axes(CORNERS, _results(ll=SQUARE["ll"], ur=SQUARE["ur"])) is None
    assert estimate_axes(CORNERS, {}) is None


def test_direction_estimates_are_normalized():
    scaled = {k: tuple(3.0 * c for c in v) for k, v in SQUARE.items()}
    _position, right, forward = estimate_axes(CORNERS, _results(**scaled))
    assert np.linalg.norm(right) == pytest.approx(1.0)
    assert np.linalg.norm(forward) == pytest.approx(1.0)


@pytest.fixture
def tracker(detector_pair):
    client, peer = detector_pair
    t = MetaMarkerPoseTracker(SyntheticSource(8, 6), client)
    return t, peer


def test_register_trackable_is_idempotent(tracker):
    t, _peer = tracker
    a = t.register_trackable(1, 2, 3, 4)
    b = t.register_trackable(1, 2, 3, 4)
    c = t.register_trackable(4, 3, 2, 1)
    assert a is b
    assert a is not c
    assert set(t.trackables) == {"1,2,3,4", "4,3,2,1"}
    assert not a.enabled


def test_calibrate_scales_frame_size(tracker):
    t, peer = tracker
    future = t.calibrate(0.5)
    request = respond(peer, t.client, {"calibrated": True})
    assert (request["width"], request["height"]) == (4, 3)
    assert future.result() is None


def test_calibrate_rounds_half_up(detector_pair):
    client, peer = detector_pair
    t = MetaMarkerPoseTracker(SyntheticSource(5, 3), client)
    t.calibrate(0.5)
    request = respond(peer, client, {"calibrated": True})
    assert (request["width"], request["height"]) == (3, 2)


def test_end_to_end_acquire_then_lose(tracker):
    """One full frame acquires the object, five empty frames lose it."""
    t, peer = tracker
    entity = t.register_trackable(1, 2, 3, 4)
    acquired, lost = [], []
    entity.on_tracking_acquired.add(acquired.append)
    entity.on_tracking_lost.add(lost.append)

    t.tick(black_frame(1))
    request = respond(peer, t.client, {"markers": square_markers(z=5.0)})
    assert request["track"] is True
    t.tick(None)

    assert entity.is_tracking
    assert entity.enabled
    assert acquired == [entity]
    assert np.allclose(entity.position, [0.5, 0.5, 5.0])
    assert np.allclose(rotate_vector(entity.orientation, [1.0, 0.0, 0.0]), [1.0, 0.0, 0.0])
    assert np.allclose(rotate_vector(entity.orientation, [0.0, 0.0, 1.0]), [0.0, 1.0, 0.0])

    for i in range(5):
        t.tick(black_frame(i + 2))
        respond(peer, t.client, {"markers": []})
        t.tick(None)
        if i < 4:
            assert entity.is_tracking
    assert not entity.is_tracking
    assert not entity.enabled
    assert lost == [entity]


def test_frames_dropped_while_request_in_flight(tracker):
    t, peer = tracker
    t.tick(black_frame(1))
    assert t.in_flight
    t.tick(black_frame(2))
    t.tick(black_frame(3))
    assert t.frames_submitted == 1
    assert t.frames_dropped == 2

    peer.recv()
    assert not peer.poll(0.05)

    peer.send({"markers": []})
    t.client.poll(1.0)
    t.tick(black_frame(4))
    assert t.frames_submitted == 2


def test_detector_error_clears_in_flight(tracker):
    t, peer = tracker
    entity = t.register_trackable(1, 2, 3, 4)
    t.tick(black_frame(1))
    respond(peer, t.client, {"error": "boom"})
    t.tick(None)

    assert not t.in_flight
    assert t.detect_errors == 1
    assert not entity.is_tracking

    t.tick(black_frame(2))
    assert t.in_flight


def test_partial_visibility_keeps_last_pose_and_tracking(tracker):
    t, peer = tracker
    entity = t.register_trackable(1, 2, 3, 4)
    t.process_results({m.marker_id: m for m in map(MarkerDetection.from_message, square_markers())})
    pose_before = entity.pose

    only_one = square_markers()[:1]
    for _ in range(10):
        t.process_results({m.marker_id: m for m in map(MarkerDetection.from_message, only_one)})
    assert entity.is_tracking
    assert entity.missed_frame_count == 0
    assert np.allclose(entity.position, pose_before.position)


def test_partial_visibility_can_count_as_miss(detector_pair):
    client, _peer = detector_pair
    t = MetaMarkerPoseTracker(SyntheticSource(8, 6), client, partial_counts_as_miss=True)
    entity = t.register_trackable(1, 2, 3, 4)
    t.process_results({m.marker_id: m for m in map(MarkerDetection.from_message, square_markers())})

    other = {99: MarkerDetection(99, vec3(), vec3())}
    for _ in range(5):
        t.process_results(other)
    assert not entity.is_tracking


def test_entities_have_independent_filters(detector_pair):
    client, _peer = detector_pair
    t = MetaMarkerPoseTracker(SyntheticSource(8, 6), client, filter_window=3)
    a = t.register_trackable(1, 2, 3, 4)
    b = t.register_trackable(11, 12, 13, 14)

    markers = square_markers((1, 2, 3, 4)) + square_markers((11, 12, 13, 14), offset=(10.0, 0.0))
    results = {m.marker_id: m for m in map(MarkerDetection.from_message, markers)}
    for _ in range(3):
        t.process_results(results)

    assert np.allclose(a.position, [0.5, 0.5, 5.0])
    assert np.allclose(b.position, [10.5, 0.5, 5.0])


def test_start_and_stop_tracking_subscribe_to_loop(detector_pair):
    client, _peer = detector_pair
    t = MetaMarkerPoseTracker(SyntheticSource(8, 6), client)
    loop = FrameLoop(SyntheticSource(8, 6))

    t.start_tracking(loop)
    assert len(loop.on_after_render) == 1
    loop.run(max_frames=3)
    assert t.frames_submitted == 1
    assert t.frames_dropped == 2

    t.stop_tracking()
    assert len(loop.on_after_render) == 0


def test_create_waits_for_calibration():
    client = MagicMock()
    future = MagicMock()
    client.calibrate.return_value = future

    t = MetaMarkerPoseTracker.create(SyntheticSource(640, 480), client, calibration_scale=0.5)

    client.calibrate.assert_called_once_with(320, 240)
    client.wait.assert_called_once_with(future, None)
    assert t.client is client


def test_create_closes_spawned_client_when_calibration_fails():
    client = MagicMock()
    client.wait.side_effect = TimeoutError("no worker response")

    with patch("meta_tracker.tracker.MarkerDetectorClient.spawn", return_value=client):
        with pytest.raises(TimeoutError):
            MetaMarkerPoseTracker.create(SyntheticSource(8, 6))
    client.close.assert_called_once()


def test_create_leaves_given_client_open_when_calibration_fails():
    client = MagicMock()
    client.wait.side_effect = TimeoutError("no worker response")

    with pytest.raises(TimeoutError):
        MetaMarkerPoseTracker.create(SyntheticSource(8, 6), client)
    client.close.assert_not_called()
