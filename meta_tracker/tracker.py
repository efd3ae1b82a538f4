from __future__ import annotations

import logging
import math
from concurrent.futures import Future
from typing import Optional

import numpy as np

from .client import DetectorError, MarkerDetectorClient
from .entity import TrackedEntity
from .frame_source import FrameSource
from .loop import FrameLoop
from .observable import Observer
from .transforms import quaternion_from_axes
from .tracking_types import CornerSet, Frame, MarkerDetection, Pose

logger = logging.getLogger(__name__)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


class _Estimate:
    """Running sum of one geometric estimate for a single object and frame."""

    def __init__(self):
        self.total = np.zeros(3, dtype=np.float64)
        self.count = 0

    def add(self, v: np.ndarray) -> None:
        self.total += v
        self.count += 1

    def add_direction(self, head: np.ndarray, tail: np.ndarray) -> None:
        d = head - tail
        n = np.linalg.norm(d)
        # coincident markers give no direction
        if n > 0.0:
            self.add(d / n)

    def mean(self) -> np.ndarray:
        return self.total / self.count


def estimate_axes(corners: CornerSet, results: dict[int, MarkerDetection]):
    """
    Combine corner marker positions into position, right and forward estimates.

    Position: midpoints of the two diagonals (LL-UR, LR-UL).
    Right:    LR - LL and UR - UL, normalized.
    Forward:  UL - LL and UR - LR, normalized.

    Each estimate averages whichever of its pairs are visible.

    Returns:
        (position, right, forward), or None unless all three have at least
        one contributing pair
    """
    ul = results.get(corners.upper_left)
    ur = results.get(corners.upper_right)
    ll = results.get(corners.lower_left)
    lr = results.get(corners.lower_right)

    pos = _Estimate()
    right = _Estimate()
    forward = _Estimate()

    if ll is not None:
        if ur is not None:
            pos.add((ll.position + ur.position) * 0.5)
        if lr is not None:
            right.add_direction(lr.position, ll.position)
        if ul is not None:
            forward.add_direction(ul.position, ll.position)

    if ur is not None:
        if lr is not None:
            forward.add_direction(ur.position, lr.position)
        if ul is not None:
            right.add_direction(ur.position, ul.position)

    if lr is not None and ul is not None:
        pos.add((lr.position + ul.position) * 0.5)

    if pos.count == 0 or right.count == 0 or forward.count == 0:
        return None
    return pos.mean(), right.mean(), forward.mean()


class MetaMarkerPoseTracker:
    """Tracks objects identified by four corner markers.

    One detection request is outstanding at most; frames that arrive while
    it is pending are dropped. When the reply comes back every registered
    object is re-estimated from its corner markers and its entity updated.
    """

    def __init__(
        self,
        source: FrameSource,
        client: MarkerDetectorClient,
        filter_window: int = 1,
        disable_when_not_tracked: bool = True,
        partial_counts_as_miss: bool = False,
    ):
        self.source = source
        self.client = client
        self.filter_window = filter_window
        self.disable_when_not_tracked = disable_when_not_tracked
        self.partial_counts_as_miss = partial_counts_as_miss
        self._trackables: dict[str, TrackedEntity] = {}
        self._corners: dict[str, CornerSet] = {}
        self._in_flight: Optional[Future] = None
        self._loop: Optional[FrameLoop] = None
        self._observer: Optional[Observer] = None
        self.frames_submitted = 0
        self.frames_dropped = 0
        self.detect_errors = 0

    @classmethod
    def create(
        cls,
        source: FrameSource,
        client: Optional[MarkerDetectorClient] = None,
        calibration_scale: float = 1.0,
        calibration_timeout: Optional[float] = None,
        **kwargs,
    ) -> "MetaMarkerPoseTracker":
        """Build a tracker with a calibrated detector, spawning one if needed.

        A detector spawned here is closed again if calibration fails; a
        caller-provided client is left to the caller.
        """
        spawned = client is None
        if spawned:
            client = MarkerDetectorClient.spawn()
        try:
            tracker = cls(source, client, **kwargs)
            client.wait(tracker.calibrate(calibration_scale), calibration_timeout)
        except Exception:
            if spawned:
                client.close()
            raise
        return tracker

    @property
    def trackables(self) -> dict[str, TrackedEntity]:
        return dict(self._trackables)

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def register_trackable(self, ul: int, ur: int, ll: int, lr: int, name: Optional[str] = None) -> TrackedEntity:
        corners = CornerSet(int(ul), int(ur), int(ll), int(lr))
        key = corners.key
        entity = self._trackables.get(key)
        if entity is None:
            entity = TrackedEntity(
                name or key,
                disable_when_not_tracked=self.disable_when_not_tracked,
                filter_window=self.filter_window,
            )
            self._trackables[key] = entity
            self._corners[key] = corners
            logger.info("registered trackable %s corners=%s", entity.name, key)
        return entity

    def calibrate(self, scale_factor: float = 1.0) -> Future:
        width, height = self.source.size
        return self.client.calibrate(_round_half_up(scale_factor * width), _round_half_up(scale_factor * height))

    def _update_entity(self, entity: TrackedEntity, corners: CornerSet, results: dict[int, MarkerDetection]) -> None:
        estimate = estimate_axes(corners, results)
        if estimate is None:
            entity.update(entity.pose, not self.partial_counts_as_miss)
            return

        position, right, forward = estimate
        filtered_pos = entity.filtered_position.add_sample(position)
        filtered_right = entity.filtered_right.add_sample(right)
        filtered_forward = entity.filtered_forward.add_sample(forward)

        entity.update(Pose(filtered_pos, quaternion_from_axes(filtered_right, filtered_forward)), True)

    def process_results(self, results: dict[int, MarkerDetection]) -> None:
        if not results:
            for entity in self._trackables.values():
                entity.update(entity.pose, False)
            return

        for key, entity in self._trackables.items():
            self._update_entity(entity, self._corners[key], results)

    def _finish_request(self) -> None:
        future = self._in_flight
        if future is None or not future.done():
            return
        self._in_flight = None
        try:
            markers = future.result()
        except DetectorError as exc:
            self.detect_errors += 1
            logger.warning("marker detection failed: %s", exc.payload)
            return
        self.process_results({m.marker_id: m for m in markers})

    def tick(self, frame: Optional[Frame] = None) -> None:
        """Per-frame update; wire this to the render loop."""
        self.client.poll(0.0)
        self._finish_request()

        if frame is None:
            return
        if self._in_flight is not None:
            self.frames_dropped += 1
            return

        width, height = frame.size
        self._in_flight = self.client.detect(width, height, frame.pixels())
        self.frames_submitted += 1

    def start_tracking(self, loop: FrameLoop) -> None:
        self.stop_tracking()
        self._loop = loop
        self._observer = loop.on_after_render.add(self.tick)

    def stop_tracking(self) -> None:
        if self._loop is not None:
            self._loop.on_after_render.remove(self._observer)
        self._loop = None
        self._observer = None

    def close(self) -> None:
        self.stop_tracking()
        self.client.close()
