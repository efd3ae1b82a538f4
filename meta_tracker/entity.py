from __future__ import annotations

import logging

import numpy as np

from .filtering import FilteredSample3
from .observable import Observable, Observer
from .tracking_types import Pose, identity_quaternion, vec3

logger = logging.getLogger(__name__)

MISS_LIMIT = 5


class TrackedEntity:
    """Last known pose of a meta-marker object plus a debounced tracked flag.

    ``update`` is called once per processed frame. A frame without a raw
    detection only counts as lost after ``miss_limit`` consecutive misses, so
    short gaps do not flicker the tracked state.
    """

    def __init__(
        self,
        name: str,
        disable_when_not_tracked: bool = True,
        filter_window: int = 1,
        miss_limit: int = MISS_LIMIT,
    ):
        self.name = name
        self.disable_when_not_tracked = disable_when_not_tracked
        self.miss_limit = miss_limit
        self.position = vec3()
        self.orientation = identity_quaternion()
        self.missed_frame_count = miss_limit
        self._is_tracking = False
        self.enabled = not disable_when_not_tracked

        self.on_tracking_acquired: Observable[TrackedEntity] = Observable(self._replay_acquired)
        self.on_tracking_lost: Observable[TrackedEntity] = Observable()

        # smoothing state for the aggregated estimates, owned per object
        self.filtered_position = FilteredSample3(sample_count=filter_window)
        self.filtered_right = FilteredSample3(sample_count=filter_window)
        self.filtered_forward = FilteredSample3(sample_count=filter_window)

    def __repr__(self) -> str:
        return f"TrackedEntity({self.name!r}, tracking={self._is_tracking})"

    @property
    def is_tracking(self) -> bool:
        return self._is_tracking

    @property
    def pose(self) -> Pose:
        return Pose(self.position.copy(), self.orientation.copy())

    def _replay_acquired(self, observer: Observer) -> None:
        if self._is_tracking:
            self.on_tracking_acquired.notify_observer(observer, self)

    def update(self, pose: Pose, raw_detected: bool) -> None:
        self.position = np.asarray(pose.position, dtype=np.float64).copy()
        if pose.orientation is not None:
            self.orientation = np.asarray(pose.orientation, dtype=np.float64).copy()

        if raw_detected:
            self.missed_frame_count = 0
            tracking = True
        else:
            self.missed_frame_count += 1
            tracking = self.missed_frame_count < self.miss_limit

        was_tracking = self._is_tracking
        self._is_tracking = tracking
        self.enabled = not self.disable_when_not_tracked or tracking

        if not was_tracking and tracking:
            logger.info("tracking acquired: %s", self.name)
            self.on_tracking_acquired.notify_observers(self)
        elif was_tracking and not tracking:
            logger.info("tracking lost: %s", self.name)
            self.on_tracking_lost.notify_observers(self)
