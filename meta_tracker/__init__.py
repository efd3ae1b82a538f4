"""Pose tracking of four-marker ArUco objects with an isolated detector process."""

from .channel import ProtocolViolation, WorkerChannel, WorkerStartupError
from .client import DetectorError, MarkerDetectorClient
from .entity import TrackedEntity
from .filtering import FilteredSample3
from .tracker import MetaMarkerPoseTracker

__all__ = [
    "DetectorError",
    "FilteredSample3",
    "MarkerDetectorClient",
    "MetaMarkerPoseTracker",
    "ProtocolViolation",
    "TrackedEntity",
    "WorkerChannel",
    "WorkerStartupError",
]
