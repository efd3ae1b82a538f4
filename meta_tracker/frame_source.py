"""Frame source abstraction for camera input.

Provides a unified interface for the video feeding the tracker:
- Device cameras (any OpenCV capture index or string)
- Synthetic test frames
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

import cv2
import numpy as np

from .tracking_types import Frame


class FrameSource(ABC):
    """Abstract base class for frame sources.

    ``size`` is the working resolution the detector gets calibrated for.
    """

    @property
    @abstractmethod
    def size(self) -> tuple[int, int]:
        """(width, height) of the frames this source produces."""
        ...

    @abstractmethod
    def start(self) -> None:
        """Start the frame source. Called before any read() calls."""
        ...

    @abstractmethod
    def read(self) -> Frame | None:
        """Read next frame, or None if no frame is available."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop the frame source and release resources."""
        ...


class DeviceCameraSource(FrameSource):
    """Any OpenCV capture: a device index or a path/URL string.

    The requested size is only a hint; after ``start`` the source reports
    what the driver actually delivers, which is what calibration must use.
    """

    def __init__(self, device: int | str, fps: int, width: int, height: int):
        self.device = device
        self.fps = fps
        self.width = width
        self.height = height
        self.cap: Any = None
        self.frame_id = 0

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def start(self) -> None:
        if self.cap is not None:
            return
        self.cap = cv2.VideoCapture(self.device)
        if not self.cap.isOpened():
            self.cap = None
            raise RuntimeError(f"Failed to open camera: {self.device}")

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        actual_w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        actual_h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        if actual_w > 0 and actual_h > 0:
            self.width, self.height = actual_w, actual_h
        self.frame_id = 0

    def read(self) -> Frame | None:
        if self.cap is None:
            return None
        ok, img = self.cap.read()
        if not ok:
            return None
        self.frame_id += 1
        return Frame(self.frame_id, time.time_ns(), img)

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class SyntheticSource(FrameSource):
    """Black BGR frames at a fixed size, for dry runs and tests."""

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.frame_id = 0
        self._image = np.zeros((height, width, 3), dtype=np.uint8)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def start(self) -> None:
        self.frame_id = 0

    def read(self) -> Frame | None:
        self.frame_id += 1
        return Frame(self.frame_id, time.time_ns(), self._image)

    def stop(self) -> None:
        return None
