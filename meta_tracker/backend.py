"""OpenCV marker detector with a native-module style API.

Only the detector process instantiates this. The tracker side never sees it;
it only receives the marker dicts decoded from the records below.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import cv2
import numpy as np

from .records import RECORD_SIZE, encode_marker_records

logger = logging.getLogger(__name__)


def get_dict(name: str):
    """
    ArUco-only dictionary resolver (no AprilTag).
    Falls back to 4x4_50 if name not recognized.
    Works on OpenCV 4.12 (getPredefinedDictionary) and older (Dictionary_get).
    """
    key = (name or "").strip().lower()
    if key.startswith("dict_"):
        key = key[5:]
    table = {
        "4x4_50":  cv2.aruco.DICT_4X4_50,
        "4x4_100": cv2.aruco.DICT_4X4_100,
        "5x5_50":  cv2.aruco.DICT_5X5_50,
        "5x5_100": cv2.aruco.DICT_5X5_100,
        "6x6_50":  cv2.aruco.DICT_6X6_50,
        "6x6_100": cv2.aruco.DICT_6X6_100,
        "7x7_50":  cv2.aruco.DICT_7X7_50,
        "7x7_100": cv2.aruco.DICT_7X7_100,
    }
    code = table.get(key, cv2.aruco.DICT_4X4_50)

    if hasattr(cv2.aruco, "getPredefinedDictionary"):           # OpenCV >= 4.7
        return cv2.aruco.getPredefinedDictionary(code)
    return cv2.aruco.Dictionary_get(code)                        # Older OpenCV


def _make_params():
    """Create detector parameters across OpenCV versions."""
    if hasattr(cv2.aruco, "DetectorParameters_create"):
        return cv2.aruco.DetectorParameters_create()
    return cv2.aruco.DetectorParameters()


def camera_matrix_from_frame_size(width: int, height: int) -> np.ndarray:
    """Pinhole guess used when no real calibration is available."""
    f = float(max(width, height))
    return np.array(
        [[f, 0.0, width / 2.0],
         [0.0, f, height / 2.0],
         [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )


class ArucoBackend:
    """
    Marker detector exposing the calls the detector process relies on:
    reset, set_calibration_from_frame_size, process_image and
    get_tracked_marker. Results of the last process_image call live in an
    internal record buffer that the next call overwrites.
    """

    def __init__(self, dict_name: str = "4x4_50", marker_length_m: float = 0.035):
        self.dictionary = get_dict(dict_name)
        self.params = _make_params()
        self.marker_length_m = float(marker_length_m)
        self._detector: Any = None
        if hasattr(cv2.aruco, "ArucoDetector"):
            self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)

        half = self.marker_length_m / 2.0
        # corner order of detectMarkers, as required by SOLVEPNP_IPPE_SQUARE
        self._object_points = np.array(
            [[-half, half, 0.0],
             [half, half, 0.0],
             [half, -half, 0.0],
             [-half, -half, 0.0]],
            dtype=np.float64,
        )

        self.K: Optional[np.ndarray] = None
        self.calibrated_size: Optional[tuple[int, int]] = None
        self.dist = np.zeros((5, 1), dtype=np.float64)
        self._records = bytearray()
        self._count = 0

    def reset(self) -> None:
        self.K = None
        self.calibrated_size = None
        self._records = bytearray()
        self._count = 0

    def set_calibration_from_frame_size(self, width: int, height: int) -> None:
        """Calibrate for the working resolution; frames get resized to it."""
        if width <= 0 or height <= 0:
            raise ValueError(f"invalid frame size {width}x{height}")
        self.K = camera_matrix_from_frame_size(width, height)
        self.calibrated_size = (int(width), int(height))
        logger.info("calibrated from frame size %dx%d", width, height)

    def _to_gray(self, width: int, height: int, buf) -> np.ndarray:
        data = np.frombuffer(buf, dtype=np.uint8)
        pixels = width * height
        if pixels <= 0 or data.size % pixels != 0:
            raise RuntimeError(f"buffer of {data.size} bytes does not match {width}x{height}")
        channels = data.size // pixels
        if channels == 1:
            return data.reshape(height, width)
        image = data.reshape(height, width, channels)
        if channels == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if channels == 4:
            return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
        raise RuntimeError(f"unsupported channel count {channels}")

    def _detect(self, gray: np.ndarray):
        if self._detector is not None:
            corners, ids, _rej = self._detector.detectMarkers(gray)
        else:
            corners, ids, _rej = cv2.aruco.detectMarkers(
                gray, self.dictionary, parameters=self.params
            )
        return corners, ids

    def process_image(self, width: int, height: int, buf) -> int:
        if self.K is None:
            raise RuntimeError("detector is not calibrated")
        gray = self._to_gray(width, height, buf)
        # K is in calibrated pixel space
        if (width, height) != self.calibrated_size:
            gray = cv2.resize(gray, self.calibrated_size, interpolation=cv2.INTER_AREA)
        corners, ids = self._detect(gray)

        markers = []
        if ids is not None and len(ids) > 0:
            for i, mid in enumerate(ids.flatten()):
                image_points = np.asarray(corners[i], dtype=np.float64).reshape(4, 2)
                ok, rvec, tvec = cv2.solvePnP(
                    self._object_points,
                    image_points,
                    self.K,
                    self.dist,
                    flags=cv2.SOLVEPNP_IPPE_SQUARE,
                )
                if not ok:
                    logger.debug("pose solve failed for marker %d", int(mid))
                    continue
                markers.append((int(mid), tvec, rvec))

        self._records = encode_marker_records(markers)
        self._count = len(markers)
        return self._count

    def get_tracked_marker(self, idx: int) -> memoryview:
        if not 0 <= idx < self._count:
            raise IndexError(f"marker index {idx} out of range ({self._count})")
        start = idx * RECORD_SIZE
        return memoryview(self._records)[start:start + RECORD_SIZE]
