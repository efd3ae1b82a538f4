from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from .transforms import quaternion_from_rodrigues


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    return np.array([x, y, z], dtype=np.float64)


def identity_quaternion() -> np.ndarray:
    return np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)


@dataclass
class Frame:
    idx: int
    ts_ns: int
    image: Any  # numpy array, (h, w, c) uint8

    @property
    def size(self) -> tuple[int, int]:
        h, w = self.image.shape[:2]
        return int(w), int(h)

    def pixels(self) -> bytes:
        return np.ascontiguousarray(self.image, dtype=np.uint8).tobytes()


@dataclass
class Pose:
    position: np.ndarray = field(default_factory=vec3)
    orientation: Optional[np.ndarray] = None  # (x, y, z, w)


@dataclass
class MarkerDetection:
    marker_id: int
    position: np.ndarray
    rotation_vector: np.ndarray

    @property
    def rotation(self) -> Optional[np.ndarray]:
        """Per-marker orientation for consumers; meta-marker poses do not use it."""
        return quaternion_from_rodrigues(*self.rotation_vector)

    @classmethod
    def from_message(cls, marker: dict[str, Any]) -> "MarkerDetection":
        # camera Y points down, target frame Y points up
        return cls(
            int(marker["id"]),
            vec3(float(marker["tx"]), -float(marker["ty"]), float(marker["tz"])),
            vec3(float(marker["rx"]), float(marker["ry"]), float(marker["rz"])),
        )


@dataclass(frozen=True)
class CornerSet:
    upper_left: int
    upper_right: int
    lower_left: int
    lower_right: int

    @property
    def key(self) -> str:
        return ",".join(str(i) for i in self.ids)

    @property
    def ids(self) -> tuple[int, int, int, int]:
        return (self.upper_left, self.upper_right, self.lower_left, self.lower_right)
