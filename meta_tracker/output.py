from __future__ import annotations

import csv
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .entity import TrackedEntity


class OutputSink(ABC):
    @abstractmethod
    def open(self, session_dir: Path) -> None: ...

    @abstractmethod
    def write_pose(self, ts_unix: float, frame_idx: int, entity: TrackedEntity) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class CsvPoseOutput(OutputSink):
    HEADER = [
        "recorded_at",
        "frame_idx", "trackable", "tracking",
        "px", "py", "pz",
        "qx", "qy", "qz", "qw",
    ]

    def __init__(self, filename: str = "poses.csv"):
        self.filename = filename
        self.path: Optional[Path] = None
        self._fh = None
        self._w = None

    def open(self, session_dir: Path) -> None:
        self.path = Path(session_dir) / self.filename
        self._fh = open(self.path, "w", newline="")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)

    def write_pose(self, ts_unix: float, frame_idx: int, entity: TrackedEntity) -> None:
        if self._w is None:
            return
        pose = entity.pose
        self._w.writerow([
            f"{ts_unix:.6f}",
            frame_idx, entity.name, int(entity.is_tracking),
            *pose.position.tolist(),
            *pose.orientation.tolist(),
        ])

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._w = None
