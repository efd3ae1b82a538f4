from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional


@dataclass
class TrackableConfig:
    """Four corner marker ids of one physical object."""

    upper_left: int
    upper_right: int
    lower_left: int
    lower_right: int
    name: Optional[str] = None

    @property
    def ids(self) -> tuple[int, int, int, int]:
        return (self.upper_left, self.upper_right, self.lower_left, self.lower_right)


@dataclass
class TrackerConfig:
    tracker_name: str = "tracker"
    device: int | str = 0
    fps: int = 30
    width: int = 1280
    height: int = 720
    aruco_dict: str = "4x4_50"
    marker_length_m: float = 0.035
    calibration_scale: float = 1.0
    filter_window: int = 1
    disable_when_not_tracked: bool = True
    partial_counts_as_miss: bool = False
    trackables: list[TrackableConfig] = field(default_factory=list)
    session_root: str = "data/sessions"
    duration_sec: Optional[float] = None
    max_frames: Optional[int] = None
    dry_run: bool = False
    ready_timeout: Optional[float] = 30.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "TrackerConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self


def _parse_trackable(raw: Any) -> TrackableConfig:
    if isinstance(raw, (list, tuple)):
        if len(raw) != 4:
            raise ValueError(f"trackable needs 4 marker ids, got {raw!r}")
        return TrackableConfig(*(int(v) for v in raw))
    if isinstance(raw, dict):
        try:
            return TrackableConfig(
                upper_left=int(raw["upper_left"]),
                upper_right=int(raw["upper_right"]),
                lower_left=int(raw["lower_left"]),
                lower_right=int(raw["lower_right"]),
                name=raw.get("name"),
            )
        except KeyError as exc:
            raise ValueError(f"trackable missing corner id {exc}") from exc
    raise ValueError(f"trackable must be a list of 4 ids or a mapping, got {raw!r}")


def _optional(value: Any, cast):
    return None if value is None else cast(value)


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def load_config(path: str | Path) -> TrackerConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = TrackerConfig()
    cfg.tracker_name = str(raw.get("tracker_name", cfg.tracker_name))
    cfg.device = raw.get("device", cfg.device)
    cfg.fps = int(raw.get("fps", cfg.fps))
    cfg.width = int(raw.get("width", cfg.width))
    cfg.height = int(raw.get("height", cfg.height))
    cfg.aruco_dict = str(raw.get("aruco_dict", cfg.aruco_dict))
    cfg.marker_length_m = float(raw.get("marker_length_m", cfg.marker_length_m))
    cfg.calibration_scale = float(raw.get("calibration_scale", cfg.calibration_scale))
    cfg.filter_window = int(raw.get("filter_window", cfg.filter_window))
    if cfg.filter_window < 1:
        raise ValueError("filter_window must be >= 1")
    cfg.disable_when_not_tracked = bool(raw.get("disable_when_not_tracked", cfg.disable_when_not_tracked))
    cfg.partial_counts_as_miss = bool(raw.get("partial_counts_as_miss", cfg.partial_counts_as_miss))

    trackables_raw = raw.get("trackables", [])
    if not isinstance(trackables_raw, list):
        raise ValueError("trackables must be a list")
    cfg.trackables = [_parse_trackable(t) for t in trackables_raw]

    cfg.session_root = str(raw.get("session_root", cfg.session_root))
    cfg.duration_sec = _optional(raw.get("duration_sec", cfg.duration_sec), float)
    cfg.max_frames = _optional(raw.get("max_frames", cfg.max_frames), int)
    cfg.dry_run = bool(raw.get("dry_run", cfg.dry_run))
    cfg.ready_timeout = _optional(raw.get("ready_timeout", cfg.ready_timeout), float)
    return cfg
