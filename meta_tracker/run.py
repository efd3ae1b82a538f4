import argparse
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .backend import ArucoBackend
from .client import MarkerDetectorClient
from .config import TrackerConfig, load_config
from .frame_source import DeviceCameraSource, FrameSource, SyntheticSource
from .logging_utils import add_file_handler, setup_logger
from .loop import FrameLoop
from .output import CsvPoseOutput, OutputSink
from .storage import SessionStorage
from .tracker import MetaMarkerPoseTracker


@dataclass
class TrackingSummary:
    session_path: str
    frames_processed: int
    frames_submitted: int
    frames_dropped: int
    detect_errors: int
    csv_path: str
    log_path: str
    avg_fps: float


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Track meta-marker objects from a camera")
    ap.add_argument("--config", required=True, help="Path to JSON/YAML config")

    ap.add_argument("--name")
    ap.add_argument("--device")
    ap.add_argument("--fps", type=int)
    ap.add_argument("--width", type=int)
    ap.add_argument("--height", type=int)
    ap.add_argument("--dict")
    ap.add_argument("--marker-length-m", type=float)
    ap.add_argument("--scale", type=float, help="Calibration scale factor")
    ap.add_argument("--filter-window", type=int)
    ap.add_argument("--out")
    ap.add_argument("--duration", type=float)
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--dry-run", action="store_true")

    return ap


def _apply_args(cfg: TrackerConfig, args: argparse.Namespace) -> TrackerConfig:
    device = args.device
    if isinstance(device, str) and device.isdigit():
        device = int(device)

    cfg.apply_overrides(
        tracker_name=args.name,
        device=device,
        fps=args.fps,
        width=args.width,
        height=args.height,
        aruco_dict=args.dict,
        marker_length_m=args.marker_length_m,
        calibration_scale=args.scale,
        filter_window=args.filter_window,
        session_root=args.out,
        duration_sec=args.duration,
        max_frames=args.max_frames,
        dry_run=args.dry_run if args.dry_run else None,
    )
    return cfg


def build_source(cfg: TrackerConfig) -> FrameSource:
    if cfg.dry_run:
        return SyntheticSource(cfg.width, cfg.height)
    return DeviceCameraSource(cfg.device, cfg.fps, cfg.width, cfg.height)


class TrackingSession:
    """Wires a frame loop, a tracker and output sinks for one run."""

    def __init__(
        self,
        config: TrackerConfig,
        source: Optional[FrameSource] = None,
        client: Optional[MarkerDetectorClient] = None,
        outputs: Optional[list[OutputSink]] = None,
        logger=None,
    ):
        self.config = config
        self.logger = logger or setup_logger(config.tracker_name)
        self.source = source or build_source(config)
        self.client = client
        self.outputs = outputs if outputs is not None else [CsvPoseOutput()]
        self.loop = FrameLoop(self.source, fps=config.fps if config.dry_run else 0.0)
        self.tracker: Optional[MetaMarkerPoseTracker] = None

    def stop(self) -> None:
        self.loop.stop()

    def _write_poses(self, frame) -> None:
        ts = time.time()
        for entity in self.tracker.trackables.values():
            for out in self.outputs:
                out.write_pose(ts, frame.idx, entity)

    def run(self) -> TrackingSummary:
        cfg = self.config
        storage = SessionStorage(cfg.session_root, name=f"{cfg.tracker_name}_session")
        session_path = storage.begin()
        storage.write_manifest(cfg.as_dict())

        log_file = str(Path(storage.logs_dir) / "session.log")
        file_handler = add_file_handler(self.logger, cfg.tracker_name, log_file)

        client = self.client
        try:
            if client is None:
                client = MarkerDetectorClient.spawn(
                    ArucoBackend, cfg.aruco_dict, cfg.marker_length_m, ready_timeout=cfg.ready_timeout
                )
            # the camera reports its real resolution only once opened
            self.source.start()
            self.tracker = MetaMarkerPoseTracker.create(
                self.source,
                client,
                calibration_scale=cfg.calibration_scale,
                calibration_timeout=cfg.ready_timeout,
                filter_window=cfg.filter_window,
                disable_when_not_tracked=cfg.disable_when_not_tracked,
                partial_counts_as_miss=cfg.partial_counts_as_miss,
            )
        except Exception:
            if client is not None:
                client.close()
            self.source.stop()
            self.logger.removeHandler(file_handler)
            file_handler.close()
            raise
        for t in cfg.trackables:
            self.tracker.register_trackable(*t.ids, name=t.name)

        for out in self.outputs:
            out.open(Path(storage.session_dir))

        self.logger.info("session started: %s", session_path)
        self.logger.info("config: %s", cfg.as_dict())

        self.tracker.start_tracking(self.loop)
        writer = self.loop.on_after_render.add(self._write_poses)
        try:
            stats = self.loop.run(max_frames=cfg.max_frames, duration_sec=cfg.duration_sec)
        finally:
            self.loop.on_after_render.remove(writer)
            self.tracker.close()
            for out in self.outputs:
                out.close()
            self.logger.removeHandler(file_handler)
            file_handler.close()

        self.logger.info(
            "summary frames=%d submitted=%d dropped=%d errors=%d",
            stats.frames,
            self.tracker.frames_submitted,
            self.tracker.frames_dropped,
            self.tracker.detect_errors,
        )
        return TrackingSummary(
            session_path,
            stats.frames,
            self.tracker.frames_submitted,
            self.tracker.frames_dropped,
            self.tracker.detect_errors,
            str(Path(storage.session_dir) / "poses.csv"),
            log_file,
            stats.avg_fps,
        )


def main() -> int:
    ap = _build_parser()
    args = ap.parse_args()

    cfg = load_config(args.config)
    cfg = _apply_args(cfg, args)

    session = TrackingSession(cfg)

    def _handle_signal(_sig, _frame):
        session.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    summary = session.run()
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
