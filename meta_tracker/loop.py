from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from .frame_source import FrameSource
from .observable import Observable
from .tracking_types import Frame

logger = logging.getLogger(__name__)


@dataclass
class LoopStats:
    frames: int
    errors: int
    elapsed_sec: float

    @property
    def avg_fps(self) -> float:
        return self.frames / max(1e-6, self.elapsed_sec)


class FrameLoop:
    """Pulls frames from a source and notifies ``on_after_render`` per frame.

    Plays the part of a render loop: everything subscribed to it runs on the
    thread calling ``run``.
    """

    def __init__(self, source: FrameSource, fps: float = 0.0):
        self.source = source
        self.fps = fps
        self.on_after_render: Observable[Frame] = Observable()
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self, max_frames: Optional[int] = None, duration_sec: Optional[float] = None) -> LoopStats:
        self._stop_event.clear()
        self.source.start()
        t0 = time.time()
        last = t0
        frames = 0
        errors = 0

        try:
            while not self._stop_event.is_set():
                if duration_sec and (time.time() - t0) >= duration_sec:
                    break
                if max_frames and frames >= max_frames:
                    break

                if self.fps > 0:
                    wait = (1.0 / self.fps) - (time.time() - last)
                    if wait > 0:
                        time.sleep(wait)
                last = time.time()

                frame = self.source.read()
                if frame is None:
                    errors += 1
                    continue

                self.on_after_render.notify_observers(frame)
                frames += 1
        finally:
            self.source.stop()

        stats = LoopStats(frames, errors, time.time() - t0)
        logger.info("loop finished frames=%d avg_fps=%.2f errors=%d", stats.frames, stats.avg_fps, stats.errors)
        return stats
