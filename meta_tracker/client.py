from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Callable, Optional

from .channel import WorkerChannel
from .detector_worker import serve
from .tracking_types import MarkerDetection

logger = logging.getLogger(__name__)


class DetectorError(RuntimeError):
    """The detector answered with something other than the expected reply."""

    def __init__(self, payload: Any):
        super().__init__(f"detector rejected request: {payload!r}")
        self.payload = payload


def _field(data: Any, key: str) -> Any:
    if not isinstance(data, dict):
        return None
    return data.get(key)


def _chain(source: Future, convert: Callable[[Any], Any]) -> Future:
    out: Future = Future()
    out.set_running_or_notify_cancel()

    def _done(f: Future) -> None:
        try:
            out.set_result(convert(f.result()))
        except Exception as exc:
            out.set_exception(exc)

    source.add_done_callback(_done)
    return out


class MarkerDetectorClient:
    """Request/response client for the detector process.

    Every call is a single round-trip returning a ``Future``. Responses are
    delivered by ``poll``/``wait`` on the calling thread. ``calibrate`` must
    have succeeded before the first ``detect`` and again after every change
    of frame resolution.
    """

    def __init__(self, channel: WorkerChannel):
        self.channel = channel

    @classmethod
    def spawn(
        cls,
        backend_factory: Optional[Callable[..., Any]] = None,
        *factory_args: Any,
        ready_timeout: Optional[float] = None,
    ) -> "MarkerDetectorClient":
        if backend_factory is None:
            from .backend import ArucoBackend
            backend_factory = ArucoBackend
        channel = WorkerChannel.spawn(
            serve, backend_factory, *factory_args, ready_timeout=ready_timeout, name="marker-detector"
        )
        return cls(channel)

    @property
    def busy(self) -> bool:
        return self.channel.busy

    def reset(self) -> Future:
        def _convert(data: Any) -> None:
            if not _field(data, "reset"):
                raise DetectorError(data)
            return None

        return _chain(self.channel.send({"reset": True}), _convert)

    def calibrate(self, width: int, height: int) -> Future:
        def _convert(data: Any) -> None:
            if not _field(data, "calibrated"):
                raise DetectorError(data)
            logger.info("detector calibrated for %dx%d", width, height)
            return None

        request = {"calibrate": True, "width": int(width), "height": int(height)}
        return _chain(self.channel.send(request), _convert)

    def detect(self, width: int, height: int, pixels: bytes) -> Future:
        def _convert(data: Any) -> list[MarkerDetection]:
            markers = _field(data, "markers")
            if markers is None:
                raise DetectorError(data)
            return [MarkerDetection.from_message(m) for m in markers]

        request = {
            "track": True,
            "width": int(width),
            "height": int(height),
            "imageData": bytes(pixels),
        }
        return _chain(self.channel.send(request), _convert)

    def poll(self, timeout: float = 0.0) -> int:
        return self.channel.poll(timeout)

    def wait(self, future: Future, timeout: Optional[float] = None) -> Any:
        self.channel.wait(future, timeout)
        return future.result()

    def close(self) -> None:
        self.channel.close()
