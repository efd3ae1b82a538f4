"""One-request-in-flight RPC transport to an isolated worker process.

The worker talks over a duplex ``multiprocessing`` connection. The first
message it sends is a readiness handshake; after that every request gets
exactly one response. A message arriving while no response is expected means
two requests were in flight, which this protocol never allows, so it is
treated as fatal.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import time
from concurrent.futures import Future
from multiprocessing.connection import Connection
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ProtocolViolation(RuntimeError):
    """A message arrived while no response was expected."""


class WorkerStartupError(RuntimeError):
    """The worker never completed its readiness handshake."""


class WorkerChannel:
    def __init__(self, conn: Connection, process: Optional[mp.process.BaseProcess] = None):
        self._conn = conn
        self._process = process
        self._pending: Optional[Future] = None
        self._broken: Optional[ProtocolViolation] = None
        self._closed = False

    @classmethod
    def open(
        cls,
        conn: Connection,
        process: Optional[mp.process.BaseProcess] = None,
        ready_timeout: Optional[float] = None,
    ) -> "WorkerChannel":
        """Wait for the worker's readiness message and return a usable channel."""
        try:
            ready = conn.poll(ready_timeout)
        except (EOFError, OSError) as exc:
            raise WorkerStartupError("worker connection closed before handshake") from exc
        if not ready:
            raise WorkerStartupError(f"worker not ready after {ready_timeout}s")
        try:
            hello = conn.recv()
        except EOFError as exc:
            raise WorkerStartupError("worker exited before handshake") from exc
        logger.debug("worker ready: %s", hello)
        return cls(conn, process)

    @classmethod
    def spawn(
        cls,
        target: Callable[..., Any],
        *args: Any,
        ready_timeout: Optional[float] = None,
        name: Optional[str] = None,
    ) -> "WorkerChannel":
        ctx = mp.get_context("spawn")
        parent_conn, child_conn = ctx.Pipe(duplex=True)
        process = ctx.Process(target=target, args=(child_conn, *args), name=name, daemon=True)
        process.start()
        child_conn.close()
        logger.info("started worker process pid=%s", process.pid)
        try:
            return cls.open(parent_conn, process, ready_timeout)
        except WorkerStartupError:
            parent_conn.close()
            if process.is_alive():
                process.terminate()
            process.join(timeout=1.0)
            raise

    @property
    def busy(self) -> bool:
        return self._pending is not None

    @property
    def process(self) -> Optional[mp.process.BaseProcess]:
        return self._process

    def _check_usable(self) -> None:
        if self._broken is not None:
            raise ProtocolViolation(str(self._broken))
        if self._closed:
            raise RuntimeError("channel is closed")

    def send(self, request: dict[str, Any]) -> Future:
        self._check_usable()
        if self._pending is not None:
            raise ProtocolViolation("request sent while another response is pending")
        future: Future = Future()
        future.set_running_or_notify_cancel()
        self._pending = future
        self._conn.send(request)
        return future

    def poll(self, timeout: float = 0.0) -> int:
        """Deliver all responses that have arrived; return how many."""
        self._check_usable()
        delivered = 0
        wait = timeout
        while self._conn.poll(wait):
            message = self._conn.recv()
            wait = 0.0
            future = self._pending
            if future is None:
                self._broken = ProtocolViolation(f"unexpected message from worker: {message!r}")
                raise self._broken
            self._pending = None
            future.set_result(message)
            delivered += 1
        return delivered

    def wait(self, future: Future, timeout: Optional[float] = None, interval: float = 0.05) -> Any:
        """Pump responses until ``future`` is done and return its result."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not future.done():
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"no worker response after {timeout}s")
                self.poll(min(interval, remaining))
            else:
                self.poll(interval)
        return future.result()

    def close(self, join_timeout: float = 2.0) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._process is not None and self._process.is_alive():
                self._conn.send({"shutdown": True})
        except (BrokenPipeError, OSError):
            pass
        self._conn.close()
        if self._process is not None:
            self._process.join(timeout=join_timeout)
            if self._process.is_alive():
                logger.warning("worker pid=%s did not exit, terminating", self._process.pid)
                self._process.terminate()
                self._process.join(timeout=join_timeout)
