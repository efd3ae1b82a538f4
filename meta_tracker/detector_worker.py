"""Detector process: owns the native backend and answers tracker requests.

Requests and replies are plain dicts:

    {"reset": True}                              -> {"reset": True}
    {"calibrate": True, "width", "height"}       -> {"calibrated": True} | {"error": ...}
    {"track": True, "width", "height",
     "imageData": bytes}                         -> {"markers": [...]} | {"error": ...}
    {"shutdown": True}                           -> no reply, process exits

The first message sent is {"initialized": True} once the backend is built.
"""

from __future__ import annotations

import logging
from multiprocessing.connection import Connection
from typing import Any, Callable

from .records import decode_marker_record

logger = logging.getLogger(__name__)


def collect_markers(backend, count: int) -> list[dict[str, Any]]:
    markers = []
    for idx in range(count):
        with backend.get_tracked_marker(idx) as record:
            markers.append(decode_marker_record(record))
    return markers


def handle_request(backend, args: dict[str, Any]) -> dict[str, Any]:
    if args.get("reset"):
        backend.reset()
        return {"reset": True}

    if args.get("calibrate"):
        backend.set_calibration_from_frame_size(int(args["width"]), int(args["height"]))
        return {"calibrated": True}

    if args.get("track"):
        count = backend.process_image(int(args["width"]), int(args["height"]), args["imageData"])
        return {"markers": collect_markers(backend, count)}

    return {"error": f"unknown request: {sorted(args)}"}


def serve(conn: Connection, backend_factory: Callable[..., Any], *factory_args: Any) -> None:
    """Process entry point. Replies to every request exactly once."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [detector] %(message)s")

    backend = backend_factory(*factory_args)
    backend.reset()
    conn.send({"initialized": True})

    try:
        while True:
            try:
                args = conn.recv()
            except EOFError:
                break
            if args.get("shutdown"):
                break
            try:
                reply = handle_request(backend, args)
            except Exception as exc:
                logger.warning("request failed: %s", exc)
                reply = {"error": str(exc)}
            conn.send(reply)
    finally:
        conn.close()
