"""Fixed-layout marker record written by the native detector.

One record per tracked marker, little-endian, 60 bytes:

    offset  0  int32    id
    offset  4  8 bytes  padding
    offset 12  float64  tx, ty, tz   (translation, camera frame)
    offset 36  float64  rx, ry, rz   (Rodrigues rotation vector)
"""

from __future__ import annotations

from typing import Any

import numpy as np

FIELDS = ("tx", "ty", "tz", "rx", "ry", "rz")

MARKER_RECORD_DTYPE = np.dtype(
    {
        "names": ["id", *FIELDS],
        "formats": ["<i4"] + ["<f8"] * len(FIELDS),
        "offsets": [0, 12, 20, 28, 36, 44, 52],
        "itemsize": 60,
    }
)

RECORD_SIZE = MARKER_RECORD_DTYPE.itemsize


def decode_marker_record(buf) -> dict[str, Any]:
    """Copy one record out of detector-owned memory into a plain dict."""
    rec = np.frombuffer(buf, dtype=MARKER_RECORD_DTYPE, count=1)[0]
    marker: dict[str, Any] = {"id": int(rec["id"])}
    for name in FIELDS:
        marker[name] = float(rec[name])
    return marker


def encode_marker_records(markers) -> bytearray:
    """Pack ``(id, tvec, rvec)`` triples into consecutive records."""
    arr = np.zeros(len(markers), dtype=MARKER_RECORD_DTYPE)
    for i, (marker_id, tvec, rvec) in enumerate(markers):
        t = np.asarray(tvec, dtype=np.float64).reshape(3)
        r = np.asarray(rvec, dtype=np.float64).reshape(3)
        arr[i] = (int(marker_id), *t, *r)
    return bytearray(arr.tobytes())
