import struct

import numpy as np
import pytest

from meta_tracker.records import (
    MARKER_RECORD_DTYPE,
    RECORD_SIZE,
    decode_marker_record,
    encode_marker_records,
)


def test_record_layout_matches_native_offsets():
    assert RECORD_SIZE == 60
    assert MARKER_RECORD_DTYPE.fields["id"][1] == 0
    assert MARKER_RECORD_DTYPE.fields["tx"][1] == 12
    assert MARKER_RECORD_DTYPE.fields["rz"][1] == 52


def test_decode_native_bytes():
    """Bytes laid out by hand decode to the expected marker dict."""
    raw = struct.pack("<i8x6d", 7, 0.1, -0.2, 1.5, 0.01, 0.02, -0.03)
    assert len(raw) == RECORD_SIZE

    marker = decode_marker_record(raw)
    assert marker["id"] == 7
    assert marker["tx"] == pytest.approx(0.1)
    assert marker["ty"] == pytest.approx(-0.2)
    assert marker["tz"] == pytest.approx(1.5)
    assert marker["rz"] == pytest.approx(-0.03)
    assert all(isinstance(marker[k], float) for k in ("tx", "ty", "tz", "rx", "ry", "rz"))


def test_encoded_records_are_consecutive():
    buf = encode_marker_records([
        (3, [1.0, 2.0, 3.0], np.array([[0.1], [0.2], [0.3]])),
        (9, (4.0, 5.0, 6.0), (0.0, 0.0, 0.0)),
    ])
    assert len(buf) == 2 * RECORD_SIZE
    second = decode_marker_record(memoryview(buf)[RECORD_SIZE:])
    assert second["id"] == 9
    assert second["tz"] == 6.0
    assert struct.unpack_from("<i", buf, 0)[0] == 3
