import multiprocessing

import pytest

from meta_tracker.channel import WorkerChannel
from meta_tracker.client import MarkerDetectorClient


@pytest.fixture
def channel_pair():
    """A ready WorkerChannel plus the detector-side end of its pipe."""
    ours, peer = multiprocessing.Pipe()
    peer.send({"initialized": True})
    channel = WorkerChannel.open(ours, ready_timeout=1.0)
    yield channel, peer
    channel.close()
    peer.close()


@pytest.fixture
def detector_pair(channel_pair):
    """A MarkerDetectorClient plus the detector-side end of its pipe."""
    channel, peer = channel_pair
    return MarkerDetectorClient(channel), peer
