import logging
import socket
import threading

import pytest

from knockgate.knocktrack import KnockTrack


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class RecordingGranter:
    def __init__(self):
        self.grants = []
        self.granted = threading.Event()

    def grant(self, address, completion_time):
        self.grants.append((address, completion_time))
        self.granted.set()


class RecordingTrack(KnockTrack):
    """KnockTrack that lets tests wait for knocks to be processed."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.outcomes = []
        self.cond = threading.Condition()

    def record_knock(self, address, port, now=None):
        outcome = super().record_knock(address, port, now)
        with self.cond:
            self.outcomes.append((address, port, outcome))
            self.cond.notify_all()
        return outcome

    def wait_for(self, count, timeout=5.0):
        with self.cond:
            return self.cond.wait_for(lambda: len(self.outcomes) >= count, timeout)


@pytest.fixture
def logger():
    return logging.getLogger("knockgate.tests")


@pytest.fixture
def granter():
    return RecordingGranter()
