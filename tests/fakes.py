"""Test doubles shared by the controller tests."""

import queue

from grbl_streamer.controller import GrblController
from grbl_streamer.transport.base import Transport
from grbl_streamer.utils.exceptions import TransportWriteError

STATUS_IDLE = "<Idle|MPos:0.000,0.000,0.000|FS:0,0>"
STARTUP_BANNER = "Grbl 1.1h ['$' for help]"


class FakeTransport(Transport):
    """In-memory transport that records every write."""

    def __init__(self, name="fake://grbl"):
        super().__init__(name)
        self._open = False
        self.writes = []
        self.incoming = b""
        self.fail_writes = False

    @property
    def is_open(self):
        return self._open

    def open(self):
        self._open = True

    def close(self):
        self._open = False

    def write(self, data):
        if self.fail_writes:
            raise TransportWriteError("simulated write failure")
        self.writes.append(bytes(data))

    def _read_chunk(self, timeout):
        chunk, self.incoming = self.incoming, b""
        return chunk

    def lines(self):
        """Text of every line-oriented write, in wire order."""
        return [w.decode("ascii").strip() for w in self.writes if w.endswith(b"\n")]

    def realtime(self):
        """Every single-byte realtime write, in wire order."""
        return [w for w in self.writes if not w.endswith(b"\n")]


def make_controller(**overrides):
    """Connected controller without worker threads; lines are fed via handle_line()."""
    config = {"query_on_connect": False, "ack_timeout": 10}
    config.update(overrides)
    transport = FakeTransport()
    grbl = GrblController(transport, config)
    events = grbl.subscribe()
    grbl.connect(start_workers=False)
    return grbl, transport, events


def drain(events):
    """Pop every queued event."""
    out = []
    while True:
        try:
            out.append(events.get_nowait())
        except queue.Empty:
            return out


def names(event_list):
    return [event[0] for event in event_list]
