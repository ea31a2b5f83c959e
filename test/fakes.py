"""
Test doubles for process streams.

FakeReader hands out scripted chunks instead of reading a pipe, which makes
fragmentation, fairness and failure cases deterministic.
"""

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))
from mcp_stream_mux import ReadFailure  # noqa: E402


class FakeReader:
    """Reader that delivers one scripted chunk per fill() call."""

    def __init__(self, chunks=None, finished=True):
        self.chunks = list(chunks or [])
        self.finished = finished
        self.eof = False
        self.fail = False
        self.eof_checks = 0
        self.closed = False

    def feed(self, *chunks):
        self.chunks.extend(chunks)

    def fill(self, buffer):
        if self.fail:
            raise ReadFailure("simulated read failure")
        if self.chunks:
            chunk = self.chunks.pop(0)
            buffer.append(chunk)
            return len(chunk.encode("utf-8"))
        if self.finished:
            self.eof = True
        return 0

    def is_at_end_of_stream(self):
        self.eof_checks += 1
        return self.eof

    def close(self):
        self.closed = True


class FakeProcess:
    """Stands in for subprocess.Popen."""

    def __init__(self, pid=4242, returncode=None):
        self.pid = pid
        self.returncode = returncode
        self.stdout = None
        self.stderr = None
        self.killed = False

    def poll(self):
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode
