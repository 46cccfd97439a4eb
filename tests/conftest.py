import struct
import sys

import pytest

from codebox.core.languages import build_registry
from codebox.isolation.process_backend import ProcessBackend
from codebox.services.orchestrator import ExecutionOrchestrator
from codebox.services.workspace import WorkspaceManager


def frame(stream: int, payload: bytes) -> bytes:
    return struct.pack(">BxxxL", stream, len(payload)) + payload


class FakeSock:
    """Socket giả: recv trả lần lượt các chunk, hết chunk thì raise `error` hoặc EOF."""

    def __init__(self, chunks=(), error=None):
        self.chunks = list(chunks)
        self.error = error
        self.sent = b""
        self.shut = []
        self.closed = False
        self.timeouts = []

    def settimeout(self, t):
        self.timeouts.append(t)

    def recv(self, n):
        if self.chunks:
            return self.chunks.pop(0)
        if self.error is not None:
            raise self.error
        return b""

    def sendall(self, data):
        self.sent += data

    def shutdown(self, how):
        self.shut.append(how)

    def close(self):
        self.closed = True


@pytest.fixture
def host_python_orchestrator(tmp_path):
    backend = ProcessBackend(runtimes={"python": sys.executable})
    return ExecutionOrchestrator(build_registry(), WorkspaceManager(tmp_path / "staging"), backend, timeout_s=10)
