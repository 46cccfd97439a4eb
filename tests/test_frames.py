import socket
import time

import pytest
from conftest import FakeSock, frame

from codebox.core.errors import ExecTimeout, MalformedFrameError, StreamError
from codebox.executor.frames import (
    STDERR, STDOUT, FrameDecoder, close_socket, demux, read_chunks, send_payload,
)


def test_decoder_handles_split_header_and_payload():
    data = frame(STDOUT, b"hello ") + frame(STDERR, b"world\n")
    d = FrameDecoder()
    got = []
    # cắt từng byte một
    for i in range(len(data)):
        got += d.feed(data[i:i + 1])
    d.close()
    assert got == [(STDOUT, b"hello "), (STDERR, b"world\n")]


def test_demux_keeps_arrival_order():
    chunks = [frame(STDERR, b"e1") + frame(STDOUT, b"o1")[:5], frame(STDOUT, b"o1")[5:] + frame(STDOUT, b"")]
    assert b"".join(demux(iter(chunks))) == b"e1o1"


def test_malformed_header():
    with pytest.raises(MalformedFrameError):
        FrameDecoder().feed(b"\x07\x00\x00\x00\x00\x00\x00\x01x")


def test_stream_ending_mid_frame():
    with pytest.raises(MalformedFrameError):
        list(demux(iter([frame(STDOUT, b"abcdef")[:-2]])))


def test_read_chunks_until_eof():
    sock = FakeSock([b"a", b"b"])
    assert list(read_chunks(sock, time.monotonic() + 5, 5)) == [b"a", b"b"]
    assert all(0 < t <= 5 for t in sock.timeouts)


def test_read_chunks_timeout_and_transport_error():
    with pytest.raises(ExecTimeout):
        list(read_chunks(FakeSock([b"a"], error=socket.timeout()), time.monotonic() + 5, 5))
    with pytest.raises(ExecTimeout):
        list(read_chunks(FakeSock([b"a"]), time.monotonic() - 1, 5))
    with pytest.raises(StreamError):
        list(read_chunks(FakeSock(error=ConnectionResetError("reset")), time.monotonic() + 5, 5))


def test_send_payload_half_closes():
    sock = FakeSock()
    send_payload(sock, b"42\n")
    assert sock.sent == b"42\n"
    assert sock.shut == [socket.SHUT_WR]


def test_close_socket_unwraps_socketio():
    class Wrapper:
        def __init__(self, raw):
            self._sock = raw
            self.closed = False

        def close(self):
            self.closed = True

    raw = FakeSock()
    w = Wrapper(raw)
    close_socket(w)
    assert w.closed and raw.closed
    assert raw.shut == [socket.SHUT_RDWR]


def test_real_socketpair():
    a, b = socket.socketpair()
    try:
        a.sendall(frame(STDOUT, b"x" * 10000))
        a.close()
        out = b"".join(demux(read_chunks(b, time.monotonic() + 5, 5)))
        assert out == b"x" * 10000
    finally:
        b.close()
