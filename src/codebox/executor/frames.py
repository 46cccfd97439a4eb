"""
Demultiplex stream stdout/stderr của Docker (tty=False).

Mỗi frame = header 8 byte + payload:
    [stream_type, 0, 0, 0, size (uint32 big-endian)] + size byte
stream_type: 0 stdin, 1 stdout, 2 stderr.
Một lần recv có thể chứa nửa header, nhiều frame, hoặc frame bị cắt ngang,
nên decoder phải giữ buffer giữa các chunk.
"""
from __future__ import annotations
import socket
import struct
import time
from typing import Any, Iterator, List, Tuple

from ..core.errors import ExecTimeout, MalformedFrameError, StreamError

STDIN, STDOUT, STDERR = 0, 1, 2
HEADER = struct.Struct(">BxxxL")
HEADER_SIZE = HEADER.size
CHUNK_SIZE = 4096


class FrameDecoder:
    def __init__(self):
        self._buf = bytearray()

    def feed(self, data: bytes) -> List[Tuple[int, bytes]]:
        """Nạp thêm byte, trả về các frame đã đủ (stream_type, payload)."""
        self._buf += data
        frames: List[Tuple[int, bytes]] = []
        while len(self._buf) >= HEADER_SIZE:
            head = bytes(self._buf[:HEADER_SIZE])
            if head[0] not in (STDIN, STDOUT, STDERR) or head[1:4] != b"\x00\x00\x00":
                raise MalformedFrameError(f"malformed frame header {head.hex()}")
            stream_type, size = HEADER.unpack(head)
            end = HEADER_SIZE + size
            if len(self._buf) < end:
                break
            frames.append((stream_type, bytes(self._buf[HEADER_SIZE:end])))
            del self._buf[:end]
        return frames

    def close(self) -> None:
        if self._buf:
            raise MalformedFrameError(f"stream ended mid-frame ({len(self._buf)} bytes left)")


def demux(chunks: Iterator[bytes]) -> Iterator[bytes]:
    """Lazy: chunk thô -> payload (stdout + stderr theo đúng thứ tự đến)."""
    decoder = FrameDecoder()
    for chunk in chunks:
        for _stream, payload in decoder.feed(chunk):
            yield payload
    decoder.close()


def raw_socket(sock: Any) -> Any:
    # docker-py trả về SocketIO với unix/tcp; socket thật nằm ở ._sock
    return getattr(sock, "_sock", sock)


def read_chunks(sock: Any, deadline: float, timeout_s: float, size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """
    Đọc tới khi bên kia đóng (recv trả b""). Hết deadline -> ExecTimeout,
    lỗi transport -> StreamError. Không restart được.
    """
    raw = raw_socket(sock)
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ExecTimeout(timeout_s)
        raw.settimeout(remaining)
        try:
            data = raw.recv(size)
        except socket.timeout:
            raise ExecTimeout(timeout_s)
        except OSError as e:
            raise StreamError(str(e) or e.__class__.__name__) from e
        if not data:
            return
        yield data


def send_payload(sock: Any, payload: bytes, close_write: bool = True) -> None:
    """Ghi stdin vào stream hijack; half-close để tiến trình nhận EOF sau dòng input."""
    raw = raw_socket(sock)
    try:
        raw.sendall(payload)
        if close_write:
            raw.shutdown(socket.SHUT_WR)
    except OSError as e:
        raise StreamError(f"failed to write stdin: {e}") from e


def close_socket(sock: Any) -> None:
    raw = raw_socket(sock)
    try:
        raw.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass  # đã đóng / chưa connect
    sock.close()
    if raw is not sock:
        raw.close()
