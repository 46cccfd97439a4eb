from __future__ import annotations
import time
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Optional

import structlog
from docker.errors import DockerException
from requests.exceptions import RequestException

from ..core.errors import ExecTimeout, StartError, StreamError
from ..core.models import ExecutionResult
from .frames import demux, read_chunks, send_payload

log = structlog.get_logger(component="driver")

DOCKER_ERRORS = (DockerException, RequestException)


def stdin_bytes(stdin: Optional[str]) -> Optional[bytes]:
    # giả lập một dòng nhập tương tác
    if not stdin:
        return None
    return (stdin + "\n").encode("utf-8")


def with_status(output: bytes, label: str, code: Optional[int]) -> ExecutionResult:
    """Exit code != 0 không phải lỗi: nối thêm diagnostic, giữ nguyên output trước đó."""
    if code:
        output += f"\nError: {label} exited with code {code}".encode("utf-8")
    return ExecutionResult(output=output, exit_code=code)


class StreamDriver:
    """
    Chạy lệnh trong container và gom output:
      - run_exec: exec hijack trên container idle (stdin + stdout/stderr chung 1 stream)
      - run_direct: lệnh là tiến trình chính, stream đã attach từ lúc start
    """

    def __init__(self, api: Any):
        self.api = api

    def collect(self, sock: Any, deadline: float, timeout_s: float, context: str) -> bytes:
        out = bytearray()
        try:
            for payload in demux(read_chunks(sock, deadline, timeout_s)):
                out += payload
        except ExecTimeout as e:
            raise ExecTimeout(e.timeout_s, bytes(out)) from e
        except StreamError as e:
            raise StreamError(f"{context} stream error: {e}", bytes(out)) from e
        return bytes(out)

    def run_exec(self, env, deadline: float, timeout_s: float) -> ExecutionResult:
        payload = stdin_bytes(env.stdin)
        try:
            exec_id = self.api.exec_create(
                env.handle, env.command,
                stdin=payload is not None, stdout=True, stderr=True, tty=False,
                workdir=env.mount,
            )["Id"]
        except DOCKER_ERRORS as e:
            raise StartError(f"Failed to create exec instance: {e}") from e

        try:
            sock = self.api.exec_start(exec_id, tty=False, socket=True)
        except DOCKER_ERRORS as e:
            raise StartError(f"Failed to start exec: {e}") from e
        env.streams.append(sock)

        if payload is not None:
            try:
                send_payload(sock, payload)
            except StreamError as e:
                raise StreamError(f"{env.label} stream error: {e}") from e

        output = self.collect(sock, deadline, timeout_s, env.label)
        log.debug("exec_stream_ended", job_id=env.job_id, output_bytes=len(output))

        # chỉ hỏi exit code sau khi stream đã kết thúc
        try:
            code = self.api.exec_inspect(exec_id).get("ExitCode")
        except DOCKER_ERRORS as e:
            log.warning("exec_inspect_failed", job_id=env.job_id, error=str(e))
            return ExecutionResult(output=output + f"\nError inspecting exec: {e}".encode("utf-8"))
        if code is None:
            return ExecutionResult(output=output + b"\nError inspecting exec: exit code unavailable")
        return with_status(output, env.label, code)

    def run_direct(self, env, deadline: float, timeout_s: float) -> ExecutionResult:
        if env.stream is None:
            raise StreamError(f"{env.label} stream error: output stream is not attached")

        payload = stdin_bytes(env.stdin)
        if payload is not None and env.stdin_stream is not None:
            try:
                send_payload(env.stdin_stream, payload)
            except StreamError as e:
                raise StreamError(f"{env.label} stream error: {e}") from e

        output = self.collect(env.stream, deadline, timeout_s, env.label)
        log.debug("container_stream_ended", job_id=env.job_id, output_bytes=len(output))

        try:
            status = env.exit_status.result(timeout=max(0.0, deadline - time.monotonic()))
            code = status.get("StatusCode")
        except (FutureTimeout, *DOCKER_ERRORS) as e:
            msg = str(e) or "timed out waiting for exit status"
            log.warning("container_wait_failed", job_id=env.job_id, error=msg)
            return ExecutionResult(output=output + f"\nError waiting for {env.label.lower()}: {msg}".encode("utf-8"))
        return with_status(output, env.label, code)
