from __future__ import annotations
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, List, Optional

import structlog

from ..core.models import ExecutionResult, LanguageProfile, Limits, Mode, Shape, Workspace
from ..executor.frames import close_socket

log = structlog.get_logger(component="isolation")


@dataclass
class Environment:
    """Môi trường cô lập của đúng một job; không bao giờ sống lâu hơn response."""
    job_id: str
    mount: str                   # thư mục workspace nhìn từ bên trong môi trường
    command: List[str]
    shape: Shape
    mode: Mode
    label: str                   # dùng trong diagnostic: "<label> exited with code N"
    limits: Limits
    stdin: Optional[str] = None
    handle: Any = None           # container id / Popen
    stream: Any = None           # socket output (đã attach)
    stdin_stream: Any = None
    exit_status: Optional[Future] = None
    deadline: Optional[float] = None   # time.monotonic(), orchestrator set trước start
    streams: List[Any] = field(default_factory=list)


class IsolationBackend:
    """
    Vòng đời: provision -> start -> run (0 hoặc 1 lần) -> close_streams -> teardown.
    teardown phải được gọi trên mọi nhánh sau khi provision thành công.
    """
    name = "base"
    default_timeout_s = 10.0

    def provision(self, ws: Workspace, profile: LanguageProfile, mode: Mode,
                  stdin: Optional[str] = None) -> Environment: ...

    def start(self, env: Environment) -> None: ...

    def run(self, env: Environment, deadline: float, timeout_s: float) -> ExecutionResult: ...

    def teardown(self, env: Environment) -> None: ...

    def close_streams(self, env: Environment) -> None:
        handles = [env.stdin_stream, env.stream, *env.streams]
        env.stdin_stream = env.stream = None
        env.streams = []
        for h in handles:
            if h is None:
                continue
            try:
                close_socket(h)
            except OSError as e:
                log.warning("stream_close_failed", job_id=env.job_id, error=str(e))

    def reap_orphans(self) -> int:
        return 0

    def prepull(self, images: List[str]) -> None:
        pass

    def close(self) -> None:
        pass
