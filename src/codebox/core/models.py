from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

# Giới hạn mặc định cho mỗi môi trường cô lập
MEMORY_CEILING_BYTES = 1024 * 1024 * 1024
CPU_PERIOD_US = 100_000
CPU_QUOTA_US = 100_000  # = 1 core


class Mode(str, Enum):
    RUN = "run"
    TEST = "test"


class Shape(str, Enum):
    """Cách chạy lệnh trong môi trường."""
    EXEC_ATTACH = "exec_attach"  # container idle + exec hijack (stdin/stdout chung 1 stream)
    DIRECT = "direct"            # lệnh là tiến trình chính, đọc log tới khi đóng


class Outcome(str, Enum):
    COMPLETED = "completed"
    INVALID = "invalid"
    INFRASTRUCTURE_ERROR = "infrastructure_error"
    STREAM_ERROR = "stream_error"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class Limits:
    memory_bytes: int = MEMORY_CEILING_BYTES
    cpu_period: int = CPU_PERIOD_US
    cpu_quota: int = CPU_QUOTA_US

    @property
    def cpu_fraction(self) -> float:
        return self.cpu_quota / self.cpu_period


@dataclass(frozen=True)
class ExecutionRequest:
    code: str
    language: str
    input: Optional[str] = None
    mode: Mode = Mode.RUN


@dataclass(frozen=True)
class LanguageProfile:
    id: str
    image: str
    source_name: str                  # vd "script-{job}.py"; "Main.java" nếu tên cố định
    run_command: Tuple[str, ...]      # placeholder: {root} {source} {stem}
    artifacts: Tuple[str, ...] = ()   # file build sinh ra (a.out, .class, ...)
    test_image: Optional[str] = None
    test_command: Optional[Tuple[str, ...]] = None
    test_source_name: Optional[str] = None
    test_markers: Tuple[str, ...] = ()

    def supports(self, mode: Mode) -> bool:
        return mode is Mode.RUN or self.test_command is not None

    def image_for(self, mode: Mode) -> str:
        if mode is Mode.TEST and self.test_image:
            return self.test_image
        return self.image

    def source_for(self, mode: Mode) -> str:
        if mode is Mode.TEST and self.test_source_name:
            return self.test_source_name
        return self.source_name

    def command_for(self, mode: Mode) -> Tuple[str, ...]:
        if mode is Mode.TEST:
            if self.test_command is None:
                raise ValueError(f"{self.id} has no test command")
            return self.test_command
        return self.run_command


@dataclass
class Workspace:
    job_id: str
    root: Path                # thư mục riêng của job, được bind vào môi trường
    source_path: Path
    artifact_paths: List[Path] = field(default_factory=list)

    @property
    def source_name(self) -> str:
        return self.source_path.name


@dataclass(frozen=True)
class ExecutionResult:
    output: bytes = b""
    exit_code: Optional[int] = None
    outcome: Outcome = Outcome.COMPLETED

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")

    @property
    def timed_out(self) -> bool:
        return self.outcome is Outcome.TIMED_OUT

    @property
    def http_status(self) -> int:
        if self.outcome is Outcome.COMPLETED:
            return 200
        if self.outcome is Outcome.INVALID:
            return 400
        return 500

    @classmethod
    def invalid(cls, message: str) -> "ExecutionResult":
        return cls(output=message.encode("utf-8"), outcome=Outcome.INVALID)

    @classmethod
    def infrastructure(cls, message: str, partial: bytes = b"") -> "ExecutionResult":
        return cls(output=partial + f"Error: {message}".encode("utf-8"),
                   outcome=Outcome.INFRASTRUCTURE_ERROR)
