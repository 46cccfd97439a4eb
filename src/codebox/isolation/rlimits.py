from __future__ import annotations
import resource
from typing import Callable, Optional


def apply_rlimits(memory_bytes: int, cpu_seconds: Optional[int] = None, nofile: int = 256) -> None:
    """
    Áp giới hạn ở cấp tiến trình: bộ nhớ data, CPU time, số file descriptor.
    Dùng RLIMIT_DATA thay vì RLIMIT_AS: JVM / V8 / Go reserve vùng ảo rất lớn và chết ngay với RLIMIT_AS.
    Limit nào OS không hỗ trợ thì giữ mặc định.
    """
    limits = [(resource.RLIMIT_DATA, memory_bytes), (resource.RLIMIT_NOFILE, nofile)]
    if cpu_seconds:
        limits.append((resource.RLIMIT_CPU, cpu_seconds))
    for which, value in limits:
        try:
            resource.setrlimit(which, (value, value))
        except (ValueError, OSError):
            pass


def make_preexec(memory_bytes: int, cpu_seconds: Optional[int] = None) -> Callable[[], None]:
    # chạy trong child trước execve
    def _fn():
        apply_rlimits(memory_bytes, cpu_seconds)

    return _fn
