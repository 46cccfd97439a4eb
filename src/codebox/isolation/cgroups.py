from __future__ import annotations
from typing import List
import shutil

from ..core.models import Limits


def wrap_with_cgroups(cmd: List[str], limits: Limits) -> List[str]:
    """
    Bọc lệnh trong một transient scope của systemd: MemoryMax = limits.memory_bytes,
    CPUQuota = quota/period tính theo % (100000/100000 -> 100%, tối thiểu 1%).
    --collect để scope bị dọn cả khi tiến trình chết với exit code != 0.
    Host không có systemd-run thì trả nguyên cmd, chỉ còn rlimits.
    """
    sdrun = shutil.which("systemd-run")
    if not sdrun:
        return cmd

    # CPUQuota theo %: quota/period = 1.0 -> 100% = 1 core
    quota_pct = max(1, round(limits.cpu_fraction * 100))
    return [
        sdrun, "--scope", "--quiet", "--collect",
        "-p", f"MemoryMax={limits.memory_bytes}",
        "-p", f"CPUQuota={quota_pct}%",
        "--"
    ] + cmd
