from __future__ import annotations
import time
import uuid


def new_job_id() -> str:
    # thời gian (ms) + uuid ngắn: không trùng khi nhiều job chạy song song
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
