from __future__ import annotations
import os
import selectors
import shutil
import signal
import subprocess
import time
from typing import Dict, List, Optional

import structlog

from ..core.errors import ExecTimeout, ProvisionError, StartError
from ..core.languages import render_command
from ..core.models import ExecutionResult, LanguageProfile, Limits, Mode, Shape, Workspace
from ..executor.driver import stdin_bytes, with_status
from .base import Environment, IsolationBackend
from .cgroups import wrap_with_cgroups
from .rlimits import make_preexec

log = structlog.get_logger(component="process")

CHUNK_SIZE = 4096
POLL_INTERVAL_S = 0.1
# sau khi child thoát, chờ pipe đóng thêm bấy nhiêu giây
DRAIN_GRACE_S = 0.5
KILL_WAIT_S = 5


class ProcessBackend(IsolationBackend):
    """
    Strategy không container: chạy lệnh của profile như tiến trình host trong thư mục workspace.
    stdout + stderr gộp chung, rlimits trong child, kill cả process group khi quá giờ.
    """
    name = "process"
    default_timeout_s = 10.0

    def __init__(self, *, limits: Limits = Limits(), runtimes: Optional[Dict[str, str]] = None,
                 use_systemd_run: bool = False):
        self.limits = limits
        self.runtimes = dict(runtimes or {})
        self.use_systemd_run = use_systemd_run

    def provision(self, ws: Workspace, profile: LanguageProfile, mode: Mode,
                  stdin: Optional[str] = None) -> Environment:
        root = str(ws.root)
        cmd = self._resolve_runtime(render_command(profile.command_for(mode), root, ws.source_name))
        if shutil.which(cmd[0]) is None:
            raise ProvisionError(f"Runtime not found on host: {cmd[0]}")
        if self.use_systemd_run:
            cmd = wrap_with_cgroups(cmd, self.limits)
        return Environment(
            job_id=ws.job_id,
            mount=root,
            command=cmd,
            shape=Shape.DIRECT,
            mode=mode,
            label="Process",
            limits=self.limits,
            stdin=stdin or None,
        )

    def start(self, env: Environment) -> None:
        try:
            env.handle = subprocess.Popen(
                env.command,
                stdin=subprocess.PIPE if env.stdin else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=env.mount,
                env={**os.environ, "PYTHONUNBUFFERED": "1"},
                start_new_session=True,  # process group riêng để kill cả cây
                preexec_fn=make_preexec(env.limits.memory_bytes),
            )
        except OSError as e:
            raise StartError(f"Failed to start process: {e}") from e
        log.debug("process_started", job_id=env.job_id, pid=env.handle.pid)

    def run(self, env: Environment, deadline: float, timeout_s: float) -> ExecutionResult:
        """
        Đọc stdout tới EOF hoặc deadline. Khi child trực tiếp đã thoát thì chỉ chờ thêm
        DRAIN_GRACE_S: tiến trình con tách session có thể giữ pipe mãi.
        """
        proc = env.handle
        self._feed_stdin(proc, stdin_bytes(env.stdin))
        out = bytearray()
        eof = self._pump(proc, out, deadline)
        try:
            # tiến trình có thể tự đóng stdout mà vẫn chạy tiếp
            code = proc.wait(timeout=max(0.0, deadline - time.monotonic()))
        except subprocess.TimeoutExpired:
            self._kill(proc)
            try:
                proc.wait(timeout=KILL_WAIT_S)
            except subprocess.TimeoutExpired:
                log.error("process_kill_failed", job_id=env.job_id, pid=proc.pid)
            if not eof:
                self._pump(proc, out, time.monotonic() + DRAIN_GRACE_S)
            raise ExecTimeout(timeout_s, bytes(out))
        if not eof:
            log.warning("process_pipe_held_open", job_id=env.job_id, pid=proc.pid)
        return with_status(bytes(out), env.label, code)

    def teardown(self, env: Environment) -> None:
        proc = env.handle
        if proc is None:
            return
        # cả khi leader đã thoát: con cùng group vẫn có thể còn sống
        self._kill(proc)
        try:
            proc.wait(timeout=KILL_WAIT_S)
        except subprocess.TimeoutExpired:
            log.error("process_kill_failed", job_id=env.job_id, pid=proc.pid)
        for f in (proc.stdin, proc.stdout):
            if f is not None:
                try:
                    f.close()
                except OSError as e:
                    log.warning("pipe_close_failed", job_id=env.job_id, error=str(e))
        env.handle = None

    def _feed_stdin(self, proc: subprocess.Popen, payload: Optional[bytes]) -> None:
        if proc.stdin is None:
            return
        try:
            if payload is not None:
                proc.stdin.write(payload)
            proc.stdin.close()
        except (BrokenPipeError, ValueError):
            pass  # tiến trình thoát trước khi đọc stdin

    def _pump(self, proc: subprocess.Popen, out: bytearray, deadline: float) -> bool:
        """Đọc không block vào `out`; True khi gặp EOF."""
        fd = proc.stdout.fileno()
        exited_at: Optional[float] = None
        with selectors.DefaultSelector() as sel:
            sel.register(fd, selectors.EVENT_READ)
            while True:
                now = time.monotonic()
                if exited_at is None and proc.poll() is not None:
                    exited_at = now
                limit = deadline if exited_at is None else min(deadline, exited_at + DRAIN_GRACE_S)
                remaining = limit - now
                if remaining <= 0:
                    return False
                if not sel.select(timeout=min(remaining, POLL_INTERVAL_S)):
                    continue
                chunk = os.read(fd, CHUNK_SIZE)
                if not chunk:
                    return True
                out += chunk

    def _kill(self, proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass

    def _resolve_runtime(self, cmd: List[str]) -> List[str]:
        # vd runtimes: {python: python3, node: /usr/local/bin/node}
        if cmd and cmd[0] in self.runtimes:
            return [self.runtimes[cmd[0]], *cmd[1:]]
        return cmd
