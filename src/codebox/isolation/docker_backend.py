from __future__ import annotations
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import structlog
from docker.errors import APIError, ImageNotFound, NotFound

from ..core.errors import ProvisionError, StartError
from ..core.languages import render_command
from ..core.models import ExecutionResult, LanguageProfile, Limits, Mode, Shape, Workspace
from ..executor.driver import DOCKER_ERRORS, StreamDriver
from .base import Environment, IsolationBackend

log = structlog.get_logger(component="docker")

MANAGED_LABEL = "codebox.managed"
JOB_LABEL = "codebox.job"
# container idle, lệnh thật chạy qua exec; chạy dưới --init nên SIGTERM dừng ngay
IDLE_COMMAND = ["sleep", "infinity"]
# /wait trả về sau khi AutoRemove xoá container; thêm lề cho stop + remove
WAIT_MARGIN_S = 10.0


class DockerBackend(IsolationBackend):
    """
    Mỗi job một container: bind <workspace> -> mount_path, AutoRemove, Memory + CpuPeriod/CpuQuota.
    Run mode: container idle + exec hijack. Test mode: lệnh test là tiến trình chính.
    `client` là docker.DockerClient dùng chung cho cả process (tạo 1 lần lúc startup).
    """
    name = "docker"
    default_timeout_s = 120.0

    def __init__(self, client: Any, *, limits: Limits = Limits(), mount_path: str = "/app",
                 stop_timeout_s: int = 1, wait_workers: int = 64):
        self.client = client
        self.api = client.api
        self.limits = limits
        self.mount_path = mount_path
        self.stop_timeout_s = stop_timeout_s
        self.driver = StreamDriver(self.api)
        # mỗi job test giữ một request /wait trong lúc chạy
        self._waiter = ThreadPoolExecutor(max_workers=wait_workers, thread_name_prefix="codebox-wait")

    # ------------ lifecycle ------------

    def provision(self, ws: Workspace, profile: LanguageProfile, mode: Mode,
                  stdin: Optional[str] = None) -> Environment:
        shape = Shape.DIRECT if mode is Mode.TEST else Shape.EXEC_ATTACH
        command = render_command(profile.command_for(mode), self.mount_path, ws.source_name)
        image = profile.image_for(mode)
        env = Environment(
            job_id=ws.job_id,
            mount=self.mount_path,
            command=command,
            shape=shape,
            mode=mode,
            label="Test container" if shape is Shape.DIRECT else "Exec",
            limits=self.limits,
            stdin=stdin or None,
        )
        spec = self._container_spec(ws, image, env)
        try:
            env.handle = self._create(spec)
        except DOCKER_ERRORS as e:
            raise ProvisionError(f"Failed to create container: {e}") from e
        log.info("container_created", job_id=ws.job_id, container=env.handle[:12], image=image, shape=shape.value)
        return env

    def start(self, env: Environment) -> None:
        try:
            if env.shape is Shape.DIRECT:
                # attach trước khi start: AutoRemove có thể xoá container trước khi kịp đọc log
                if env.stdin:
                    env.stdin_stream = self.api.attach_socket(env.handle, params={"stdin": 1, "stream": 1})
                env.stream = self.api.attach_socket(
                    env.handle, params={"stdout": 1, "stderr": 1, "stream": 1, "logs": 1}
                )
                env.exit_status = self._waiter.submit(self.api.wait, env.handle, self._wait_timeout(env), "removed")
            self.api.start(env.handle)
        except DOCKER_ERRORS as e:
            raise StartError(f"Failed to start container: {e}") from e
        log.debug("container_started", job_id=env.job_id, container=env.handle[:12])

    def run(self, env: Environment, deadline: float, timeout_s: float) -> ExecutionResult:
        if env.shape is Shape.EXEC_ATTACH:
            return self.driver.run_exec(env, deadline, timeout_s)
        return self.driver.run_direct(env, deadline, timeout_s)

    def teardown(self, env: Environment) -> None:
        """stop rồi remove; 'đã dừng / đã bị xoá' coi như thành công, lỗi khác chỉ log."""
        cid = env.handle
        if cid is None:
            return
        try:
            self.api.stop(cid, timeout=self.stop_timeout_s)
        except NotFound:
            pass
        except DOCKER_ERRORS as e:
            log.warning("container_stop_failed", job_id=env.job_id, container=cid[:12], error=str(e))
        try:
            self.api.remove_container(cid, force=True)
        except NotFound:
            pass
        except APIError as e:
            # 409: AutoRemove đang xoá
            if e.status_code != 409:
                log.error("container_remove_failed", job_id=env.job_id, container=cid[:12], error=str(e))
        except DOCKER_ERRORS as e:
            log.error("container_remove_failed", job_id=env.job_id, container=cid[:12], error=str(e))
        env.handle = None

    # ------------ housekeeping ------------

    def reap_orphans(self) -> int:
        """Xoá container managed còn sót lại (process trước crash giữa chừng)."""
        try:
            leftovers = self.api.containers(all=True, filters={"label": f"{MANAGED_LABEL}=true"})
        except DOCKER_ERRORS as e:
            log.error("orphan_scan_failed", error=str(e))
            return 0
        removed = 0
        for c in leftovers:
            try:
                self.api.remove_container(c["Id"], force=True)
                removed += 1
            except NotFound:
                pass
            except DOCKER_ERRORS as e:
                log.warning("orphan_remove_failed", container=c["Id"][:12], error=str(e))
        if removed:
            log.info("orphans_reaped", count=removed)
        return removed

    def prepull(self, images: List[str]) -> None:
        for image in images:
            try:
                self.api.pull(image)
                log.info("image_pulled", image=image)
            except DOCKER_ERRORS as e:
                log.error("image_pull_failed", image=image, error=str(e))

    def close(self) -> None:
        self._waiter.shutdown(wait=False)
        self.client.close()

    # ------------ helpers ------------

    def _container_spec(self, ws: Workspace, image: str, env: Environment) -> Dict[str, Any]:
        host_config = self.api.create_host_config(
            binds={str(ws.root): {"bind": self.mount_path, "mode": "rw"}},
            auto_remove=True,
            init=True,
            mem_limit=env.limits.memory_bytes,
            cpu_period=env.limits.cpu_period,
            cpu_quota=env.limits.cpu_quota,
        )
        direct = env.shape is Shape.DIRECT
        return {
            "image": image,
            "command": env.command if direct else IDLE_COMMAND,
            "working_dir": self.mount_path,
            "host_config": host_config,
            "labels": {MANAGED_LABEL: "true", JOB_LABEL: ws.job_id},
            "stdin_open": direct and bool(env.stdin),
            "tty": False,
        }

    def _create(self, spec: Dict[str, Any]) -> str:
        try:
            return self.api.create_container(**spec)["Id"]
        except ImageNotFound:
            # image chưa có -> pull một lần rồi thử lại
            log.info("image_missing_pulling", image=spec["image"])
            self.api.pull(spec["image"])
            return self.api.create_container(**spec)["Id"]

    def _wait_timeout(self, env: Environment) -> Optional[int]:
        if env.deadline is None:
            return None
        remaining = env.deadline - time.monotonic()
        return int(max(0.0, remaining) + self.stop_timeout_s + WAIT_MARGIN_S)
