from __future__ import annotations
import time
from dataclasses import replace
from typing import Optional

import docker
import structlog

from ..core.errors import (
    ExecTimeout, ProvisionError, StartError, StreamError, ValidationError, WorkspaceError,
)
from ..core.languages import LanguageRegistry, build_registry, check_test_markers
from ..core.models import ExecutionRequest, ExecutionResult, Mode, Outcome
from ..core.utils import new_job_id
from ..isolation.base import Environment, IsolationBackend
from ..isolation.docker_backend import DockerBackend
from ..isolation.process_backend import ProcessBackend
from ..settings import Settings
from .workspace import WorkspaceManager

logger = structlog.get_logger(component="orchestrator")


class ExecutionOrchestrator:
    """
    Điểm vào công khai. Mỗi job đi qua:
      Validating -> Resolving -> Staging -> Provisioning -> Starting -> Executing
      -> Collecting -> CleaningUp -> Done
    Lỗi ở Validating/Resolving trả 400 ngay, không chạm tài nguyên nào.
    Từ Staging trở đi luôn đi qua CleaningUp: stream -> môi trường -> workspace.
    """

    def __init__(self, registry: LanguageRegistry, workspaces: WorkspaceManager,
                 backend: IsolationBackend, *, timeout_s: Optional[float] = None):
        self.registry = registry
        self.workspaces = workspaces
        self.backend = backend
        self.timeout_s = timeout_s if timeout_s is not None else backend.default_timeout_s

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        return self._execute(replace(request, mode=Mode.RUN))

    def execute_tests(self, request: ExecutionRequest) -> ExecutionResult:
        return self._execute(replace(request, mode=Mode.TEST))

    def _execute(self, request: ExecutionRequest) -> ExecutionResult:
        job_id = new_job_id()
        log = logger.bind(job_id=job_id, language=str(request.language), mode=request.mode.value)

        try:
            self._validate(request)
            profile = self.registry.resolve(request.language, request.mode)
            if request.mode is Mode.TEST:
                check_test_markers(profile, request.code)
        except ValidationError as e:
            log.info("job_rejected", reason=str(e))
            return ExecutionResult.invalid(str(e))

        ws = env = None
        try:
            ws = self.workspaces.allocate(job_id, profile, request.mode)
            self.workspaces.write(ws, request.code)
            log.debug("job_staged", source=ws.source_name, code_bytes=len(request.code))

            env = self.backend.provision(ws, profile, request.mode, request.input)
            deadline = env.deadline = time.monotonic() + self.timeout_s
            self.backend.start(env)
            log.debug("job_executing", timeout_s=self.timeout_s)
            result = self.backend.run(env, deadline, self.timeout_s)
        except ExecTimeout as e:
            log.warning("job_timed_out", timeout_s=e.timeout_s)
            result = ExecutionResult(output=e.partial + f"\nError: {e}".encode("utf-8"),
                                     outcome=Outcome.TIMED_OUT)
        except StreamError as e:
            log.error("job_stream_failed", error=str(e))
            result = ExecutionResult(output=e.partial + f"\n{e}".encode("utf-8"),
                                     outcome=Outcome.STREAM_ERROR)
        except (WorkspaceError, ProvisionError, StartError) as e:
            log.error("job_failed", error=str(e), stage=e.__class__.__name__)
            result = ExecutionResult.infrastructure(str(e))
        finally:
            self._cleanup(log, env, ws)

        log.info("job_done", outcome=result.outcome.value, exit_code=result.exit_code,
                 output_bytes=len(result.output))
        return result

    @staticmethod
    def _validate(request: ExecutionRequest) -> None:
        if not request.code or not isinstance(request.code, str):
            raise ValidationError("Code is required and must be a string")
        if not isinstance(request.language, str) or not request.language.strip():
            raise ValidationError("Language is required and must be a string")
        if request.input is not None and not isinstance(request.input, str):
            raise ValidationError("Input must be a string")

    def _cleanup(self, log, env: Optional[Environment], ws) -> None:
        # bước sau vẫn chạy dù bước trước lỗi; lỗi cleanup chỉ log, không che kết quả job
        if env is not None:
            try:
                self.backend.close_streams(env)
            except Exception:
                log.exception("cleanup_streams_failed")
            try:
                self.backend.teardown(env)
            except Exception:
                log.exception("cleanup_environment_failed")
        if ws is not None:
            try:
                self.workspaces.release(ws)
            except Exception:
                log.exception("cleanup_workspace_failed")
        log.debug("job_cleaned_up")


def build_backend(settings: Settings) -> IsolationBackend:
    if settings.backend == "process":
        return ProcessBackend(limits=settings.limits, runtimes=settings.runtimes,
                              use_systemd_run=settings.use_systemd_run)

    # client dùng chung cho mọi job, tạo một lần
    client = docker.from_env()
    return DockerBackend(client, limits=settings.limits, mount_path=settings.mount_path,
                         stop_timeout_s=settings.stop_timeout_s)


def build_orchestrator(settings: Settings, backend: Optional[IsolationBackend] = None) -> ExecutionOrchestrator:
    backend = backend or build_backend(settings)
    return ExecutionOrchestrator(
        registry=build_registry(settings.images),
        workspaces=WorkspaceManager(settings.staging_dir),
        backend=backend,
        timeout_s=settings.timeout_s,
    )
