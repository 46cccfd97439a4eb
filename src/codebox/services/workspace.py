from __future__ import annotations
import shutil
from pathlib import Path

import structlog

from ..core.errors import WorkspaceError
from ..core.languages import artifact_names, source_filename
from ..core.models import LanguageProfile, Mode, Workspace

log = structlog.get_logger(component="workspace")


class WorkspaceManager:
    """
    Thư mục staging theo cấu trúc:
      <staging>/<job_id>/
        ├─ <source>        (script-<job>.py, Main.java, ...)
        └─ <artifacts>     (a.out, Main.class, ...) do bước build sinh ra
    Mỗi job một thư mục riêng, bind vào môi trường nên các job không thấy file của nhau,
    kể cả khi profile bắt buộc tên file cố định (Main.java).
    """

    def __init__(self, staging_dir: Path):
        # đảm bảo là absolute path (docker bind cần ABS)
        self.staging_dir = staging_dir if staging_dir.is_absolute() else staging_dir.resolve()

    def allocate(self, job_id: str, profile: LanguageProfile, mode: Mode = Mode.RUN) -> Workspace:
        # exist_ok: nhiều job cùng tạo staging lần đầu không phải là lỗi
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            root = self.staging_dir / job_id
            root.mkdir()
        except OSError as e:
            raise WorkspaceError(f"Failed to create workspace: {e}") from e

        source = source_filename(profile, mode, job_id)
        return Workspace(
            job_id=job_id,
            root=root,
            source_path=root / source,
            artifact_paths=[root / name for name in artifact_names(profile, source)],
        )

    def write(self, ws: Workspace, code: str) -> None:
        try:
            ws.source_path.write_text(code, encoding="utf-8")
        except OSError as e:
            raise WorkspaceError("Failed to write temporary file") from e

    def release(self, ws: Workspace) -> None:
        """Best-effort: file đã bị xoá thì bỏ qua, lỗi xoá chỉ log, không raise."""
        for p in [ws.source_path, *ws.artifact_paths]:
            try:
                p.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                log.warning("workspace_unlink_failed", job_id=ws.job_id, path=str(p), error=str(e))

        # artifact ngoài danh sách (Main$Inner.class, ...) đi theo thư mục
        try:
            shutil.rmtree(ws.root)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("workspace_remove_failed", job_id=ws.job_id, path=str(ws.root), error=str(e))
