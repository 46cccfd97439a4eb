from pathlib import Path

import pytest

from codebox.core.errors import WorkspaceError
from codebox.core.languages import build_registry
from codebox.core.models import Mode
from codebox.services.workspace import WorkspaceManager


def test_allocate_write_release(tmp_path):
    wm = WorkspaceManager(tmp_path / "staging")
    cpp = build_registry().resolve("cpp", Mode.RUN)
    ws = wm.allocate("1_ab", cpp)
    wm.write(ws, "int main(){}")

    assert ws.source_path == tmp_path / "staging" / "1_ab" / "script-1_ab.cpp"
    assert ws.source_path.read_text() == "int main(){}"
    assert [p.name for p in ws.artifact_paths] == ["script-1_ab.out"]

    # artifact do build sinh ra
    ws.artifact_paths[0].write_bytes(b"\x7fELF")
    wm.release(ws)
    assert not ws.root.exists()
    # release lần hai vẫn an toàn
    wm.release(ws)


def test_fixed_name_sources_do_not_collide(tmp_path):
    wm = WorkspaceManager(tmp_path)
    java = build_registry().resolve("java", Mode.RUN)
    a = wm.allocate("1_aa", java)
    b = wm.allocate("1_bb", java)
    wm.write(a, "class Main {}")
    wm.write(b, "class Main { }")
    assert a.source_path.name == b.source_path.name == "Main.java"
    assert a.source_path.read_text() != b.source_path.read_text()
    wm.release(a)
    assert b.source_path.exists()


def test_release_removes_unlisted_artifacts(tmp_path):
    wm = WorkspaceManager(tmp_path)
    java = build_registry().resolve("java", Mode.RUN)
    ws = wm.allocate("1_ab", java)
    (ws.root / "Main$Inner.class").write_bytes(b"")
    wm.release(ws)
    assert list(tmp_path.iterdir()) == []


def test_allocate_same_job_twice_fails(tmp_path):
    wm = WorkspaceManager(tmp_path)
    py = build_registry().resolve("python", Mode.RUN)
    wm.allocate("1_ab", py)
    with pytest.raises(WorkspaceError):
        wm.allocate("1_ab", py)


def test_staging_dir_is_absolute(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    wm = WorkspaceManager(Path("temp"))
    assert wm.staging_dir == tmp_path.resolve() / "temp"
