import sys

from codebox.core.languages import build_registry
from codebox.core.models import Limits, Mode, Workspace
from codebox.isolation import cgroups
from codebox.isolation.cgroups import wrap_with_cgroups
from codebox.isolation.process_backend import ProcessBackend


def test_wraps_with_systemd_run(monkeypatch):
    monkeypatch.setattr(cgroups.shutil, "which", lambda name: "/usr/bin/systemd-run")
    cmd = wrap_with_cgroups(["python", "x.py"], Limits())
    assert cmd == [
        "/usr/bin/systemd-run", "--scope", "--quiet", "--collect",
        "-p", "MemoryMax=1073741824",
        "-p", "CPUQuota=100%",
        "--", "python", "x.py",
    ]


def test_quota_is_percent_of_period(monkeypatch):
    monkeypatch.setattr(cgroups.shutil, "which", lambda name: "/usr/bin/systemd-run")
    assert "CPUQuota=50%" in wrap_with_cgroups(["true"], Limits(cpu_quota=50_000))
    assert "CPUQuota=1%" in wrap_with_cgroups(["true"], Limits(cpu_quota=1))


def test_fallback_without_systemd_run(monkeypatch):
    monkeypatch.setattr(cgroups.shutil, "which", lambda name: None)
    assert wrap_with_cgroups(["python", "x.py"], Limits()) == ["python", "x.py"]


def test_process_backend_uses_scope(monkeypatch, tmp_path):
    monkeypatch.setattr(cgroups.shutil, "which", lambda name: f"/usr/bin/{name}")
    backend = ProcessBackend(runtimes={"python": sys.executable}, use_systemd_run=True)
    py = build_registry().resolve("python", Mode.RUN)
    ws = Workspace(job_id="1_ab", root=tmp_path, source_path=tmp_path / "script-1_ab.py")
    env = backend.provision(ws, py, Mode.RUN)
    assert env.command[0] == "/usr/bin/systemd-run"
    assert env.command[-2:] == [sys.executable, f"{tmp_path}/script-1_ab.py"]
