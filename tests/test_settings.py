from codebox.isolation.process_backend import ProcessBackend
from codebox.services.orchestrator import build_orchestrator
from codebox.settings import Settings, load_settings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("CODEBOX_CONF", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("PORT", raising=False)
    s = load_settings()
    assert s.port == 5000
    assert s.backend == "docker"
    assert s.timeout_s is None
    assert s.limits.memory_bytes == 1024 ** 3
    assert s.limits.cpu_fraction == 1.0


def test_port_alias_and_prefix(monkeypatch):
    monkeypatch.setenv("PORT", "8088")
    monkeypatch.setenv("CODEBOX_BACKEND", "process")
    s = Settings()
    assert s.port == 8088
    assert s.backend == "process"


def test_timeout_defaults_to_backend(tmp_path):
    orc = build_orchestrator(Settings(staging_dir=tmp_path), backend=ProcessBackend())
    assert orc.timeout_s == ProcessBackend.default_timeout_s == 10.0


def test_yaml_fills_only_unset_fields(monkeypatch, tmp_path):
    conf = tmp_path / "codebox.yaml"
    conf.write_text("backend: process\ntimeout_s: 3\nlog_level: DEBUG\nunknown_key: 1\n")
    monkeypatch.setenv("CODEBOX_CONF", str(conf))
    monkeypatch.setenv("CODEBOX_LOG_LEVEL", "WARNING")
    s = load_settings()
    assert s.backend == "process"
    assert s.timeout_s == 3
    # env thắng YAML
    assert s.log_level == "WARNING"
    assert build_orchestrator(s, backend=ProcessBackend()).timeout_s == 3
