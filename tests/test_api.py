import sys
import uuid

import pytest
import requests
from fastapi.testclient import TestClient

import codebox.api as api_mod
from codebox.api import create_app
from codebox.core.languages import build_registry
from codebox.isolation.process_backend import ProcessBackend
from codebox.services.orchestrator import ExecutionOrchestrator
from codebox.services.workspace import WorkspaceManager
from codebox.settings import Settings


@pytest.fixture
def client(host_python_orchestrator):
    app = create_app(settings=Settings(gemini_api_key="test-key"), orchestrator=host_python_orchestrator)
    with TestClient(app) as c:
        yield c


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.text == "Hello from Codebox backend!"


def test_create_room(client):
    room = client.get("/create-room").json()["roomId"]
    assert uuid.UUID(room)


def test_run_python(client):
    r = client.post("/run", json={"code": "print(input())", "language": "python", "input": "hey"})
    assert r.status_code == 200
    assert r.json() == {"output": "hey\n", "exit_code": 0, "timed_out": False}


def test_run_defaults_to_javascript(tmp_path):
    # "node" trỏ tới python của host, chỉ để xác nhận language mặc định
    backend = ProcessBackend(runtimes={"node": sys.executable})
    orc = ExecutionOrchestrator(build_registry(), WorkspaceManager(tmp_path), backend, timeout_s=10)
    with TestClient(create_app(settings=Settings(), orchestrator=orc)) as c:
        r = c.post("/run", json={"code": "print(7)"})
    assert r.status_code == 200
    assert r.json()["output"] == "7\n"


def test_run_validation(client):
    r = client.post("/run", json={"language": "python"})
    assert r.status_code == 400
    assert r.json()["output"] == "Code is required and must be a string"

    r = client.post("/run", json={"code": "x", "language": "brainfuck"})
    assert r.status_code == 400
    assert r.json()["output"] == "Language brainfuck not supported yet"


def test_wrong_body_types_are_400(client):
    r = client.post("/run", json={"code": 123, "language": "python"})
    assert r.status_code == 400
    assert r.json()["output"].startswith("Invalid request: code")


def test_run_tests_requires_markers(client):
    r = client.post("/run-tests", json={"code": "print(1)"})
    assert r.status_code == 400
    assert "test code must include test syntax" in r.json()["output"]


def test_run_tests_python(client):
    code = "import unittest\nclass T(unittest.TestCase):\n    def test_x(self):\n        self.assertTrue(True)\n"
    r = client.post("/run-tests", json={"code": code})
    assert r.status_code == 200
    assert r.json()["exit_code"] == 0


class FakeResp:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Server Error")

    def json(self):
        return self.payload


def test_generate_code(client, monkeypatch):
    seen = {}

    def fake_post(url, params=None, json=None, timeout=None):
        seen.update(url=url, params=params, json=json)
        return FakeResp({"candidates": [{"content": {"parts": [{"text": "  <h1>hi</h1>\n"}]}}]})

    monkeypatch.setattr(api_mod.requests, "post", fake_post)
    r = client.post("/generate-code", json={"prompt": "a heading"})
    assert r.status_code == 200
    assert r.json() == {"code": "<h1>hi</h1>"}
    assert seen["params"] == {"key": "test-key"}
    assert "Generate html code for: a heading" in seen["json"]["contents"][0]["parts"][0]["text"]


def test_generate_code_errors(client, monkeypatch):
    r = client.post("/generate-code", json={})
    assert r.status_code == 400
    assert r.json() == {"error": "Prompt is required and must be a string"}

    monkeypatch.setattr(api_mod.requests, "post", lambda *a, **kw: FakeResp({}, status=503))
    r = client.post("/generate-code", json={"prompt": "x"})
    assert r.status_code == 500
    assert r.json()["error"].startswith("Failed to generate code:")
