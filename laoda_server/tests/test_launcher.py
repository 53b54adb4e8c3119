import json

import httpx
import psutil
import pytest
from typer.testing import CliRunner

from laoda_server import launcher
from laoda_server.launcher import app

runner = CliRunner()


@pytest.fixture
def emitted(monkeypatch):
    """JSON lines printed by the launcher commands."""
    lines = []
    monkeypatch.setattr(launcher, "print_and_log", lines.append)
    monkeypatch.setattr(launcher, "print", lambda *args, **kwargs: lines.append(" ".join(map(str, args))),
                        raising=False)
    return lines


def not_running():
    raise psutil.NoSuchProcess(0, msg="Daemon not running.")


def test_status_when_not_running(monkeypatch, emitted):
    monkeypatch.setattr(launcher, "_find_daemon_pid", not_running)
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    data = json.loads(emitted[-1])
    assert data["running"] is False
    assert data["msg"] == "Daemon not running."


def test_status_when_running(monkeypatch, emitted):
    monkeypatch.setattr(launcher, "_find_daemon_pid", lambda: 4321)
    monkeypatch.setattr(launcher, "_get_listening_port_of_pid", lambda pid: 26124)
    monkeypatch.setattr(launcher.httpx, "get",
                        lambda url, timeout: httpx.Response(200, json={"status": "ok", "folders": 3}))
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    data = json.loads(emitted[-1])
    assert (data["running"], data["pid"], data["port"]) == (True, 4321, 26124)
    assert data["api_status"]["folders"] == 3


def test_start_reports_the_port(monkeypatch, emitted):
    started = []
    monkeypatch.setattr(launcher, "_find_daemon_pid", not_running)
    monkeypatch.setattr(launcher, "_start_daemon", lambda port, config: started.append((port, config)) or (999, 5555))
    result = runner.invoke(app, ["start", "--port", "0"])
    assert result.exit_code == 0
    assert started == [(0, None)]
    assert json.loads(emitted[-1]) == {"returncode": 0, "msg": "Started daemon", "pid": 999, "port": 5555}


def test_start_refuses_second_instance(monkeypatch, emitted):
    monkeypatch.setattr(launcher, "_find_daemon_pid", lambda: 4321)
    monkeypatch.setattr(launcher, "_get_listening_port_of_pid", lambda pid: 26124)
    result = runner.invoke(app, ["start"])
    assert result.exit_code == 1
    data = json.loads(emitted[-1])
    assert "already running" in data["msg"]
    assert data["port"] == 26124


def test_stop_via_shutdown_endpoint(monkeypatch, emitted):
    posted = []
    monkeypatch.setattr(launcher, "_find_daemon_pid", lambda: 4321)
    monkeypatch.setattr(launcher, "_get_listening_port_of_pid", lambda pid: 26124)
    monkeypatch.setattr(launcher.httpx, "post", lambda url, timeout: posted.append(url))
    monkeypatch.setattr(launcher, "_wait_for_exit", lambda pid, seconds: True)
    result = runner.invoke(app, ["stop"])
    assert result.exit_code == 0
    assert posted == ["http://127.0.0.1:26124/shutdown"]
    assert "via /shutdown" in json.loads(emitted[-1])["msg"]


def test_stop_and_kill_when_not_running(monkeypatch, emitted):
    monkeypatch.setattr(launcher, "_find_daemon_pid", not_running)
    assert runner.invoke(app, ["stop"]).exit_code == 1
    assert runner.invoke(app, ["kill"]).exit_code == 1
    assert all(json.loads(line)["msg"] == "Daemon not running." for line in emitted)
