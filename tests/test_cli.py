"""Tests for the command-line interface."""

import json
import socket

import httpx
import pytest
from click.testing import CliRunner

from app_health_monitor.cli import main
from app_health_monitor.config import ProbeSettings
from app_health_monitor.status import StatusPublisher
from app_health_monitor.models import HealthState


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def listening_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()


def write_config(path, data):
    path.write_text("\n".join(f"{k}: {v}" for k, v in data.items()) + "\n")
    return path


class TestInit:
    """Tests for `ahm init`."""
    
    def test_creates_config(self, runner, tmp_path):
        path = tmp_path / "ahm.yaml"
        result = runner.invoke(main, ["init", "-o", str(path)])
        assert result.exit_code == 0
        assert ProbeSettings.from_yaml(path).request_path == "/health"
    
    def test_refuses_overwrite(self, runner, tmp_path):
        path = tmp_path / "ahm.yaml"
        path.write_text("protocol: tcp\n")
        result = runner.invoke(main, ["init", "-o", str(path)])
        assert result.exit_code == 1
        assert path.read_text() == "protocol: tcp\n"


class TestProbe:
    """Tests for `ahm probe`."""
    
    def test_healthy_tcp(self, runner, tmp_path, listening_port):
        config = write_config(tmp_path / "ahm.yaml", {
            "protocol": "tcp", "port": listening_port, "host": "127.0.0.1",
        })
        result = runner.invoke(main, ["probe", "-c", str(config), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["healthy"] is True
    
    def test_unhealthy_exit_code(self, runner, tmp_path, monkeypatch):
        config = write_config(tmp_path / "ahm.yaml", {
            "protocol": "http", "port": 8080, "requestPath": "/health",
        })
        
        def send(self, request, **kwargs):
            return httpx.Response(503, request=request)
        
        monkeypatch.setattr(httpx.Client, "send", send)
        result = runner.invoke(main, ["probe", "-c", str(config)])
        assert result.exit_code == 1
        assert "UNHEALTHY" in result.output
    
    def test_invalid_config(self, runner, tmp_path):
        config = write_config(tmp_path / "ahm.yaml", {"protocol": "tcp"})
        result = runner.invoke(main, ["probe", "-c", str(config)])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestStatus:
    """Tests for `ahm status`."""
    
    def test_shows_status(self, runner, tmp_path):
        path = StatusPublisher(tmp_path).publish(HealthState.UNHEALTHY, 3)
        result = runner.invoke(main, ["status", str(path)])
        assert result.exit_code == 0
        assert "AppHealthStatus" in result.output
        assert "ERROR" in result.output
    
    def test_json(self, runner, tmp_path):
        path = StatusPublisher(tmp_path).publish(HealthState.HEALTHY, 0)
        result = runner.invoke(main, ["status", str(path), "--json"])
        assert json.loads(result.output)[0]["status"]["status"] == "success"


class TestWait:
    """Tests for `ahm wait`."""
    
    def test_requires_one_target(self, runner):
        result = runner.invoke(main, ["wait"])
        assert result.exit_code == 2
    
    def test_missing_pid_file(self, runner, tmp_path):
        result = runner.invoke(main, ["wait", "--pid-file", str(tmp_path / "enable.pid")])
        assert result.exit_code == 0
    
    def test_error_status(self, runner, tmp_path):
        path = tmp_path / "0.status"
        path.write_text(json.dumps([{"status": {"status": "error"}}]))
        result = runner.invoke(main, ["wait", "--status-file", str(path), "-t", "1"])
        assert result.exit_code == 2
    
    def test_status_timeout(self, runner, tmp_path):
        path = tmp_path / "0.status"
        path.write_text(json.dumps([{"status": {"status": "transitioning"}}]))
        result = runner.invoke(main, ["wait", "--status-file", str(path), "-t", "0.1"])
        assert result.exit_code == 1


class TestLifecycleCommands:
    """Tests for the extension lifecycle entry points."""
    
    def test_missing_handler_environment(self, runner, tmp_path):
        result = runner.invoke(main, ["install", "--handler-env", str(tmp_path / "nope.json")])
        assert result.exit_code == 52
    
    def test_non_object_handler_environment(self, runner, tmp_path):
        env_file = tmp_path / "HandlerEnvironment.json"
        env_file.write_text("[null]")
        result = runner.invoke(main, ["enable", "--handler-env", str(env_file)])
        assert result.exit_code == 3
        assert not isinstance(result.exception, AttributeError)
    
    def test_install(self, runner, tmp_path):
        env_file = tmp_path / "HandlerEnvironment.json"
        env_file.write_text(json.dumps([{
            "name": "test",
            "version": "1.0",
            "handlerEnvironment": {
                "logFolder": str(tmp_path / "log"),
                "configFolder": str(tmp_path / "config"),
                "statusFolder": str(tmp_path / "status"),
            },
        }]))
        data_dir = tmp_path / "data"
        result = runner.invoke(main, [
            "install", "--handler-env", str(env_file), "--data-dir", str(data_dir),
        ])
        assert result.exit_code == 0
        assert data_dir.is_dir()
