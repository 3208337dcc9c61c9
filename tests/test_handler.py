"""Tests for extension lifecycle commands."""

import json
import subprocess
import sys
import threading

import pytest

from app_health_monitor.config import HandlerEnvironment
from app_health_monitor.handler import COMMANDS, PID_FILE_NAME, HandlerContext, run_command
from app_health_monitor.process import write_pid_file


@pytest.fixture
def environment(tmp_path):
    env = HandlerEnvironment(
        name="Microsoft.ManagedServices.ApplicationHealthLinux",
        version="1.0",
        log_folder=tmp_path / "log",
        config_folder=tmp_path / "config",
        status_folder=tmp_path / "status",
    )
    env.config_folder.mkdir()
    return env


def make_context(environment, tmp_path, seq=0) -> HandlerContext:
    return HandlerContext(
        environment=environment,
        sequence_number=seq,
        data_dir=tmp_path / "data",
    )


def write_settings(environment, seq, public):
    path = environment.config_folder / f"{seq}.settings"
    path.write_text(json.dumps({"runtimeSettings": [{"handlerSettings": {"publicSettings": public}}]}))


def read_status(environment, seq):
    with open(environment.status_folder / f"{seq}.status") as f:
        return json.load(f)[0]["status"]


class TestCommandTable:
    """Tests for the command definitions."""
    
    def test_failure_exit_codes(self):
        assert COMMANDS["install"].fail_exit_code == 52
        for name in ("uninstall", "enable", "update", "disable"):
            assert COMMANDS[name].fail_exit_code == 3
    
    def test_status_reporting_commands(self):
        assert not COMMANDS["install"].should_report_status
        assert not COMMANDS["uninstall"].should_report_status
        assert COMMANDS["enable"].should_report_status
        assert COMMANDS["disable"].should_report_status
        assert COMMANDS["update"].should_report_status


class TestInstallUninstall:
    """Tests for install and uninstall."""
    
    def test_install_creates_data_dir(self, environment, tmp_path):
        ctx = make_context(environment, tmp_path)
        assert run_command("install", ctx) == 0
        assert ctx.data_dir.is_dir()
        # install never writes status
        assert not environment.status_folder.exists()
    
    def test_install_failure_exit_code(self, environment, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        ctx = HandlerContext(environment=environment, sequence_number=0, data_dir=blocker / "data")
        assert run_command("install", ctx) == 52
    
    def test_uninstall_removes_data_dir(self, environment, tmp_path):
        ctx = make_context(environment, tmp_path)
        ctx.data_dir.mkdir()
        (ctx.data_dir / "leftover").write_text("x")
        
        assert run_command("uninstall", ctx) == 0
        assert not ctx.data_dir.exists()
    
    def test_uninstall_without_data_dir(self, environment, tmp_path):
        assert run_command("uninstall", make_context(environment, tmp_path)) == 0


class TestEnable:
    """Tests for the enable command."""
    
    def test_invalid_settings(self, environment, tmp_path):
        write_settings(environment, 0, {"protocol": "tcp"})
        
        assert run_command("enable", make_context(environment, tmp_path)) == 3
        status = read_status(environment, 0)
        assert status["status"] == "error"
        assert "failed to get configuration" in status["formattedMessage"]["message"]
    
    def test_schema_violation(self, environment, tmp_path):
        write_settings(environment, 0, {"protocol": "ftp", "port": 21})
        assert run_command("enable", make_context(environment, tmp_path)) == 3
        assert read_status(environment, 0)["status"] == "error"
    
    def test_no_sequence_number(self, environment, tmp_path):
        ctx = make_context(environment, tmp_path, seq=None)
        assert run_command("enable", ctx) == 3
        assert not environment.status_folder.exists()
    
    def test_polls_until_terminated(self, environment, tmp_path):
        # Port 1 on loopback is closed, so the raw state is unhealthy
        write_settings(environment, 2, {"protocol": "tcp", "port": 1, "intervalInSeconds": 5})
        ctx = make_context(environment, tmp_path, seq=2)
        
        pid_seen = []
        
        def stop():
            pid_seen.append(ctx.pid_file.exists())
            ctx.cancel.set()
        
        timer = threading.Timer(0.5, stop)
        timer.start()
        try:
            exit_code = run_command("enable", ctx)
        finally:
            timer.cancel()
        
        assert exit_code == 0
        assert pid_seen == [True]
        assert not ctx.pid_file.exists()
        
        status = read_status(environment, 2)
        assert status["status"] == "success"
        assert status["substatus"][0]["name"] == "AppHealthStatus"
        assert status["substatus"][0]["status"] == "error"


class TestDisableUpdate:
    """Tests for disable and update."""
    
    def test_disable_when_not_running(self, environment, tmp_path):
        assert run_command("disable", make_context(environment, tmp_path)) == 0
        status = read_status(environment, 0)
        assert status["operation"] == "disable"
        assert status["status"] == "success"
    
    def test_disable_stops_running_process(self, environment, tmp_path):
        ctx = make_context(environment, tmp_path)
        proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        try:
            write_pid_file(ctx.data_dir / PID_FILE_NAME, proc.pid)
            assert run_command("disable", ctx) == 0
            assert proc.poll() is not None
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
        
        assert not ctx.pid_file.exists()
        assert "stopped" in read_status(environment, 0)["formattedMessage"]["message"]
    
    @pytest.mark.parametrize("record", ["{pid}\n", "{pid} 1.0\n"])
    def test_disable_leaves_foreign_process_alone(self, environment, tmp_path, record):
        ctx = make_context(environment, tmp_path)
        proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        try:
            ctx.pid_file.parent.mkdir(parents=True)
            ctx.pid_file.write_text(record.format(pid=proc.pid))
            assert run_command("disable", ctx) == 0
            assert proc.poll() is None
        finally:
            proc.kill()
            proc.wait()
        
        assert not ctx.pid_file.exists()
        assert "not running" in read_status(environment, 0)["formattedMessage"]["message"]
    
    def test_uninstall_leaves_foreign_process_alone(self, environment, tmp_path):
        ctx = make_context(environment, tmp_path)
        proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        try:
            ctx.pid_file.parent.mkdir(parents=True)
            ctx.pid_file.write_text(f"{proc.pid}\n")
            assert run_command("uninstall", ctx) == 0
            assert proc.poll() is None
        finally:
            proc.kill()
            proc.wait()
        
        assert not ctx.data_dir.exists()
    
    def test_update_is_noop(self, environment, tmp_path):
        assert run_command("update", make_context(environment, tmp_path, seq=1)) == 0
        assert read_status(environment, 1)["operation"] == "update"
