"""Extension lifecycle commands: install, enable, disable, update, uninstall."""

import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from app_health_monitor.config import ConfigError, HandlerEnvironment, load_handler_settings
from app_health_monitor.models import StatusType
from app_health_monitor.monitor import PollScheduler
from app_health_monitor.process import is_recorded_process, read_pid_record, stop_process, write_pid_file
from app_health_monitor.status import StatusPublishError, StatusPublisher

logger = logging.getLogger(__name__)

FULL_NAME = "Microsoft.ManagedServices.ApplicationHealthLinux"
DEFAULT_DATA_DIR = Path("/var/lib/waagent/apphealth")
PID_FILE_NAME = "enable.pid"
STOP_TIMEOUT_SECONDS = 10.0


class TerminatedError(Exception):
    """Polling stopped on request rather than because of a fault."""


@dataclass
class HandlerContext:
    """Everything a lifecycle command acts on."""
    
    environment: HandlerEnvironment
    sequence_number: int | None
    data_dir: Path = DEFAULT_DATA_DIR
    cancel: threading.Event = field(default_factory=threading.Event)
    
    @property
    def publisher(self) -> StatusPublisher:
        return StatusPublisher(self.environment.status_folder)
    
    @property
    def pid_file(self) -> Path:
        return self.data_dir / PID_FILE_NAME
    
    def require_sequence_number(self) -> int:
        if self.sequence_number is None:
            raise ConfigError("no sequence number available")
        return self.sequence_number


CommandFunc = Callable[[HandlerContext], str]


@dataclass(frozen=True)
class Command:
    """A lifecycle command and how its failures are reported."""
    
    name: str
    func: CommandFunc
    should_report_status: bool  # write a .status file for this command
    fail_exit_code: int


def noop(ctx: HandlerContext) -> str:
    logger.info("noop")
    return ""


def install(ctx: HandlerContext) -> str:
    try:
        ctx.data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"failed to create data dir: {e}") from e
    
    logger.info(f"created data dir {ctx.data_dir}")
    logger.info("installed")
    return ""


def _stop_enable(ctx: HandlerContext) -> bool:
    """Stop a running enable process recorded in the pid file.
    
    A pid that no longer belongs to the recorded process is left alone and
    the stale pid file is removed.
    """
    record = read_pid_record(ctx.pid_file)
    if record is None:
        logger.info("no running enable process")
        return False
    
    pid, create_time = record
    if not is_recorded_process(pid, create_time):
        logger.warning(f"stale pid file {ctx.pid_file}: process {pid} is not the recorded enable, removing it")
        ctx.pid_file.unlink(missing_ok=True)
        return False
    
    stopped = stop_process(pid, timeout=STOP_TIMEOUT_SECONDS)
    ctx.pid_file.unlink(missing_ok=True)
    return stopped


def disable(ctx: HandlerContext) -> str:
    if _stop_enable(ctx):
        return "Application health polling stopped"
    return "Application health polling was not running"


def uninstall(ctx: HandlerContext) -> str:
    _stop_enable(ctx)
    
    logger.info(f"removing data dir {ctx.data_dir}")
    try:
        shutil.rmtree(ctx.data_dir)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise OSError(f"failed to delete data dir: {e}") from e
    
    logger.info("removed data dir")
    logger.info("uninstalled")
    return ""


def enable(ctx: HandlerContext) -> str:
    """Poll application health until cancelled.
    
    Never returns normally.
    
    Raises:
        ConfigError: If the handler settings are unusable.
        StatusPublishError: If the status file cannot be written.
        TerminatedError: Once cancellation is observed.
    """
    seq_num = ctx.require_sequence_number()
    try:
        settings = load_handler_settings(ctx.environment.config_folder, seq_num)
        scheduler = PollScheduler(settings, ctx.publisher, seq_num)
    except ConfigError as e:
        raise ConfigError(f"failed to get configuration: {e}") from e
    
    write_pid_file(ctx.pid_file)
    try:
        scheduler.run(ctx.cancel)
    finally:
        ctx.pid_file.unlink(missing_ok=True)
    
    raise TerminatedError("Application health process terminated")


COMMANDS: dict[str, Command] = {
    "install": Command("Install", install, False, 52),
    "uninstall": Command("Uninstall", uninstall, False, 3),
    "enable": Command("Enable", enable, True, 3),
    "update": Command("Update", noop, True, 3),
    "disable": Command("Disable", disable, True, 3),
}


def run_command(name: str, ctx: HandlerContext) -> int:
    """Run a lifecycle command and map its outcome to an exit code.
    
    A requested termination is a clean exit. Any other failure is reported
    in the status file (for commands that report status) and mapped to the
    command's failure exit code.
    """
    cmd = COMMANDS[name]
    operation = name.lower()
    logger.info(f"{cmd.name} starting (seq={ctx.sequence_number})")
    
    try:
        msg = cmd.func(ctx)
    except TerminatedError as e:
        logger.info(str(e))
        return 0
    except Exception as e:
        logger.error(f"{cmd.name} failed: {e}")
        if cmd.should_report_status and ctx.sequence_number is not None:
            _report(ctx, operation, StatusType.ERROR, f"{cmd.name} failed: {e}")
        return cmd.fail_exit_code
    
    if cmd.should_report_status and ctx.sequence_number is not None:
        _report(ctx, operation, StatusType.SUCCESS, msg or f"{cmd.name} succeeded")
    logger.info(f"{cmd.name} completed")
    return 0


def _report(ctx: HandlerContext, operation: str, status: StatusType, message: str) -> None:
    try:
        ctx.publisher.publish_operation(operation, status, message, ctx.sequence_number)
    except StatusPublishError as e:
        logger.error(f"Failed to report {operation} status: {e}")
