"""Command-line interface for App Health Monitor."""

import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from app_health_monitor import __version__
from app_health_monitor.config import (
    HANDLER_ENVIRONMENT_FILE,
    ConfigError,
    HandlerEnvironment,
    ProbeSettings,
    create_example_config,
    find_sequence_number,
)
from app_health_monitor.handler import COMMANDS, DEFAULT_DATA_DIR, HandlerContext, run_command
from app_health_monitor.models import HealthState, ProbeResult, StatusType
from app_health_monitor.monitor import PollScheduler
from app_health_monitor.probes import create_probe
from app_health_monitor.process import read_pid_file, read_status_type, wait_for_process, wait_for_status
from app_health_monitor.status import StatusPublishError, StatusPublisher

LOG_FILE_NAME = "app-health.log"

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str, log_folder: Optional[Path] = None) -> None:
    """Configure logging, also to the extension log folder when given."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_folder is not None:
        log_folder.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_folder / LOG_FILE_NAME))
    
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def install_signal_handlers(cancel: threading.Event) -> None:
    """Turn SIGTERM and SIGINT into a polling cancellation request."""
    def handle(signum: int, frame: object) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        cancel.set()
    
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, handle)


def state_color(state: HealthState) -> str:
    """Get Rich color for a health state."""
    return "green" if state == HealthState.HEALTHY else "red"


def status_color(status: Optional[StatusType]) -> str:
    colors = {
        StatusType.SUCCESS: "green",
        StatusType.ERROR: "red",
        StatusType.WARNING: "yellow",
        StatusType.TRANSITIONING: "cyan",
    }
    return colors.get(status, "dim")


def load_settings(config: Optional[str]) -> ProbeSettings:
    """Load settings from the given file or a default location."""
    if config:
        return ProbeSettings.from_yaml(config)
    
    for default_path in ["ahm.yaml", "ahm.yml", "~/.config/ahm/config.yaml"]:
        path = Path(default_path).expanduser()
        if path.exists():
            return ProbeSettings.from_yaml(path)
    
    console.print("[red]No configuration file found.[/]")
    console.print("Create one with: [cyan]ahm init[/]")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """App Health Monitor - application health reporting for VM extensions."""
    pass


def handler_options(func: Callable) -> Callable:
    """Options shared by the extension lifecycle commands."""
    func = click.option(
        "--handler-env",
        default=HANDLER_ENVIRONMENT_FILE,
        envvar="AHM_HANDLER_ENVIRONMENT",
        type=click.Path(),
        help=f"Path to {HANDLER_ENVIRONMENT_FILE}",
    )(func)
    func = click.option(
        "--data-dir",
        default=str(DEFAULT_DATA_DIR),
        type=click.Path(),
        help=f"Extension data directory (default: {DEFAULT_DATA_DIR})",
    )(func)
    func = click.option(
        "--log-level",
        default="INFO",
        type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
        help="Logging level",
    )(func)
    return func


def dispatch(name: str, handler_env: str, data_dir: str, log_level: str) -> None:
    """Run a lifecycle command inside the handler environment and exit."""
    cmd = COMMANDS[name]
    
    try:
        env = HandlerEnvironment.from_file(handler_env)
    except ConfigError as e:
        setup_logging(log_level)
        logger.error(f"{cmd.name} failed: {e}")
        sys.exit(cmd.fail_exit_code)
    
    setup_logging(log_level, env.log_folder)
    
    try:
        seq_num: Optional[int] = find_sequence_number(env.config_folder)
    except ConfigError as e:
        logger.warning(f"No sequence number: {e}")
        seq_num = None
    
    ctx = HandlerContext(environment=env, sequence_number=seq_num, data_dir=Path(data_dir))
    if name == "enable":
        install_signal_handlers(ctx.cancel)
    
    sys.exit(run_command(name, ctx))


@main.command()
@handler_options
def install(handler_env: str, data_dir: str, log_level: str) -> None:
    """Prepare the extension data directory."""
    dispatch("install", handler_env, data_dir, log_level)


@main.command()
@handler_options
def uninstall(handler_env: str, data_dir: str, log_level: str) -> None:
    """Stop polling and remove the extension data directory."""
    dispatch("uninstall", handler_env, data_dir, log_level)


@main.command()
@handler_options
def enable(handler_env: str, data_dir: str, log_level: str) -> None:
    """Poll application health and report it until terminated."""
    dispatch("enable", handler_env, data_dir, log_level)


@main.command()
@handler_options
def disable(handler_env: str, data_dir: str, log_level: str) -> None:
    """Stop a running enable process."""
    dispatch("disable", handler_env, data_dir, log_level)


@main.command()
@handler_options
def update(handler_env: str, data_dir: str, log_level: str) -> None:
    """Acknowledge an extension update."""
    dispatch("update", handler_env, data_dir, log_level)


@main.command()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option(
    "--status-dir",
    default="status",
    type=click.Path(),
    help="Directory to publish status files into (default: ./status)",
)
@click.option(
    "--sequence", "-s",
    default=0,
    type=int,
    help="Sequence number to publish under (default: 0)",
)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
def run(config: Optional[str], status_dir: str, sequence: int, log_level: str) -> None:
    """Poll and publish health from a YAML configuration (Ctrl+C to stop)."""
    setup_logging(log_level)
    
    def show(result: ProbeResult, derived: HealthState) -> None:
        raw = Text(result.state.value.upper(), style=state_color(result.state))
        reported = Text(derived.value.upper(), style=state_color(derived))
        console.print(
            Text.assemble(
                (result.timestamp.strftime("%H:%M:%S"), "dim"), "  raw ", raw,
                "  reported ", reported, "  ", (result.detail or "", "dim"),
            )
        )
    
    cancel = threading.Event()
    install_signal_handlers(cancel)
    
    try:
        settings = load_settings(config)
        scheduler = PollScheduler(settings, StatusPublisher(status_dir), sequence, on_cycle=show)
        console.print(f"[dim]Polling {scheduler.probe.target} (Ctrl+C to stop)[/]")
        scheduler.run(cancel)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {e}[/]")
        sys.exit(1)
    except StatusPublishError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(3)
    
    console.print("\n[dim]Stopped polling.[/]")


@main.command()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option(
    "--json", "output_json",
    is_flag=True,
    help="Output in JSON format",
)
def probe(config: Optional[str], output_json: bool) -> None:
    """Run a single probe and show the raw result."""
    setup_logging("WARNING")
    
    try:
        settings = load_settings(config)
        checker = create_probe(settings)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {e}[/]")
        sys.exit(1)
    
    result = checker.evaluate()
    
    if output_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        style = state_color(result.state)
        console.print(Panel(
            f"[bold]Target:[/] {checker.target}\n"
            f"[bold]State:[/] [{style}]{result.state.value.upper()}[/]\n"
            f"[bold]Detail:[/] {result.detail or '-'}",
            title="Probe Result",
            border_style=style,
        ))
    
    if not result.healthy:
        sys.exit(1)


@main.command()
@click.argument("status_file", type=click.Path(exists=True))
@click.option("--json", "output_json", is_flag=True, help="Output JSON")
def status(status_file: str, output_json: bool) -> None:
    """Show a published status file."""
    with open(status_file) as f:
        document = json.load(f)
    
    if output_json:
        click.echo(json.dumps(document, indent=2))
        return
    
    record = document[0]
    inner = record["status"]
    top = read_status_type(status_file)
    lines = [
        f"[bold]Operation:[/] {inner.get('operation', '-')}",
        f"[bold]Status:[/] [{status_color(top)}]{inner['status'].upper()}[/]",
        f"[bold]Message:[/] {inner.get('formattedMessage', {}).get('message', '-')}",
        f"[bold]Timestamp:[/] {record.get('timestampUTC', '-')}",
    ]
    for sub in inner.get("substatus", []):
        sub_style = status_color(StatusType(sub["status"]))
        lines.append(
            f"[bold]{sub['name']}:[/] [{sub_style}]{sub['status'].upper()}[/] "
            f"{sub.get('formattedMessage', {}).get('message', '')}"
        )
    
    console.print(Panel("\n".join(lines), title=Path(status_file).name, border_style=status_color(top)))


@main.command()
@click.option("--pid-file", type=click.Path(), help="Wait until this process exits")
@click.option("--status-file", type=click.Path(), help="Wait until this status file is terminal")
@click.option("--timeout", "-t", type=float, default=None, help="Give up after this many seconds")
def wait(pid_file: Optional[str], status_file: Optional[str], timeout: Optional[float]) -> None:
    """Wait on the polling process or its status file.
    
    Exits 0 when done, 1 on timeout and 2 when the status reports an error.
    """
    if bool(pid_file) == bool(status_file):
        raise click.UsageError("Give exactly one of --pid-file or --status-file")
    
    if pid_file:
        pid = read_pid_file(pid_file)
        if pid is None or wait_for_process(pid, timeout=timeout):
            return
        console.print(f"[red]Process {pid} still running after {timeout}s[/]")
        sys.exit(1)
    
    result = wait_for_status(status_file, timeout=timeout)
    if result is None:
        console.print(f"[red]No terminal status after {timeout}s[/]")
        sys.exit(1)
    if result == StatusType.ERROR:
        sys.exit(2)


@main.command()
@click.option(
    "-o", "--output",
    default="ahm.yaml",
    help="Output file path",
)
@click.option(
    "--force", "-f",
    is_flag=True,
    help="Overwrite existing file",
)
def init(output: str, force: bool) -> None:
    """Create an example configuration file."""
    path = Path(output)
    
    if path.exists() and not force:
        console.print(f"[red]File already exists: {path}[/]")
        console.print("Use --force to overwrite")
        sys.exit(1)
    
    example = create_example_config()
    example.to_yaml(path)
    
    console.print(f"[green]Created example configuration: {path}[/]")
    console.print("Edit this file to point at your application's health endpoint.")


if __name__ == "__main__":
    main()
