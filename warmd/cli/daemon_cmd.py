"""Daemon management commands for the warmd CLI."""

import contextlib
import os
import signal
import subprocess
import sys
import time

import click
from rich.console import Console

from warmd.cli.client import DaemonClient, DaemonError, DaemonUnavailableError
from warmd.config import DaemonConfig, read_runtime_info, remove_runtime_info

console = Console(stderr=True)


def error(msg: str) -> None:
    """Print an error message."""
    console.print(f"[red]Error:[/red] {msg}")


def warning(msg: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]Warning:[/yellow] {msg}")


def info(msg: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{msg}[/dim]")


def success(msg: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {msg}")


def get_config(ctx: click.Context) -> DaemonConfig:
    """Get the configuration loaded by the root command."""
    config = ctx.obj.get("config") if ctx.obj else None
    if config is None:
        raise click.UsageError("Configuration not loaded")
    return config  # type: ignore[no-any-return]


def _get_pid(config: DaemonConfig) -> int | None:
    """Get the daemon PID if running.

    Returns:
        PID if daemon is running, None otherwise.
    """
    runtime = read_runtime_info(config.runtime_file)
    if runtime is None:
        return None

    try:
        # Check if process exists
        os.kill(runtime.pid, 0)
        return runtime.pid
    except OSError:
        # Runtime file is stale, clean it up
        remove_runtime_info(config.runtime_file)
        return None


def _wait_for_daemon(client: DaemonClient, timeout: float = 5.0) -> bool:
    """Wait for daemon to start responding.

    Args:
        client: Client used to probe the daemon.
        timeout: Maximum time to wait in seconds.

    Returns:
        True if daemon started, False if timeout.
    """
    start = time.time()
    while time.time() - start < timeout:
        if client.is_running():
            return True
        time.sleep(0.05)
    return False


def _wait_for_shutdown(pid: int, timeout: float = 5.0) -> bool:
    """Wait for daemon to shut down.

    Args:
        pid: Process ID to wait for.
        timeout: Maximum time to wait in seconds.

    Returns:
        True if daemon shut down, False if timeout.
    """
    start = time.time()
    while time.time() - start < timeout:
        try:
            os.kill(pid, 0)
            time.sleep(0.1)
        except OSError:
            return True
    return False


def _daemon_args(config: DaemonConfig, verbose: bool) -> list[str]:
    args = [sys.executable, "-m", "warmd.daemon", "--home", str(config.home)]
    if config.engine:
        args.extend(["--engine", config.engine])
    if config.socket_path:
        args.extend(["--socket", str(config.socket_path)])
    if verbose:
        args.append("--verbose")
    return args


def launch_daemon(config: DaemonConfig, verbose: bool = False) -> bool:
    """Start the daemon in the background and wait until it answers.

    Args:
        config: Configuration to start the daemon with.
        verbose: Enable verbose daemon logging.

    Returns:
        True if the daemon is accepting connections.

    Raises:
        OSError: If the daemon process cannot be spawned.
    """
    config.home.mkdir(parents=True, exist_ok=True)

    # Daemon output goes to the log file
    with open(config.log_file, "a") as log_file:
        subprocess.Popen(
            _daemon_args(config, verbose),
            stdout=log_file,
            stderr=log_file,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )

    return _wait_for_daemon(DaemonClient(config))


@click.command()
@click.option("--foreground", "-f", is_flag=True, help="Run in foreground (don't daemonize)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def start(ctx: click.Context, foreground: bool, verbose: bool) -> None:
    """Start the warmd daemon."""
    config = get_config(ctx)
    client = DaemonClient(config)

    # Check if already running
    pid = _get_pid(config)
    if pid:
        if client.is_running():
            warning(f"Daemon is already running (PID {pid})")
            return
        info("Found stale runtime file, cleaning up...")
        remove_runtime_info(config.runtime_file)

    if foreground:
        args = _daemon_args(config, verbose)
        info("Starting daemon in foreground...")
        try:
            os.execv(sys.executable, args)
        except OSError as e:
            error(f"Failed to start daemon: {e}")
            raise SystemExit(1) from e

    info("Starting daemon in background...")
    try:
        started = launch_daemon(config, verbose)
    except OSError as e:
        error(f"Failed to start daemon: {e}")
        raise SystemExit(1) from e

    if started:
        runtime = client.runtime_info()
        success(f"Daemon started (PID {runtime.pid})")
        info(f"  Socket: {runtime.socket_path}")
        info(f"  Logs: {config.log_file}")
    else:
        warning("Daemon process started but not responding yet")
        info(f"Check logs: {config.log_file}")


@click.command()
@click.option("--force", "-f", is_flag=True, help="Force kill if graceful shutdown fails")
@click.pass_context
def stop(ctx: click.Context, force: bool) -> None:
    """Stop the warmd daemon."""
    config = get_config(ctx)
    pid = _get_pid(config)

    if not pid:
        if config.socket.exists():
            info("Cleaning up stale socket file...")
            config.socket.unlink()
        warning("Daemon is not running")
        return

    info(f"Stopping daemon (PID {pid})...")

    # Ask nicely over the socket, then by signal
    try:
        DaemonClient(config).shutdown()
    except DaemonError as e:
        info(f"Shutdown request failed ({e}), sending SIGTERM...")
        with contextlib.suppress(OSError):
            os.kill(pid, signal.SIGTERM)

    if _wait_for_shutdown(pid):
        success("Daemon stopped")
        remove_runtime_info(config.runtime_file)
        return

    if force:
        warning("Graceful shutdown failed, forcing...")
        try:
            os.kill(pid, signal.SIGKILL)
            _wait_for_shutdown(pid, timeout=2.0)
            success("Daemon killed")
        except OSError as e:
            error(f"Failed to kill daemon: {e}")
    else:
        error("Graceful shutdown timed out. Use --force to kill.")
        raise SystemExit(1)

    remove_runtime_info(config.runtime_file)
    config.socket.unlink(missing_ok=True)


@click.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Check daemon status."""
    config = get_config(ctx)
    pid = _get_pid(config)

    if not pid:
        info("Daemon is not running")
        return

    client = DaemonClient(config)
    if client.is_running():
        try:
            runtime = client.runtime_info()
        except DaemonUnavailableError:
            warning("Daemon stopped while checking status")
            return
        success(f"Daemon is running (PID {pid})")
        info(f"  Engine: {runtime.engine or '(none configured)'}")
        info(f"  Socket: {runtime.socket_path}")
        info(f"  Started: {runtime.started_at:%Y-%m-%d %H:%M:%S}")
    else:
        warning(f"Daemon process running (PID {pid}) but not responding")
        info("The daemon may still be starting up, or may have crashed.")
        info(f"Check logs: {config.log_file}")


@click.command()
@click.pass_context
def restart(ctx: click.Context) -> None:
    """Restart the warmd daemon."""
    # Stop if running
    if _get_pid(get_config(ctx)):
        ctx.invoke(stop)

    ctx.invoke(start)


@click.command()
@click.option("--lines", "-n", type=int, default=50, help="Number of lines to show")
@click.option("--follow", "-f", is_flag=True, help="Follow log output")
@click.pass_context
def logs(ctx: click.Context, lines: int, follow: bool) -> None:
    """View daemon logs."""
    log_file = get_config(ctx).log_file
    if not log_file.exists():
        warning("No log file found")
        info(f"Expected location: {log_file}")
        return

    if follow:
        with contextlib.suppress(KeyboardInterrupt):
            subprocess.run(["tail", "-f", str(log_file)], check=True)
    else:
        try:
            result = subprocess.run(
                ["tail", "-n", str(lines), str(log_file)],
                capture_output=True,
                text=True,
                check=True,
            )
            click.echo(result.stdout)
        except subprocess.CalledProcessError as e:
            error(f"Failed to read logs: {e}")
