"""Main CLI entry point for warmd."""

import os
import sys
from pathlib import Path

import click
from rich.console import Console

from warmd.cli.client import DaemonClient, DaemonError
from warmd.cli.daemon_cmd import (
    error,
    get_config,
    info,
    launch_daemon,
    logs,
    restart,
    start,
    status,
    stop,
    success,
)
from warmd.color import level_for_color_system
from warmd.config import DEBUG_ENV_VAR, load_config, save_config
from warmd.exceptions import WarmdError

console = Console(stderr=True)


@click.group()
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    help="warmd home directory",
)
@click.option("--debug/--no-debug", default=False, help="Show debug information")
@click.pass_context
def cli(ctx: click.Context, home: Path | None, debug: bool) -> None:
    """warmd - keep a Python tool warm between runs.

    The first run starts a background daemon that loads the configured
    engine once; later runs reuse it.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(home)
    ctx.obj["debug"] = debug


@cli.command()
@click.pass_context
def help(ctx: click.Context) -> None:
    """Show this help message."""
    click.echo(ctx.parent.get_help())  # type: ignore[union-attr]


def _detect_color_level() -> int:
    """Get the color level of the terminal the output goes to."""
    return level_for_color_system(Console().color_system)


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.option("--stdin", "use_stdin", is_flag=True, help="Send standard input to the engine")
@click.option("--color/--no-color", default=None, help="Force color on or off")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(ctx: click.Context, use_stdin: bool, color: bool | None, args: tuple[str, ...]) -> None:
    """Run the engine on the daemon with ARGS.

    Starts the daemon first if it is not running.
    """
    config = get_config(ctx)
    client = DaemonClient(config)

    if not client.is_running():
        if not launch_daemon(config):
            error(f"Daemon did not start, check logs: {config.log_file}")
            ctx.exit(1)

    if color is None:
        color_level = _detect_color_level()
    else:
        color_level = 3 if color else 0

    text = sys.stdin.read() if use_stdin else None

    def write(chunk: str) -> None:
        click.echo(chunk, nl=False)

    exit_status = client.run(
        args,
        write,
        text=text,
        color_level=color_level,
        debug=os.environ.get(DEBUG_ENV_VAR, ""),
    )
    ctx.exit(exit_status)


@cli.command("config")
@click.option("--engine", "-e", help="Set the engine to serve")
@click.pass_context
def config_cmd(ctx: click.Context, engine: str | None) -> None:
    """Show or change the configuration."""
    config = get_config(ctx)

    if engine is not None:
        config.engine = engine
        save_config(config)
        success(f"Engine set to {engine}")
        info("Restart the daemon for the change to take effect: warmd restart")
        return

    click.echo(f"home: {config.home}")
    click.echo(f"engine: {config.engine or ''}")
    click.echo(f"socket: {config.socket}")
    click.echo(f"debug: {config.debug}")


# Register commands
cli.add_command(start)
cli.add_command(stop)
cli.add_command(restart)
cli.add_command(status)
cli.add_command(logs)


def main() -> None:
    """Main entry point with error handling."""
    try:
        cli()
    except (WarmdError, DaemonError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        if "--debug" in sys.argv:
            raise
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
