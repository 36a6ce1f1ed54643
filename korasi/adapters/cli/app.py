"""
Typer application and global options
"""
import typer
from pathlib import Path
from typing import Optional

from ... import __version__
from ...core.logging import setup_logging, get_stdout_console
from .commands import register_commands

app = typer.Typer(
    name="korasi",
    add_completion=False,
    help="Run commands on ephemeral EC2 instances",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
register_commands(app)


def _print_version(value: bool) -> None:
    if value:
        get_stdout_console().print(f"korasi {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="DEBUG, INFO, WARNING or ERROR"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this file"),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="TOML settings file (default: ~/.korasi/config.toml)"
    ),
    profile: Optional[str] = typer.Option(None, "--profile", help="AWS credentials profile"),
    region: Optional[str] = typer.Option(None, "--region", help="AWS region"),
    instance_type: Optional[str] = typer.Option(None, "--instance-type", help="EC2 instance type"),
    image: Optional[str] = typer.Option(None, "--image", help="Machine image (AMI) id"),
    user: Optional[str] = typer.Option(None, "--user", help="SSH login user"),
    key: Optional[str] = typer.Option(None, "--key", help="SSH private key path"),
    keep: bool = typer.Option(False, "--keep", help="Leave the instance running afterwards"),
    reuse: bool = typer.Option(False, "--reuse", help="Use the instance left running by --keep"),
    boot_timeout: Optional[float] = typer.Option(None, "--boot-timeout", help="Seconds to wait for boot"),
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Show the version and exit"
    ),
):
    """
    Korasi - run work on ephemeral EC2 instances

    Each command provisions an instance (or reuses a kept one), works over
    a single SSH connection and terminates the instance when done.
    """
    setup_logging(level=log_level, log_file=log_file)

    overrides = dict(
        profile=profile,
        region=region,
        instance_type=instance_type,
        image_id=image,
        user=user,
        key_path=key,
        boot_timeout=boot_timeout,
        # a reused instance stays up for the next invocation too
        keep=True if keep or reuse else None,
    )
    ctx.obj = {"config": config, "reuse": reuse, "overrides": overrides}


def run():
    app()
