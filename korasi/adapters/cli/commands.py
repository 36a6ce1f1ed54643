"""
Korasi CLI commands
"""
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import typer
from rich.table import Table

from ...core.constants import CACHED_INSTANCE_KEY, EXIT_UNEXPECTED
from ...core.exceptions import ConfigError, KorasiError
from ...core.logging import get_logger, get_stdout_console, get_stderr_console
from ...core.utils import shell_command
from ...domain.execution import INTERRUPTED_EXIT_CODE
from ...domain.orchestrator import Orchestrator
from ...domain.tunnel import TunnelForwarder, parse_remote_address
from ...infrastructure.state.file_store import FileStateStore
from ..config.settings import Settings
from .factory import build_orchestrator, build_provisioner, load_settings
from .progress import UploadProgress
from .prompts import RichPromptProvider

logger = get_logger(__name__)
stdout_console = get_stdout_console()
stderr_console = get_stderr_console()
prompt_provider = RichPromptProvider()


def register_commands(app: typer.Typer) -> None:
    """Register every command on the main app"""
    app.command(
        name="run",
        context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True},
    )(run_remote)
    app.command(name="upload")(upload_run)
    app.command(name="shell")(shell_run)
    app.command(name="tunnel")(tunnel_run)
    app.command(name="list")(list_run)
    app.command(name="teardown")(teardown_run)
    app.command(name="stop")(stop_run)
    app.command(name="start")(start_run)
    app.command(name="obliterate")(obliterate_run)


# --------------------
# Shared plumbing
# --------------------
def _settings(ctx: typer.Context, **overrides: Any) -> Settings:
    obj: Dict[str, Any] = ctx.obj or {}
    merged = dict(obj.get("overrides", {}))
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return load_settings(obj.get("config"), merged)


def _reuse(ctx: typer.Context) -> bool:
    return bool((ctx.obj or {}).get("reuse"))


@contextmanager
def _handled(action: str) -> Iterator[None]:
    """Map failures to a message, a hint and the matching exit status"""
    try:
        yield
    except typer.Exit:
        raise
    except KorasiError as e:
        prompt_provider.error(e)
        raise typer.Exit(e.exit_code)
    except KeyboardInterrupt:
        stderr_console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(INTERRUPTED_EXIT_CODE)
    except Exception as e:
        logger.exception(f"Failed to {action}")
        stderr_console.print(f"[red]Error:[/red] Failed to {action}: {e}")
        raise typer.Exit(EXIT_UNEXPECTED)


@contextmanager
def _cancel_on_sigterm(cancel: threading.Event) -> Iterator[None]:
    """Turn SIGTERM into cancellation so teardown still runs"""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        logger.info("Received SIGTERM, cancelling")
        cancel.set()

    previous = signal.signal(signal.SIGTERM, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _report_teardown(orchestrator: Optional[Orchestrator]) -> None:
    if orchestrator is None:
        return
    if orchestrator.teardown_error is not None:
        prompt_provider.warning(
            f"Teardown failed: {orchestrator.teardown_error.message}. "
            "The instance may remain billable; remove it with 'korasi teardown <id>'."
        )
    elif orchestrator.options.keep and orchestrator.instance is not None:
        prompt_provider.info(f"Instance {orchestrator.instance.id} kept for reuse")


def _orchestrate(ctx: typer.Context, action: str, operation, progress: Any = None, **overrides: Any) -> Any:
    """Build an orchestrator and run ``operation`` on it with full error mapping"""
    cancel = threading.Event()
    orchestrator: Optional[Orchestrator] = None
    with _handled(action), _cancel_on_sigterm(cancel):
        settings = _settings(ctx, **overrides)
        orchestrator = build_orchestrator(
            settings,
            Path.cwd(),
            reuse=_reuse(ctx),
            cancel=cancel,
            progress=progress,
        )
        try:
            return operation(orchestrator)
        finally:
            if progress is not None:
                progress.close()
            _report_teardown(orchestrator)


# --------------------
# Commands
# --------------------
def run_remote(
    ctx: typer.Context,
    command: List[str] = typer.Argument(..., help="Command to run remotely"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Skip uploading the workspace"),
    tty: bool = typer.Option(False, "--tty", "-t", help="Allocate a pseudo terminal"),
):
    """
    Sync the workspace and run a command on a fresh instance

    The process exits with the remote command's status.

    Examples:
        korasi run make test
        korasi run -- python train.py --epochs 3
        korasi run "cd data && ls | wc -l"
    """
    remote_command = shell_command(command)
    progress = UploadProgress(stderr_console) if not no_sync else None
    status = _orchestrate(
        ctx,
        "run command",
        lambda orch: orch.run(remote_command, sync=not no_sync, pty=tty),
        progress=progress,
    )
    raise typer.Exit(status)


def upload_run(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Local file or directory"),
    destination: Optional[str] = typer.Argument(None, help="Existing remote directory"),
    no_root: bool = typer.Option(False, "--no-root", help="Do not wrap uploads in the remote root folder"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-e", help="Extra ignore pattern (repeatable)"),
    hidden: bool = typer.Option(False, "--hidden", help="Include hidden files"),
):
    """
    Upload a file or directory to a fresh instance

    Examples:
        korasi upload src
        korasi upload ~/datasets/small data
        korasi --keep upload . --exclude "*.ckpt"
    """
    overrides: Dict[str, Any] = {"include_hidden": True if hidden else None}
    if no_root:
        overrides["root_folder"] = ""
    if exclude:
        overrides["exclude"] = list(exclude)

    plan = _orchestrate(
        ctx,
        "upload",
        lambda orch: orch.upload(source, destination),
        progress=UploadProgress(stderr_console),
        **overrides,
    )
    prompt_provider.success(
        f"Uploaded {len(plan.files())} files ({len(plan.directories())} directories) "
        f"to {plan.remote_target}"
    )


def shell_run(ctx: typer.Context):
    """
    Open an interactive shell on a fresh instance

    The instance is terminated when the shell exits unless --keep is set.
    """
    status = _orchestrate(ctx, "open shell", lambda orch: orch.shell())
    raise typer.Exit(status)


def tunnel_run(
    ctx: typer.Context,
    local_port: int = typer.Argument(..., help="Local port to listen on (0 picks a free one)"),
    remote: str = typer.Argument(..., help="Remote endpoint as host:port, or just a port"),
):
    """
    Forward a local port to an endpoint reachable from the instance

    Runs until interrupted with Ctrl+C.

    Examples:
        korasi tunnel 8888 8888
        korasi tunnel 5432 db.internal:5432
    """
    try:
        remote_host, remote_port = parse_remote_address(remote)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="REMOTE")

    def on_ready(forwarder: TunnelForwarder) -> None:
        host, port = forwarder.bound_address
        stdout_console.print(
            f"[green]✓[/green] Forwarding [cyan]{host}:{port}[/cyan] -> "
            f"[cyan]{remote_host}:{remote_port}[/cyan] (Ctrl+C to stop)"
        )

    _orchestrate(
        ctx,
        "run tunnel",
        lambda orch: orch.tunnel(local_port, remote_host, remote_port, on_ready=on_ready),
    )


def list_run(ctx: typer.Context):
    """List instances launched by korasi"""
    with _handled("list instances"):
        settings = _settings(ctx)
        rows = build_provisioner(settings).list_instances()
        cached = FileStateStore().load(CACHED_INSTANCE_KEY) or {}

        if not rows:
            stdout_console.print("[yellow]No korasi instances[/yellow]")
            return

        table = Table(title=f"Instances in {settings.region}", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Type", style="blue")
        table.add_column("State", style="magenta")
        table.add_column("Address", style="blue")
        table.add_column("Launched", style="dim")

        for row in rows:
            launched = row.get("launched_at")
            launched_str = launched.strftime("%Y-%m-%d %H:%M:%S") if hasattr(launched, "strftime") else str(launched or "N/A")
            instance_id = row.get("id") or "N/A"
            if instance_id == cached.get("instance_id"):
                instance_id = f"{instance_id} [yellow](kept)[/yellow]"
            table.add_row(
                instance_id,
                row.get("name") or "N/A",
                row.get("type") or "N/A",
                row.get("state") or "N/A",
                row.get("address") or "N/A",
                launched_str,
            )

        stdout_console.print(table)


def _targets(instance_ids: Optional[List[str]], store: FileStateStore, verb: str) -> List[str]:
    """Explicit ids, or the kept instance when none are given"""
    if instance_ids:
        return list(instance_ids)
    cached = store.load(CACHED_INSTANCE_KEY) or {}
    if not cached.get("instance_id"):
        raise ConfigError(
            f"No kept instance to {verb}",
            hint="pass instance ids; 'korasi list' shows korasi instances",
        )
    return [cached["instance_id"]]


def teardown_run(
    ctx: typer.Context,
    instance_ids: Optional[List[str]] = typer.Argument(None, help="Instance ids (defaults to the kept instance)"),
    wait: bool = typer.Option(False, "--wait", help="Wait until the instances are terminated"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Terminate the kept instance, or any instances by id"""
    with _handled("terminate instances"):
        settings = _settings(ctx)
        store = FileStateStore()
        targets = _targets(instance_ids, store, "terminate")

        if not yes and not prompt_provider.confirm(f"Terminate {', '.join(targets)}?", default=False):
            stdout_console.print("[yellow]Aborted[/yellow]")
            return

        build_provisioner(settings).terminate_instances(targets, wait=wait)
        cached = store.load(CACHED_INSTANCE_KEY) or {}
        if cached.get("instance_id") in targets:
            store.delete(CACHED_INSTANCE_KEY)
        prompt_provider.success(f"Terminated {', '.join(targets)}")


def stop_run(
    ctx: typer.Context,
    instance_ids: Optional[List[str]] = typer.Argument(None, help="Instance ids (defaults to the kept instance)"),
    wait: bool = typer.Option(False, "--wait", help="Wait until the instances are stopped"),
):
    """
    Stop instances without terminating them

    A stopped instance keeps its disk and stops billing for compute; bring
    it back with 'korasi start'.
    """
    with _handled("stop instances"):
        targets = _targets(instance_ids, FileStateStore(), "stop")
        build_provisioner(_settings(ctx)).stop_instances(targets, wait=wait)
        prompt_provider.success(f"Stopped {', '.join(targets)}")


def start_run(
    ctx: typer.Context,
    instance_ids: Optional[List[str]] = typer.Argument(None, help="Instance ids (defaults to the kept instance)"),
    wait: bool = typer.Option(False, "--wait", help="Wait until the instances are running"),
):
    """Start stopped instances"""
    with _handled("start instances"):
        targets = _targets(instance_ids, FileStateStore(), "start")
        build_provisioner(_settings(ctx)).start_instances(targets, wait=wait)
        prompt_provider.success(f"Started {', '.join(targets)}")


def obliterate_run(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """
    Remove everything korasi created in the region

    Terminates every korasi instance and waits for them to go, then deletes
    the SSH security group, the key pair and the local private key.
    """
    with _handled("obliterate resources"):
        settings = _settings(ctx)
        if not yes and not prompt_provider.confirm(
            f"Terminate all korasi instances in {settings.region} and delete "
            f"{settings.security_group} and {settings.key_name}?",
            default=False,
        ):
            stdout_console.print("[yellow]Aborted[/yellow]")
            return

        provisioner = build_provisioner(settings)
        instance_ids = [row["id"] for row in provisioner.list_instances() if row.get("id")]
        # the security group cannot be deleted while instances still use it
        provisioner.terminate_instances(instance_ids, wait=True)
        group_id = provisioner.delete_security_group(settings.security_group)
        key_deleted = provisioner.delete_key_pair(settings.key_name)

        # the private key is useless once its key pair is gone
        key_path = Path(settings.key_path).expanduser()
        if key_path.exists():
            key_path.unlink()
            logger.info(f"Removed {key_path}")
        FileStateStore().delete(CACHED_INSTANCE_KEY)

        prompt_provider.success(
            f"Terminated {len(instance_ids)} instances, "
            f"{'deleted' if group_id else 'no'} security group {settings.security_group}, "
            f"{'deleted' if key_deleted else 'no'} key pair {settings.key_name}"
        )
