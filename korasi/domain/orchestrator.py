"""
Orchestrator: provision -> sync -> execute/shell/tunnel -> teardown

One Orchestrator serves one CLI invocation and exclusively owns the
instance lifecycle and the transport session it creates; both are passed
by reference to the components that need them.
"""
import shlex
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..core.constants import (
    CACHED_INSTANCE_KEY,
    DEFAULT_BOOT_TIMEOUT,
    DEFAULT_CONNECT_RETRIES,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_ROOT_FOLDER,
)
from ..core.exceptions import CommandError, ProvisionError, TeardownError
from ..core.interfaces import Connector, IgnoreFilter, Provisioner, StateStore
from ..core.logging import get_logger
from .execution.command import CommandExecutor
from .execution.shell import InteractiveShell
from .instance.lifecycle import InstanceLifecycle, port_open
from .instance.models import Instance, LaunchSpec
from .session.models import Credentials
from .session.transport import TransportSession
from .sync.ignore import NullIgnoreFilter
from .sync.mapper import PathMapper
from .sync.models import SyncPlan
from .sync.planner import LocalEntry, SyncPlanner
from .sync.uploader import PlanUploader, ProgressCallback
from .tunnel.forwarder import TunnelForwarder

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class OrchestratorOptions:
    """Per-invocation settings"""
    workspace: Path
    credentials: Credentials
    launch_spec: Optional[LaunchSpec] = None
    reuse_instance_id: Optional[str] = None
    keep: bool = False
    root_folder: str = DEFAULT_ROOT_FOLDER
    boot_timeout: float = DEFAULT_BOOT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    connect_retries: int = DEFAULT_CONNECT_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF
    local_home: Optional[Path] = None
    cache_labels: Dict[str, Any] = field(default_factory=dict)
    # Runs after every local check, right before the instance is acquired.
    # Remote prerequisites (key pair, security group) belong here; a
    # returned LaunchSpec replaces ``launch_spec``.
    prepare: Optional[Callable[[], Optional[LaunchSpec]]] = None


class Orchestrator:
    """
    Compose the components for one invocation.

    Local planning happens before provisioning so a bad source costs
    nothing. Once an instance id exists, teardown runs in a ``finally``
    block; a teardown failure is recorded in ``teardown_error`` and logged,
    but never replaces the result of the operation.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        connector: Connector,
        options: OrchestratorOptions,
        ignore_factory: Optional[Callable[[Path], IgnoreFilter]] = None,
        state_store: Optional[StateStore] = None,
        cancel: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
        reachable: Callable[[str, int], bool] = port_open,
        sleep: Callable[[float], None] = time.sleep,
        io: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            provisioner: Provisioning API
            connector: Secure transport connector
            options: Invocation settings
            ignore_factory: Builds the ignore filter for a walk root
            state_store: Where a kept instance is remembered
            cancel: Shared cancellation event for every channel
            progress: Upload progress callback
            reachable: Reachability check used while booting
            sleep: Sleep function for polling and backoff, replaceable in tests
            io: Optional ``stdin``/``stdout``/``stderr`` binary streams for commands
        """
        self.provisioner = provisioner
        self.connector = connector
        self.options = options
        self.ignore_factory = ignore_factory or (lambda root: NullIgnoreFilter())
        self.state_store = state_store
        self.cancel = cancel or threading.Event()
        self.progress = progress
        self.reachable = reachable
        self._sleep = sleep
        self.io = io or {}

        self.lifecycle: Optional[InstanceLifecycle] = None
        self.session: Optional[TransportSession] = None
        self.teardown_error: Optional[TeardownError] = None

    # --------------------
    # Operations
    # --------------------
    def run(self, command: str, sync: bool = True, pty: bool = False, forward_stdin: bool = True) -> int:
        """
        Sync the workspace and run a command inside it.

        Returns:
            The remote exit status, 0 to 255

        Raises:
            CommandError: REMOTE_KILLED if the process reported no status
        """
        entries = self._scan(".") if sync else None

        def operation(session: TransportSession) -> int:
            remote_command = command
            if sync:
                plan = self._sync(session, ".", None, entries)
                remote_command = f"cd {shlex.quote(str(plan.remote_target))} && {command}"
            executor = CommandExecutor(
                session,
                stdin=self.io.get("stdin"),
                stdout=self.io.get("stdout"),
                stderr=self.io.get("stderr"),
                cancel=self.cancel,
                forward_stdin=forward_stdin,
            )
            try:
                return executor.run(remote_command, pty=pty)
            except CommandError as e:
                if e.kind is not CommandError.Kind.EXIT_CODE:
                    raise
                logger.debug(str(e))
                return e.exit_code

        return self._invoke(operation)

    def upload(self, source: str, destination: Optional[str] = None) -> SyncPlan:
        """Upload a file or directory"""
        entries = self._scan(source, destination)
        return self._invoke(lambda session: self._sync(session, source, destination, entries))

    def shell(self) -> int:
        """Open an interactive shell, returning its exit status"""
        return self._invoke(lambda session: InteractiveShell(session, cancel=self.cancel).run())

    def tunnel(
        self,
        local_port: int,
        remote_host: str,
        remote_port: int,
        on_ready: Optional[Callable[[TunnelForwarder], None]] = None,
    ) -> None:
        """Forward a local port until cancelled"""

        def operation(session: TransportSession) -> None:
            forwarder = TunnelForwarder(
                session, local_port, remote_host, remote_port, cancel=self.cancel,
            )
            forwarder.start()
            try:
                if on_ready:
                    on_ready(forwarder)
                forwarder.wait()
            finally:
                forwarder.stop()

        self._invoke(operation)

    # --------------------
    # Invocation skeleton
    # --------------------
    def _invoke(self, operation: Callable[[TransportSession], T]) -> T:
        opts = self.options
        self.lifecycle = InstanceLifecycle(
            self.provisioner,
            boot_timeout=opts.boot_timeout,
            poll_interval=opts.poll_interval,
            port=opts.credentials.port,
            keep=opts.keep,
            reachable=self.reachable,
            sleep=self._sleep,
            cancel=self.cancel,
        )
        try:
            instance = self._acquire(self.lifecycle)
            self.session = TransportSession(
                self.connector,
                instance.public_address,
                opts.credentials,
                retries=opts.connect_retries,
                backoff=opts.retry_backoff,
                sleep=self._sleep,
            )
            self.session.connect()
            try:
                return operation(self.session)
            finally:
                self.session.close()
        finally:
            self._teardown()

    def _acquire(self, lifecycle: InstanceLifecycle) -> Instance:
        opts = self.options
        launch_spec = opts.launch_spec
        if opts.prepare is not None:
            launch_spec = opts.prepare() or launch_spec

        if opts.reuse_instance_id:
            logger.info(f"Reusing instance {opts.reuse_instance_id}")
            try:
                return lifecycle.attach(opts.reuse_instance_id)
            except ProvisionError:
                if lifecycle.instance is None:
                    # gone for good; drop the stale record
                    self._forget_id(opts.reuse_instance_id)
                raise
        if launch_spec is None:
            raise ProvisionError(
                "Nothing to provision: no launch spec and no instance to reuse",
                kind=ProvisionError.Kind.FAILED,
            )
        return lifecycle.provision(launch_spec)

    def _teardown(self) -> None:
        lifecycle = self.lifecycle
        if lifecycle is None or lifecycle.instance is None:
            return
        instance = lifecycle.instance
        if self.options.keep:
            self._remember(instance)
            return
        try:
            lifecycle.terminate()
        except TeardownError as e:
            self.teardown_error = e
            logger.error(f"{e}. The instance may remain billable.")
            return
        self._forget_id(instance.id)

    def _remember(self, instance: Instance) -> None:
        if self.state_store is None:
            return
        record = {
            "instance_id": instance.id,
            "address": instance.public_address,
            "created_at": instance.launched_at,
            "instance_type": instance.instance_type,
            "name": instance.name,
            **self.options.cache_labels,
        }
        self.state_store.save(CACHED_INSTANCE_KEY, record)
        logger.info(f"Kept instance {instance.id}; remembered for reuse and teardown")

    def _forget_id(self, instance_id: str) -> None:
        if self.state_store is None:
            return
        cached = self.state_store.load(CACHED_INSTANCE_KEY)
        if cached and cached.get("instance_id") == instance_id:
            self.state_store.delete(CACHED_INSTANCE_KEY)

    # --------------------
    # Sync
    # --------------------
    def _scan(self, source: str, destination: Optional[str] = None) -> List[LocalEntry]:
        """Every check that needs only the local side, before anything is provisioned"""
        opts = self.options
        local = PathMapper(
            opts.workspace,
            None,
            local_home=opts.local_home,
            root_folder=opts.root_folder,
        ).check_local(source, destination)
        root = local if local.is_dir() else local.parent
        planner = SyncPlanner(self.ignore_factory(root))
        return planner.scan(local)

    def _sync(
        self,
        session: TransportSession,
        source: str,
        destination: Optional[str],
        entries: Optional[List[LocalEntry]],
    ) -> SyncPlan:
        mapper = PathMapper(
            self.options.workspace,
            session.remote_home(),
            local_home=self.options.local_home,
            root_folder=self.options.root_folder,
            is_remote_dir=session.is_remote_dir,
        )
        plan = SyncPlanner().plan(mapper, source, destination, entries=entries)
        PlanUploader(session, progress=self.progress).apply(plan)
        return plan

    @property
    def instance(self) -> Optional[Instance]:
        return self.lifecycle.instance if self.lifecycle else None
