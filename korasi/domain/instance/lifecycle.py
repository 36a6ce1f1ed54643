"""
Instance lifecycle controller

PROVISIONING -> BOOTING -> READY -> TERMINATING -> TERMINATED

Once an instance id exists, termination is attempted exactly once, whatever
happens afterwards, unless the caller asked to keep the instance.
"""
import socket
import threading
import time
from typing import Callable, Dict, Optional

from ...core.constants import (
    DEFAULT_BOOT_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SSH_PORT,
)
from ...core.exceptions import KorasiError, ProvisionError, TeardownError
from ...core.interfaces import Provisioner
from ...core.logging import get_logger
from .models import Instance, InstanceState, LaunchSpec, ProviderState

logger = get_logger(__name__)


def port_open(address: str, port: int, timeout: float = 3.0) -> bool:
    """Check that a TCP port accepts connections"""
    try:
        with socket.create_connection((address, port), timeout=timeout):
            return True
    except OSError:
        return False


class InstanceLifecycle:
    """
    Drive one instance through its lifecycle.

    Polling is strictly sequential: one describe at a time, and never a
    second launch for the same controller.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        boot_timeout: float = DEFAULT_BOOT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        port: int = DEFAULT_SSH_PORT,
        keep: bool = False,
        reachable: Callable[[str, int], bool] = port_open,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize lifecycle controller.

        Args:
            provisioner: Provisioning API
            boot_timeout: Seconds to wait for the instance to become reachable
            poll_interval: Seconds between describe calls
            port: Port that must accept connections before READY
            keep: Skip termination
            reachable: Reachability check for (address, port)
            clock: Monotonic clock, replaceable in tests
            sleep: Sleep function, replaceable in tests
            cancel: Shared cancellation event that aborts the boot wait
        """
        self.provisioner = provisioner
        self.boot_timeout = boot_timeout
        self.poll_interval = poll_interval
        self.port = port
        self.keep = keep
        self.reachable = reachable
        self._clock = clock
        self._sleep = sleep
        self.cancel = cancel or threading.Event()

        self.instance: Optional[Instance] = None
        self._terminate_attempted = False
        self._lock = threading.Lock()

    @property
    def state(self) -> Optional[InstanceState]:
        return self.instance.state if self.instance else None

    def provision(self, spec: LaunchSpec) -> Instance:
        """
        Launch an instance and wait until it is reachable.

        Args:
            spec: Launch request

        Returns:
            The READY instance

        Raises:
            ProvisionError: If launching, tagging or booting fails
        """
        if self.instance is not None:
            raise RuntimeError("An instance was already provisioned by this controller")
        spec.validate()

        logger.info(f"Launching {spec.instance_type} instance from {spec.image_id}")
        instance_id = self.provisioner.launch(spec)
        self.instance = Instance(
            id=instance_id,
            state=InstanceState.PROVISIONING,
            instance_type=spec.instance_type,
            name=spec.name,
        )
        logger.info(f"Instance {instance_id} requested")

        labels: Dict[str, str] = dict(spec.labels)
        if spec.name:
            labels.setdefault("Name", spec.name)
        if labels:
            self.provisioner.tag(instance_id, labels)

        self._wait_ready()
        return self.instance

    def attach(self, instance_id: str) -> Instance:
        """
        Adopt an existing instance, typically one kept by an earlier run.

        Unlike a fresh launch, an id the provider does not know is final.
        The controller then owns nothing, so there is nothing to terminate.

        Raises:
            ProvisionError: TERMINATED_EARLY if it is gone, TIMEOUT if it does
                not become reachable
        """
        if self.instance is not None:
            raise RuntimeError("An instance was already provisioned by this controller")
        self.instance = Instance(id=instance_id, state=InstanceState.PROVISIONING)
        try:
            self._wait_ready(adopted=True)
        except ProvisionError as e:
            if e.kind is ProvisionError.Kind.TERMINATED_EARLY:
                self.instance = None
            raise
        return self.instance

    def _wait_ready(self, adopted: bool = False) -> None:
        instance = self.instance
        instance.state = InstanceState.BOOTING
        deadline = self._clock() + self.boot_timeout
        logger.info(f"Waiting for {instance.id} to accept connections on port {self.port}")

        while True:
            description = self.provisioner.describe(instance.id)
            if description.state.is_gone or (adopted and description.state is ProviderState.MISSING):
                if adopted:
                    raise ProvisionError(
                        f"Instance {instance.id} is {description.state.value} and cannot be reused",
                        kind=ProvisionError.Kind.TERMINATED_EARLY,
                        hint="the kept instance is gone; run without --reuse to launch a new one",
                    )
                raise ProvisionError(
                    f"Instance {instance.id} is {description.state.value} while booting",
                    kind=ProvisionError.Kind.TERMINATED_EARLY,
                )
            if adopted and description.state in (ProviderState.STOPPING, ProviderState.STOPPED):
                raise ProvisionError(
                    f"Instance {instance.id} is {description.state.value}",
                    kind=ProvisionError.Kind.FAILED,
                    hint=f"start it with 'korasi start {instance.id}' and retry",
                )
            if description.address:
                instance.public_address = description.address
            if (
                description.state is ProviderState.RUNNING
                and description.address
                and self.reachable(description.address, self.port)
            ):
                instance.state = InstanceState.READY
                logger.info(f"Instance {instance.id} ready at {description.address}")
                return

            if self.cancel.is_set():
                raise KeyboardInterrupt
            if self._clock() >= deadline:
                raise ProvisionError(
                    f"Instance {instance.id} not reachable after {self.boot_timeout:.0f}s "
                    f"(last state: {description.state.value})",
                    kind=ProvisionError.Kind.TIMEOUT,
                )
            self._sleep(self.poll_interval)

    def terminate(self) -> bool:
        """
        Terminate the instance, at most once.

        Returns:
            True if a termination request was issued by this call

        Raises:
            TeardownError: If the provisioner failed to terminate it
        """
        with self._lock:
            if self.instance is None or self._terminate_attempted:
                return False
            self._terminate_attempted = True
            instance = self.instance

        if self.keep:
            logger.info(f"Keeping instance {instance.id}")
            return False

        instance.state = InstanceState.TERMINATING
        logger.info(f"Terminating instance {instance.id}")
        try:
            self.provisioner.terminate(instance.id)
        except KorasiError as e:
            raise TeardownError(
                f"Failed to terminate instance {instance.id}: {e}",
            ) from e
        instance.state = InstanceState.TERMINATED
        return True

    def __enter__(self) -> "InstanceLifecycle":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        try:
            self.terminate()
        except TeardownError as e:
            if exc_type is None:
                raise
            logger.error(f"{e} (while handling {exc_type.__name__})")
