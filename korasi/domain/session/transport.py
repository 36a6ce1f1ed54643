"""
Transport session: one authenticated connection, many channels

The connector's transport thread is the only reader of the socket: it
demultiplexes incoming frames by channel id into per-channel buffers and
serializes writes, with per-channel flow-control windows so no channel
starves another. This class owns that connection for one invocation and
enforces when channels may be opened.
"""
import stat
import threading
import time
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, Optional, Set

from ...core.constants import (
    DEFAULT_CONNECT_RETRIES,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_TERM,
    MAX_RETRY_BACKOFF,
)
from ...core.exceptions import ConnectError
from ...core.interfaces import Connection, Connector
from ...core.logging import get_logger
from ...core.utils import backoff_delay
from .models import ChannelKind, Credentials, SessionState

logger = get_logger(__name__)

# Opening these channels has no remote side effect, so a failed open may be
# repeated after a reconnect. Exec channels are never reopened.
_REOPENABLE = frozenset({ChannelKind.SHELL, ChannelKind.FILE_TRANSFER, ChannelKind.TUNNEL})
_RETRYABLE = frozenset({ConnectError.Kind.UNREACHABLE, ConnectError.Kind.HANDSHAKE_FAILED})


class TransportSession:
    """
    One secure connection to an instance.

    Channels may only be opened while the session is READY. A lost connection
    moves the session to DEGRADED while a bounded number of reconnects with
    exponential backoff is tried; it ends READY again or CLOSED.
    """

    def __init__(
        self,
        connector: Connector,
        address: str,
        credentials: Credentials,
        retries: int = DEFAULT_CONNECT_RETRIES,
        backoff: float = DEFAULT_RETRY_BACKOFF,
        max_backoff: float = MAX_RETRY_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize session.

        Args:
            connector: Secure transport connector
            address: Host name or IP of the instance
            credentials: Login credentials
            retries: Extra connection attempts after a transient failure
            backoff: Delay before the first retry, doubled each attempt
            max_backoff: Upper bound for a single delay
            sleep: Sleep function, replaceable in tests
        """
        self.connector = connector
        self.address = address
        self.credentials = credentials
        self.retries = retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self._sleep = sleep

        self.state = SessionState.CONNECTING
        self._connection: Optional[Connection] = None
        self._channels: Set[Any] = set()
        self._lock = threading.RLock()
        self._remote_home: Optional[PurePosixPath] = None

    # --------------------
    # Connection management
    # --------------------
    def connect(self) -> "TransportSession":
        """
        Establish the connection.

        Raises:
            ConnectError: AUTH_REJECTED immediately, other kinds once retries
                are exhausted
        """
        with self._lock:
            if self.state is SessionState.READY:
                return self
            self.state = SessionState.CONNECTING
            try:
                self._establish()
            except ConnectError:
                self.state = SessionState.CLOSED
                raise
        return self

    def _establish(self) -> None:
        attempt = 0
        while True:
            try:
                self._connection = self.connector.connect(self.address, self.credentials)
                self.state = SessionState.READY
                logger.info(f"Connected to {self.credentials.user}@{self.address}")
                return
            except ConnectError as e:
                if e.kind not in _RETRYABLE or attempt >= self.retries:
                    raise
                delay = backoff_delay(attempt, self.backoff, self.max_backoff)
                attempt += 1
                logger.warning(
                    f"Connection to {self.address} failed ({e}); "
                    f"retry {attempt}/{self.retries} in {delay:.0f}s"
                )
                self._sleep(delay)

    def is_alive(self) -> bool:
        """Check whether the session holds a live connection"""
        with self._lock:
            return (
                self.state is SessionState.READY
                and self._connection is not None
                and self._connection.is_alive()
            )

    def ensure_ready(self) -> None:
        """
        Make sure the connection is up, reconnecting if it was lost.

        Raises:
            ConnectError: If the session is closed or reconnecting failed
        """
        with self._lock:
            if self.state is SessionState.CLOSED:
                raise ConnectError(
                    "Session is closed",
                    kind=ConnectError.Kind.CONNECTION_LOST,
                )
            if self._connection is not None and self._connection.is_alive():
                return

            self.state = SessionState.DEGRADED
            logger.warning(f"Connection to {self.address} lost, reconnecting")
            self._discard_channels()
            if self._connection is not None:
                self._release_connection()
            try:
                self._establish()
            except ConnectError as e:
                self.state = SessionState.CLOSED
                raise ConnectError(
                    f"Could not reconnect to {self.address}: {e}",
                    kind=ConnectError.Kind.UNREACHABLE,
                ) from e

    # --------------------
    # Channels
    # --------------------
    def open_channel(self, kind: ChannelKind, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Open and track a channel.

        Args:
            kind: Channel kind
            params: Kind-specific parameters for the connection

        Returns:
            The channel object of the connection

        Raises:
            ConnectError: If the session is not READY and cannot be restored
        """
        params = params or {}
        self.ensure_ready()
        try:
            channel = self._open(kind, params)
        except ConnectError as e:
            if kind not in _REOPENABLE or self.is_alive():
                raise
            logger.info(f"Reopening {kind.value} channel after connection loss ({e})")
            self.ensure_ready()
            channel = self._open(kind, params)
        return channel

    def _open(self, kind: ChannelKind, params: Dict[str, Any]) -> Any:
        with self._lock:
            if self.state is not SessionState.READY or self._connection is None:
                raise ConnectError(
                    f"Cannot open a {kind.value} channel while session is {self.state.value}",
                    kind=ConnectError.Kind.CONNECTION_LOST,
                )
            connection = self._connection
        channel = connection.open_channel(kind, params)
        with self._lock:
            self._channels.add(channel)
        logger.debug(f"Opened {kind.value} channel")
        return channel

    def open_exec(
        self,
        command: str,
        pty: bool = False,
        term: str = DEFAULT_TERM,
        width: int = 80,
        height: int = 24,
    ) -> Any:
        """Open an exec channel running a command"""
        return self.open_channel(ChannelKind.EXEC, {
            "command": command,
            "pty": pty,
            "term": term,
            "width": width,
            "height": height,
        })

    def open_shell(self, term: str = DEFAULT_TERM, width: int = 80, height: int = 24) -> Any:
        """Open an interactive pseudo-terminal channel"""
        return self.open_channel(ChannelKind.SHELL, {"term": term, "width": width, "height": height})

    def open_file_transfer(self) -> Any:
        """Open a file-transfer (SFTP) channel"""
        return self.open_channel(ChannelKind.FILE_TRANSFER)

    def open_tunnel(self, remote_host: str, remote_port: int, origin: tuple = ("127.0.0.1", 0)) -> Any:
        """Open a tunnel channel to a remote address"""
        return self.open_channel(ChannelKind.TUNNEL, {
            "remote_host": remote_host,
            "remote_port": remote_port,
            "origin": origin,
        })

    def release(self, channel: Any) -> None:
        """Close one channel and stop tracking it; siblings are untouched"""
        with self._lock:
            self._channels.discard(channel)
        _close_quietly(channel)

    def send_signal(self, channel: Any, name: str) -> None:
        """Best-effort signal delivery to a channel's remote process"""
        with self._lock:
            connection = self._connection
        if connection is None:
            return
        try:
            connection.send_signal(channel, name)
        except Exception as e:
            logger.debug(f"Signal {name} not delivered: {e}")

    @property
    def open_channels(self) -> int:
        with self._lock:
            return len(self._channels)

    # --------------------
    # Remote helpers
    # --------------------
    def remote_home(self) -> PurePosixPath:
        """Home directory of the remote user"""
        if self._remote_home is None:
            sftp = self.open_file_transfer()
            try:
                self._remote_home = PurePosixPath(sftp.normalize("."))
            finally:
                self.release(sftp)
        return self._remote_home

    def is_remote_dir(self, path: PurePosixPath) -> bool:
        """Read-only check that a remote path is an existing directory"""
        sftp = self.open_file_transfer()
        try:
            attrs = sftp.stat(str(path))
        except FileNotFoundError:
            return False
        finally:
            self.release(sftp)
        return stat.S_ISDIR(attrs.st_mode or 0)

    # --------------------
    # Shutdown
    # --------------------
    def close(self) -> None:
        """Close every open channel, then release the connection"""
        with self._lock:
            if self.state is SessionState.CLOSED and self._connection is None:
                return
            self._discard_channels()
            if self._connection is not None:
                self._release_connection()
            self.state = SessionState.CLOSED
        logger.debug(f"Session to {self.address} closed")

    def _discard_channels(self) -> None:
        channels = list(self._channels)
        self._channels.clear()
        for channel in channels:
            _close_quietly(channel)

    def _release_connection(self) -> None:
        connection, self._connection = self._connection, None
        _close_quietly(connection)

    def __enter__(self) -> "TransportSession":
        return self.connect()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


def _close_quietly(resource: Any) -> None:
    try:
        resource.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing {type(resource).__name__}: {e}")
