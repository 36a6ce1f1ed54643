"""
Local TCP port forwarding over tunnel channels

A listening socket on the local machine; every client it accepts is paired
with a fresh tunnel channel to ``remote_host:remote_port`` as seen from
the instance. Pairs are independent: one closing does not disturb the rest.
"""
import select
import socket
import threading
from typing import Any, Dict, Optional, Tuple

import paramiko

from ...core.constants import CHANNEL_BUFFER_SIZE
from ...core.exceptions import ConnectError, TunnelError
from ...core.logging import get_logger

logger = get_logger(__name__)

ACCEPT_POLL = 1.0
PUMP_POLL = 0.5
LISTEN_BACKLOG = 64


class TunnelForwarder:
    """Forward one local port to a fixed address behind the instance"""

    def __init__(
        self,
        session: Any,
        local_port: int,
        remote_host: str,
        remote_port: int,
        local_host: str = "127.0.0.1",
        cancel: Optional[threading.Event] = None,
    ):
        """
        Args:
            session: TransportSession that opens the tunnel channels
            local_port: Port to listen on; 0 lets the OS pick one
            remote_host: Target host, resolved on the instance
            remote_port: Target port
            local_host: Interface to listen on
            cancel: Shared cancellation event; setting it ends ``wait``
        """
        self.session = session
        self.local_host = local_host
        self.local_port = local_port
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.cancel = cancel or threading.Event()

        self._listener: Optional[socket.socket] = None
        self._stopped = threading.Event()
        self._stopped.set()
        self._accept_thread: Optional[threading.Thread] = None
        # pair id -> (client socket, tunnel channel, pump thread)
        self._pairs: Dict[int, Tuple[socket.socket, Any, threading.Thread]] = {}
        self._pair_ids = 0
        self._guard = threading.Lock()

    @property
    def target(self) -> str:
        return f"{self.remote_host}:{self.remote_port}"

    def start(self) -> Tuple[str, int]:
        """
        Bind the listener and begin accepting clients.

        Returns:
            The address actually bound

        Raises:
            TunnelError: BIND_FAILED when the local address is unavailable
        """
        with self._guard:
            if not self._stopped.is_set():
                raise RuntimeError(f"Forwarder to {self.target} already started")
            self._listener = self._bind()
            self._stopped.clear()

        host, port = self.bound_address
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name=f"tunnel-accept-{port}", daemon=True
        )
        self._accept_thread.start()
        logger.info(f"Forwarding {host}:{port} -> {self.target}")
        return host, port

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.local_host, self.local_port))
            sock.listen(LISTEN_BACKLOG)
        except OSError as e:
            sock.close()
            raise TunnelError(
                f"Cannot listen on {self.local_host}:{self.local_port}: {e.strerror or e}",
                kind=TunnelError.Kind.BIND_FAILED,
            ) from e
        sock.settimeout(ACCEPT_POLL)
        return sock

    @property
    def bound_address(self) -> Tuple[str, int]:
        listener = self._listener
        if listener is None:
            return self.local_host, self.local_port
        name = listener.getsockname()
        return name[0], name[1]

    @property
    def active_connections(self) -> int:
        with self._guard:
            return len(self._pairs)

    def is_running(self) -> bool:
        return not self._stopped.is_set()

    def wait(self) -> None:
        """Serve until the cancel event fires, then stop"""
        while self.is_running():
            if self.cancel.wait(PUMP_POLL):
                break
        self.stop()

    def stop(self) -> None:
        """Close the listener and every open pair; safe to call twice"""
        with self._guard:
            if self._stopped.is_set():
                return
            self._stopped.set()
            listener, self._listener = self._listener, None
            pairs = list(self._pairs.values())

        if listener is not None:
            listener.close()
        for client, chan, _ in pairs:
            _shutdown(client)
            _close(chan)

        me = threading.current_thread()
        threads = [self._accept_thread] + [thread for _, _, thread in pairs]
        for thread in threads:
            if thread is not None and thread is not me and thread.is_alive():
                thread.join(timeout=2.0 if thread is self._accept_thread else PUMP_POLL)
        logger.info(f"Tunnel to {self.target} stopped")

    def _accept_loop(self) -> None:
        while self.is_running() and not self.cancel.is_set():
            listener = self._listener
            if listener is None:
                return
            try:
                client, peer = listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.is_running():
                    logger.error(f"Accept on {self.bound_address} failed: {e}")
                return
            threading.Thread(
                target=self._serve_client,
                args=(client, peer),
                name=f"tunnel-pump-{peer[1]}",
                daemon=True,
            ).start()

    def _serve_client(self, client: socket.socket, peer: Tuple[str, int]) -> None:
        client.settimeout(None)
        try:
            chan = self.session.open_tunnel(self.remote_host, self.remote_port, origin=peer[:2])
        except (TunnelError, ConnectError) as e:
            logger.warning(f"No tunnel channel for {peer[0]}:{peer[1]}: {e}")
            _close(client)
            return

        with self._guard:
            pair_id = self._pair_ids
            self._pair_ids += 1
            self._pairs[pair_id] = (client, chan, threading.current_thread())
        logger.debug(f"Pair {pair_id} open for {peer[0]}:{peer[1]}")

        try:
            self._pump(client, chan)
        finally:
            with self._guard:
                self._pairs.pop(pair_id, None)
            _close(client)
            self.session.release(chan)
            logger.debug(f"Pair {pair_id} closed")

    def _pump(self, client: socket.socket, chan: Any) -> None:
        """
        Copy bytes both ways until either end reaches EOF.

        Sockets and paramiko channels are both selectable, so a single
        select() waits on the two directions at once.
        """
        routes = {client: (client.recv, chan.sendall), chan: (chan.recv, client.sendall)}
        while self.is_running():
            try:
                ready, _, _ = select.select(list(routes), [], [], PUMP_POLL)
            except (OSError, ValueError):
                return
            for end in ready:
                recv, send = routes[end]
                if not _relay(recv, send):
                    return


def parse_remote_address(value: str) -> Tuple[str, int]:
    """
    Parse ``host:port``, ``[v6]:port`` or a bare port (meaning localhost).

    Raises:
        ValueError: If the port is missing or out of range
    """
    host, sep, port_text = value.rpartition(":")
    if not sep:
        host, port_text = "localhost", value
    host = host.strip("[]") or "localhost"
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid remote address {value!r}, expected host:port") from None
    if not (1 <= port <= 65535):
        raise ValueError(f"Invalid remote port: {port}")
    return host, port


def _relay(recv, send) -> bool:
    try:
        data = recv(CHANNEL_BUFFER_SIZE)
    except (OSError, EOFError, paramiko.SSHException):
        return False
    if not data:
        return False
    try:
        send(data)
    except (OSError, EOFError, paramiko.SSHException):
        return False
    return True


def _shutdown(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


def _close(resource: Any) -> None:
    try:
        resource.close()
    except (OSError, EOFError, paramiko.SSHException) as e:
        logger.debug(f"Ignoring close error: {e}")
