import socket
import threading
import time

import pytest

from korasi.core.exceptions import TunnelError
from korasi.domain.session.models import ChannelKind
from korasi.domain.tunnel.forwarder import TunnelForwarder, parse_remote_address


def echo_remote(connection):
    """Tunnel channels backed by socket pairs, echoing like a remote service"""

    def factory(params):
        local_end, remote_end = socket.socketpair()

        def serve():
            with remote_end:
                while True:
                    try:
                        data = remote_end.recv(4096)
                    except OSError:
                        return
                    if not data:
                        return
                    remote_end.sendall(data)

        threading.Thread(target=serve, daemon=True).start()
        return local_end

    connection.tunnel_factory = factory


def round_trip(client, payload):
    client.sendall(payload)
    received = b""
    while len(received) < len(payload):
        chunk = client.recv(4096)
        if not chunk:
            break
        received += chunk
    return received


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture()
def forwarder(session, connector):
    echo_remote(connector.last)
    fwd = TunnelForwarder(session, 0, "localhost", 8888)
    fwd.start()
    try:
        yield fwd
    finally:
        fwd.stop()


def test_each_connection_gets_its_own_channel(forwarder, connector):
    address = forwarder.bound_address
    clients = [socket.create_connection(address, timeout=5) for _ in range(3)]
    try:
        for i, client in enumerate(clients):
            assert round_trip(client, f"ping {i}".encode()) == f"ping {i}".encode()

        tunnels = [p for kind, p in connector.last.opened if kind is ChannelKind.TUNNEL]
        assert len(tunnels) == 3
        assert all(p["remote_host"] == "localhost" and p["remote_port"] == 8888 for p in tunnels)
        assert forwarder.active_connections == 3
    finally:
        for client in clients:
            client.close()


def test_closing_one_connection_leaves_others_working(forwarder):
    address = forwarder.bound_address
    clients = [socket.create_connection(address, timeout=5) for _ in range(3)]
    try:
        for client in clients:
            assert round_trip(client, b"hello") == b"hello"

        clients[0].close()
        assert wait_for(lambda: forwarder.active_connections == 2)

        assert round_trip(clients[1], b"still") == b"still"
        assert round_trip(clients[2], b"here") == b"here"
    finally:
        for client in clients[1:]:
            client.close()


def test_stop_closes_all_channels(session, forwarder):
    client = socket.create_connection(forwarder.bound_address, timeout=5)
    try:
        assert round_trip(client, b"x") == b"x"
        forwarder.stop()
        assert not forwarder.is_running()
        assert client.recv(16) == b""
        assert wait_for(lambda: session.open_channels == 0)
    finally:
        client.close()


def test_bind_failure(session):
    blocker = socket.socket()
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    try:
        fwd = TunnelForwarder(session, blocker.getsockname()[1], "localhost", 80)
        with pytest.raises(TunnelError) as exc_info:
            fwd.start()
        assert exc_info.value.kind is TunnelError.Kind.BIND_FAILED
    finally:
        blocker.close()


@pytest.mark.parametrize("value,expected", [
    ("db.internal:5432", ("db.internal", 5432)),
    ("8888", ("localhost", 8888)),
    ("[::1]:22", ("::1", 22)),
])
def test_parse_remote_address(value, expected):
    assert parse_remote_address(value) == expected


def test_parse_remote_address_rejects_bad_port():
    with pytest.raises(ValueError):
        parse_remote_address("host:http")
