import stat
import sys
import threading
from pathlib import Path, PurePosixPath
from types import SimpleNamespace

# Allow running tests without installing the package.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from korasi.core.exceptions import ConnectError
from korasi.core.interfaces import Connection, Connector, Provisioner
from korasi.domain.instance.models import InstanceDescription, ProviderState
from korasi.domain.session.models import ChannelKind, Credentials
from korasi.domain.session.transport import TransportSession


# --------------------
# Remote side
# --------------------
class RemoteFS:
    """In-memory remote filesystem shared by every SFTP channel"""

    def __init__(self, home="/home/ubuntu"):
        self.home = home
        self.dirs = {"/", "/home", home}
        self.files = {}
        self.modes = {}
        self.puts = 0


class FakeSFTP:
    def __init__(self, fs, connection):
        self.fs = fs
        self.connection = connection
        self.closed = False

    def normalize(self, path):
        return self.fs.home if path == "." else path

    def stat(self, path):
        if path in self.fs.dirs:
            return SimpleNamespace(st_mode=stat.S_IFDIR | 0o755)
        if path in self.fs.files:
            return SimpleNamespace(st_mode=stat.S_IFREG | 0o644)
        raise FileNotFoundError(path)

    def mkdir(self, path):
        parent = str(PurePosixPath(path).parent)
        if parent not in self.fs.dirs:
            raise FileNotFoundError(parent)
        self.fs.dirs.add(path)

    def put(self, local, remote):
        if self.connection.drop_on_put:
            self.connection.drop_on_put -= 1
            self.connection.alive = False
            raise EOFError("connection dropped")
        parent = str(PurePosixPath(remote).parent)
        if parent not in self.fs.dirs:
            raise FileNotFoundError(parent)
        self.fs.files[remote] = Path(local).read_bytes()
        self.fs.puts += 1

    def chmod(self, path, mode):
        self.fs.modes[path] = mode

    def close(self):
        self.closed = True


class FakeExecChannel:
    """Exec channel of a command that already finished"""

    def __init__(self, command, stdout=b"", stderr=b"", status=0):
        self.command = command
        self._stdout = [stdout] if stdout else []
        self._stderr = [stderr] if stderr else []
        self.status = status
        self.closed = False
        self.sent = b""
        self.write_shut = False
        self.status_event = threading.Event()
        self.status_event.set()

    def recv(self, size):
        return self._stdout.pop(0) if self._stdout else b""

    def recv_stderr(self, size):
        return self._stderr.pop(0) if self._stderr else b""

    def exit_status_ready(self):
        return True

    def recv_exit_status(self):
        return self.status

    def sendall(self, data):
        self.sent += data

    def shutdown_write(self):
        self.write_shut = True

    def close(self):
        self.closed = True


class FakeConnection(Connection):
    def __init__(self, fs, exec_result=(b"", b"", 0)):
        self.fs = fs
        self.exec_result = exec_result
        self.alive = True
        self.closed = False
        self.opened = []
        self.signals = []
        self.fail_open = None
        self.drop_on_put = 0
        self.tunnel_factory = None

    def open_channel(self, kind, params):
        if self.fail_open is not None:
            error, self.fail_open = self.fail_open, None
            self.alive = False
            raise error
        self.opened.append((kind, params))
        if kind is ChannelKind.EXEC:
            stdout, stderr, status = self.exec_result
            return FakeExecChannel(params["command"], stdout, stderr, status)
        if kind is ChannelKind.FILE_TRANSFER:
            return FakeSFTP(self.fs, self)
        if kind is ChannelKind.TUNNEL:
            return self.tunnel_factory(params)
        raise NotImplementedError(kind)

    def is_alive(self):
        return self.alive and not self.closed

    def send_signal(self, channel, name):
        self.signals.append(name)

    def close(self):
        self.closed = True


class FakeConnector(Connector):
    def __init__(self, fs, exec_result=(b"", b"", 0)):
        self.fs = fs
        self.exec_result = exec_result
        self.failures = []
        self.connections = []
        self.calls = 0

    def connect(self, address, credentials):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        connection = FakeConnection(self.fs, self.exec_result)
        self.connections.append(connection)
        return connection

    @property
    def last(self):
        return self.connections[-1]


class FakeProvisioner(Provisioner):
    def __init__(self, descriptions=None, address="203.0.113.10"):
        self.address = address
        self.descriptions = list(descriptions or [])
        self.launched = []
        self.tags = []
        self.described = 0
        self.terminated = []
        self.terminate_error = None

    def launch(self, spec):
        self.launched.append(spec)
        return f"i-{len(self.launched):04d}"

    def describe(self, instance_id):
        self.described += 1
        if self.descriptions:
            return self.descriptions.pop(0)
        return InstanceDescription(ProviderState.RUNNING, self.address)

    def terminate(self, instance_id):
        self.terminated.append(instance_id)
        if self.terminate_error is not None:
            raise self.terminate_error

    def tag(self, instance_id, labels):
        self.tags.append((instance_id, dict(labels)))


def unreachable():
    return ConnectError("no route", kind=ConnectError.Kind.UNREACHABLE)


# --------------------
# Fixtures
# --------------------
@pytest.fixture()
def remote_fs():
    return RemoteFS()


@pytest.fixture()
def connector(remote_fs):
    return FakeConnector(remote_fs)


@pytest.fixture()
def provisioner():
    return FakeProvisioner()


@pytest.fixture()
def credentials():
    return Credentials(user="ubuntu", key_path="/tmp/key.pem")


@pytest.fixture()
def session(connector, credentials):
    s = TransportSession(connector, "203.0.113.10", credentials, retries=2, sleep=lambda _: None)
    s.connect()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def local_home(tmp_path):
    home = tmp_path / "home" / "user"
    home.mkdir(parents=True)
    return home


@pytest.fixture()
def workspace(local_home):
    ws = local_home / "proj"
    (ws / "src" / "abc").mkdir(parents=True)
    (ws / "src" / "abc" / "test.txt").write_text("hello\n")
    (ws / "src" / "main.py").write_text("print('hi')\n")
    (ws / "output.txt").write_text("result\n")
    return ws
