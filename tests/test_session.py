from pathlib import PurePosixPath

import pytest

from korasi.core.exceptions import ConnectError
from korasi.domain.session.models import ChannelKind, SessionState
from korasi.domain.session.transport import TransportSession

from conftest import unreachable


def make_session(connector, credentials, retries=3, delays=None):
    sleep = delays.append if delays is not None else (lambda _: None)
    return TransportSession(connector, "203.0.113.10", credentials, retries=retries, backoff=2.0, sleep=sleep)


def test_transient_failures_are_retried_with_backoff(connector, credentials):
    connector.failures = [unreachable(), unreachable()]
    delays = []
    session = make_session(connector, credentials, delays=delays)

    session.connect()

    assert session.state is SessionState.READY
    assert connector.calls == 3
    assert delays == [2.0, 4.0]


def test_retries_are_bounded(connector, credentials):
    connector.failures = [unreachable() for _ in range(5)]
    session = make_session(connector, credentials, retries=2)

    with pytest.raises(ConnectError) as exc_info:
        session.connect()
    assert exc_info.value.kind is ConnectError.Kind.UNREACHABLE
    assert connector.calls == 3
    assert session.state is SessionState.CLOSED


def test_rejected_credentials_are_not_retried(connector, credentials):
    connector.failures = [ConnectError("denied", kind=ConnectError.Kind.AUTH_REJECTED)]
    session = make_session(connector, credentials)

    with pytest.raises(ConnectError) as exc_info:
        session.connect()
    assert exc_info.value.kind is ConnectError.Kind.AUTH_REJECTED
    assert connector.calls == 1


def test_closed_session_refuses_channels(session):
    session.close()
    assert session.state is SessionState.CLOSED
    with pytest.raises(ConnectError):
        session.open_exec("true")


def test_channels_share_one_connection(session, connector):
    session.open_exec("true")
    session.open_file_transfer()
    session.open_exec("false")

    assert connector.calls == 1
    assert [kind for kind, _ in connector.last.opened] == [
        ChannelKind.EXEC, ChannelKind.FILE_TRANSFER, ChannelKind.EXEC,
    ]
    assert session.open_channels == 3


def test_close_closes_channels_before_connection(session, connector):
    channels = [session.open_exec("sleep 10"), session.open_file_transfer()]
    connection = connector.last

    session.close()

    assert all(c.closed for c in channels)
    assert connection.closed
    assert session.open_channels == 0


def test_release_leaves_siblings_open(session):
    first = session.open_exec("a")
    second = session.open_exec("b")

    session.release(first)

    assert first.closed and not second.closed
    assert session.open_channels == 1


def test_file_transfer_reopened_after_connection_loss(session, connector):
    connector.last.fail_open = ConnectError("eof", kind=ConnectError.Kind.CONNECTION_LOST)

    sftp = session.open_file_transfer()

    assert sftp is not None
    assert connector.calls == 2
    assert session.state is SessionState.READY


def test_exec_channel_is_not_reopened(session, connector):
    connector.last.fail_open = ConnectError("eof", kind=ConnectError.Kind.CONNECTION_LOST)

    with pytest.raises(ConnectError):
        session.open_exec("make deploy")
    assert connector.calls == 1


def test_remote_home_and_directory_check(session, remote_fs):
    remote_fs.dirs.add("/home/ubuntu/dst")
    remote_fs.files["/home/ubuntu/file"] = b""

    assert session.remote_home() == PurePosixPath("/home/ubuntu")
    assert session.is_remote_dir(PurePosixPath("/home/ubuntu/dst"))
    assert not session.is_remote_dir(PurePosixPath("/home/ubuntu/file"))
    assert not session.is_remote_dir(PurePosixPath("/home/ubuntu/missing"))
    assert session.open_channels == 0
