"""
Paramiko implementation of the secure transport
"""
from __future__ import annotations

import socket
from pathlib import Path
from typing import Any, Dict, Optional

import paramiko
from paramiko.common import cMSG_CHANNEL_REQUEST

from ...core.exceptions import ConnectError, TunnelError
from ...core.interfaces import Connection, Connector
from ...core.logging import get_logger
from ...domain.session.models import ChannelKind, Credentials

logger = get_logger(__name__)


class ParamikoConnection(Connection):
    """
    Wrap a connected paramiko SSHClient.

    Every channel is opened on the client's single Transport, whose reader
    thread demultiplexes incoming packets into per-channel buffers.
    """

    def __init__(self, client: paramiko.SSHClient):
        self.client = client

    @property
    def transport(self) -> paramiko.Transport:
        transport = self.client.get_transport()
        if transport is None or not transport.is_active():
            raise ConnectError("SSH transport not available", kind=ConnectError.Kind.CONNECTION_LOST)
        return transport

    def is_alive(self) -> bool:
        transport = self.client.get_transport()
        return transport is not None and transport.is_active()

    def open_channel(self, kind: ChannelKind, params: Dict[str, Any]) -> Any:
        try:
            if kind is ChannelKind.EXEC:
                return self._open_exec(params)
            if kind is ChannelKind.SHELL:
                return self._open_shell(params)
            if kind is ChannelKind.FILE_TRANSFER:
                return paramiko.SFTPClient.from_transport(self.transport)
            if kind is ChannelKind.TUNNEL:
                return self._open_tunnel(params)
        except paramiko.ChannelException as e:
            if kind is ChannelKind.TUNNEL:
                raise TunnelError(
                    f"Server refused tunnel to {params['remote_host']}:{params['remote_port']}: {e.text}",
                    kind=TunnelError.Kind.CHANNEL_REFUSED,
                ) from e
            raise ConnectError(
                f"Server refused {kind.value} channel: {e.text}",
                kind=ConnectError.Kind.CONNECTION_LOST,
            ) from e
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise ConnectError(
                f"Failed to open {kind.value} channel: {e}",
                kind=ConnectError.Kind.CONNECTION_LOST,
            ) from e
        raise ValueError(f"Unsupported channel kind: {kind}")

    def _open_exec(self, params: Dict[str, Any]) -> paramiko.Channel:
        chan = self.transport.open_session()
        if params.get("pty"):
            chan.get_pty(
                term=params.get("term", "xterm"),
                width=params.get("width", 80),
                height=params.get("height", 24),
            )
        chan.exec_command(params["command"])
        return chan

    def _open_shell(self, params: Dict[str, Any]) -> paramiko.Channel:
        chan = self.transport.open_session()
        chan.get_pty(
            term=params.get("term", "xterm"),
            width=params.get("width", 80),
            height=params.get("height", 24),
        )
        chan.invoke_shell()
        return chan

    def _open_tunnel(self, params: Dict[str, Any]) -> paramiko.Channel:
        return self.transport.open_channel(
            'direct-tcpip',
            (params["remote_host"], params["remote_port"]),
            tuple(params.get("origin", ("127.0.0.1", 0))),
        )

    def send_signal(self, channel: Any, name: str) -> None:
        """
        Send an RFC 4254 ``signal`` channel request.

        Paramiko has no public API for it and OpenSSH servers only honour it
        from 7.9 on, so this stays best effort.
        """
        if not isinstance(channel, paramiko.Channel) or channel.closed:
            return
        m = paramiko.Message()
        m.add_byte(cMSG_CHANNEL_REQUEST)
        m.add_int(channel.remote_chanid)
        m.add_string("signal")
        m.add_boolean(False)
        m.add_string(name)
        self.transport._send_user_message(m)

    def close(self) -> None:
        self.client.close()


class ParamikoConnector(Connector):
    """Connect with paramiko, mapping failures onto ConnectError kinds"""

    def __init__(self, known_hosts: Optional[Path] = None):
        self.known_hosts = known_hosts

    def connect(self, address: str, credentials: Credentials) -> ParamikoConnection:
        client = paramiko.SSHClient()
        if self.known_hosts and Path(self.known_hosts).expanduser().exists():
            client.load_host_keys(str(Path(self.known_hosts).expanduser()))
        # fresh instances always present an unknown host key
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        kwargs: Dict[str, Any] = {
            "hostname": address,
            "port": credentials.port,
            "username": credentials.user,
            "timeout": credentials.timeout,
            "banner_timeout": credentials.timeout,
            "auth_timeout": credentials.timeout,
        }
        if credentials.key_path:
            kwargs["pkey"] = load_private_key(credentials.key_path)
            kwargs["look_for_keys"] = False
        elif credentials.password:
            kwargs["password"] = credentials.password
            kwargs["look_for_keys"] = False

        try:
            client.connect(**kwargs)
        except paramiko.AuthenticationException as e:
            client.close()
            raise ConnectError(
                f"Authentication rejected for {credentials.user}@{address}: {e}",
                kind=ConnectError.Kind.AUTH_REJECTED,
            ) from e
        except (paramiko.SSHException, EOFError) as e:
            client.close()
            raise ConnectError(
                f"SSH handshake with {address} failed: {e}",
                kind=ConnectError.Kind.HANDSHAKE_FAILED,
            ) from e
        except (socket.timeout, OSError) as e:
            client.close()
            raise ConnectError(
                f"Cannot reach {address}:{credentials.port}: {e}",
                kind=ConnectError.Kind.UNREACHABLE,
            ) from e

        transport = client.get_transport()
        if transport is not None:
            transport.set_keepalive(15)
        return ParamikoConnection(client)


def load_private_key(path: str) -> paramiko.PKey:
    """Load an Ed25519, RSA or ECDSA private key"""
    p = Path(path).expanduser()
    errors = []
    for key_class in (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey):
        try:
            return key_class.from_private_key_file(str(p))
        except paramiko.PasswordRequiredException as e:
            raise ConnectError(
                f"Private key {p} is encrypted",
                kind=ConnectError.Kind.AUTH_REJECTED,
                hint="use an unencrypted key or load it into ssh-agent",
            ) from e
        except (paramiko.SSHException, ValueError) as e:
            errors.append(f"{key_class.__name__}: {e}")
        except OSError as e:
            raise ConnectError(
                f"Cannot read private key {p}: {e}",
                kind=ConnectError.Kind.AUTH_REJECTED,
                hint="pass --key with the path of the instance key pair",
            ) from e
    raise ConnectError(
        f"Failed to load private key at {p} ({'; '.join(errors)})",
        kind=ConnectError.Kind.AUTH_REJECTED,
    )
