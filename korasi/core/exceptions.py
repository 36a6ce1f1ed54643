"""
Unified exception definitions

Every error carries a ``kind`` and a remediation ``hint`` shown to the user,
plus the process exit code the CLI terminates with.
"""
from enum import Enum
from typing import Dict, Optional

from .constants import (
    EXIT_CONFIG_FAILED,
    EXIT_CONNECT_FAILED,
    EXIT_PROVISION_FAILED,
    EXIT_SYNC_FAILED,
    EXIT_TUNNEL_FAILED,
    EXIT_UNEXPECTED,
)


class KorasiError(Exception):
    """Base exception class"""

    exit_code: int = EXIT_UNEXPECTED
    hints: Dict[Enum, str] = {}

    def __init__(self, message: str, kind: Optional[Enum] = None, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.hint = hint if hint is not None else self.hints.get(kind)

    def __str__(self) -> str:
        return self.message


class ConfigError(KorasiError):
    """Configuration error"""

    exit_code = EXIT_CONFIG_FAILED


class ProvisionError(KorasiError):
    """Instance provisioning error"""

    class Kind(Enum):
        TIMEOUT = "timeout"
        QUOTA = "quota"
        AUTH = "auth"
        TERMINATED_EARLY = "terminated-early"
        FAILED = "failed"

    exit_code = EXIT_PROVISION_FAILED
    hints = {
        Kind.TIMEOUT: "the instance did not become reachable in time; raise --boot-timeout or check the instance console",
        Kind.QUOTA: "the account has no capacity for this instance type; request a quota increase or pick another type",
        Kind.AUTH: "check the AWS profile and region credentials (aws configure --profile <name>)",
        Kind.TERMINATED_EARLY: "the instance stopped while booting; check the image and the setup script",
        Kind.FAILED: "re-run with --log-level DEBUG for the provider response",
    }


class ConnectError(KorasiError):
    """Secure transport connection error"""

    class Kind(Enum):
        UNREACHABLE = "unreachable"
        HANDSHAKE_FAILED = "handshake-failed"
        AUTH_REJECTED = "auth-rejected"
        CONNECTION_LOST = "connection-lost"

    exit_code = EXIT_CONNECT_FAILED
    hints = {
        Kind.UNREACHABLE: "the instance is not accepting SSH; check the security group ingress rule for your IP",
        Kind.HANDSHAKE_FAILED: "the SSH handshake failed; the instance may still be booting, try again",
        Kind.AUTH_REJECTED: "the server rejected the key; check --user and --key for this image",
        Kind.CONNECTION_LOST: "the connection dropped mid-operation; the remote command may have partially run",
    }


class PathError(KorasiError):
    """Local to remote path mapping error"""

    class Kind(Enum):
        OUTSIDE_HOME_WITHOUT_ROOT = "outside-home-without-root"
        DST_NOT_EXIST = "dst-not-exist"

    exit_code = EXIT_SYNC_FAILED
    hints = {
        Kind.OUTSIDE_HOME_WITHOUT_ROOT: "the source is outside $HOME; pass a destination or drop --no-root",
        Kind.DST_NOT_EXIST: "destination does not exist remotely; create it first",
    }


class SyncError(KorasiError):
    """Workspace sync error"""

    class Kind(Enum):
        UNREADABLE_SOURCE = "unreadable-source"
        TRANSFER_FAILED = "transfer-failed"

    exit_code = EXIT_SYNC_FAILED
    hints = {
        Kind.UNREADABLE_SOURCE: "check that the source exists and is readable, or exclude it",
        Kind.TRANSFER_FAILED: "re-run the upload; files are overwritten so a retry is safe",
    }


class CommandError(KorasiError):
    """Remote command error"""

    class Kind(Enum):
        EXIT_CODE = "exit-code"
        REMOTE_KILLED = "remote-killed"

    hints = {
        Kind.REMOTE_KILLED: "the remote process was killed before reporting a status; check memory limits on the instance",
    }

    def __init__(
        self,
        message: str,
        kind: "CommandError.Kind",
        exit_code: int = EXIT_UNEXPECTED,
        hint: Optional[str] = None,
    ):
        super().__init__(message, kind=kind, hint=hint)
        self.exit_code = exit_code


class TunnelError(KorasiError):
    """Port tunnel error"""

    class Kind(Enum):
        BIND_FAILED = "bind-failed"
        CHANNEL_REFUSED = "channel-refused"

    exit_code = EXIT_TUNNEL_FAILED
    hints = {
        Kind.BIND_FAILED: "the local port is taken or privileged; pick another local port",
        Kind.CHANNEL_REFUSED: "nothing is listening on the remote address, or the server forbids forwarding",
    }


class TeardownError(KorasiError):
    """Instance termination error"""

    hints = {
        None: "the instance may remain billable; terminate it with `korasi teardown` or from the EC2 console",
    }
