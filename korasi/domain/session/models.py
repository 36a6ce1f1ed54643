"""
Session domain models
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any

from ...core.constants import DEFAULT_SSH_PORT, DEFAULT_SSH_TIMEOUT, DEFAULT_SSH_USER


class SessionState(Enum):
    """Transport session state"""
    CONNECTING = "connecting"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


class ChannelKind(Enum):
    """Kind of channel multiplexed over a session"""
    EXEC = "exec"
    SHELL = "shell"
    FILE_TRANSFER = "file-transfer"
    TUNNEL = "tunnel"


@dataclass
class Credentials:
    """Login credentials for the instance"""
    user: str = DEFAULT_SSH_USER
    key_path: Optional[str] = None
    password: Optional[str] = None
    port: int = DEFAULT_SSH_PORT
    timeout: float = DEFAULT_SSH_TIMEOUT

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, never exposing the password"""
        return {
            "user": self.user,
            "key_path": self.key_path,
            "port": self.port,
            "timeout": self.timeout,
        }
