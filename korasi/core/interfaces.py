"""
Seams between the domain layer and the outside world

The domain layer reaches the cloud API, the secure transport, local state
and the terminal only through these classes; ``korasi.infrastructure`` and
``korasi.adapters`` provide the concrete implementations.
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List


class Provisioner(ABC):
    """Cloud instance API"""

    @abstractmethod
    def launch(self, spec: Any) -> str:
        """Request one instance for a LaunchSpec and return its id"""

    @abstractmethod
    def describe(self, instance_id: str) -> Any:
        """Current InstanceDescription (provider state and address)"""

    @abstractmethod
    def terminate(self, instance_id: str) -> None:
        pass

    @abstractmethod
    def tag(self, instance_id: str, labels: Dict[str, str]) -> None:
        pass

    def list_instances(self) -> List[Dict[str, Any]]:
        """Instances carrying this tool's tag; empty when unsupported"""
        return []


class Connection(ABC):
    """An authenticated transport that can carry many channels"""

    @abstractmethod
    def open_channel(self, kind: Any, params: Dict[str, Any]) -> Any:
        """Open a channel of the given ChannelKind"""

    @abstractmethod
    def is_alive(self) -> bool:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def send_signal(self, channel: Any, name: str) -> None:
        """Forward a signal to the process behind an exec channel, if supported"""


class Connector(ABC):

    @abstractmethod
    def connect(self, address: str, credentials: Any) -> Connection:
        """Authenticate to ``address`` and return the live connection"""


class IgnoreFilter(ABC):

    @abstractmethod
    def matches(self, path: str, is_dir: bool = False) -> bool:
        """True when a POSIX path relative to the walk root must be skipped"""

    def descend(self, directory: Any, rel_dir: str) -> "IgnoreFilter":
        """Filter for the entries below ``directory``; nested rules extend it"""
        return self


class StateStore(ABC):
    """Named JSON-able records that outlive one invocation"""

    @abstractmethod
    def save(self, name: str, state: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def load(self, name: str) -> Optional[Dict[str, Any]]:
        """The stored record, or None"""

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove a record; missing records are not an error"""

    @abstractmethod
    def list(self) -> list[str]:
        pass

    @abstractmethod
    def exists(self, name: str) -> bool:
        pass


class PromptProvider(ABC):
    """Terminal interaction used by the CLI"""

    @abstractmethod
    def confirm(self, message: str, default: bool = False) -> bool:
        pass

    @abstractmethod
    def info(self, message: str) -> None:
        pass

    @abstractmethod
    def success(self, message: str) -> None:
        pass

    @abstractmethod
    def warning(self, message: str) -> None:
        pass

    @abstractmethod
    def error(self, error: Any) -> None:
        """Report a KorasiError"""
