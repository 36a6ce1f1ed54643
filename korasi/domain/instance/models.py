"""
Instance domain models
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List
import time


class InstanceState(Enum):
    """Lifecycle state of the instance owned by one invocation"""
    PROVISIONING = "provisioning"
    BOOTING = "booting"
    READY = "ready"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class ProviderState(Enum):
    """Provider-side state reported by describe()"""
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"
    # the provider does not know the id (yet, right after launch)
    MISSING = "missing"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProviderState":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_gone(self) -> bool:
        return self in (ProviderState.SHUTTING_DOWN, ProviderState.TERMINATED)


@dataclass
class InstanceDescription:
    """What the provisioner knows about an instance"""
    state: ProviderState
    address: Optional[str] = None


@dataclass
class LaunchSpec:
    """Request for one instance"""
    image_id: str
    instance_type: str
    key_name: Optional[str] = None
    security_groups: List[str] = field(default_factory=list)
    user_data: Optional[str] = None
    name: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate the request"""
        from ...core.exceptions import ConfigError

        if not self.image_id:
            raise ConfigError(
                "No image id configured",
                hint="pass --image <ami-id> or set image_id in ~/.korasi/config.toml",
            )
        if not self.instance_type:
            raise ConfigError("No instance type configured", hint="pass --instance-type")


@dataclass
class Instance:
    """The instance owned by one invocation"""
    id: str
    state: InstanceState = InstanceState.PROVISIONING
    public_address: Optional[str] = None
    instance_type: Optional[str] = None
    name: Optional[str] = None
    launched_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "state": self.state.value,
            "public_address": self.public_address,
            "instance_type": self.instance_type,
            "name": self.name,
            "launched_at": self.launched_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Instance":
        """Create from dictionary"""
        return cls(
            id=data["id"],
            state=InstanceState(data.get("state", InstanceState.READY.value)),
            public_address=data.get("public_address"),
            instance_type=data.get("instance_type"),
            name=data.get("name"),
            launched_at=data.get("launched_at", time.time()),
        )
