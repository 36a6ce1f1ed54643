"""
korasi - run work on ephemeral EC2 instances

Provisions a short-lived instance, maps and uploads the local workspace,
then runs a command, an interactive shell or a port tunnel over a single
multiplexed SSH connection, and terminates the instance afterwards:
- Path mapping between the local workspace and the remote home
- Ignore-aware workspace upload over SFTP
- Remote commands with exit status mirroring
- Local port forwarding through the instance
"""

__version__ = "0.1.0"

from .core import (
    KorasiError,
    ConfigError,
    ProvisionError,
    ConnectError,
    PathError,
    SyncError,
    CommandError,
    TunnelError,
    TeardownError,
)

from .domain.orchestrator import Orchestrator, OrchestratorOptions
from .domain.sync import PathMapper, SyncPlanner, SyncPlan, GitIgnoreFilter
from .domain.session import Credentials, TransportSession
from .domain.instance import Instance, LaunchSpec, InstanceLifecycle

__all__ = [
    # Version
    "__version__",
    # Errors
    "KorasiError",
    "ConfigError",
    "ProvisionError",
    "ConnectError",
    "PathError",
    "SyncError",
    "CommandError",
    "TunnelError",
    "TeardownError",
    # Orchestration
    "Orchestrator",
    "OrchestratorOptions",
    # Sync
    "PathMapper",
    "SyncPlanner",
    "SyncPlan",
    "GitIgnoreFilter",
    # Session
    "Credentials",
    "TransportSession",
    # Instance
    "Instance",
    "LaunchSpec",
    "InstanceLifecycle",
]
