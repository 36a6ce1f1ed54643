"""
Instance domain module
"""
from .models import Instance, InstanceState, InstanceDescription, LaunchSpec, ProviderState
from .lifecycle import InstanceLifecycle, port_open

__all__ = [
    "Instance",
    "InstanceState",
    "InstanceDescription",
    "LaunchSpec",
    "ProviderState",
    "InstanceLifecycle",
    "port_open",
]
