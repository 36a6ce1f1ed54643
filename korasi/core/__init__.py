"""
Core infrastructure layer
"""
from .constants import *
from .exceptions import *
from .logging import setup_logging, get_logger, get_stdout_console, get_stderr_console
from .interfaces import (
    StateStore,
    Provisioner,
    IgnoreFilter,
    Connection,
    Connector,
    PromptProvider,
)
from .utils import (
    generate_instance_name,
    backoff_delay,
    expand_home,
    names_home,
    shell_command,
    format_size,
)

__all__ = [
    "KorasiError",
    "ConfigError",
    "ProvisionError",
    "ConnectError",
    "PathError",
    "SyncError",
    "CommandError",
    "TunnelError",
    "TeardownError",
    "setup_logging",
    "get_logger",
    "get_stdout_console",
    "get_stderr_console",
    "StateStore",
    "Provisioner",
    "IgnoreFilter",
    "Connection",
    "Connector",
    "PromptProvider",
    "generate_instance_name",
    "backoff_delay",
    "expand_home",
    "names_home",
    "shell_command",
    "format_size",
]
