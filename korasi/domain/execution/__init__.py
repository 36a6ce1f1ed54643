"""
Execution domain module
"""
from .command import CommandExecutor, INTERRUPTED_EXIT_CODE
from .shell import InteractiveShell, raw_terminal

__all__ = ["CommandExecutor", "INTERRUPTED_EXIT_CODE", "InteractiveShell", "raw_terminal"]
