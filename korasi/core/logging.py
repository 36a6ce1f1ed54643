"""
Logging and console output

Log records go to stderr through rich so that stdout carries nothing but
the remote command's own output.
"""
import logging
from typing import Iterable, Optional
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install as install_traceback

# stdout is reserved for remote output and user-facing tables
_stdout_console = Console()
_stderr_console = Console(stderr=True)

install_traceback(show_locals=False, width=120, console=_stderr_console)

FILE_LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s"

# Libraries that log every request or packet at INFO
LIBRARY_LOGGERS = ("paramiko", "botocore", "boto3", "urllib3")


def setup_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> None:
    """
    Configure the root logger for one CLI invocation.

    Args:
        level: Logging level name; unknown names fall back to INFO
        log_file: Also write plain-text records here, including the thread
            name so pump and tunnel threads can be told apart
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    debug = log_level <= logging.DEBUG

    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console_handler = RichHandler(
        console=_stderr_console,
        show_path=debug,
        rich_tracebacks=True,
        tracebacks_show_locals=debug,
        markup=False,
    )
    console_handler.setLevel(log_level)
    root.addHandler(console_handler)

    if log_file is not None:
        root.addHandler(_file_handler(Path(log_file).expanduser(), log_level))

    quiet_libraries(LIBRARY_LOGGERS, logging.DEBUG if debug else logging.WARNING)


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
    return handler


def quiet_libraries(names: Iterable[str], level: int = logging.WARNING) -> None:
    """Raise the threshold of third-party loggers"""
    for name in names:
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_stdout_console() -> Console:
    """Console for tables and results"""
    return _stdout_console


def get_stderr_console() -> Console:
    """Console for logs, progress, prompts and errors"""
    return _stderr_console
