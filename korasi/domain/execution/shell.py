"""
Interactive shell over a pseudo-terminal channel
"""
import os
import select
import shutil
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import paramiko

from ...core.constants import CHANNEL_BUFFER_SIZE, DEFAULT_TERM
from ...core.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def raw_terminal(fd: int) -> Iterator[None]:
    """Put a tty into raw mode and restore it afterwards"""
    if not os.isatty(fd):
        yield
        return
    import termios
    import tty

    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


class InteractiveShell:
    """
    Attach the local terminal to a remote login shell.

    Remote output is pumped on its own thread; local keystrokes are
    forwarded from the calling thread with a select loop so the shared
    cancel event is honoured. Window size changes follow SIGWINCH.
    """

    def __init__(self, session: Any, cancel: Optional[threading.Event] = None):
        self.session = session
        self.cancel = cancel or threading.Event()
        self._channel = None

    def run(self) -> int:
        """
        Run the shell until the remote side exits.

        Returns:
            Exit status of the remote shell
        """
        size = shutil.get_terminal_size()
        term = os.environ.get("TERM", DEFAULT_TERM)
        self._channel = self.session.open_shell(term=term, width=size.columns, height=size.lines)
        channel = self._channel

        previous = None
        if threading.current_thread() is threading.main_thread() and hasattr(signal, "SIGWINCH"):
            previous = signal.signal(signal.SIGWINCH, self._on_resize)

        reader = threading.Thread(target=self._pump_output, args=(channel,), daemon=True, name="shell-stdout")
        stdin_fd = sys.stdin.fileno()
        try:
            with raw_terminal(stdin_fd):
                reader.start()
                self._forward_input(channel, stdin_fd)
                reader.join(timeout=2.0)
        finally:
            if previous is not None:
                signal.signal(signal.SIGWINCH, previous)
            status = channel.recv_exit_status() if channel.exit_status_ready() else -1
            self.session.release(channel)
            self._channel = None

        logger.debug(f"Shell exited with status {status}")
        return status if status >= 0 else 255

    def _forward_input(self, channel: Any, fd: int) -> None:
        while not channel.closed and not channel.exit_status_ready():
            if self.cancel.is_set():
                break
            readable, _, _ = select.select([fd], [], [], 0.1)
            if not readable:
                continue
            data = os.read(fd, CHANNEL_BUFFER_SIZE)
            if not data:
                channel.shutdown_write()
                break
            try:
                channel.sendall(data)
            except (OSError, paramiko.SSHException) as e:
                logger.debug(f"Shell input stopped: {e}")
                break

    def _pump_output(self, channel: Any) -> None:
        out = sys.stdout.buffer
        try:
            while True:
                data = channel.recv(CHANNEL_BUFFER_SIZE)
                if not data:
                    break
                out.write(data)
                out.flush()
        except (OSError, EOFError, paramiko.SSHException) as e:
            logger.debug(f"Shell output stopped: {e}")

    def _on_resize(self, signum, frame) -> None:
        channel = self._channel
        if channel is None or channel.closed:
            return
        size = shutil.get_terminal_size()
        try:
            channel.resize_pty(width=size.columns, height=size.lines)
        except (OSError, paramiko.SSHException) as e:
            logger.debug(f"Resize failed: {e}")
