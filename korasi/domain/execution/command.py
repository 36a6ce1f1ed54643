"""
Command executor: run one exec channel to completion
"""
import os
import sys
import threading
from typing import Any, BinaryIO, Optional

import paramiko

from ...core.constants import CHANNEL_BUFFER_SIZE
from ...core.exceptions import CommandError, ConnectError
from ...core.logging import get_logger

logger = get_logger(__name__)

# Exit code reported for a locally interrupted command, as a shell does
INTERRUPTED_EXIT_CODE = 130
_SIGNAL_GRACE = 2.0
_POLL_INTERVAL = 0.1


class CommandExecutor:
    """
    Stream a remote command.

    One thread per direction: stdout pump, stderr pump and a stdin
    forwarder, so local input never blocks remote output. Each stream keeps
    its own order; stdout and stderr may interleave arbitrarily.
    """

    def __init__(
        self,
        session: Any,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        cancel: Optional[threading.Event] = None,
        forward_stdin: bool = True,
    ):
        """
        Initialize executor.

        Args:
            session: TransportSession the channel belongs to
            stdin: Binary stream forwarded to the remote process
            stdout: Binary stream receiving remote stdout
            stderr: Binary stream receiving remote stderr
            cancel: Shared cancellation event; setting it interrupts the command
            forward_stdin: Forward local input at all
        """
        self.session = session
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self.stderr = stderr if stderr is not None else sys.stderr.buffer
        self.cancel = cancel or threading.Event()
        self.forward_stdin = forward_stdin

    def run(self, command: str, pty: bool = False) -> int:
        """Open an exec channel for a command and execute it"""
        logger.debug(f"[exec] {command}")
        channel = self.session.open_exec(command, pty=pty)
        return self.execute(channel, command, pty=pty)

    def execute(self, channel: Any, command: str, pty: bool = False) -> int:
        """
        Pump an already started exec channel until the command finishes.

        Args:
            channel: Exec channel running the command
            command: Command line, for messages
            pty: Whether a pseudo-terminal is attached

        Returns:
            0 on success

        Raises:
            CommandError: EXIT_CODE for a non-zero status, REMOTE_KILLED when
                the process ended without reporting one
            ConnectError: CONNECTION_LOST when the connection dropped
                mid-command; never retried
        """
        pumps = [
            threading.Thread(
                target=self._pump, args=(channel.recv, self.stdout),
                daemon=True, name="exec-stdout",
            ),
            threading.Thread(
                target=self._pump, args=(channel.recv_stderr, self.stderr),
                daemon=True, name="exec-stderr",
            ),
        ]
        for thread in pumps:
            thread.start()
        if self.forward_stdin:
            # Daemon: a blocking read of local input cannot be interrupted
            threading.Thread(
                target=self._forward_input, args=(channel,),
                daemon=True, name="exec-stdin",
            ).start()

        interrupted = False
        try:
            try:
                while not channel.exit_status_ready():
                    if self.cancel.wait(_POLL_INTERVAL):
                        raise KeyboardInterrupt
            except KeyboardInterrupt:
                interrupted = True
                self._interrupt(channel, pty)

            for thread in pumps:
                thread.join(timeout=5.0)
            status = channel.recv_exit_status() if channel.exit_status_ready() else -1
        finally:
            self.session.release(channel)

        return self._result(command, status, interrupted)

    def _result(self, command: str, status: int, interrupted: bool) -> int:
        if interrupted:
            code = status if status > 0 else INTERRUPTED_EXIT_CODE
            raise CommandError(
                f"Interrupted: {command}",
                kind=CommandError.Kind.EXIT_CODE,
                exit_code=code,
            )
        if status == 0:
            return 0
        if status < 0:
            if not self.session.is_alive():
                raise ConnectError(
                    f"Connection lost while running: {command}",
                    kind=ConnectError.Kind.CONNECTION_LOST,
                )
            raise CommandError(
                f"Remote process was killed: {command}",
                kind=CommandError.Kind.REMOTE_KILLED,
            )
        raise CommandError(
            f"Remote command exited with status {status}: {command}",
            kind=CommandError.Kind.EXIT_CODE,
            exit_code=status,
        )

    def _interrupt(self, channel: Any, pty: bool) -> None:
        """Best effort: ask the remote process to stop before closing"""
        logger.warning("Interrupt received, stopping remote command")
        if pty:
            try:
                channel.sendall(b"\x03")
            except (OSError, paramiko.SSHException) as e:
                logger.debug(f"Could not send ^C: {e}")
        for name in ("INT", "TERM"):
            self.session.send_signal(channel, name)
            if channel.status_event.wait(_SIGNAL_GRACE):
                return

    def _pump(self, read, sink: BinaryIO) -> None:
        try:
            while True:
                data = read(CHANNEL_BUFFER_SIZE)
                if not data:
                    break
                sink.write(data)
                sink.flush()
        except (OSError, EOFError, paramiko.SSHException) as e:
            logger.debug(f"Output pump stopped: {e}")

    def _forward_input(self, channel: Any) -> None:
        try:
            while not channel.closed:
                data = _read_available(self.stdin)
                if not data:
                    channel.shutdown_write()
                    break
                channel.sendall(data)
        except (OSError, EOFError, ValueError, paramiko.SSHException) as e:
            logger.debug(f"Input forwarder stopped: {e}")


def _read_available(stream: BinaryIO) -> bytes:
    """Read whatever input is available without waiting for a full buffer"""
    read1 = getattr(stream, "read1", None)
    if read1 is not None:
        return read1(CHANNEL_BUFFER_SIZE)
    try:
        return os.read(stream.fileno(), CHANNEL_BUFFER_SIZE)
    except (AttributeError, OSError):
        return stream.read(CHANNEL_BUFFER_SIZE)
