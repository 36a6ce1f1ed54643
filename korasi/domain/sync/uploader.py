"""
Apply a SyncPlan over a file-transfer channel
"""
import os
import stat
from pathlib import PurePosixPath
from typing import Any, Callable, Optional

import paramiko

from ...core.exceptions import ConnectError, SyncError
from ...core.logging import get_logger
from .models import SyncPlan, TransferItem

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int, TransferItem], None]


class PlanUploader:
    """
    Upload a plan with overwrite semantics.

    Directories are created when absent and accepted when present; files are
    truncated and rewritten. Applying the same plan twice leaves the same
    remote tree. When the transport drops mid-upload the file-transfer
    channel is reopened through the session and the failed item is retried,
    which is safe because every step is idempotent.
    """

    def __init__(
        self,
        session: Any,
        retries: int = 2,
        progress: Optional[ProgressCallback] = None,
    ):
        """
        Initialize uploader.

        Args:
            session: TransportSession used to open file-transfer channels
            retries: Extra attempts per item after a transport loss
            progress: Called with (done_bytes, total_bytes, item) after each item
        """
        self.session = session
        self.retries = retries
        self.progress = progress
        self._sftp = None

    def apply(self, plan: SyncPlan) -> None:
        """
        Upload every item of a plan in order.

        Raises:
            SyncError: TRANSFER_FAILED if an item cannot be written
        """
        total = plan.total_bytes
        done = 0
        try:
            for item in plan:
                self._apply_with_retry(item)
                done += item.size
                if self.progress:
                    self.progress(done, total, item)
        finally:
            self._close()
        logger.info(f"Uploaded {len(plan.files())} files to {plan.remote_target}")

    def _apply_with_retry(self, item: TransferItem) -> None:
        attempt = 0
        while True:
            try:
                self._apply_item(self._channel(), item)
                return
            except SyncError:
                raise
            except (OSError, EOFError, paramiko.SSHException) as e:
                if self.session.is_alive():
                    raise SyncError(
                        f"Failed to write {item.remote_path}: {e}",
                        kind=SyncError.Kind.TRANSFER_FAILED,
                    ) from e
                if attempt >= self.retries:
                    raise SyncError(
                        f"Connection lost while writing {item.remote_path}: {e}",
                        kind=SyncError.Kind.TRANSFER_FAILED,
                    ) from e
                attempt += 1
                logger.warning(
                    f"Transport lost during upload, reopening file transfer "
                    f"(attempt {attempt}/{self.retries})"
                )
                self._sftp = None
            except ConnectError as e:
                raise SyncError(
                    f"Cannot reopen file transfer for {item.remote_path}: {e}",
                    kind=SyncError.Kind.TRANSFER_FAILED,
                    hint=e.hint,
                ) from e

    def _channel(self):
        if self._sftp is None:
            self._sftp = self.session.open_file_transfer()
        return self._sftp

    def _apply_item(self, sftp, item: TransferItem) -> None:
        remote = str(item.remote_path)
        if item.is_dir:
            ensure_remote_dir(sftp, item.remote_path)
            return
        sftp.put(str(item.local_path), remote)
        mode = stat.S_IMODE(os.stat(item.local_path).st_mode)
        sftp.chmod(remote, mode)
        logger.debug(f"[push] {item.local_path} → {remote}")

    def _close(self) -> None:
        if self._sftp is not None:
            self.session.release(self._sftp)
            self._sftp = None


def ensure_remote_dir(sftp, path: PurePosixPath) -> None:
    """
    Create one remote directory if it does not exist.

    Raises:
        SyncError: TRANSFER_FAILED if a non-directory already occupies the path
    """
    remote = str(path)
    try:
        attrs = sftp.stat(remote)
    except FileNotFoundError:
        sftp.mkdir(remote)
        logger.debug(f"[mkdir] {remote}")
        return
    if not stat.S_ISDIR(attrs.st_mode or 0):
        raise SyncError(
            f"Remote path {remote} exists and is not a directory",
            kind=SyncError.Kind.TRANSFER_FAILED,
            hint="remove or rename the remote file, or upload to another destination",
        )
