"""
Upload progress display
"""
from typing import Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from ...core.logging import get_stderr_console
from ...domain.sync.models import TransferItem


class UploadProgress:
    """Progress bar fed by PlanUploader callbacks; started on first update"""

    def __init__(self, console: Optional[Console] = None, enabled: bool = True):
        self.console = console or get_stderr_console()
        self.enabled = enabled and self.console.is_terminal
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def __call__(self, done: int, total: int, item: TransferItem) -> None:
        if not self.enabled:
            return
        if self._progress is None:
            self._progress = Progress(
                TextColumn("[cyan]Uploading[/cyan]"),
                BarColumn(),
                DownloadColumn(),
                TransferSpeedColumn(),
                TimeRemainingColumn(),
                TextColumn("{task.description}"),
                console=self.console,
                transient=True,
            )
            self._progress.start()
            self._task = self._progress.add_task("", total=total or None)
        self._progress.update(self._task, completed=done, description=item.remote_path.name)

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
