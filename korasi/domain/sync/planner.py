"""
Sync planner: walk a local source and build an ordered transfer plan
"""
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ...core.exceptions import SyncError
from ...core.interfaces import IgnoreFilter
from ...core.logging import get_logger
from .ignore import NullIgnoreFilter
from .mapper import PathMapper
from .models import ItemKind, SyncPlan, TransferItem

logger = get_logger(__name__)


@dataclass(frozen=True)
class LocalEntry:
    """A surviving entry of a local walk"""
    path: Path
    kind: ItemKind
    size: int = 0


class SyncPlanner:
    """
    Build SyncPlans without touching the remote side.

    Planning is split in two so the local walk can fail before anything is
    provisioned: ``scan`` only reads the local tree, ``plan`` maps a scan
    onto remote paths. The walk is pre-order with siblings sorted by name,
    so every directory precedes its descendants and plans are
    deterministic. Ignore files met along the walk apply to their own
    subtree. Symlinks to files are uploaded as regular files;
    symlinked directories are not descended into.
    """

    def __init__(self, ignore_filter: Optional[IgnoreFilter] = None):
        self.ignore_filter = ignore_filter or NullIgnoreFilter()

    def scan(self, local: Path) -> List[LocalEntry]:
        """
        Walk a local source.

        Args:
            local: Absolute file or directory path

        Returns:
            Entries in pre-order, the source itself first

        Raises:
            SyncError: UNREADABLE_SOURCE if the source or any entry below it
                cannot be read
        """
        try:
            st = os.stat(local)
        except OSError as e:
            raise SyncError(
                f"Cannot read source {local}: {e.strerror or e}",
                kind=SyncError.Kind.UNREADABLE_SOURCE,
            ) from e

        if not stat.S_ISDIR(st.st_mode):
            self._check_readable(local)
            return [LocalEntry(local, ItemKind.FILE, st.st_size)]

        entries = [LocalEntry(local, ItemKind.DIRECTORY)]
        self._walk(local, "", entries, self.ignore_filter)
        return entries

    def plan(
        self,
        mapper: PathMapper,
        source: str,
        destination: Optional[str] = None,
        entries: Optional[List[LocalEntry]] = None,
    ) -> SyncPlan:
        """
        Plan the upload of a source path.

        Args:
            mapper: Path mapper for the target instance
            source: File or directory, as given by the user
            destination: Optional remote destination directory
            entries: Result of an earlier ``scan`` of the same source

        Returns:
            Ordered SyncPlan

        Raises:
            SyncError: If the source cannot be read
            PathError: If the source cannot be mapped
        """
        local = mapper.resolve_local(source)
        if entries is None:
            entries = self.scan(local)

        anchor = mapper.anchor(source, destination)
        plan = SyncPlan(source=local, remote_target=anchor.remote_root)
        for parent in anchor.parents:
            plan.add(TransferItem(None, parent, ItemKind.DIRECTORY))
        for entry in entries:
            plan.add(TransferItem(entry.path, anchor.remote_for(entry.path), entry.kind, entry.size))

        logger.debug(
            f"Planned {len(plan.directories())} directories and {len(plan.files())} files "
            f"({plan.total_bytes} bytes) for {local} -> {anchor.remote_root}"
        )
        return plan

    def _walk(self, directory: Path, rel_dir: str, out: List[LocalEntry], ignore: IgnoreFilter) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise SyncError(
                f"Cannot list {directory}: {e.strerror or e}",
                kind=SyncError.Kind.UNREADABLE_SOURCE,
            ) from e

        for entry in entries:
            rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
            path = Path(entry.path)
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = entry.is_file(follow_symlinks=True)
                size = entry.stat().st_size if is_file else 0
            except OSError as e:
                raise SyncError(
                    f"Cannot stat {path}: {e.strerror or e}",
                    kind=SyncError.Kind.UNREADABLE_SOURCE,
                ) from e

            if ignore.matches(rel, is_dir):
                logger.debug(f"[skip] {rel}")
                continue

            if is_dir:
                out.append(LocalEntry(path, ItemKind.DIRECTORY))
                self._walk(path, rel, out, ignore.descend(path, rel))
            elif is_file:
                self._check_readable(path)
                out.append(LocalEntry(path, ItemKind.FILE, size))
            else:
                # sockets, fifos, dangling links and links to directories
                logger.debug(f"[skip] {rel}: not a regular file")

    def _check_readable(self, path: Path) -> None:
        if not os.access(path, os.R_OK):
            raise SyncError(
                f"Cannot read {path}: permission denied",
                kind=SyncError.Kind.UNREADABLE_SOURCE,
            )
