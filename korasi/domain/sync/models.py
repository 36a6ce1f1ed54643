"""
Sync domain models
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Optional, List, Dict, Any, Iterator


class ItemKind(Enum):
    """Kind of a transfer item"""
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class TransferItem:
    """One remote path to produce, and the local path it comes from"""
    local_path: Optional[Path]  # None for synthetic directories (root wrapper, destination parents)
    remote_path: PurePosixPath
    kind: ItemKind
    size: int = 0

    @property
    def is_dir(self) -> bool:
        return self.kind is ItemKind.DIRECTORY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "local_path": str(self.local_path) if self.local_path else None,
            "remote_path": str(self.remote_path),
            "kind": self.kind.value,
            "size": self.size,
        }


@dataclass
class SyncPlan:
    """
    Ordered transfer plan.

    Items are kept in walk order, so every directory precedes all of its
    descendants. Building a plan touches nothing remotely.
    """
    source: Path
    remote_target: PurePosixPath
    items: List[TransferItem] = field(default_factory=list)

    def __iter__(self) -> Iterator[TransferItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def add(self, item: TransferItem) -> None:
        self.items.append(item)

    def directories(self) -> List[TransferItem]:
        return [item for item in self.items if item.is_dir]

    def files(self) -> List[TransferItem]:
        return [item for item in self.items if not item.is_dir]

    @property
    def total_bytes(self) -> int:
        return sum(item.size for item in self.items)

    def remote_paths(self) -> List[str]:
        return [str(item.remote_path) for item in self.items]
