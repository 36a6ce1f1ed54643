"""
Sync domain module
"""
from .models import ItemKind, TransferItem, SyncPlan
from .mapper import Anchor, PathMapper, map_remote_path, resolve_local_source
from .ignore import GitIgnoreFilter, NullIgnoreFilter, IgnoreRule
from .planner import LocalEntry, SyncPlanner
from .uploader import PlanUploader, ensure_remote_dir

__all__ = [
    "ItemKind",
    "TransferItem",
    "SyncPlan",
    "Anchor",
    "PathMapper",
    "map_remote_path",
    "resolve_local_source",
    "GitIgnoreFilter",
    "NullIgnoreFilter",
    "IgnoreRule",
    "LocalEntry",
    "SyncPlanner",
    "PlanUploader",
    "ensure_remote_dir",
]
