"""
State storage
"""
from .file_store import FileStateStore

__all__ = ["FileStateStore"]
