"""Staged virtual file system and per-file conflict resolution."""

from stackweave.vfs.conflicts import (
    ConflictOutcome,
    ConflictPolicy,
    ConflictResolver,
    infer_merge_strategy,
)
from stackweave.vfs.virtual_fs import FlushResult, VFSEntry, VirtualFileSystem

__all__ = [
    "VirtualFileSystem",
    "VFSEntry",
    "FlushResult",
    "ConflictPolicy",
    "ConflictResolver",
    "ConflictOutcome",
    "infer_merge_strategy",
]
