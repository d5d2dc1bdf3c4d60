"""In-memory staging file store with disk read-through.

Every write made while a blueprint executes lands in the VFS first; nothing
reaches the project directory until :meth:`VirtualFileSystem.flush_to_disk`
is awaited. Reads return staged content when present and fall back to the
file on disk otherwise.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Literal

from stackweave.errors import FileAlreadyExists, FileNotFound, InvalidPath
from stackweave.vfs.conflicts import ConflictOutcome, ConflictPolicy, ConflictResolver

EntryState = Literal["staged", "flushed"]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class VFSEntry:
    """One staged file."""

    path: str
    content: str
    origin: str | None = None
    state: EntryState = "staged"
    existed_on_disk: bool = False


@dataclass
class FlushResult:
    """Outcome of a flush: written paths plus per-path failures."""

    written: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


# ---------------------------------------------------------------------------
# VirtualFileSystem
# ---------------------------------------------------------------------------


class VirtualFileSystem:
    """Staged file store scoped to one module execution (or one run).

    Args:
        project_root: Directory that relative paths resolve against.
        owner: Default origin recorded on entries (usually the module id).
        conflict_resolver: Combinator used by :meth:`write_file` when a
            policy is supplied.
    """

    def __init__(
        self,
        project_root: str | Path,
        owner: str | None = None,
        conflict_resolver: ConflictResolver | None = None,
    ) -> None:
        self.project_root = Path(project_root).expanduser().resolve()
        self.owner = owner
        self.conflicts = conflict_resolver or ConflictResolver()
        self._entries: dict[str, VFSEntry] = {}

    # -- Paths -------------------------------------------------------------

    def normalize(self, path: str | Path) -> str:
        """Return *path* as a POSIX path relative to the project root.

        Raises:
            InvalidPath: If the path is empty or resolves outside the root.
        """
        raw = str(path).replace("\\", "/").strip()
        if not raw:
            raise InvalidPath(raw, reason="path is empty")

        candidate = Path(raw)
        if candidate.is_absolute():
            try:
                raw = candidate.resolve().relative_to(self.project_root).as_posix()
            except ValueError as exc:
                raise InvalidPath(str(path)) from exc

        parts: list[str] = []
        for part in PurePosixPath(raw).parts:
            if part in ("", "."):
                continue
            if part == "..":
                if not parts:
                    raise InvalidPath(str(path))
                parts.pop()
                continue
            parts.append(part)
        if not parts:
            raise InvalidPath(str(path), reason="path resolves to the project root")
        return "/".join(parts)

    # -- Queries -----------------------------------------------------------

    def exists(self, path: str | Path) -> bool:
        """True if *path* is staged or exists on disk."""
        key = self.normalize(path)
        return key in self._entries or (self.project_root / key).is_file()

    def is_staged(self, path: str | Path) -> bool:
        return self.normalize(path) in self._entries

    def staged_paths(self) -> list[str]:
        return sorted(self._entries)

    def entry(self, path: str | Path) -> VFSEntry | None:
        return self._entries.get(self.normalize(path))

    def read_file(self, path: str | Path) -> str:
        """Return staged content, else the file on disk.

        Raises:
            FileNotFound: If the path is neither staged nor on disk.
        """
        key = self.normalize(path)
        existing = self._existing(key)
        if existing is None:
            raise FileNotFound(key)
        return existing

    # -- Writes ------------------------------------------------------------

    def write_file(
        self,
        path: str | Path,
        content: str,
        policy: ConflictPolicy | None = None,
        origin: str | None = None,
    ) -> ConflictOutcome:
        """Create *path* with *content*.

        When the path already has content (staged or on disk), *policy*
        decides the result. Without a policy the write fails.

        Raises:
            FileAlreadyExists: The path exists and no policy was given.
            FileConflict: The policy's strategy is ``error`` or its merge
                combinator failed.
        """
        key = self.normalize(path)
        existing = self._existing(key)
        if existing is None:
            self._stage(key, content, origin)
            return ConflictOutcome(content=content)

        current = self._entries.get(key)
        previous_origin = current.origin if current else None
        if policy is None:
            raise FileAlreadyExists(key, previous_origin)

        outcome = self.conflicts.resolve(key, existing, content, policy, previous_origin)
        if not outcome.skipped:
            self._stage(key, outcome.content, origin)
        return outcome

    def overwrite_file(self, path: str | Path, content: str, origin: str | None = None) -> None:
        """Stage *content* at *path*, replacing whatever is there."""
        self._stage(self.normalize(path), content, origin)

    def append_file(self, path: str | Path, content: str, origin: str | None = None) -> None:
        """Concatenate *content* after the current body; creates the file if absent."""
        key = self.normalize(path)
        self._stage(key, (self._existing(key) or "") + content, origin)

    def prepend_file(self, path: str | Path, content: str, origin: str | None = None) -> None:
        """Concatenate *content* before the current body; creates the file if absent."""
        key = self.normalize(path)
        self._stage(key, content + (self._existing(key) or ""), origin)

    # -- Snapshots ---------------------------------------------------------

    def snapshot(self) -> dict[str, VFSEntry]:
        """Copy of the staging area, for :meth:`restore`."""
        return copy.deepcopy(self._entries)

    def restore(self, snapshot: dict[str, VFSEntry]) -> None:
        """Reset the staging area to a previous :meth:`snapshot`."""
        self._entries = copy.deepcopy(snapshot)

    def discard(self) -> list[str]:
        """Drop every staged entry and return the discarded paths."""
        dropped = self.staged_paths()
        self._entries.clear()
        return dropped

    # -- Flush -------------------------------------------------------------

    async def flush_to_disk(self) -> FlushResult:
        """Write every staged entry to disk exactly once.

        Parent directories are created as needed. A failure on one path is
        recorded in :attr:`FlushResult.failed` and does not stop the others.
        Flushed entries are removed from staging; failed ones stay staged.
        """
        result = FlushResult()
        for key in self.staged_paths():
            entry = self._entries[key]
            target = self.project_root / key
            try:
                await asyncio.to_thread(_write_file, target, entry.content)
            except OSError as exc:
                result.failed[key] = str(exc)
                continue
            entry.state = "flushed"
            result.written.append(key)
            (result.modified if entry.existed_on_disk else result.created).append(key)
            del self._entries[key]
        return result

    # -- Internals ---------------------------------------------------------

    def _existing(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is not None:
            return entry.content
        target = self.project_root / key
        if target.is_file():
            return target.read_text(encoding="utf-8")
        return None

    def _stage(self, key: str, content: str, origin: str | None) -> None:
        entry = self._entries.get(key)
        if entry is None:
            self._entries[key] = VFSEntry(
                path=key,
                content=content,
                origin=origin or self.owner,
                existed_on_disk=(self.project_root / key).is_file(),
            )
            return
        entry.content = content
        entry.origin = origin or self.owner or entry.origin

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"VirtualFileSystem(root={str(self.project_root)!r}, owner={self.owner!r}, staged={len(self)})"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _write_file(path: Path, content: str) -> None:
    """Synchronous helper: create parent dirs and write content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
