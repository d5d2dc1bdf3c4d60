"""Tests for the staging virtual file system.

Covers:
- Path normalisation and escape rejection
- Staged-over-disk reads and disk read-through
- Create / overwrite / append / prepend semantics
- Conflict policies applied by write_file
- Snapshot / restore and discard
- Flushing (nested directories, created vs modified, per-path failures)
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from stackweave.errors import FileAlreadyExists, FileConflict, FileNotFound, InvalidPath
from stackweave.vfs import ConflictPolicy, VirtualFileSystem

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


class TestNormalize:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("src/app.ts", "src/app.ts"),
            ("./src/app.ts", "src/app.ts"),
            ("src//lib/../app.ts", "src/app.ts"),
            ("src\\windows\\style.css", "src/windows/style.css"),
        ],
    )
    def test_relative_paths(self, vfs: VirtualFileSystem, raw: str, expected: str):
        assert vfs.normalize(raw) == expected

    def test_absolute_path_inside_root(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        assert vfs.normalize(tmp_project_dir / "a" / "b.txt") == "a/b.txt"

    @pytest.mark.parametrize("raw", ["../outside.txt", "src/../../outside.txt", "", ".", "   "])
    def test_rejects_escaping_or_empty_paths(self, vfs: VirtualFileSystem, raw: str):
        with pytest.raises(InvalidPath):
            vfs.normalize(raw)

    def test_rejects_absolute_path_outside_root(self, vfs: VirtualFileSystem, tmp_path: Path):
        with pytest.raises(InvalidPath):
            vfs.normalize(tmp_path / "elsewhere.txt")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    def test_staged_content_wins_over_disk(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        (tmp_project_dir / "notes.txt").write_text("on disk", encoding="utf-8")
        vfs.overwrite_file("notes.txt", "staged")

        assert vfs.read_file("notes.txt") == "staged"
        assert (tmp_project_dir / "notes.txt").read_text(encoding="utf-8") == "on disk"

    def test_reads_through_to_disk(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        (tmp_project_dir / "README.md").write_text("# hi\n", encoding="utf-8")
        assert vfs.exists("README.md")
        assert not vfs.is_staged("README.md")
        assert vfs.read_file("README.md") == "# hi\n"

    def test_missing_file(self, vfs: VirtualFileSystem):
        assert not vfs.exists("nope.txt")
        with pytest.raises(FileNotFound) as exc_info:
            vfs.read_file("nope.txt")
        assert exc_info.value.path == "nope.txt"


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    def test_create_then_append(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "hello")
        vfs.append_file("a.txt", " world")
        assert vfs.read_file("a.txt") == "hello world"

    def test_prepend(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "world")
        vfs.prepend_file("a.txt", "hello ")
        assert vfs.read_file("a.txt") == "hello world"

    def test_append_creates_missing_file(self, vfs: VirtualFileSystem):
        vfs.append_file("log.txt", "first")
        assert vfs.read_file("log.txt") == "first"

    def test_append_extends_disk_content(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        (tmp_project_dir / ".gitignore").write_text("node_modules\n", encoding="utf-8")
        vfs.append_file(".gitignore", ".env\n")
        assert vfs.read_file(".gitignore") == "node_modules\n.env\n"

    def test_create_twice_without_policy_fails(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "one", origin="mod-a")
        with pytest.raises(FileAlreadyExists) as exc_info:
            vfs.write_file("a.txt", "two")
        assert exc_info.value.origin == "mod-a"
        assert vfs.read_file("a.txt") == "one"

    def test_create_over_disk_file_without_policy_fails(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        (tmp_project_dir / "a.txt").write_text("disk", encoding="utf-8")
        with pytest.raises(FileAlreadyExists):
            vfs.write_file("a.txt", "new")

    def test_error_policy_raises_conflict(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "one")
        with pytest.raises(FileConflict):
            vfs.write_file("a.txt", "two", policy=ConflictPolicy.of("error"))

    def test_skip_policy_keeps_content_and_warns_once(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "one")
        outcome = vfs.write_file("a.txt", "two", policy=ConflictPolicy.of("skip"))

        assert outcome.skipped
        assert outcome.warning is not None and "a.txt" in outcome.warning
        assert vfs.read_file("a.txt") == "one"

    def test_replace_policy(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "one")
        vfs.write_file("a.txt", "two", policy=ConflictPolicy.of("replace"))
        assert vfs.read_file("a.txt") == "two"

    def test_merge_policy_json(self, vfs: VirtualFileSystem):
        vfs.write_file("data.json", '{"a": 1, "list": [1]}')
        vfs.write_file("data.json", '{"b": 2, "list": [2]}', policy=ConflictPolicy.of("merge"))
        assert vfs.read_file("data.json") == '{\n  "a": 1,\n  "list": [\n    1,\n    2\n  ],\n  "b": 2\n}\n'

    def test_origin_defaults_to_owner(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "x")
        entry = vfs.entry("a.txt")
        assert entry is not None
        assert entry.origin == "test-module"
        assert entry.state == "staged"
        assert not entry.existed_on_disk


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestSnapshots:
    def test_restore_discards_later_writes(self, vfs: VirtualFileSystem):
        vfs.write_file("keep.txt", "keep")
        snapshot = vfs.snapshot()

        vfs.append_file("keep.txt", " more")
        vfs.write_file("drop.txt", "drop")
        vfs.restore(snapshot)

        assert vfs.staged_paths() == ["keep.txt"]
        assert vfs.read_file("keep.txt") == "keep"

    def test_snapshot_is_independent_copy(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "one")
        snapshot = vfs.snapshot()
        vfs.overwrite_file("a.txt", "two")
        assert snapshot["a.txt"].content == "one"

    def test_discard(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "one")
        vfs.write_file("b.txt", "two")
        assert vfs.discard() == ["a.txt", "b.txt"]
        assert len(vfs) == 0


# ---------------------------------------------------------------------------
# Flush
# ---------------------------------------------------------------------------


class TestFlush:
    async def test_nothing_touches_disk_before_flush(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        vfs.write_file("src/index.ts", "export {};\n")
        assert not (tmp_project_dir / "src" / "index.ts").exists()

    async def test_flush_creates_nested_directories(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        vfs.write_file("a/b/c/d.txt", "deep")
        result = await vfs.flush_to_disk()

        assert result.success
        assert result.written == ["a/b/c/d.txt"]
        assert result.created == ["a/b/c/d.txt"]
        assert (tmp_project_dir / "a" / "b" / "c" / "d.txt").read_text(encoding="utf-8") == "deep"
        assert len(vfs) == 0

    async def test_modified_vs_created(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        (tmp_project_dir / "old.txt").write_text("old", encoding="utf-8")
        vfs.overwrite_file("old.txt", "updated")
        vfs.write_file("new.txt", "new")

        result = await vfs.flush_to_disk()

        assert result.modified == ["old.txt"]
        assert result.created == ["new.txt"]
        assert (tmp_project_dir / "old.txt").read_text(encoding="utf-8") == "updated"

    async def test_each_file_written_once(self, vfs: VirtualFileSystem):
        vfs.write_file("a.txt", "1")
        first = await vfs.flush_to_disk()
        second = await vfs.flush_to_disk()
        assert first.written == ["a.txt"]
        assert second.written == []

    async def test_failure_is_recorded_per_path(self, vfs: VirtualFileSystem, tmp_project_dir: Path):
        vfs.write_file("ok.txt", "ok")
        vfs.write_file("bad.txt", "bad")

        from stackweave.vfs import virtual_fs

        original = virtual_fs._write_file

        def flaky(path: Path, content: str) -> None:
            if path.name == "bad.txt":
                raise PermissionError("read-only file system")
            original(path, content)

        with patch.object(virtual_fs, "_write_file", side_effect=flaky):
            result = await vfs.flush_to_disk()

        assert not result.success
        assert result.written == ["ok.txt"]
        assert "bad.txt" in result.failed
        assert vfs.staged_paths() == ["bad.txt"]
        assert (tmp_project_dir / "ok.txt").exists()
