from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from devsphere.adapters.events import ChangeEvent, ChangeKind
from devsphere.adapters.watcher import (
    EntryState,
    WorkspaceWatcher,
    diff_scans,
    scan_workspace,
)

DIR = EntryState(is_dir=True, size=0, mtime_ns=0)


def _file(size: int = 1, mtime_ns: int = 1) -> EntryState:
    return EntryState(is_dir=False, size=size, mtime_ns=mtime_ns)


def test_additions_are_parents_first() -> None:
    events = diff_scans({}, {"a": DIR, "a/f.txt": _file(), "a/b": DIR})
    assert events == [
        ChangeEvent(ChangeKind.ADDED_DIR, "a"),
        ChangeEvent(ChangeKind.ADDED_DIR, "a/b"),
        ChangeEvent(ChangeKind.ADDED, "a/f.txt"),
    ]


def test_removals_are_children_first() -> None:
    events = diff_scans({"a": DIR, "a/f.txt": _file()}, {})
    assert events == [
        ChangeEvent(ChangeKind.REMOVED, "a/f.txt"),
        ChangeEvent(ChangeKind.REMOVED_DIR, "a"),
    ]


def test_content_change() -> None:
    events = diff_scans({"f": _file(size=1)}, {"f": _file(size=2)})
    assert events == [ChangeEvent(ChangeKind.CHANGED, "f")]


def test_unchanged_scan_is_silent() -> None:
    state = {"a": DIR, "a/f": _file()}
    assert diff_scans(state, dict(state)) == []


def test_type_change_is_add_then_remove() -> None:
    events = diff_scans({"x": _file()}, {"x": DIR})
    assert events == [
        ChangeEvent(ChangeKind.ADDED_DIR, "x"),
        ChangeEvent(ChangeKind.REMOVED, "x"),
    ]


def test_scan_workspace_uses_forward_slashes(tmp_path: Path) -> None:
    (tmp_path / "a" / "b").mkdir(parents=True)
    (tmp_path / "a" / "b" / "c.txt").write_text("abc")
    state = scan_workspace(tmp_path)
    assert set(state) == {"a", "a/b", "a/b/c.txt"}
    assert state["a"].is_dir
    assert state["a/b/c.txt"].size == 3


def test_scan_missing_root(tmp_path: Path) -> None:
    assert scan_workspace(tmp_path / "missing") == {}


@pytest.mark.asyncio
async def test_baseline_is_silent_and_new_file_is_reported(tmp_path: Path) -> None:
    (tmp_path / "existing.txt").write_text("")
    sink = AsyncMock()
    watcher = WorkspaceWatcher(tmp_path, sink, interval=60)
    await watcher.start()
    try:
        assert watcher.running
        assert await watcher.poll_once() == []
        sink.assert_not_called()

        (tmp_path / "new.txt").write_text("")
        events = await watcher.poll_once()
        assert events == [ChangeEvent(ChangeKind.ADDED, "new.txt")]
        sink.assert_awaited_once_with(events)
    finally:
        await watcher.stop()
    assert not watcher.running


@pytest.mark.asyncio
async def test_directory_removal_events(tmp_path: Path) -> None:
    (tmp_path / "d").mkdir()
    (tmp_path / "d" / "f.txt").write_text("")
    watcher = WorkspaceWatcher(tmp_path, AsyncMock(), interval=60)
    await watcher.start()
    try:
        (tmp_path / "d" / "f.txt").unlink()
        (tmp_path / "d").rmdir()
        events = await watcher.poll_once()
    finally:
        await watcher.stop()
    assert events == [
        ChangeEvent(ChangeKind.REMOVED, "d/f.txt"),
        ChangeEvent(ChangeKind.REMOVED_DIR, "d"),
    ]
