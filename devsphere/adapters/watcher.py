"""Polling filesystem watcher for the workspace root.

Scans the tree every ``interval`` seconds and diffs consecutive scans
into change events. The first scan is a silent baseline. Symlinks are
recorded as leaf entries and never followed.
"""
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from .events import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

EventSink = Callable[[list[ChangeEvent]], Awaitable[None]]


@dataclass(frozen=True)
class EntryState:
    is_dir: bool
    size: int
    mtime_ns: int


ScanState = dict[str, EntryState]


def _scan_into(real_dir: str, rel_base: str, out: ScanState) -> None:
    try:
        with os.scandir(real_dir) as it:
            entries = list(it)
    except (FileNotFoundError, NotADirectoryError, PermissionError):
        return
    for entry in entries:
        rel = f"{rel_base}/{entry.name}" if rel_base else entry.name
        try:
            st = entry.stat(follow_symlinks=False)
            is_dir = entry.is_dir(follow_symlinks=False)
        except FileNotFoundError:
            continue
        out[rel] = EntryState(
            is_dir=is_dir,
            size=0 if is_dir else st.st_size,
            mtime_ns=0 if is_dir else st.st_mtime_ns,
        )
        if is_dir:
            _scan_into(entry.path, rel, out)


def scan_workspace(root: str | Path) -> ScanState:
    """Map every path below *root* to its type, size and mtime."""
    state: ScanState = {}
    _scan_into(str(root), "", state)
    return state


def diff_scans(old: ScanState, new: ScanState) -> list[ChangeEvent]:
    """Events turning *old* into *new*.

    Additions come parents-first, then content changes, then removals
    children-first.
    """
    added: list[ChangeEvent] = []
    changed: list[ChangeEvent] = []
    removed: list[ChangeEvent] = []

    for path in sorted(new):
        cur = new[path]
        prev = old.get(path)
        if prev is not None and prev.is_dir == cur.is_dir:
            if not cur.is_dir and (prev.size, prev.mtime_ns) != (cur.size, cur.mtime_ns):
                changed.append(ChangeEvent(ChangeKind.CHANGED, path))
            continue
        added.append(ChangeEvent(
            ChangeKind.ADDED_DIR if cur.is_dir else ChangeKind.ADDED, path,
        ))

    for path in sorted(old, reverse=True):
        prev = old[path]
        cur = new.get(path)
        if cur is not None and cur.is_dir == prev.is_dir:
            continue
        removed.append(ChangeEvent(
            ChangeKind.REMOVED_DIR if prev.is_dir else ChangeKind.REMOVED, path,
        ))

    return added + changed + removed


class WorkspaceWatcher:
    """Runs the scan/diff loop on its own asyncio task."""

    def __init__(
        self,
        root: str | Path,
        sink: EventSink,
        *,
        interval: float = 0.5,
    ) -> None:
        self._root = Path(root)
        self._sink = sink
        self._interval = interval
        self._state: ScanState = {}
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Take the baseline scan, then start polling."""
        if self.running:
            return
        self._state = await asyncio.to_thread(scan_workspace, self._root)
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            "Workspace watcher started root=%s interval=%.2fs baseline_entries=%d",
            self._root, self._interval, len(self._state),
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Workspace watcher stopped root=%s", self._root)

    async def poll_once(self) -> list[ChangeEvent]:
        """Scan, diff against the previous scan and deliver the events."""
        new_state = await asyncio.to_thread(scan_workspace, self._root)
        events = diff_scans(self._state, new_state)
        self._state = new_state
        if events:
            logger.debug("Workspace watcher observed %d change(s)", len(events))
            await self._sink(events)
        return events

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Workspace watcher poll failed root=%s", self._root)
