"""Client-side mirror of the workspace tree kept current from change events.

Events are debounced into one reconciliation pass per burst. Within a
pass:

- removals prune the path and everything nested under it;
- ``changed`` re-fetches that single node, resyncing fully on failure;
- any addition triggers one full resync, since the insertion point of
  a new node in an ordered tree cannot be derived from the event.

The mirror is eventually consistent: a notification may arrive before
or after the HTTP response of the command that caused it.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

import aiohttp

from devsphere.adapters.events import ChangeEvent, ChangeKind
from devsphere.client.http import ClientRequestError
from devsphere.engine.tree import FileNode

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3
DEFAULT_RECONNECT_SECONDS = 3.0

FetchTree = Callable[[], Awaitable[list[FileNode]]]
FetchNode = Callable[[str], Awaitable[FileNode]]
EventStream = Callable[[], AsyncIterator[ChangeEvent]]

# Failures of the server round trip; a pass or connection hitting one is retried.
FETCH_ERRORS = (aiohttp.ClientError, ClientRequestError, ConnectionError, asyncio.TimeoutError)


def _is_under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def _prune(nodes: tuple[FileNode, ...] | list[FileNode], path: str) -> tuple[list[FileNode], int]:
    kept: list[FileNode] = []
    removed = 0
    for node in nodes:
        if _is_under(node.relative_path, path):
            removed += sum(1 for _ in node.walk())
            continue
        if node.children and _is_under(path, node.relative_path):
            children, n = _prune(node.children, path)
            if n:
                node = FileNode(node.name, node.type, node.relative_path, tuple(children))
                removed += n
        kept.append(node)
    return kept, removed


def _replace(nodes: tuple[FileNode, ...] | list[FileNode], new: FileNode) -> tuple[list[FileNode], bool]:
    out: list[FileNode] = []
    found = False
    for node in nodes:
        if node.relative_path == new.relative_path:
            out.append(new)
            found = True
        elif not found and node.children and _is_under(new.relative_path, node.relative_path):
            children, found = _replace(node.children, new)
            out.append(
                FileNode(node.name, node.type, node.relative_path, tuple(children))
                if found else node
            )
        else:
            out.append(node)
    return out, found


class TreeMirror:
    """Local copy of the workspace tree."""

    def __init__(self, nodes: list[FileNode] | None = None) -> None:
        self._nodes: list[FileNode] = list(nodes or [])

    @property
    def nodes(self) -> list[FileNode]:
        return list(self._nodes)

    def replace(self, nodes: list[FileNode]) -> None:
        self._nodes = list(nodes)

    def paths(self) -> set[str]:
        return {n.relative_path for root in self._nodes for n in root.walk()}

    def find(self, path: str) -> FileNode | None:
        for root in self._nodes:
            for node in root.walk():
                if node.relative_path == path:
                    return node
        return None

    def remove(self, path: str) -> int:
        """Drop *path* and its descendants; returns how many nodes went."""
        self._nodes, removed = _prune(self._nodes, path)
        return removed

    def upsert(self, node: FileNode) -> bool:
        """Swap in *node* where its path already exists.

        Returns False when the path is not held locally.
        """
        self._nodes, found = _replace(self._nodes, node)
        return found


class WorkspaceReconciler:
    """Applies debounced change events to a ``TreeMirror``."""

    def __init__(
        self,
        fetch_tree: FetchTree,
        fetch_node: FetchNode,
        *,
        mirror: TreeMirror | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        reconnect_seconds: float = DEFAULT_RECONNECT_SECONDS,
        on_update: Callable[[TreeMirror], None] | None = None,
    ) -> None:
        self._fetch_tree = fetch_tree
        self._fetch_node = fetch_node
        self.mirror = mirror or TreeMirror()
        self._debounce = debounce_seconds
        self._reconnect = reconnect_seconds
        self._on_update = on_update
        self._pending: list[ChangeEvent] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flush_tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._needs_resync = False
        self.passes = 0
        self.full_resyncs = 0

    @property
    def needs_resync(self) -> bool:
        """True while a failed pass still owes the mirror a full resync."""
        return self._needs_resync

    # ── Debounce ──

    def feed(self, event: ChangeEvent) -> None:
        """Queue *event*; the pass runs once the burst goes quiet."""
        self._pending.append(event)
        self._schedule(self._debounce)

    def _schedule(self, delay: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._start_flush)

    def _start_flush(self) -> None:
        self._timer = None
        task = asyncio.create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def flush(self) -> None:
        """Run one pass over the pending burst.

        A pass that fails on a server round trip leaves the mirror owing
        a full resync, retried after the reconnect delay or on the next
        ``flush``/``drain``.
        """
        async with self._lock:
            events, self._pending = self._pending, []
            if not events and not self._needs_resync:
                return
            try:
                if self._needs_resync:
                    # The resync covers whatever this burst reported.
                    self.passes += 1
                    await self.resync()
                    if self._on_update is not None:
                        self._on_update(self.mirror)
                else:
                    await self.reconcile(events)
            except FETCH_ERRORS as exc:
                self._needs_resync = True
                logger.warning(
                    "Reconciliation pass failed (%s: %s), resyncing in %.1fs",
                    type(exc).__name__, exc, self._reconnect,
                )
                self._schedule(self._reconnect)

    async def drain(self) -> None:
        """Run any pending pass now and wait for in-flight passes."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self.flush()
        if self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks))

    # ── Reconciliation ──

    async def resync(self) -> None:
        self.mirror.replace(await self._fetch_tree())
        self._needs_resync = False
        self.full_resyncs += 1
        logger.debug("Full resync: %d top-level node(s)", len(self.mirror.nodes))

    async def reconcile(self, events: list[ChangeEvent]) -> None:
        """One pass over a debounced burst."""
        self.passes += 1
        try:
            if any(e.kind.is_addition for e in events):
                await self.resync()
                return
            refetched: set[str] = set()
            for event in events:
                if event.kind.is_removal:
                    self.mirror.remove(event.path)
                    continue
                if event.kind != ChangeKind.CHANGED or event.path in refetched:
                    continue
                refetched.add(event.path)
                try:
                    node = await self._fetch_node(event.path)
                except Exception as exc:
                    logger.info(
                        "Targeted fetch of %s failed (%s: %s), resyncing",
                        event.path, type(exc).__name__, exc,
                    )
                    await self.resync()
                    return
                if not self.mirror.upsert(node):
                    await self.resync()
                    return
        finally:
            if self._on_update is not None:
                self._on_update(self.mirror)

    # ── Stream loop ──

    async def run(self, stream: EventStream) -> None:
        """Consume *stream* forever, reconnecting after failures.

        A full resync precedes every (re)connection since events may
        have been missed while disconnected.
        """
        while True:
            try:
                await self.resync()
                if self._on_update is not None:
                    self._on_update(self.mirror)
                async for event in stream():
                    self.feed(event)
                logger.info("Change stream ended, reconnecting in %.1fs", self._reconnect)
            except FETCH_ERRORS as exc:
                logger.warning(
                    "Change stream error (%s: %s), reconnecting in %.1fs",
                    type(exc).__name__, exc, self._reconnect,
                )
            await asyncio.sleep(self._reconnect)
