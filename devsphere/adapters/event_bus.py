"""Change notification bus fanning workspace events out to subscribers.

One bus per workspace root, created lazily on the first subscription.
The bus owns the subscriber registry and the filesystem watcher. All
registry mutations and the fan-out loop run under a single lock, and
each subscriber has its own bounded queue so a slow client can never
grow memory without limit.
"""
from __future__ import annotations

import asyncio
import logging
import os
import uuid
from pathlib import Path

from .events import ChangeEvent
from .watcher import WorkspaceWatcher

logger = logging.getLogger(__name__)


class Subscription:
    """One connected watch client: a bounded outgoing queue."""

    def __init__(self, maxsize: int) -> None:
        self.subscription_id = uuid.uuid4().hex[:12]
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def next_event(self, timeout: float | None = None) -> ChangeEvent | None:
        """Next queued event; None on timeout or when the bus closed us."""
        if self.closed and self.queue.empty():
            return None
        get_task = asyncio.ensure_future(self.queue.get())
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {get_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closed_task.cancel()
        if get_task in done:
            return get_task.result()
        get_task.cancel()
        return None


class ChangeNotificationBus:
    """Subscriber registry plus the watcher feeding it."""

    def __init__(
        self,
        root: str | Path,
        *,
        interval: float = 0.5,
        queue_size: int = 1000,
        overflow_policy: str = "drop_oldest",
        stop_when_idle: bool = False,
    ) -> None:
        if overflow_policy not in ("drop_oldest", "disconnect"):
            raise ValueError(f"Unknown overflow policy: {overflow_policy}")
        self._root = Path(root)
        self._queue_size = queue_size
        self._overflow_policy = overflow_policy
        self._stop_when_idle = stop_when_idle
        self._lock = asyncio.Lock()
        self._subscribers: dict[str, Subscription] = {}
        self._watcher = WorkspaceWatcher(self._root, self.publish, interval=interval)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def watching(self) -> bool:
        return self._watcher.running

    @property
    def watcher(self) -> WorkspaceWatcher:
        return self._watcher

    async def subscribe(self) -> Subscription:
        """Register a subscriber; the watcher baseline exists on return."""
        async with self._lock:
            if not self._watcher.running:
                await self._watcher.start()
            sub = Subscription(self._queue_size)
            self._subscribers[sub.subscription_id] = sub
            logger.info(
                "Watch subscriber connected sub=%s active_subscribers=%d",
                sub.subscription_id, len(self._subscribers),
            )
            return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        async with self._lock:
            self._remove_locked(sub)
            if self._stop_when_idle and not self._subscribers:
                await self._watcher.stop()

    def _remove_locked(self, sub: Subscription) -> None:
        sub.close()
        if self._subscribers.pop(sub.subscription_id, None) is not None:
            logger.info(
                "Watch subscriber disconnected sub=%s active_subscribers=%d dropped=%d",
                sub.subscription_id, len(self._subscribers), sub.dropped,
            )

    async def report_delivery_failure(self, sub: Subscription, exc: BaseException) -> None:
        """A write to *sub* failed: log it and drop only that subscriber."""
        logger.warning(
            "Notification delivery failed sub=%s: %s: %s",
            sub.subscription_id, type(exc).__name__, exc,
        )
        await self.unsubscribe(sub)

    async def publish(self, events: list[ChangeEvent]) -> None:
        """Queue *events* for every registered subscriber, in order."""
        async with self._lock:
            overflowed: list[Subscription] = []
            for sub in self._subscribers.values():
                for event in events:
                    if not self._offer(sub, event):
                        overflowed.append(sub)
                        break
            for sub in overflowed:
                logger.warning(
                    "Watch subscriber queue full, disconnecting sub=%s size=%d",
                    sub.subscription_id, self._queue_size,
                )
                self._remove_locked(sub)

    def _offer(self, sub: Subscription, event: ChangeEvent) -> bool:
        try:
            sub.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            if self._overflow_policy == "disconnect":
                return False
        # drop_oldest
        try:
            sub.queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        sub.queue.put_nowait(event)
        sub.dropped += 1
        if sub.dropped == 1 or sub.dropped % 100 == 0:
            logger.warning(
                "Watch subscriber queue full, dropped oldest event sub=%s dropped=%d",
                sub.subscription_id, sub.dropped,
            )
        return True

    async def close(self) -> None:
        async with self._lock:
            for sub in list(self._subscribers.values()):
                self._remove_locked(sub)
            await self._watcher.stop()


# ── Process-wide registry: one bus per workspace root ──

_BUSES: dict[str, ChangeNotificationBus] = {}


def get_change_bus(root: str | Path, **options) -> ChangeNotificationBus:
    """Return the bus for *root*, creating it on first use."""
    key = os.path.realpath(str(root))
    bus = _BUSES.get(key)
    if bus is None:
        bus = ChangeNotificationBus(key, **options)
        _BUSES[key] = bus
        logger.debug("Created change notification bus root=%s", key)
    return bus


async def release_change_bus(root: str | Path) -> None:
    """Close and forget the bus for *root*, if any."""
    bus = _BUSES.pop(os.path.realpath(str(root)), None)
    if bus is not None:
        await bus.close()
