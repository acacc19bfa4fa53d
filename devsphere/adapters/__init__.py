"""Adapters package - filesystem change notification pipeline.

Polling watcher, change events and the bus that fans them out to
connected watch clients.
"""
from __future__ import annotations

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "ChangeNotificationBus",
    "Subscription",
    "WorkspaceWatcher",
    "get_change_bus",
    "release_change_bus",
]

from devsphere.adapters.events import ChangeEvent, ChangeKind
from devsphere.adapters.event_bus import (
    ChangeNotificationBus,
    Subscription,
    get_change_bus,
    release_change_bus,
)
from devsphere.adapters.watcher import WorkspaceWatcher
