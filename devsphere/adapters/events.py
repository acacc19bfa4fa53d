"""Workspace change events pushed to watch subscribers.

One event per observed filesystem mutation. Paths are relative to the
workspace root and always use ``/`` separators.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    ADDED_DIR = "addedDir"
    REMOVED_DIR = "removedDir"
    CHANGED = "changed"

    @property
    def is_removal(self) -> bool:
        return self in (ChangeKind.REMOVED, ChangeKind.REMOVED_DIR)

    @property
    def is_addition(self) -> bool:
        return self in (ChangeKind.ADDED, ChangeKind.ADDED_DIR)


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    path: str


def event_to_dict(event: ChangeEvent) -> dict[str, Any]:
    """Convert an event to a plain dict for JSON serialization."""
    return {"kind": event.kind.value, "path": event.path}


def dict_to_event(data: dict[str, Any]) -> ChangeEvent:
    """Parse a wire dict back into an event.

    Raises ``ValueError`` for unknown kinds or a missing path.
    """
    path = data.get("path")
    if not isinstance(path, str):
        raise ValueError(f"Change event without a path: {data!r}")
    return ChangeEvent(kind=ChangeKind(data.get("kind")), path=path)


def encode_sse(event: ChangeEvent) -> bytes:
    """Frame one event as a single server-sent ``data:`` message."""
    return f"data: {json.dumps(event_to_dict(event))}\n\n".encode()
