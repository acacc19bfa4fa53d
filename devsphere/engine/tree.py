"""Directory tree snapshots of the workspace.

Every snapshot is materialized fresh from the filesystem. Children are
returned in OS enumeration order, which is not stable across calls.

Symlinks are never followed: a link to a directory is reported as a
folder with no children, a link to anything else as a file. Recursion
stops at ``max_depth`` levels, leaving deeper folders childless.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

NodeType = Literal["file", "folder"]

DEFAULT_MAX_DEPTH = 32


@dataclass(frozen=True)
class FileNode:
    """One file or folder in a snapshot. ``id`` equals ``relative_path``."""

    name: str
    type: NodeType
    relative_path: str
    children: tuple[FileNode, ...] | None = None

    @property
    def id(self) -> str:
        return self.relative_path

    @property
    def is_folder(self) -> bool:
        return self.type == "folder"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.relative_path,
            "name": self.name,
            "type": self.type,
            "relativePath": self.relative_path,
        }
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileNode:
        rel = data.get("relativePath") or data.get("id") or data["name"]
        children = data.get("children")
        return cls(
            name=data["name"],
            type="folder" if data.get("type") == "folder" else "file",
            relative_path=rel,
            children=(
                tuple(cls.from_dict(c) for c in children)
                if children is not None
                else None
            ),
        )

    def walk(self):
        """Yield this node and every descendant, depth-first."""
        yield self
        for child in self.children or ():
            yield from child.walk()


def _join_rel(rel_base: str, name: str) -> str:
    return f"{rel_base}/{name}" if rel_base else name


def _entry_node(
    entry: os.DirEntry,
    rel_base: str,
    depth: int,
    max_depth: int,
) -> FileNode | None:
    rel = _join_rel(rel_base, entry.name)
    try:
        if entry.is_symlink():
            kind: NodeType = "folder" if entry.is_dir() else "file"
            return FileNode(
                name=entry.name,
                type=kind,
                relative_path=rel,
                children=() if kind == "folder" else None,
            )
        if entry.is_dir(follow_symlinks=False):
            if depth + 1 >= max_depth:
                logger.debug("Snapshot depth ceiling reached at %s", rel)
                children: tuple[FileNode, ...] = ()
            else:
                children = tuple(
                    _scan(Path(entry.path), rel, depth + 1, max_depth)
                )
            return FileNode(
                name=entry.name,
                type="folder",
                relative_path=rel,
                children=children,
            )
    except FileNotFoundError:
        # Removed between enumeration and stat.
        return None
    return FileNode(name=entry.name, type="file", relative_path=rel)


def _scan(
    real_dir: Path,
    rel_base: str,
    depth: int,
    max_depth: int,
) -> list[FileNode]:
    nodes: list[FileNode] = []
    try:
        with os.scandir(real_dir) as it:
            for entry in it:
                node = _entry_node(entry, rel_base, depth, max_depth)
                if node is not None:
                    nodes.append(node)
    except FileNotFoundError:
        return []
    except PermissionError:
        logger.warning("Snapshot skipped unreadable directory %s", real_dir)
        return []
    return nodes


def snapshot(
    real_dir: str | Path,
    rel_base: str = "",
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[FileNode]:
    """Recursively enumerate *real_dir* into a list of nodes.

    A missing directory yields an empty list.
    """
    return _scan(Path(real_dir), rel_base, 0, max_depth)


def snapshot_node(
    real_path: str | Path,
    relative_path: str,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> FileNode | None:
    """Build the node for a single path, or None when it does not exist."""
    path = Path(real_path)
    name = relative_path.rsplit("/", 1)[-1] if relative_path else path.name
    if path.is_symlink():
        kind: NodeType = "folder" if path.is_dir() else "file"
        return FileNode(
            name=name,
            type=kind,
            relative_path=relative_path,
            children=() if kind == "folder" else None,
        )
    if path.is_dir():
        return FileNode(
            name=name,
            type="folder",
            relative_path=relative_path,
            children=tuple(_scan(path, relative_path, 0, max_depth)),
        )
    if path.exists():
        return FileNode(name=name, type="file", relative_path=relative_path)
    return None


async def snapshot_async(
    real_dir: str | Path,
    rel_base: str = "",
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[FileNode]:
    """``snapshot`` on a worker thread so traversal never blocks the loop."""
    return await asyncio.to_thread(
        snapshot, real_dir, rel_base, max_depth=max_depth,
    )


def tree_to_dicts(nodes: list[FileNode]) -> list[dict[str, Any]]:
    return [node.to_dict() for node in nodes]
