from __future__ import annotations

import os
from pathlib import Path

import pytest

from devsphere.engine.tree import (
    FileNode,
    snapshot,
    snapshot_async,
    snapshot_node,
    tree_to_dicts,
)


def _ids(nodes) -> set[str]:
    return {n.id for root in nodes for n in root.walk()}


def test_empty_workspace_snapshot(tmp_path: Path) -> None:
    assert snapshot(tmp_path) == []


def test_missing_directory_snapshot(tmp_path: Path) -> None:
    assert snapshot(tmp_path / "gone") == []


def test_single_file(tmp_path: Path) -> None:
    (tmp_path / "hello.txt").write_text("hi")
    nodes = snapshot(tmp_path)
    assert len(nodes) == 1
    node = nodes[0]
    assert node.type == "file"
    assert node.relative_path == "hello.txt"
    assert node.id == "hello.txt"
    assert node.children is None
    assert node.to_dict() == {
        "id": "hello.txt",
        "name": "hello.txt",
        "type": "file",
        "relativePath": "hello.txt",
    }


def test_nested_tree(tmp_path: Path) -> None:
    (tmp_path / "a" / "b").mkdir(parents=True)
    (tmp_path / "a" / "b" / "c.txt").write_text("")
    (tmp_path / "a" / "d.txt").write_text("")
    (tmp_path / "top.txt").write_text("")

    nodes = snapshot(tmp_path)
    assert _ids(nodes) == {"a", "a/b", "a/b/c.txt", "a/d.txt", "top.txt"}

    folder = next(n for n in nodes if n.name == "a")
    assert folder.is_folder
    assert {c.name for c in folder.children} == {"b", "d.txt"}


def test_empty_folder_has_empty_children(tmp_path: Path) -> None:
    (tmp_path / "empty").mkdir()
    [node] = snapshot(tmp_path)
    assert node.type == "folder"
    assert node.children == ()
    assert node.to_dict()["children"] == []


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinked_directory_is_not_followed(tmp_path: Path) -> None:
    target = tmp_path / "real"
    target.mkdir()
    (target / "inner.txt").write_text("")
    ws = tmp_path / "ws"
    ws.mkdir()
    os.symlink(target, ws / "link")
    os.symlink(ws, ws / "loop")

    nodes = snapshot(ws)
    by_name = {n.name: n for n in nodes}
    assert by_name["link"].type == "folder"
    assert by_name["link"].children == ()
    assert by_name["loop"].children == ()


def test_depth_ceiling(tmp_path: Path) -> None:
    (tmp_path / "a" / "b" / "c").mkdir(parents=True)
    [a] = snapshot(tmp_path, max_depth=2)
    [b] = a.children
    assert b.name == "b"
    assert b.children == ()


def test_snapshot_node(tmp_path: Path) -> None:
    (tmp_path / "dir").mkdir()
    (tmp_path / "dir" / "f.txt").write_text("")

    folder = snapshot_node(tmp_path / "dir", "dir")
    assert folder.type == "folder"
    assert [c.relative_path for c in folder.children] == ["dir/f.txt"]

    leaf = snapshot_node(tmp_path / "dir" / "f.txt", "dir/f.txt")
    assert leaf == FileNode("f.txt", "file", "dir/f.txt")

    assert snapshot_node(tmp_path / "missing", "missing") is None


def test_from_dict_restores_nested_nodes(tmp_path: Path) -> None:
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "x.py").write_text("")
    nodes = snapshot(tmp_path)
    restored = [FileNode.from_dict(d) for d in tree_to_dicts(nodes)]
    assert restored == nodes


@pytest.mark.asyncio
async def test_snapshot_async(tmp_path: Path) -> None:
    (tmp_path / "one.txt").write_text("")
    nodes = await snapshot_async(tmp_path)
    assert [n.name for n in nodes] == ["one.txt"]
