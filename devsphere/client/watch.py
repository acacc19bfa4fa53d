"""Live workspace tree view driven by the change stream."""
from __future__ import annotations

import logging

from rich.console import Console
from rich.text import Text
from rich.tree import Tree

from devsphere.client.http import WorkspaceClient
from devsphere.client.reconciler import TreeMirror, WorkspaceReconciler
from devsphere.engine.tree import FileNode

logger = logging.getLogger(__name__)


def _sorted(nodes) -> list[FileNode]:
    # Folders first, then by name; server order is not stable.
    return sorted(nodes, key=lambda n: (not n.is_folder, n.name.lower()))


def _add_nodes(branch: Tree, nodes) -> None:
    for node in _sorted(nodes):
        if node.is_folder:
            child = branch.add(Text(f"{node.name}/", style="bold blue"))
            _add_nodes(child, node.children or ())
        else:
            branch.add(Text(node.name))


def build_rich_tree(nodes: list[FileNode], label: str = "~") -> Tree:
    tree = Tree(Text(label, style="bold"))
    _add_nodes(tree, nodes)
    return tree


async def run_watch(base_url: str, *, console: Console | None = None) -> None:
    console = console or Console()

    def _render(mirror: TreeMirror) -> None:
        console.clear()
        console.print(build_rich_tree(mirror.nodes, label=base_url))

    async with WorkspaceClient(base_url) as client:
        reconciler = WorkspaceReconciler(
            client.fetch_tree,
            client.fetch_node,
            on_update=_render,
        )
        logger.info("Watching workspace at %s", base_url)
        await reconciler.run(client.iter_change_events)
