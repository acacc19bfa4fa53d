from __future__ import annotations

from rich.console import Console

from devsphere.client.shell import prompt_text, render_response
from devsphere.client.watch import build_rich_tree
from devsphere.engine.executor import CLEAR_SCREEN_MARKER
from devsphere.engine.tree import FileNode


def _console() -> Console:
    return Console(record=True, width=80, force_terminal=False, color_system=None)


def test_render_stdout_and_stderr() -> None:
    console = _console()
    render_response(console, {"stdout": "hello\n", "stderr": "boom\n", "code": 2})
    text = console.export_text()
    assert "hello" in text
    assert "boom" in text
    assert "[exit 2]" in text


def test_render_clear_marker_prints_nothing() -> None:
    console = _console()
    render_response(console, {"stdout": CLEAR_SCREEN_MARKER, "stderr": "", "code": 0})
    assert CLEAR_SCREEN_MARKER not in console.export_text()


def test_prompt_shows_cwd() -> None:
    assert prompt_text("/src").plain == "devsphere:/src$ "
    assert prompt_text("").plain == "devsphere:~$ "


def test_rich_tree_lists_folders_first() -> None:
    nodes = [
        FileNode("b.txt", "file", "b.txt"),
        FileNode("src", "folder", "src", (FileNode("main.py", "file", "src/main.py"),)),
        FileNode("a.txt", "file", "a.txt"),
    ]
    console = _console()
    console.print(build_rich_tree(nodes, label="ws"))
    lines = [line.strip() for line in console.export_text().splitlines() if line.strip()]
    assert lines[0] == "ws"
    assert "src/" in lines[1]
    assert "main.py" in lines[2]
    assert "a.txt" in lines[3]
    assert "b.txt" in lines[4]
