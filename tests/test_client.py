from __future__ import annotations

import asyncio
import contextlib
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import test_utils

from devsphere.adapters.events import ChangeEvent, ChangeKind
from devsphere.client.http import ClientRequestError, WorkspaceClient, parse_sse_data
from devsphere.engine.config import WorkspaceConfig
from devsphere.web.server import WorkspaceServer

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX shell required")


@contextlib.asynccontextmanager
async def _live(tmp_path: Path):
    config = WorkspaceConfig(
        workspace_root=str(tmp_path / "ws"),
        watch_interval_seconds=0.05,
        session_inactivity_minutes=0,
    )
    runner = MagicMock()
    runner.close = AsyncMock()
    server = WorkspaceServer(config, code_runner=runner)
    test_client = test_utils.TestClient(test_utils.TestServer(server.app))
    await test_client.start_server()
    ws = WorkspaceClient(str(test_client.make_url("/")))
    try:
        yield server, ws
    finally:
        await ws.close()
        await test_client.close()


def test_parse_sse_data() -> None:
    lines = [
        ": connected\n",
        "\n",
        'data: {"kind": "added", "path": "a"}\n',
        "\n",
        "event: ignored\n",
        "data: line1\n",
        "data:line2\n",
        "\n",
        "data: incomplete\n",
    ]
    assert parse_sse_data(lines) == ['{"kind": "added", "path": "a"}', "line1\nline2"]


def test_client_request_error_message() -> None:
    err = ClientRequestError(404, "No such file or folder: x", "NotFound")
    assert err.status == 404
    assert err.kind == "NotFound"
    assert "404" in str(err)


@pytest.mark.asyncio
async def test_fetch_tree_and_node(tmp_path: Path) -> None:
    async with _live(tmp_path) as (server, ws):
        (server.sandbox.root / "docs").mkdir()
        (server.sandbox.root / "docs" / "readme.md").write_text("")

        tree = await ws.fetch_tree()
        assert [n.id for n in tree] == ["docs"]
        assert [c.id for c in tree[0].children] == ["docs/readme.md"]

        node = await ws.fetch_node("docs/readme.md")
        assert node.type == "file"

        with pytest.raises(ClientRequestError) as exc_info:
            await ws.fetch_node("missing")
        assert exc_info.value.status == 404
        assert exc_info.value.kind == "NotFound"


@pytest.mark.asyncio
async def test_session_commands(tmp_path: Path) -> None:
    async with _live(tmp_path) as (_, ws):
        sid = await ws.create_session()
        assert ws.session_id == sid

        body = await ws.run_command("cd projects")
        assert body["cwd"] == "/projects"
        info = await ws.get_session()
        assert info["cwd"] == "/projects"

        with pytest.raises(ClientRequestError) as exc_info:
            await ws.run_command("   ")
        assert exc_info.value.status == 400
        assert exc_info.value.kind == "InvalidRequest"


@posix_only
@pytest.mark.asyncio
async def test_stateless_command(tmp_path: Path) -> None:
    async with _live(tmp_path) as (_, ws):
        body = await ws.run_command("echo hi", cwd="")
        assert body["stdout"] == "hi\n"
        assert body["workspaceTree"] == []


@pytest.mark.asyncio
async def test_iter_change_events(tmp_path: Path) -> None:
    async with _live(tmp_path) as (server, ws):
        events = ws.iter_change_events()
        first = asyncio.ensure_future(events.__anext__())
        try:
            for _ in range(100):
                if server.bus.subscriber_count:
                    break
                await asyncio.sleep(0.02)
            assert server.bus.subscriber_count == 1

            (server.sandbox.root / "hello.txt").write_text("hi")
            event = await asyncio.wait_for(first, 5)
            assert event == ChangeEvent(ChangeKind.ADDED, "hello.txt")
        finally:
            if not first.done():
                first.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await first
            await events.aclose()
