"""Interactive terminal REPL against a DevSphere server."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from rich.console import Console
from rich.text import Text

from devsphere.client.http import ClientRequestError, WorkspaceClient
from devsphere.engine.executor import CLEAR_SCREEN_MARKER
from devsphere.engine.paths import HOME

logger = logging.getLogger(__name__)

EXIT_WORDS = frozenset({"exit", "quit"})


def prompt_text(cwd: str) -> Text:
    text = Text()
    text.append("devsphere", style="bold green")
    text.append(":")
    text.append(cwd or HOME, style="bold blue")
    text.append("$ ")
    return text


def render_response(console: Console, response: dict[str, Any]) -> None:
    """Print one terminal response; the clear marker clears the console."""
    stdout = response.get("stdout") or ""
    if stdout == CLEAR_SCREEN_MARKER:
        console.clear()
        return
    if stdout:
        console.print(Text(stdout.rstrip("\n")))
    stderr = response.get("stderr") or ""
    if stderr:
        console.print(Text(stderr.rstrip("\n"), style="red"))
    code = response.get("code")
    if code not in (0, None):
        console.print(Text(f"[exit {code}]", style="dim red"))


async def run_shell(base_url: str, *, console: Console | None = None) -> int:
    console = console or Console()
    async with WorkspaceClient(base_url) as client:
        try:
            await client.create_session()
        except (ClientRequestError, aiohttp.ClientError, OSError) as exc:
            console.print(Text(f"Cannot reach {base_url}: {exc}", style="bold red"))
            return 1
        cwd = HOME
        console.print(Text(f"Connected to {base_url} (session {client.session_id})", style="dim"))
        while True:
            try:
                line = await asyncio.to_thread(console.input, prompt_text(cwd))
            except (EOFError, KeyboardInterrupt):
                console.print()
                break
            command = line.strip()
            if not command:
                continue
            if command in EXIT_WORDS:
                break
            try:
                response = await client.run_command(command)
            except ClientRequestError as exc:
                console.print(Text(exc.message, style="red"))
                continue
            except (aiohttp.ClientError, OSError) as exc:
                logger.warning("Terminal request failed: %s", exc)
                console.print(Text(f"Connection error: {exc}", style="bold red"))
                continue
            cwd = response.get("cwd") or cwd
            render_response(console, response)
    return 0
