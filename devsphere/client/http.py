"""aiohttp client for a running DevSphere server."""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

import aiohttp

from devsphere.adapters.events import ChangeEvent, dict_to_event
from devsphere.engine.tree import FileNode

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"


class ClientRequestError(Exception):
    """The server answered with an error status."""

    def __init__(self, status: int, message: str, kind: str | None = None) -> None:
        self.status = status
        self.message = message
        self.kind = kind
        super().__init__(f"HTTP {status}: {message}")


def parse_sse_data(lines: Iterable[str]) -> list[str]:
    """Collect the ``data:`` payloads of complete SSE messages.

    Comment lines (``:`` prefix) and other fields are ignored; a
    message ends at a blank line and multi-line data is joined with
    ``\\n``.
    """
    payloads: list[str] = []
    data: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                payloads.append("\n".join(data))
                data = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            value = line[5:]
            data.append(value[1:] if value.startswith(" ") else value)
    return payloads


class WorkspaceClient:
    """Talks to ``/files``, ``/terminal``, ``/sessions`` and ``/watch``."""

    def __init__(
        self,
        base_url: str,
        *,
        session_id: str | None = None,
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self.session_id = session_id
        self._http = http
        self._owns_http = http is None

    async def __aenter__(self) -> WorkspaceClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _client(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
            self._owns_http = True
        return self._http

    def _headers(self) -> dict[str, str]:
        return {SESSION_HEADER: self.session_id} if self.session_id else {}

    @staticmethod
    async def _json_or_raise(resp: aiohttp.ClientResponse) -> Any:
        try:
            body = await resp.json(content_type=None)
        except (json.JSONDecodeError, aiohttp.ContentTypeError):
            body = None
        if resp.status >= 400:
            if isinstance(body, dict):
                message = body.get("error") or body.get("output") or resp.reason
                raise ClientRequestError(resp.status, str(message), body.get("kind"))
            raise ClientRequestError(resp.status, str(resp.reason))
        return body

    async def fetch_tree(self) -> list[FileNode]:
        async with self._client().get(f"{self._base_url}/files") as resp:
            body = await self._json_or_raise(resp)
        return [FileNode.from_dict(item) for item in body or []]

    async def fetch_node(self, relative_path: str) -> FileNode:
        async with self._client().get(
            f"{self._base_url}/files", params={"path": relative_path},
        ) as resp:
            body = await self._json_or_raise(resp)
        return FileNode.from_dict(body)

    async def create_session(self) -> str:
        async with self._client().post(f"{self._base_url}/sessions") as resp:
            body = await self._json_or_raise(resp)
        self.session_id = body["session_id"]
        return self.session_id

    async def get_session(self) -> dict[str, Any]:
        if not self.session_id:
            raise ValueError("No session to fetch")
        async with self._client().get(
            f"{self._base_url}/sessions/{self.session_id}",
        ) as resp:
            return await self._json_or_raise(resp)

    async def run_command(self, command: str, cwd: str | None = None) -> dict[str, Any]:
        """POST one terminal command; returns the decoded response body."""
        payload: dict[str, Any] = {"command": command}
        if cwd is not None:
            payload["cwd"] = cwd
        async with self._client().post(
            f"{self._base_url}/terminal", json=payload, headers=self._headers(),
        ) as resp:
            return await self._json_or_raise(resp)

    async def iter_change_events(self) -> AsyncIterator[ChangeEvent]:
        """Yield events from ``/watch`` until the server closes the stream."""
        timeout = aiohttp.ClientTimeout(total=None, sock_read=None)
        async with self._client().get(
            f"{self._base_url}/watch", timeout=timeout,
        ) as resp:
            if resp.status >= 400:
                raise ClientRequestError(resp.status, str(resp.reason))
            pending: list[str] = []
            async for raw in resp.content:
                line = raw.decode("utf-8", errors="replace")
                pending.append(line)
                if line.strip():
                    continue
                for payload in parse_sse_data(pending):
                    try:
                        yield dict_to_event(json.loads(payload))
                    except ValueError:
                        logger.warning("Ignoring malformed change event: %s", payload[:200])
                pending = []

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
