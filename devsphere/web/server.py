"""HTTP + SSE server for the DevSphere workspace.

Exposes the workspace tree, the sandboxed terminal and a Server-Sent
Events stream of filesystem changes. Terminal state is kept per
session token (``X-Session-Id`` header or ``session_id`` body field).

Usage:
    devsphere serve [--root DIR] [--port PORT]
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from typing import Any

import aiohttp
from aiohttp import web

from devsphere.adapters.event_bus import (
    ChangeNotificationBus,
    get_change_bus,
    release_change_bus,
)
from devsphere.adapters.events import encode_sse
from devsphere.engine.config import WorkspaceConfig
from devsphere.engine.errors import (
    InvalidRequestError,
    NodeNotFoundError,
    RunnerError,
    WorkspaceError,
)
from devsphere.engine.executor import CommandTranslator, ExecutionGateway
from devsphere.engine.sandbox import WorkspaceSandbox
from devsphere.engine.terminal import TerminalService
from devsphere.engine.tree import snapshot_node, tree_to_dicts
from devsphere.shared.services.code_runner import CodeRunner

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"
REQUEST_ID_HEADER = "x-devsphere-request-id"

# Seconds between SSE keepalive comments.
SSE_KEEPALIVE_SECONDS = 15.0
# How often an idle watch stream checks whether its client went away.
SSE_DISCONNECT_POLL_SECONDS = 1.0


class WorkspaceServer:
    """HTTP routing, SSE fan-out and session bookkeeping.

    All terminal semantics live in ``TerminalService``; all change
    detection lives in the notification bus.
    """

    def __init__(
        self,
        config: WorkspaceConfig | None = None,
        *,
        code_runner: CodeRunner | None = None,
    ) -> None:
        self._config = config or WorkspaceConfig()
        self._sandbox = WorkspaceSandbox(
            self._config.root_path, policy=self._config.sandbox_policy,
        )
        translator = CommandTranslator()
        for token, template in self._config.command_map.items():
            translator.add_rule(token, template)
        gateway = ExecutionGateway(
            translator,
            timeout=self._config.command_timeout,
            max_output_chars=self._config.max_output_chars,
        )
        self._terminal = TerminalService(
            self._sandbox, gateway, tree_max_depth=self._config.tree_max_depth,
        )
        self._runner = code_runner or CodeRunner(
            self._config.piston_url,
            timeout_seconds=self._config.runner_timeout_seconds,
        )
        self._bus: ChangeNotificationBus | None = None
        self._eviction_task: asyncio.Task | None = None
        self._started_at = time.time()
        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._app.on_startup.append(self._on_startup)
        self._app.on_cleanup.append(self._on_cleanup)
        self._setup_routes()
        logger.info(
            "WorkspaceServer init root=%s host=%s port=%s policy=%s timeout=%s pid=%s",
            self._sandbox.root, self._config.host, self._config.port,
            self._config.sandbox_policy, self._config.command_timeout, os.getpid(),
        )

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def sandbox(self) -> WorkspaceSandbox:
        return self._sandbox

    @property
    def terminal(self) -> TerminalService:
        return self._terminal

    @property
    def bus(self) -> ChangeNotificationBus:
        """The workspace's notification bus, created on first use."""
        if self._bus is None:
            self._bus = get_change_bus(
                self._sandbox.root,
                interval=self._config.watch_interval_seconds,
                queue_size=self._config.watch_queue_size,
                overflow_policy=self._config.watch_overflow_policy,
                stop_when_idle=self._config.watch_stop_when_idle,
            )
        return self._bus

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get(REQUEST_ID_HEADER, str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
        except WorkspaceError as exc:
            response = web.json_response(
                {"error": str(exc), "kind": exc.kind}, status=exc.status,
            )
        except web.HTTPException:
            raise
        except Exception as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            return web.json_response(
                {"error": str(exc) or "Internal Server Error"}, status=500,
            )
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "HTTP %s %s req=%s status=%s duration_ms=%.1f",
            request.method, request.path_qs, req_id,
            getattr(response, "status", "?"), elapsed_ms,
        )
        return response

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/files", self._handle_files)
        r.add_post("/terminal", self._handle_terminal)
        r.add_get("/watch", self._handle_watch)
        r.add_post("/runcode", self._handle_runcode)
        # Terminal sessions
        r.add_post("/sessions", self._handle_create_session)
        r.add_get("/sessions/{id}", self._handle_get_session)
        r.add_delete("/sessions/{id}", self._handle_remove_session)

    # ── Lifecycle ──

    async def _on_startup(self, app: web.Application) -> None:
        # Fatal if the root cannot be created.
        self._sandbox.ensure_root()
        if self._config.session_inactivity_seconds > 0:
            self._eviction_task = asyncio.create_task(self._session_eviction_loop())

    async def _on_cleanup(self, app: web.Application) -> None:
        if self._eviction_task is not None:
            self._eviction_task.cancel()
            try:
                await self._eviction_task
            except asyncio.CancelledError:
                pass
            self._eviction_task = None
        if self._bus is not None:
            await release_change_bus(self._sandbox.root)
            self._bus = None
        await self._runner.close()

    async def start(self) -> None:
        """Start the server and block until cancelled."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        await site.start()
        logger.info(
            "DevSphere server listening on %s:%d root=%s",
            self._config.host, self._config.port, self._sandbox.root,
        )
        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await runner.cleanup()

    async def _session_eviction_loop(self) -> None:
        max_idle = self._config.session_inactivity_seconds
        interval = min(60.0, max(1.0, max_idle / 4))
        try:
            while True:
                await asyncio.sleep(interval)
                evicted = self._terminal.sessions.evict_idle(max_idle)
                if evicted:
                    logger.info(
                        "Evicted %d idle session(s) after %.1f minutes",
                        len(evicted), max_idle / 60.0,
                    )
        except asyncio.CancelledError:
            pass

    # ── Helpers ──

    @staticmethod
    async def _read_json(request: web.Request) -> dict[str, Any]:
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidRequestError(f"Malformed JSON body: {exc}") from exc
        if not isinstance(body, dict):
            raise InvalidRequestError("Request body must be a JSON object")
        return body

    # ── HTTP handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "workspace_root": str(self._sandbox.root),
            "subscribers": self._bus.subscriber_count if self._bus else 0,
            "sessions": len(self._terminal.sessions),
        })

    async def _handle_files(self, request: web.Request) -> web.Response:
        rel = request.query.get("path", "").strip().strip("/")
        if not rel:
            self._sandbox.ensure_root()
            tree = await self._terminal.workspace_tree()
            return web.json_response(tree_to_dicts(tree))

        real = self._sandbox.resolve_strict(rel)
        relative = self._sandbox.relative_posix(real)
        if not relative:
            # The path collapsed onto the root itself.
            tree = await self._terminal.workspace_tree()
            return web.json_response(tree_to_dicts(tree))
        node = await asyncio.to_thread(
            snapshot_node, real, relative, max_depth=self._config.tree_max_depth,
        )
        if node is None:
            raise NodeNotFoundError(rel)
        return web.json_response(node.to_dict())

    async def _handle_terminal(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        session_id = request.headers.get(SESSION_HEADER) or body.get("session_id")
        response = await self._terminal.handle(
            body.get("command"),
            session_id=session_id,
            cwd=body.get("cwd"),
        )
        payload = response.to_dict()
        if session_id:
            payload["session_id"] = session_id
        return web.json_response(payload)

    async def _handle_watch(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
            },
        )
        await response.prepare(request)

        bus = self.bus
        sub = await bus.subscribe()
        req_id = request.get("req_id", "unknown")
        logger.info("SSE client connected req=%s sub=%s", req_id, sub.subscription_id)
        last_write = time.monotonic()
        try:
            # Comment line: tells the client the subscription is live.
            await response.write(b": connected\n\n")
            while not sub.closed:
                event = await sub.next_event(timeout=SSE_DISCONNECT_POLL_SECONDS)
                if event is not None:
                    await response.write(encode_sse(event))
                    last_write = time.monotonic()
                    continue
                transport = request.transport
                if transport is None or transport.is_closing():
                    break
                if time.monotonic() - last_write >= SSE_KEEPALIVE_SECONDS:
                    await response.write(b": keepalive\n\n")
                    last_write = time.monotonic()
        except (OSError, aiohttp.ClientConnectionError) as exc:
            # Any failed write drops this subscriber only.
            await bus.report_delivery_failure(sub, exc)
        except asyncio.CancelledError:
            pass
        finally:
            await bus.unsubscribe(sub)
            logger.info("SSE client disconnected req=%s sub=%s", req_id, sub.subscription_id)
        return response

    async def _handle_runcode(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        code = body.get("code")
        if not code or not isinstance(code, str):
            return web.json_response({"output": "No code provided"}, status=400)
        language = body.get("language")
        if language is not None and not isinstance(language, str):
            raise InvalidRequestError("language must be a string")
        try:
            result = await self._runner.run(code, language)
        except RunnerError as exc:
            return web.json_response(
                {"output": f"Server Error:\n{exc.reason}", "error": exc.reason, "kind": exc.kind},
                status=exc.status,
            )
        return web.json_response(result)

    async def _handle_create_session(self, request: web.Request) -> web.Response:
        session = self._terminal.sessions.create()
        return web.json_response(
            {"session_id": session.session_id, "cwd": session.cwd}, status=201,
        )

    async def _handle_get_session(self, request: web.Request) -> web.Response:
        session_id = request.match_info["id"]
        session = self._terminal.sessions.get(session_id)
        if session is None:
            return web.json_response({"error": f"Session {session_id} not found"}, status=404)
        return web.json_response(session.to_dict())

    async def _handle_remove_session(self, request: web.Request) -> web.Response:
        session_id = request.match_info["id"]
        if not self._terminal.sessions.remove(session_id):
            return web.json_response({"error": f"Session {session_id} not found"}, status=404)
        return web.json_response({"status": "removed"})
