"""Terminal sessions: per-client virtual cwd and command dispatch.

Each session is keyed by a client-supplied token and carries its own
virtual cwd, so concurrent clients never share working-directory
state. ``cd`` and the clear-screen sentinel are handled here without
spawning a process; everything else runs through the execution
gateway in the session's confined directory.
"""
from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from .errors import DirectoryNotFoundError, InvalidRequestError
from .executor import (
    CLEAR_SCREEN_MARKER,
    ExecutionGateway,
    is_clear_command,
)
from .paths import HOME, from_client_cwd, resolve
from .sandbox import WorkspaceSandbox
from .tree import DEFAULT_MAX_DEPTH, FileNode, snapshot_async

logger = logging.getLogger(__name__)

MAX_HISTORY = 500


@dataclass
class TerminalSession:
    """State for a single terminal session."""

    session_id: str
    cwd: str = HOME
    created_at: float = field(default_factory=time.time)
    last_touched_at: float = field(default_factory=time.time)
    # Commands run in this session; lives only as long as the session.
    history: deque[str] = field(default_factory=lambda: deque(maxlen=MAX_HISTORY))

    def touch(self) -> None:
        self.last_touched_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "cwd": self.cwd,
            "created_at": self.created_at,
            "last_touched_at": self.last_touched_at,
            "history": list(self.history),
        }


class SessionRegistry:
    """Session token -> TerminalSession."""

    def __init__(self) -> None:
        self._sessions: dict[str, TerminalSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> TerminalSession | None:
        return self._sessions.get(session_id)

    def create(self, session_id: str | None = None) -> TerminalSession:
        sid = session_id or uuid.uuid4().hex
        session = TerminalSession(session_id=sid)
        self._sessions[sid] = session
        logger.info("Terminal session created session=%s active=%d", sid, len(self._sessions))
        return session

    def get_or_create(self, session_id: str) -> TerminalSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = self.create(session_id)
        return session

    def remove(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Terminal session removed session=%s active=%d", session_id, len(self._sessions))
        return removed

    def evict_idle(self, max_idle_seconds: float, now: float | None = None) -> list[str]:
        """Drop sessions untouched for longer than *max_idle_seconds*."""
        if max_idle_seconds <= 0:
            return []
        now = time.time() if now is None else now
        evicted = [
            sid for sid, s in self._sessions.items()
            if now - s.last_touched_at >= max_idle_seconds
        ]
        for sid in evicted:
            self._sessions.pop(sid, None)
            logger.info("Evicted idle terminal session %s", sid)
        return evicted


@dataclass
class TerminalResponse:
    stdout: str
    stderr: str
    code: int | None
    cwd: str
    workspace_tree: list[FileNode] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "code": self.code,
            "cwd": self.cwd,
        }
        if self.workspace_tree is not None:
            data["workspaceTree"] = [n.to_dict() for n in self.workspace_tree]
        return data


def parse_cd(command: str) -> str | None:
    """Return the ``cd`` target, or None when *command* is not a cd."""
    trimmed = command.strip()
    if trimmed == "cd":
        return HOME
    if not trimmed.startswith("cd ") and not trimmed.startswith("cd\t"):
        return None
    target = trimmed[3:].strip()
    if len(target) >= 2 and target[0] == target[-1] and target[0] in "'\"":
        target = target[1:-1]
    return target


class TerminalService:
    """Runs terminal commands against the sandboxed workspace."""

    def __init__(
        self,
        sandbox: WorkspaceSandbox,
        gateway: ExecutionGateway,
        *,
        sessions: SessionRegistry | None = None,
        tree_max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._sandbox = sandbox
        self._gateway = gateway
        self._sessions = sessions if sessions is not None else SessionRegistry()
        self._tree_max_depth = tree_max_depth

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def sandbox(self) -> WorkspaceSandbox:
        return self._sandbox

    async def workspace_tree(self) -> list[FileNode]:
        return await snapshot_async(
            self._sandbox.root, max_depth=self._tree_max_depth,
        )

    async def handle(
        self,
        command: Any,
        *,
        session_id: Any = None,
        cwd: Any = None,
    ) -> TerminalResponse:
        """Dispatch one command.

        With a session token the session's cwd is authoritative and
        ``cd`` updates it; without one the request runs statelessly
        from *cwd* and the resolved cwd is echoed back.
        """
        if not isinstance(command, str) or not command.strip():
            raise InvalidRequestError("No command provided")
        if session_id is not None and (not isinstance(session_id, str) or not session_id):
            raise InvalidRequestError("session_id must be a non-empty string")
        if cwd is not None and not isinstance(cwd, str):
            raise InvalidRequestError("cwd must be a string")

        session = self._sessions.get_or_create(session_id) if session_id else None
        if session is not None:
            session.touch()
            session.history.append(command.strip())
            virtual_cwd = session.cwd
        else:
            virtual_cwd = from_client_cwd(cwd)

        target = parse_cd(command)
        if target is not None:
            new_cwd = resolve(virtual_cwd, target)
            if session is not None:
                session.cwd = new_cwd
            logger.debug(
                "cd session=%s %r + %r -> %r",
                session.session_id if session else "-", virtual_cwd, target, new_cwd,
            )
            return TerminalResponse(stdout="", stderr="", code=0, cwd=new_cwd)

        if is_clear_command(command):
            return TerminalResponse(
                stdout=CLEAR_SCREEN_MARKER,
                stderr="",
                code=0,
                cwd=virtual_cwd,
                workspace_tree=await self.workspace_tree(),
            )

        real_cwd = self._sandbox.to_real_path(virtual_cwd)
        if not real_cwd.is_dir():
            raise DirectoryNotFoundError(virtual_cwd, str(real_cwd))

        logger.info(
            "Terminal command session=%s cwd=%s real=%s",
            session.session_id if session else "-", virtual_cwd, real_cwd,
        )
        result = await self._gateway.run(command.strip(), real_cwd)
        return TerminalResponse(
            stdout=result.stdout,
            stderr=result.stderr,
            code=result.exit_code,
            cwd=virtual_cwd,
            workspace_tree=await self.workspace_tree(),
        )
