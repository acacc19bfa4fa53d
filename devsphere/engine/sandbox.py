"""Workspace sandbox guard.

Maps virtual paths onto the real workspace directory and enforces that
every resolved path stays inside the workspace root after symlinks
and ``..`` are resolved.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from .errors import SandboxViolationError, WorkspaceRootError
from .paths import HOME, SEP

logger = logging.getLogger(__name__)


class WorkspaceSandbox:
    """Confines paths to a single workspace root.

    ``policy`` decides what happens when a virtual path escapes:
    ``"reset"`` substitutes the root, ``"reject"`` raises
    ``SandboxViolationError``.
    """

    def __init__(self, root: str | Path, policy: str = "reset") -> None:
        if policy not in ("reset", "reject"):
            raise ValueError(f"Unknown sandbox policy: {policy}")
        self._root = Path(os.path.realpath(Path(root).expanduser()))
        self._policy = policy

    @property
    def root(self) -> Path:
        return self._root

    @property
    def policy(self) -> str:
        return self._policy

    def ensure_root(self) -> Path:
        """Create the workspace root if absent."""
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceRootError(str(self._root), str(exc)) from exc
        if not self._root.is_dir():
            raise WorkspaceRootError(str(self._root), "not a directory")
        return self._root

    def contains(self, path: str | Path) -> bool:
        """True when *path* (already canonical) is the root or below it."""
        root = str(self._root)
        candidate = str(path)
        try:
            return os.path.commonpath([root, candidate]) == root
        except ValueError:
            # Different drives on Windows.
            return False

    @staticmethod
    def _relative_part(virtual_path: str) -> str:
        rel = virtual_path
        if rel == HOME:
            rel = ""
        elif rel.startswith((HOME + SEP, HOME + "\\")):
            rel = rel[len(HOME):]
        return rel.lstrip("/\\")

    def _canonical(self, virtual_path: str) -> Path:
        joined = os.path.join(str(self._root), self._relative_part(virtual_path))
        return Path(os.path.realpath(joined))

    def to_real_path(self, virtual_cwd: str) -> Path:
        """Map a virtual cwd to a real directory inside the workspace.

        Applies the configured escape policy. Existence is not checked.
        """
        real = self._canonical(virtual_cwd)
        if self.contains(real):
            return real
        if self._policy == "reject":
            logger.warning(
                "Sandbox violation rejected requested=%r resolved=%s root=%s",
                virtual_cwd, real, self._root,
            )
            raise SandboxViolationError(virtual_cwd, str(self._root))
        logger.warning(
            "Sandbox violation reset to root requested=%r resolved=%s root=%s",
            virtual_cwd, real, self._root,
        )
        return self._root

    def resolve_strict(self, relative_path: str) -> Path:
        """Map a workspace-relative path, always rejecting escapes.

        Used for lookups where substituting the root would return the
        wrong node.
        """
        real = self._canonical(relative_path)
        if not self.contains(real):
            raise SandboxViolationError(relative_path, str(self._root))
        return real

    def relative_posix(self, real_path: str | Path) -> str:
        """Workspace-relative path with ``/`` separators (``""`` for root)."""
        rel = os.path.relpath(str(real_path), str(self._root))
        if rel == ".":
            return ""
        return rel.replace(os.sep, "/")
