"""Exception hierarchy for the workspace backend.

Each per-request failure mode maps to a stable ``kind`` string and an
HTTP status so the web layer can render it without inspecting types.
Command execution failures are not exceptions: they are returned as
data in ``ExecutionResult``.
"""
from __future__ import annotations


class WorkspaceError(Exception):
    """Base exception for all workspace errors."""

    kind: str = "WorkspaceError"
    status: int = 500


class InvalidRequestError(WorkspaceError):
    """Malformed client input. Raised before any side effect."""

    kind = "InvalidRequest"
    status = 400

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class DirectoryNotFoundError(WorkspaceError):
    """The resolved working directory does not exist."""

    kind = "DirectoryNotFound"
    status = 400

    def __init__(self, virtual_cwd: str, real_path: str):
        self.virtual_cwd = virtual_cwd
        self.real_path = real_path
        super().__init__(f"Directory does not exist: {virtual_cwd}")


class SandboxViolationError(WorkspaceError):
    """A path resolved outside the workspace root (``reject`` policy)."""

    kind = "SandboxViolation"
    status = 400

    def __init__(self, requested: str, root: str):
        self.requested = requested
        self.root = root
        super().__init__(f"Path escapes the workspace: {requested}")


class NodeNotFoundError(WorkspaceError):
    """Targeted lookup of a workspace path that does not exist."""

    kind = "NotFound"
    status = 404

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No such file or folder: {path}")


class RunnerError(WorkspaceError):
    """The remote code runner failed or returned an error status."""

    kind = "RunnerError"
    status = 502

    def __init__(self, reason: str, upstream_status: int | None = None):
        self.reason = reason
        self.upstream_status = upstream_status
        super().__init__(reason)


class ConfigError(WorkspaceError):
    """Invalid configuration value. Fatal at startup."""

    kind = "ConfigError"

    def __init__(self, field_name: str, value: object, reason: str):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Invalid config {field_name}={value!r}: {reason}")


class WorkspaceRootError(WorkspaceError):
    """The workspace root cannot be created or is not a directory."""

    kind = "WorkspaceRootError"

    def __init__(self, root: str, reason: str):
        self.root = root
        self.reason = reason
        super().__init__(f"Cannot use workspace root {root}: {reason}")
