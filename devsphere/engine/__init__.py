"""DevSphere engine: sandboxed workspace terminal core.

Pure building blocks with no HTTP dependency: virtual path resolution,
the workspace sandbox guard, tree snapshots, shell execution and
terminal sessions.
"""
from .config import WorkspaceConfig
from .errors import (
    ConfigError,
    DirectoryNotFoundError,
    InvalidRequestError,
    NodeNotFoundError,
    RunnerError,
    SandboxViolationError,
    WorkspaceError,
    WorkspaceRootError,
)
from .executor import (
    CLEAR_SCREEN_MARKER,
    CommandTranslator,
    ExecutionGateway,
    ExecutionResult,
    WINDOWS_COMMAND_MAP,
)
from .paths import HOME, normalize_virtual_path, resolve
from .sandbox import WorkspaceSandbox
from .terminal import SessionRegistry, TerminalResponse, TerminalService, TerminalSession
from .tree import FileNode, snapshot, snapshot_node

__all__ = [
    # Config + errors
    "WorkspaceConfig",
    "ConfigError",
    "DirectoryNotFoundError",
    "InvalidRequestError",
    "NodeNotFoundError",
    "RunnerError",
    "SandboxViolationError",
    "WorkspaceError",
    "WorkspaceRootError",
    # Paths + sandbox
    "HOME",
    "normalize_virtual_path",
    "resolve",
    "WorkspaceSandbox",
    # Tree
    "FileNode",
    "snapshot",
    "snapshot_node",
    # Execution
    "CLEAR_SCREEN_MARKER",
    "CommandTranslator",
    "ExecutionGateway",
    "ExecutionResult",
    "WINDOWS_COMMAND_MAP",
    # Sessions
    "SessionRegistry",
    "TerminalResponse",
    "TerminalService",
    "TerminalSession",
]
