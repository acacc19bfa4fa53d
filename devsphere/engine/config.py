"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via DEVSPHERE_* env vars,
a YAML file (see ``yaml_config``), or CLI flags.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger(__name__)

SANDBOX_POLICIES = ("reset", "reject")
OVERFLOW_POLICIES = ("drop_oldest", "disconnect")

DEFAULT_PISTON_URL = "https://emkc.org/api/v2/piston/execute"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class WorkspaceConfig:
    """Workspace server configuration."""

    # Single directory every session is confined to. Created on demand.
    workspace_root: str = "user_workspace"

    host: str = "127.0.0.1"
    port: int = 3001

    # Max wall-clock time for one terminal command.
    # Set to 0 (or a negative value) to disable the timeout.
    command_timeout_seconds: float = 120.0
    # Per-stream cap on captured stdout/stderr characters.
    max_output_chars: int = 200_000
    # "reset" substitutes the workspace root for escaping paths,
    # "reject" fails the request with SandboxViolation.
    sandbox_policy: str = "reset"
    # Recursion ceiling for directory tree snapshots.
    tree_max_depth: int = 32

    # Change notification bus
    watch_interval_seconds: float = 0.5
    watch_queue_size: int = 1000
    watch_overflow_policy: str = "drop_oldest"
    # Stop the watcher when the last subscriber disconnects.
    watch_stop_when_idle: bool = False

    # <= 0 disables idle session eviction.
    session_inactivity_minutes: float = 60.0

    # Remote code runner (/runcode)
    piston_url: str = DEFAULT_PISTON_URL
    runner_timeout_seconds: float = 30.0

    log_level: str = "INFO"

    # Extra Windows command rewrite rules: first token -> template.
    command_map: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.sandbox_policy not in SANDBOX_POLICIES:
            raise ConfigError(
                "sandbox_policy", self.sandbox_policy,
                f"expected one of {', '.join(SANDBOX_POLICIES)}",
            )
        if self.watch_overflow_policy not in OVERFLOW_POLICIES:
            raise ConfigError(
                "watch_overflow_policy", self.watch_overflow_policy,
                f"expected one of {', '.join(OVERFLOW_POLICIES)}",
            )
        if self.watch_queue_size < 1:
            raise ConfigError(
                "watch_queue_size", self.watch_queue_size, "must be >= 1",
            )
        if self.watch_interval_seconds <= 0:
            raise ConfigError(
                "watch_interval_seconds", self.watch_interval_seconds,
                "must be > 0",
            )
        if self.tree_max_depth < 1:
            raise ConfigError(
                "tree_max_depth", self.tree_max_depth, "must be >= 1",
            )
        if self.max_output_chars < 1:
            raise ConfigError(
                "max_output_chars", self.max_output_chars, "must be >= 1",
            )

    @property
    def root_path(self) -> Path:
        """Absolute, symlink-resolved workspace root."""
        return Path(self.workspace_root).expanduser().resolve()

    @property
    def command_timeout(self) -> float | None:
        if self.command_timeout_seconds <= 0:
            return None
        return self.command_timeout_seconds

    @property
    def session_inactivity_seconds(self) -> float:
        return max(0.0, self.session_inactivity_minutes * 60.0)

    @classmethod
    def from_env(cls) -> WorkspaceConfig:
        """Load configuration from DEVSPHERE_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("DEVSPHERE_")
        }
        if env_vars:
            logger.info(
                "WorkspaceConfig.from_env: DEVSPHERE_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(env_vars.items())),
            )
        else:
            logger.debug("WorkspaceConfig.from_env: no DEVSPHERE_* env vars set, using defaults")

        try:
            config = cls(
                workspace_root=os.getenv(
                    "DEVSPHERE_WORKSPACE_ROOT", cls.workspace_root
                ),
                host=os.getenv("DEVSPHERE_HOST", cls.host),
                port=int(os.getenv("DEVSPHERE_PORT", str(cls.port))),
                command_timeout_seconds=float(os.getenv(
                    "DEVSPHERE_COMMAND_TIMEOUT",
                    str(cls.command_timeout_seconds),
                )),
                max_output_chars=int(os.getenv(
                    "DEVSPHERE_MAX_OUTPUT_CHARS", str(cls.max_output_chars)
                )),
                sandbox_policy=os.getenv(
                    "DEVSPHERE_SANDBOX_POLICY", cls.sandbox_policy
                ).strip().lower(),
                tree_max_depth=int(os.getenv(
                    "DEVSPHERE_TREE_MAX_DEPTH", str(cls.tree_max_depth)
                )),
                watch_interval_seconds=float(os.getenv(
                    "DEVSPHERE_WATCH_INTERVAL",
                    str(cls.watch_interval_seconds),
                )),
                watch_queue_size=int(os.getenv(
                    "DEVSPHERE_WATCH_QUEUE_SIZE", str(cls.watch_queue_size)
                )),
                watch_overflow_policy=os.getenv(
                    "DEVSPHERE_WATCH_OVERFLOW", cls.watch_overflow_policy
                ).strip().lower(),
                watch_stop_when_idle=_env_bool(
                    "DEVSPHERE_WATCH_STOP_WHEN_IDLE", cls.watch_stop_when_idle
                ),
                session_inactivity_minutes=float(os.getenv(
                    "DEVSPHERE_SESSION_INACTIVITY_MINUTES",
                    str(cls.session_inactivity_minutes),
                )),
                piston_url=os.getenv("DEVSPHERE_PISTON_URL", cls.piston_url),
                runner_timeout_seconds=float(os.getenv(
                    "DEVSPHERE_RUNNER_TIMEOUT",
                    str(cls.runner_timeout_seconds),
                )),
                log_level=os.getenv("DEVSPHERE_LOG_LEVEL", cls.log_level).upper(),
            )
        except ValueError as exc:
            raise ConfigError("environment", None, str(exc)) from exc
        logger.info(
            "WorkspaceConfig.from_env: root=%s host=%s port=%s policy=%s timeout=%s",
            config.workspace_root, config.host, config.port,
            config.sandbox_policy, config.command_timeout_seconds,
        )
        return config
