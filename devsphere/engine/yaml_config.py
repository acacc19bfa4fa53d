"""YAML configuration loader.

Loads a single YAML file layered on top of the environment-derived
``WorkspaceConfig``. Every section is optional.

Example YAML:
    workspace:
      root: ./user_workspace
      sandbox_policy: reset      # or "reject"
      tree_max_depth: 32

    server:
      host: 127.0.0.1
      port: 3001
      session_inactivity_minutes: 60

    terminal:
      command_timeout_seconds: 120
      max_output_chars: 200000
      command_map:               # extra Windows rewrites, first token -> template
        cat: "type {args}"
        pwd: "cd"

    watch:
      interval_seconds: 0.5
      queue_size: 1000
      overflow_policy: drop_oldest   # or "disconnect"
      stop_when_idle: false

    runner:
      piston_url: https://emkc.org/api/v2/piston/execute
      timeout_seconds: 30
"""
from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import WorkspaceConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

# section -> {yaml key: WorkspaceConfig field}
_SECTION_FIELDS: dict[str, dict[str, str]] = {
    "workspace": {
        "root": "workspace_root",
        "sandbox_policy": "sandbox_policy",
        "tree_max_depth": "tree_max_depth",
    },
    "server": {
        "host": "host",
        "port": "port",
        "session_inactivity_minutes": "session_inactivity_minutes",
        "log_level": "log_level",
    },
    "terminal": {
        "command_timeout_seconds": "command_timeout_seconds",
        "max_output_chars": "max_output_chars",
        "command_map": "command_map",
    },
    "watch": {
        "interval_seconds": "watch_interval_seconds",
        "queue_size": "watch_queue_size",
        "overflow_policy": "watch_overflow_policy",
        "stop_when_idle": "watch_stop_when_idle",
    },
    "runner": {
        "piston_url": "piston_url",
        "timeout_seconds": "runner_timeout_seconds",
    },
}

_FIELD_TYPES: dict[str, type] = {
    "workspace_root": str,
    "sandbox_policy": str,
    "tree_max_depth": int,
    "host": str,
    "port": int,
    "session_inactivity_minutes": float,
    "log_level": str,
    "command_timeout_seconds": float,
    "max_output_chars": int,
    "watch_interval_seconds": float,
    "watch_queue_size": int,
    "watch_overflow_policy": str,
    "watch_stop_when_idle": bool,
    "piston_url": str,
    "runner_timeout_seconds": float,
}


def discover_config_path(cwd: Path | None = None) -> Path | None:
    """Return ``devsphere.yaml`` in *cwd* if it exists."""
    candidate = (cwd or Path.cwd()) / "devsphere.yaml"
    logger.debug("discover_config_path: checking %s (exists=%s)", candidate, candidate.is_file())
    return candidate if candidate.is_file() else None


def _coerce(field_name: str, value: Any) -> Any:
    if field_name == "command_map":
        if not isinstance(value, dict):
            raise ConfigError(field_name, value, "expected a mapping")
        return {str(k): str(v) for k, v in value.items()}
    expected = _FIELD_TYPES[field_name]
    if expected is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in {"1", "true", "yes", "on"}
    try:
        return expected(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(field_name, value, f"expected {expected.__name__}") from exc


def apply_yaml_overrides(
    base: WorkspaceConfig,
    raw: dict[str, Any],
    *,
    source: str = "<yaml>",
) -> WorkspaceConfig:
    """Return a copy of *base* with values from a parsed YAML mapping."""
    overrides: dict[str, Any] = {}
    for section, section_raw in raw.items():
        fields = _SECTION_FIELDS.get(section)
        if fields is None:
            logger.warning("%s: ignoring unknown section %r", source, section)
            continue
        if not isinstance(section_raw, dict):
            raise ConfigError(section, section_raw, "expected a mapping")
        for key, value in section_raw.items():
            field_name = fields.get(key)
            if field_name is None:
                logger.warning("%s: ignoring unknown key %s.%s", source, section, key)
                continue
            overrides[field_name] = _coerce(field_name, value)

    if "command_map" in overrides:
        overrides["command_map"] = {**base.command_map, **overrides["command_map"]}
    if "sandbox_policy" in overrides:
        overrides["sandbox_policy"] = overrides["sandbox_policy"].strip().lower()
    if "watch_overflow_policy" in overrides:
        overrides["watch_overflow_policy"] = overrides["watch_overflow_policy"].strip().lower()

    # replace() re-runs __post_init__, so enum values are validated here.
    return replace(base, **overrides)


def load_yaml_config(
    path: str | Path,
    base: WorkspaceConfig | None = None,
) -> WorkspaceConfig:
    """Load a YAML config file on top of *base* (default: environment)."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError("config_file", str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("config_file", str(path), "top level must be a mapping")

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) if raw else "(empty)",
    )
    config = apply_yaml_overrides(
        base if base is not None else WorkspaceConfig.from_env(),
        raw,
        source=str(path),
    )

    # Relative roots are anchored at the config file, not the process cwd.
    root = Path(config.workspace_root).expanduser()
    workspace_raw = raw.get("workspace") or {}
    if "root" in workspace_raw and not root.is_absolute():
        config = replace(config, workspace_root=str(path.parent / root))
    return config
