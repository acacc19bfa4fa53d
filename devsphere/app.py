"""DevSphere CLI: main application entry point."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from devsphere.engine.config import WorkspaceConfig
from devsphere.engine.errors import ConfigError, WorkspaceRootError
from devsphere.engine.yaml_config import discover_config_path, load_yaml_config

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_server_logging(level: str, log_dir: Path | None = None) -> Path:
    """Install the rotating file handler and the stderr handler."""
    log_dir = log_dir or Path.home() / ".devsphere" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "devsphere-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def build_config(args) -> WorkspaceConfig:
    """Environment, then YAML, then CLI flags."""
    logger = logging.getLogger(__name__)
    config = WorkspaceConfig.from_env()

    config_path = getattr(args, "config", None)
    if config_path:
        logger.info(
            "Using explicit config path: %s (exists=%s)",
            config_path, Path(config_path).exists(),
        )
    else:
        discovered = discover_config_path()
        if discovered is not None:
            config_path = str(discovered)
            logger.info("Auto-discovered config: %s", config_path)
    if config_path:
        config = load_yaml_config(config_path, base=config)

    overrides = {}
    if getattr(args, "root", None):
        overrides["workspace_root"] = args.root
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None):
        overrides["port"] = args.port
    if getattr(args, "log_level", None):
        overrides["log_level"] = args.log_level.upper()
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def _server_url(args) -> str:
    if args.url:
        return args.url
    return f"http://{args.host or '127.0.0.1'}:{args.port or 3001}"


def _cmd_serve(args) -> int:
    from devsphere.web.server import WorkspaceServer

    try:
        config = build_config(args)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    log_file = configure_server_logging(config.log_level)
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting DevSphere server root=%s host=%s port=%s log=%s",
        config.root_path, config.host, config.port, log_file,
    )
    try:
        server = WorkspaceServer(config)
        asyncio.run(server.start())
    except WorkspaceRootError as exc:
        logger.error("Cannot prepare workspace root: %s", exc)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


def _cmd_shell(args) -> int:
    from devsphere.client.shell import run_shell

    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    try:
        return asyncio.run(run_shell(_server_url(args)))
    except KeyboardInterrupt:
        return 0


def _cmd_watch(args) -> int:
    from devsphere.client.watch import run_watch

    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    try:
        asyncio.run(run_watch(_server_url(args)))
    except KeyboardInterrupt:
        pass
    return 0


def main(argv: list[str] | None = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="devsphere",
        description="DevSphere: sandboxed workspace terminal and file watcher",
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP+SSE workspace server")
    serve.add_argument(
        "--root", metavar="DIR",
        help="Workspace root directory (default: ./user_workspace)",
    )
    serve.add_argument("--host", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, help="Server port (default: 3001)")
    serve.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: ./devsphere.yaml if present)",
    )
    serve.add_argument(
        "--log-level", metavar="LEVEL",
        help="Logging level (default: INFO or DEVSPHERE_LOG_LEVEL)",
    )
    serve.set_defaults(handler=_cmd_serve)

    for name, handler, help_text in (
        ("shell", _cmd_shell, "Interactive terminal against a running server"),
        ("watch", _cmd_watch, "Mirror the workspace tree live"),
    ):
        client = sub.add_parser(name, help=help_text)
        client.add_argument("--url", help="Server base URL (overrides --host/--port)")
        client.add_argument("--host", help="Server host (default: 127.0.0.1)")
        client.add_argument("--port", type=int, help="Server port (default: 3001)")
        client.set_defaults(handler=handler)

    args = parser.parse_args(argv)
    if getattr(args, "handler", None) is None:
        parser.print_help()
        sys.exit(2)
    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
