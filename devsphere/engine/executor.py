"""Shell command execution inside the workspace.

``ExecutionGateway.run`` spawns the platform shell with a confined
working directory, captures stdout and stderr separately and always
returns an ``ExecutionResult``. Launch failures, non-zero exits and
timeouts are reported as data, never raised.

On Windows-style shells a small table rewrites the POSIX idioms the
terminal UI emits (``ls``, ``touch``, ``clear``) before dispatch.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

logger = logging.getLogger(__name__)

# Reserved stdout value telling the client to clear its display buffer.
CLEAR_SCREEN_MARKER = "__CLEAR_SCREEN__"

CLEAR_COMMANDS = frozenset({"clear", "cls"})

EXIT_LAUNCH_FAILED = 127
EXIT_TIMED_OUT = 124

# A rule is either a template (``{args}`` is replaced by everything after
# the first token) or a callable receiving that remainder.
CommandRule = Union[str, Callable[[str], str]]


def _touch_rule(args: str) -> str:
    names = args.split()
    if not names:
        return "type nul"
    return " & ".join(f"type nul > {name}" for name in names)


WINDOWS_COMMAND_MAP: dict[str, CommandRule] = {
    "ls": "dir {args}",
    "touch": _touch_rule,
    "clear": "cls",
    "cls": "cls",
}


def is_clear_command(command: str) -> bool:
    return command.strip().lower() in CLEAR_COMMANDS


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one command invocation."""

    stdout: str
    stderr: str
    exit_code: int | None
    timed_out: bool = False
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.exit_code != 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "code": self.exit_code,
        }


class CommandTranslator:
    """Table-driven rewrite of a command's first token.

    Rewriting only happens when ``windows`` is true (defaults to the
    host platform). Lookup is case-insensitive.
    """

    def __init__(
        self,
        rules: Mapping[str, CommandRule] | None = None,
        *,
        windows: bool | None = None,
    ) -> None:
        self._rules: dict[str, CommandRule] = {
            k.lower(): v for k, v in (rules or WINDOWS_COMMAND_MAP).items()
        }
        self._windows = (os.name == "nt") if windows is None else windows

    @property
    def active(self) -> bool:
        return self._windows

    def add_rule(self, token: str, rule: CommandRule) -> None:
        self._rules[token.lower()] = rule

    def translate(self, command: str) -> str:
        if not self._windows:
            return command
        parts = command.strip().split(maxsplit=1)
        if not parts:
            return command
        rule = self._rules.get(parts[0].lower())
        if rule is None:
            return command
        args = parts[1] if len(parts) > 1 else ""
        if callable(rule):
            return rule(args)
        return rule.replace("{args}", args).strip()


def _trim_output(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    omitted = len(text) - limit
    return f"{text[:limit]}\n... [truncated {omitted} chars]"


def _signal_process_group(
    proc: asyncio.subprocess.Process,
    sig: signal.Signals,
) -> bool:
    """Send a signal to the process group when available."""
    if proc.returncode is not None:
        return False
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
        return True
    except ProcessLookupError:
        return False


async def _read_stream(stream: asyncio.StreamReader | None) -> str:
    if stream is None:
        return ""
    chunks: list[bytes] = []
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks).decode(errors="replace")


async def execute(
    command: str,
    cwd: str | Path,
    *,
    timeout: float | None = None,
    max_output_chars: int = 200_000,
    shell_executable: str | None = None,
) -> ExecutionResult:
    """Run *command* through the shell in *cwd* and capture its output."""
    started = time.monotonic()
    posix = os.name != "nt"
    if posix and shell_executable is None:
        shell_executable = shutil.which("bash") or None

    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            start_new_session=posix,
            executable=shell_executable,
        )
    except OSError as exc:
        logger.warning("Command launch failed cwd=%s command=%r: %s", cwd, command[:180], exc)
        return ExecutionResult(
            stdout="",
            stderr=f"Failed to start command: {exc}",
            exit_code=EXIT_LAUNCH_FAILED,
            duration_ms=(time.monotonic() - started) * 1000,
        )

    stdout_task = asyncio.create_task(_read_stream(proc.stdout))
    stderr_task = asyncio.create_task(_read_stream(proc.stderr))
    timed_out = False
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning(
            "Command timed out after %ss pid=%s cwd=%s command=%r",
            timeout, proc.pid, cwd, command[:180],
        )
        if not _signal_process_group(proc, signal.SIGKILL):
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            if not _signal_process_group(proc, signal.SIGKILL):
                proc.kill()
            await proc.wait()
        stdout_task.cancel()
        stderr_task.cancel()
        raise

    # proc.wait() returns only once the pipes close, so a background child
    # holding them is bounded by the timeout above and killed with the group.
    stdout_text, stderr_text = await asyncio.gather(stdout_task, stderr_task)

    exit_code: int | None = proc.returncode
    if timed_out:
        exit_code = EXIT_TIMED_OUT
        notice = f"Command timed out after {timeout:g}s and was terminated."
        stderr_text = f"{stderr_text}\n{notice}" if stderr_text else notice

    return ExecutionResult(
        stdout=_trim_output(stdout_text, max_output_chars),
        stderr=_trim_output(stderr_text, max_output_chars),
        exit_code=exit_code,
        timed_out=timed_out,
        duration_ms=(time.monotonic() - started) * 1000,
    )


class ExecutionGateway:
    """Translates and executes commands with the configured limits."""

    def __init__(
        self,
        translator: CommandTranslator | None = None,
        *,
        timeout: float | None = 120.0,
        max_output_chars: int = 200_000,
        shell_executable: str | None = None,
    ) -> None:
        self._translator = translator or CommandTranslator()
        self._timeout = timeout
        self._max_output_chars = max_output_chars
        self._shell_executable = shell_executable

    @property
    def translator(self) -> CommandTranslator:
        return self._translator

    async def run(self, command: str, real_cwd: str | Path) -> ExecutionResult:
        dispatched = self._translator.translate(command)
        if dispatched != command:
            logger.debug("Translated command %r -> %r", command, dispatched)
        result = await execute(
            dispatched,
            real_cwd,
            timeout=self._timeout,
            max_output_chars=self._max_output_chars,
            shell_executable=self._shell_executable,
        )
        logger.info(
            "Command finished code=%s timed_out=%s duration_ms=%.1f cwd=%s command=%r",
            result.exit_code, result.timed_out, result.duration_ms,
            real_cwd, (command[:180] + "...") if len(command) > 180 else command,
        )
        return result
