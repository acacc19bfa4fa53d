from __future__ import annotations

import os
from pathlib import Path

import pytest

from devsphere.engine.executor import (
    EXIT_LAUNCH_FAILED,
    EXIT_TIMED_OUT,
    CommandTranslator,
    ExecutionGateway,
    execute,
    is_clear_command,
)

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX shell required")


# ── Translation table ──


def test_translator_rewrites_posix_idioms_on_windows() -> None:
    t = CommandTranslator(windows=True)
    assert t.active
    assert t.translate("ls") == "dir"
    assert t.translate("ls -la") == "dir -la"
    assert t.translate("LS src") == "dir src"
    assert t.translate("touch a.txt") == "type nul > a.txt"
    assert t.translate("touch a b") == "type nul > a & type nul > b"
    assert t.translate("clear") == "cls"


def test_translator_leaves_unknown_commands_alone() -> None:
    t = CommandTranslator(windows=True)
    assert t.translate("echo hi") == "echo hi"
    assert t.translate("lsblk") == "lsblk"


def test_translator_is_inert_off_windows() -> None:
    t = CommandTranslator(windows=False)
    assert not t.active
    assert t.translate("ls -la") == "ls -la"
    assert t.translate("touch a") == "touch a"


def test_translator_extra_rules() -> None:
    t = CommandTranslator(windows=True)
    t.add_rule("cat", "type {args}")
    assert t.translate("cat notes.txt") == "type notes.txt"


def test_is_clear_command() -> None:
    assert is_clear_command("clear")
    assert is_clear_command("  CLS ")
    assert not is_clear_command("clear-cache")


# ── Execution ──


@posix_only
@pytest.mark.asyncio
async def test_execute_success(tmp_path: Path) -> None:
    result = await execute("echo hello", tmp_path, timeout=10)
    assert result.exit_code == 0
    assert result.stdout == "hello\n"
    assert result.stderr == ""
    assert not result.failed
    assert result.to_dict() == {"stdout": "hello\n", "stderr": "", "code": 0}


@posix_only
@pytest.mark.asyncio
async def test_execute_runs_in_given_directory(tmp_path: Path) -> None:
    result = await execute("pwd", tmp_path, timeout=10)
    assert os.path.realpath(result.stdout.strip()) == os.path.realpath(tmp_path)


@posix_only
@pytest.mark.asyncio
async def test_execute_nonzero_exit_is_data(tmp_path: Path) -> None:
    result = await execute("echo oops 1>&2; exit 3", tmp_path, timeout=10)
    assert result.exit_code == 3
    assert result.failed
    assert result.stderr == "oops\n"


@pytest.mark.asyncio
async def test_execute_launch_failure(tmp_path: Path) -> None:
    result = await execute("echo hi", tmp_path / "does-not-exist", timeout=10)
    assert result.exit_code == EXIT_LAUNCH_FAILED
    assert result.stdout == ""
    assert "Failed to start command" in result.stderr


@posix_only
@pytest.mark.asyncio
async def test_execute_timeout_kills_process(tmp_path: Path) -> None:
    result = await execute("sleep 5", tmp_path, timeout=0.3)
    assert result.timed_out
    assert result.exit_code == EXIT_TIMED_OUT
    assert "timed out" in result.stderr
    assert result.duration_ms < 5000


@posix_only
@pytest.mark.asyncio
async def test_execute_background_child_bounded_by_timeout(tmp_path: Path) -> None:
    result = await execute("echo hi; sleep 8 &", tmp_path, timeout=0.5)
    assert result.timed_out
    assert result.stdout == "hi\n"
    assert result.duration_ms < 5000


@posix_only
@pytest.mark.asyncio
async def test_execute_truncates_output(tmp_path: Path) -> None:
    result = await execute(
        "head -c 100 /dev/zero | tr '\\0' x", tmp_path, timeout=10, max_output_chars=10,
    )
    assert result.stdout.startswith("x" * 10)
    assert "truncated 90 chars" in result.stdout


@posix_only
@pytest.mark.asyncio
async def test_gateway_translates_before_dispatch(tmp_path: Path) -> None:
    translator = CommandTranslator({"greet": "echo hello {args}"}, windows=True)
    gateway = ExecutionGateway(translator, timeout=10)
    result = await gateway.run("greet world", tmp_path)
    assert result.stdout == "hello world\n"
