"""Remote code runner backed by a Piston-compatible execution API.

Snippets from the editor are executed remotely rather than in the
workspace shell. The response is flattened into one printable block.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from devsphere.engine.config import DEFAULT_PISTON_URL
from devsphere.engine.errors import RunnerError

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "javascript"

LANGUAGE_MAP: dict[str, str] = {
    "javascript": "javascript",
    "python": "python",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "ruby": "ruby",
    "go": "go",
    "rust": "rust",
    "php": "php",
    "typescript": "typescript",
    "csharp": "csharp",
}

NO_OUTPUT = "Execution completed (no output)"


def map_language(language: str | None) -> str:
    return LANGUAGE_MAP.get((language or DEFAULT_LANGUAGE).lower(), DEFAULT_LANGUAGE)


def format_piston_result(result: dict[str, Any]) -> str:
    """Join compile output, run output, stderr and signal sections."""
    sections: list[str] = []
    compile_stage = result.get("compile") or {}
    if compile_stage.get("output"):
        sections.append(f"Compilation:\n{compile_stage['output']}\n")
    run_stage = result.get("run") or {}
    if run_stage.get("output"):
        sections.append(f"Output:\n{run_stage['output']}")
    if run_stage.get("stderr"):
        sections.append(f"Error:\n{run_stage['stderr']}")
    if run_stage.get("signal"):
        sections.append(f"Signal: {run_stage['signal']}")
    output = "\n".join(sections).strip()
    return output or NO_OUTPUT


class CodeRunner:
    """Thin async client for the Piston ``/execute`` endpoint."""

    def __init__(
        self,
        url: str = DEFAULT_PISTON_URL,
        *,
        timeout_seconds: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def run(self, code: str, language: str | None = None) -> dict[str, str]:
        """Execute *code* remotely and return ``{output, language}``."""
        piston_language = map_language(language)
        payload = {
            "language": piston_language,
            "version": "*",
            "files": [{"content": code}],
            "stdin": "",
            "args": [],
        }
        session = await self._get_session()
        try:
            async with session.post(self._url, json=payload, timeout=self._timeout) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    logger.warning(
                        "Code runner returned status=%s body=%s", resp.status, body[:200],
                    )
                    raise RunnerError(f"Piston API error: {resp.status}", resp.status)
                result = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Code runner request failed: %s: %s", type(exc).__name__, exc)
            raise RunnerError(f"Code runner unavailable: {exc}") from exc

        if not isinstance(result, dict):
            raise RunnerError("Piston API returned an unexpected payload")
        return {
            "output": format_piston_result(result),
            "language": piston_language,
        }

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
