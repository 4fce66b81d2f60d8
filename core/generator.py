"""
core/generator.py — Content generation through an external CLI.

The generator is invoked as ``<command> -p <prompt>`` in a subprocess with a
hard timeout. It either returns text or explicitly declines with the skip
sentinel; everything else is a GenerationError.
"""

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Optional, Union

from core.errors import GenerationError

logger = logging.getLogger("core.generator")

SKIP_SENTINEL = "SKIP"

# Auth problems show up at startup, so only the head of the output is inspected
_AUTH_MARKERS = (
    "not logged in",
    "authentication required",
    "login required",
    "invalid api key",
    "oauth token has expired",
)


@dataclass
class GeneratedContent:
    text: str


@dataclass
class NothingToShare:
    """The generator decided nothing is worth sending."""
    raw: str = SKIP_SENTINEL


GenerationResult = Union[GeneratedContent, NothingToShare]


def detect_auth_error(text: str) -> Optional[str]:
    lower = (text or "")[:500].lower()
    for marker in _AUTH_MARKERS:
        if marker in lower:
            return f"generator not authenticated ({marker})"
    return None


def trim_message(text: str, max_chars: int) -> str:
    """Cut text to max_chars, preferring the last line break."""
    if len(text) <= max_chars:
        return text
    head = text[:max_chars]
    cut = head.rsplit("\n", 1)[0].rstrip()
    return cut if cut else head.rstrip()


class ContentGenerator:
    """Async wrapper around the generation CLI."""

    def __init__(self, command: str = "claude", timeout: float = 180.0, max_chars: int = 1000):
        self.command = shlex.split(command)
        self.timeout = timeout
        self.max_chars = max_chars

    async def generate(self, prompt: str, timeout: Optional[float] = None) -> GenerationResult:
        timeout = timeout or self.timeout
        logger.debug(f"Running generator ({len(prompt)} chars prompt, timeout {timeout}s)")

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command, "-p", prompt,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise GenerationError(f"generator not available: {e}") from e

        try:
            # wait_for keeps a hung CLI from holding the job forever
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            raise GenerationError(f"generator timeout after {timeout}s") from e

        output = stdout.decode("utf-8", errors="replace").strip()
        error = stderr.decode("utf-8", errors="replace").strip()

        auth_error = detect_auth_error(error) or detect_auth_error(output)
        if auth_error:
            raise GenerationError(auth_error)
        if process.returncode != 0:
            raise GenerationError(f"generator exited with code {process.returncode}: {error[:200]}")
        if not output:
            raise GenerationError("no content generated")

        if output == SKIP_SENTINEL:
            return NothingToShare(raw=output)
        return GeneratedContent(text=trim_message(output, self.max_chars))
