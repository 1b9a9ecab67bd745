"""Thin wrapper over subprocess for invoking external tools."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

MASK = "***"


@dataclass
class CommandResult:
    """Exit code and captured output of one process invocation."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def mask(text: str, secrets: Sequence[str] = ()) -> str:
    """Replace every non-empty secret in text with ***."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, MASK)
    return text


class Runner:
    """Runs commands to completion and captures their output.

    Commands are argument lists; nothing is passed through a shell unless the
    caller invokes one explicitly.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        secrets: Sequence[str] = (),
        stream: bool = False,
    ) -> CommandResult:
        """Run a command and wait for it.

        Args:
            args: Program and arguments.
            cwd: Working directory.
            secrets: Strings masked out of the debug log line.
            stream: Let the child write straight to our stdout/stderr
                (used for long transfers that print progress).
        """
        log.debug("exec: %s", mask(" ".join(args), secrets))
        try:
            result = subprocess.run(
                list(args),
                cwd=str(cwd) if cwd else None,
                capture_output=not stream,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as e:
            log.debug("exec failed: %s", e)
            return CommandResult(returncode=127, stderr=str(e))
        except subprocess.TimeoutExpired as e:
            log.warning("Command timed out after %ss: %s", e.timeout, args[0])
            return CommandResult(returncode=124, stderr=f"timed out after {e.timeout}s")

        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )
