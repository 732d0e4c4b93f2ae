from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence


@dataclass(slots=True)
class CommandResult:
    """Represents the outcome of an external command execution."""

    command: Sequence[str]
    return_code: Optional[int]
    stdout: str
    stderr: str
    duration: float
    timed_out: bool
    tool_available: bool
    exception: Optional[BaseException] = None

    def succeeded(self) -> bool:
        """Return True when the command finished successfully."""
        return self.return_code == 0 and not self.timed_out and self.tool_available

    @property
    def combined_output(self) -> str:
        """Stdout followed by stderr; stderr is empty when the streams were merged."""
        return self.stdout + self.stderr


class CommandRunner:
    """Thin wrapper over subprocess that captures execution metadata."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        merge_stderr: bool = False,
    ) -> CommandResult:
        """
        Execute a command and capture stdout, stderr, timings, and failures.

        Args:
            command: Program and arguments.
            cwd: Working directory for the child process.
            timeout: Seconds to wait before giving up on the command.
            env: Extra environment variables layered over the current environment.
            merge_stderr: Interleave stderr into stdout, as a terminal would show it.
        """
        start = time.time()
        child_env = None
        if env:
            child_env = dict(os.environ)
            child_env.update(env)
        try:
            self.logger.debug("Executing command: %s (cwd=%s)", " ".join(command), cwd)
            completed = subprocess.run(
                list(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                text=True,
                timeout=timeout,
                cwd=str(cwd) if cwd else None,
                env=child_env,
            )
            duration = time.time() - start
            return CommandResult(
                command=command,
                return_code=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
                duration=duration,
                timed_out=False,
                tool_available=True,
            )
        except subprocess.TimeoutExpired as exc:
            duration = time.time() - start
            self.logger.warning("Command timed out after %.2fs: %s", duration, " ".join(command))
            return CommandResult(
                command=command,
                return_code=None,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                duration=duration,
                timed_out=True,
                tool_available=True,
                exception=exc,
            )
        except FileNotFoundError as exc:
            duration = time.time() - start
            self.logger.error("Command not found: %s", command[0])
            return CommandResult(
                command=command,
                return_code=None,
                stdout="",
                stderr=f"Command not found: {command[0]}",
                duration=duration,
                timed_out=False,
                tool_available=False,
                exception=exc,
            )
        except OSError as exc:
            duration = time.time() - start
            self.logger.error("Command execution failed: %s", exc)
            return CommandResult(
                command=command,
                return_code=None,
                stdout="",
                stderr=str(exc),
                duration=duration,
                timed_out=False,
                tool_available=True,
                exception=exc,
            )


def _as_text(value: Optional[object]) -> str:
    # TimeoutExpired keeps raw bytes even when text=True was requested.
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
