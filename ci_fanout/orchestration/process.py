"""External command execution with captured combined output and timeouts."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    output: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandExecutor(Protocol):
    def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult: ...


def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run a command to completion; nonzero exits and timeouts are returned, not raised."""
    argv = tuple(str(arg) for arg in args)
    logger.debug("Running %s (cwd=%s, timeout=%s)", argv[0] if argv else "", cwd, timeout)
    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        output = _decode(exc.output)
        message = f"command timed out after {timeout:g}s" if timeout else "command timed out"
        return CommandResult(
            args=argv,
            returncode=TIMEOUT_EXIT_CODE,
            output=f"{output}\n{message}".lstrip("\n"),
            timed_out=True,
        )
    except FileNotFoundError as exc:
        return CommandResult(args=argv, returncode=NOT_FOUND_EXIT_CODE, output=str(exc))
    return CommandResult(args=argv, returncode=completed.returncode, output=completed.stdout or "")


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
