"""Buildkite agent adapter backed by the `buildkite-agent` CLI."""

from __future__ import annotations

import logging
from pathlib import Path

from ci_fanout.orchestration.agent import AgentCommandError
from ci_fanout.orchestration.process import CommandExecutor, CommandResult, run_command

logger = logging.getLogger(__name__)

BUILDKITE_BINARY = "buildkite-agent"


class BuildkiteAgent:
    name = "buildkite"

    def __init__(
        self,
        *,
        env_file: Path | None = None,
        binary: str = BUILDKITE_BINARY,
        timeout: float | None = 300,
        executor: CommandExecutor = run_command,
    ) -> None:
        self.env_file = env_file
        self.binary = binary
        self.timeout = timeout
        self.executor = executor

    def upload_pipeline(self, path: Path) -> None:
        self._checked("pipeline", "upload", str(path))
        logger.info("Uploaded pipeline %s", path)

    def upload_artifacts(self, pattern: str, cwd: Path) -> None:
        self._checked("artifact", "upload", pattern, cwd=cwd)

    def download_artifacts(self, pattern: str, destination: Path) -> bool:
        destination.mkdir(parents=True, exist_ok=True)
        result = self._run("artifact", "download", pattern, ".", cwd=destination)
        if not result.ok:
            logger.warning("No artifacts matched %s: %s", pattern, result.output.strip())
            return False
        return True

    def export_env(self, values: dict[str, str]) -> None:
        if self.env_file is None:
            logger.debug("BUILDKITE_ENV_FILE not set; skipping env export")
            return
        with self.env_file.open("a", encoding="utf-8") as handle:
            for key, value in values.items():
                handle.write(f"{key}={value}\n")

    def _run(self, *args: str, cwd: Path | None = None) -> CommandResult:
        return self.executor([self.binary, *args], cwd=cwd, timeout=self.timeout)

    def _checked(self, *args: str, cwd: Path | None = None) -> CommandResult:
        result = self._run(*args, cwd=cwd)
        if not result.ok:
            raise AgentCommandError(
                f"{self.binary} {' '.join(args[:2])} exited {result.returncode}",
                output=result.output,
            )
        return result
