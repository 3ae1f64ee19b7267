"""Boundary contract for the CI agent that runs the generated pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class AgentCommandError(RuntimeError):
    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class PipelineAgent(Protocol):
    name: str

    def upload_pipeline(self, path: Path) -> None: ...

    def upload_artifacts(self, pattern: str, cwd: Path) -> None: ...

    def download_artifacts(self, pattern: str, destination: Path) -> bool: ...

    def export_env(self, values: dict[str, str]) -> None: ...
