"""Local agent adapter for dry runs outside a CI agent."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class LocalAgent:
    """Leaves files where they were written; performs no remote action."""

    name = "local"

    def __init__(self) -> None:
        self.uploaded_pipelines: list[Path] = []
        self.exported_env: dict[str, str] = {}

    def upload_pipeline(self, path: Path) -> None:
        self.uploaded_pipelines.append(path)
        logger.info("Pipeline written to %s (local agent, not uploaded)", path)

    def upload_artifacts(self, pattern: str, cwd: Path) -> None:
        logger.info("Artifacts %s kept in %s (local agent)", pattern, cwd)

    def download_artifacts(self, pattern: str, destination: Path) -> bool:
        logger.info("Reading %s from %s (local agent)", pattern, destination)
        return False

    def export_env(self, values: dict[str, str]) -> None:
        self.exported_env.update(values)
