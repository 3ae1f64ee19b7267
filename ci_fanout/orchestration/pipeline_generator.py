"""Dynamic fan-out pipeline generation: one matrix check step plus one summary step."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from pathlib import Path

import yaml

from ci_fanout.models.pipeline_contracts import (
    MATRIX_REFERENCE,
    DependsOn,
    Matrix,
    MatrixSetup,
    PipelineSpec,
    PipelineStep,
    RunContext,
)

logger = logging.getLogger(__name__)

WORK_ITEM_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
CHECK_STEP_KEY = "check"
SUMMARY_STEP_KEY = "summarize"
CHECK_COMMAND = "ci-fanout check"
SUMMARY_COMMAND = "ci-fanout summarize"
RESULT_ARTIFACTS = "results/*.json"
# Resolved by the agent at upload time; the secret itself never enters the document.
TOKEN_REFERENCE = "${GITHUB_TOKEN}"


class GenerationError(ValueError):
    """The work item list cannot be turned into a pipeline."""


def is_valid_work_item(name: str) -> bool:
    return bool(WORK_ITEM_NAME_RE.match(name)) and ".." not in name


def validate_work_items(work_items: Sequence[str]) -> list[str]:
    items = list(work_items)
    if not items:
        raise GenerationError("no integrations to fan out")
    invalid = [name for name in items if not isinstance(name, str) or not is_valid_work_item(name)]
    if invalid:
        raise GenerationError(
            "integration names must match "
            f"{WORK_ITEM_NAME_RE.pattern}: {', '.join(repr(name) for name in invalid)}"
        )
    return items


class PipelineGenerator:
    def __init__(self, agent_queue: str = "standard") -> None:
        self.agent_queue = agent_queue

    def generate(self, work_items: Sequence[str], context: RunContext) -> PipelineSpec:
        items = validate_work_items(work_items)
        agents = {"queue": self.agent_queue}
        issue_number = str(context.issue_number)

        check = PipelineStep(
            label=f":package: Check {MATRIX_REFERENCE}",
            key=CHECK_STEP_KEY,
            command=CHECK_COMMAND,
            agents=agents,
            env={
                "ISSUE_NUMBER": issue_number,
                "ISSUE_URL": context.issue_url,
                "ISSUE_REPO": context.repository_full_name,
                "GITHUB_TOKEN": TOKEN_REFERENCE,
                "INTEGRATION": MATRIX_REFERENCE,
            },
            matrix=Matrix(setup=MatrixSetup(integration=items)),
            artifact_paths=RESULT_ARTIFACTS,
        )
        summary = PipelineStep(
            label=":memo: Summarize Results",
            key=SUMMARY_STEP_KEY,
            command=SUMMARY_COMMAND,
            agents=agents,
            env={
                "ISSUE_NUMBER": issue_number,
                "ISSUE_REPO": context.repository_full_name,
                "GITHUB_TOKEN": TOKEN_REFERENCE,
            },
            depends_on=[DependsOn(step=CHECK_STEP_KEY, allow_failure=True)],
            allow_dependency_failure=True,
        )
        logger.info(
            "Generated fan-out for issue #%s over %d integrations", context.issue_number, len(items)
        )
        return PipelineSpec(steps=[check, summary])


def render_pipeline(spec: PipelineSpec) -> str:
    return yaml.safe_dump(spec.to_document(), sort_keys=False, default_flow_style=False)


def write_pipeline(spec: PipelineSpec, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_pipeline(spec))
    return path
