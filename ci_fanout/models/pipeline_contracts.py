"""Typed fan-out pipeline documents (Buildkite step list dialect)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MATRIX_REFERENCE = "{{matrix.integration}}"


class RunContext(BaseModel):
    """Shared trigger context propagated into every generated step."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    issue_number: int
    issue_url: str = ""
    repository_full_name: str = Field(min_length=3)


class MatrixSetup(BaseModel):
    model_config = ConfigDict(extra="forbid")

    integration: list[str] = Field(min_length=1)


class Matrix(BaseModel):
    model_config = ConfigDict(extra="forbid")

    setup: MatrixSetup


class DependsOn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    step: str = Field(min_length=1)
    allow_failure: bool = False


class PipelineStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: str = Field(min_length=1)
    key: str = Field(min_length=1)
    command: str = Field(min_length=1)
    agents: dict[str, str] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)
    matrix: Matrix | None = None
    depends_on: list[DependsOn] = Field(default_factory=list)
    allow_dependency_failure: bool = False
    artifact_paths: str | None = None

    def to_document(self) -> dict[str, Any]:
        document = self.model_dump(exclude_none=True)
        if not self.depends_on:
            document.pop("depends_on")
        if not self.allow_dependency_failure:
            document.pop("allow_dependency_failure")
        return document


class PipelineSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    steps: list[PipelineStep] = Field(min_length=1)

    def step(self, key: str) -> PipelineStep:
        for step in self.steps:
            if step.key == key:
                return step
        raise KeyError(key)

    def to_document(self) -> dict[str, Any]:
        return {"steps": [step.to_document() for step in self.steps]}

    def instances(self, key: str) -> list[dict[str, str]]:
        """Expand a matrix step into one resolved env mapping per matrix value."""
        step = self.step(key)
        if step.matrix is None:
            return [dict(step.env)]
        expanded: list[dict[str, str]] = []
        for value in step.matrix.setup.integration:
            expanded.append(
                {name: env.replace(MATRIX_REFERENCE, value) for name, env in step.env.items()}
            )
        return expanded
