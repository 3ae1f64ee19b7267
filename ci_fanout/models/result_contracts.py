"""Pydantic contracts for per-integration job results and the aggregate report."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

JobStatus = Literal["running", "passed", "failed", "not_found"]
CheckStatus = Literal["passed", "failed", "skipped"]
PrState = Literal["skipped", "created", "failed"]

TERMINAL_STATUSES = {"passed", "failed", "not_found"}


class CheckEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)
    status: CheckStatus
    message: str = ""
    output: str | None = None


class JobResult(BaseModel):
    """One integration's result document, owned by a single check instance."""

    model_config = ConfigDict(extra="allow")

    integration: str = Field(min_length=1)
    workflow: str = ""
    status: JobStatus = "running"
    start_time: str = ""
    end_time: str | None = None
    buildkite_job_id: str | None = None
    issue_number: int | None = None
    message: str | None = None
    checks: list[CheckEntry] = Field(default_factory=list)
    pr_url: str | None = None
    pr_branch: str | None = None
    check_output: str | None = None
    exit_code: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AggregateReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total: int = Field(ge=0)
    passed: int = Field(ge=0)
    failed: int = Field(ge=0)
    not_found: int = Field(ge=0)
    results: list[JobResult] = Field(default_factory=list)

    @model_validator(mode="after")
    def _counts_add_up(self) -> "AggregateReport":
        if self.total != self.passed + self.failed + self.not_found:
            raise ValueError("total must equal passed + failed + not_found")
        if self.total != len(self.results):
            raise ValueError("total must equal the number of results")
        return self

    @property
    def success_rate(self) -> float:
        return (self.passed / self.total) if self.total else 0.0


class PrResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    state: PrState
    branch: str = ""
    url: str | None = None
    message: str = ""

    @property
    def check_status(self) -> CheckStatus:
        if self.state == "created":
            return "passed"
        if self.state == "skipped":
            return "skipped"
        return "failed"
