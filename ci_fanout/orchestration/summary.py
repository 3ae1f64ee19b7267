"""Aggregate per-integration results into one report and one idempotent issue comment."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol

from pydantic import ValidationError

from ci_fanout.github.github_client import GitHubClient
from ci_fanout.models.result_contracts import AggregateReport, JobResult
from ci_fanout.orchestration.result_store import ResultStore

logger = logging.getLogger(__name__)

MARKER_PREFIX = "<!-- ci-fanout-summary"
NO_RESULTS_TEXT = "No integration results were found for this run."
STATUS_ICONS = {"passed": "✅", "failed": "❌", "not_found": "⚠️", "running": "⏳"}


@dataclass(frozen=True)
class PublishResult:
    action: Literal["created", "updated"]
    comment_id: int | None


class SummaryDestination(Protocol):
    def publish(self, body: str, marker: str) -> PublishResult: ...


def summary_marker(run_id: str) -> str:
    return f"{MARKER_PREFIX} run={run_id} -->"


def load_results(store: ResultStore) -> list[JobResult]:
    """Read every published document in file-name order."""
    results: list[JobResult] = []
    for path in store.list_documents():
        try:
            results.append(JobResult.model_validate_json(path.read_text()))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Unreadable result document %s: %s", path.name, exc)
            results.append(
                JobResult(
                    integration=path.stem,
                    status="failed",
                    message=f"Unreadable result document: {path.name}",
                )
            )
    return results


def reduce(results: Sequence[JobResult]) -> AggregateReport:
    passed = failed = not_found = 0
    for result in results:
        if result.status == "passed":
            passed += 1
        elif result.status == "not_found":
            not_found += 1
        else:
            failed += 1
    return AggregateReport(
        total=len(results),
        passed=passed,
        failed=failed,
        not_found=not_found,
        results=list(results),
    )


def report_document(
    report: AggregateReport, *, metadata: dict[str, Any] | None = None
) -> dict[str, Any]:
    document: dict[str, Any] = {
        "total": report.total,
        "passed": report.passed,
        "failed": report.failed,
        "not_found": report.not_found,
        "success_rate": round(report.success_rate * 100, 2),
        "results": [result.model_dump(exclude_none=True) for result in report.results],
    }
    if metadata:
        document.update(metadata)
    return document


def render(
    report: AggregateReport,
    *,
    run_id: str,
    issue_number: int | None = None,
    build_url: str = "",
    workflow_name: str = "Integration Check",
) -> str:
    """Deterministic markdown for the issue comment."""
    lines = [summary_marker(run_id), f"## {workflow_name} Results", ""]
    if issue_number is not None:
        lines.append(f"**Issue:** #{issue_number}")
    if build_url:
        lines.append(f"**Build:** [{run_id}]({build_url})")
    if issue_number is not None or build_url:
        lines.append("")

    if report.total == 0:
        lines.append(NO_RESULTS_TEXT)
        return _finish(lines, build_url)

    lines.extend(
        [
            "### Summary",
            f"- **Total Integrations:** {report.total}",
            f"- **Passed:** ✅ {report.passed}",
            f"- **Failed:** ❌ {report.failed}",
            f"- **Not Found:** ⚠️ {report.not_found}",
            f"- **Success Rate:** {report.success_rate:.1%}",
            "",
            "### Detailed Results",
        ]
    )
    for result in report.results:
        icon = STATUS_ICONS.get(result.status, "❌")
        message = result.message or result.status
        if result.status == "running":
            message = "did not finish (no terminal status recorded)"
        line = f"- {icon} **{result.integration}**: {message}"
        if result.pr_url:
            line += f" ([PR]({result.pr_url}))"
        lines.append(line)
    return _finish(lines, build_url)


def _finish(lines: list[str], build_url: str) -> str:
    if build_url:
        lines.extend(
            [
                "",
                "---",
                f"*This comment was automatically generated by [Buildkite]({build_url}) "
                "integration check pipeline.*",
            ]
        )
    return "\n".join(lines) + "\n"


class IssueCommentDestination:
    """Update the run's existing summary comment, or create it once."""

    def __init__(self, client: GitHubClient, repo: str, issue_number: int) -> None:
        self.client = client
        self.repo = repo
        self.issue_number = issue_number

    def publish(self, body: str, marker: str) -> PublishResult:
        for comment in self.client.list_issue_comments(self.repo, self.issue_number):
            if marker in str(comment.get("body", "")):
                comment_id = int(comment["id"])
                self.client.update_issue_comment(self.repo, comment_id, body)
                logger.info(
                    "Updated summary comment %s on %s#%s", comment_id, self.repo, self.issue_number
                )
                return PublishResult(action="updated", comment_id=comment_id)
        created = self.client.create_issue_comment(self.repo, self.issue_number, body)
        comment_id = created.get("id")
        logger.info("Created summary comment on %s#%s", self.repo, self.issue_number)
        return PublishResult(
            action="created", comment_id=int(comment_id) if comment_id is not None else None
        )


class SummaryReducer:
    def __init__(
        self,
        *,
        run_id: str,
        issue_number: int | None = None,
        build_url: str = "",
        workflow_name: str = "Integration Check",
    ) -> None:
        self.run_id = run_id
        self.issue_number = issue_number
        self.build_url = build_url
        self.workflow_name = workflow_name

    def reduce(self, results: Sequence[JobResult]) -> AggregateReport:
        return reduce(results)

    def render(self, report: AggregateReport) -> str:
        return render(
            report,
            run_id=self.run_id,
            issue_number=self.issue_number,
            build_url=self.build_url,
            workflow_name=self.workflow_name,
        )

    def publish(self, report: AggregateReport, destination: SummaryDestination) -> PublishResult:
        if report.total == 0:
            logger.warning("No integration results found for run %s", self.run_id)
        return destination.publish(self.render(report), summary_marker(self.run_id))

    def write(self, report: AggregateReport, summary_dir: Path, metadata: dict[str, Any]) -> list[Path]:
        summary_dir.mkdir(parents=True, exist_ok=True)
        report_path = summary_dir / "report.json"
        comment_path = summary_dir / "comment.md"
        report_path.write_text(json.dumps(report_document(report, metadata=metadata), indent=2) + "\n")
        comment_path.write_text(self.render(report))
        return [report_path, comment_path]
