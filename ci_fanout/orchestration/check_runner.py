"""Per-integration check lifecycle: seed, acquire, validate, optionally publish, finalize."""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ci_fanout.models.result_contracts import TERMINAL_STATUSES, PrResult
from ci_fanout.orchestration.pipeline_generator import is_valid_work_item
from ci_fanout.orchestration.pr_publisher import PrPublisher
from ci_fanout.orchestration.process import CommandExecutor, CommandResult, run_command
from ci_fanout.orchestration.result_store import ResultStore
from ci_fanout.orchestration.workspace import AcquisitionError, SourceAcquirer, resolve_resource
from ci_fanout.shared.settings import ConfigurationError, RunSettings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class InvalidTransitionError(RuntimeError):
    pass


@dataclass(frozen=True)
class CheckOutcome:
    integration: str
    status: str
    exit_code: int
    document_path: Path
    pr: PrResult | None = None


class JobResultHandle:
    """Exclusive writer for one JobResult document."""

    def __init__(self, store: ResultStore, key: str, clock: Clock = utc_now) -> None:
        self.store = store
        self.key = key
        self.clock = clock
        self.status = "seeded"
        self._pr_recorded = False

    @property
    def finalized(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def path(self) -> Path:
        return self.store.path_for(self.key)

    def seed(self, **fields: Any) -> None:
        if self.status != "seeded":
            raise InvalidTransitionError(f"{self.key} already seeded")
        document = {
            **fields,
            "status": "running",
            "start_time": _iso(self.clock()),
            "checks": [],
        }
        self.store.create(self.key, document)
        self.store.append_event("job_seeded", {"key": self.key})
        self.status = "running"

    def add_check(self, name: str, status: str, message: str, output: str | None = None) -> None:
        self._assert_running()
        check: dict[str, Any] = {"name": name, "status": status, "message": message}
        if output is not None:
            check["output"] = output
        self.store.append_check(self.key, check)

    def set_fields(self, **values: Any) -> None:
        self._assert_running()
        self.store.set_fields(self.key, **values)

    def record_pr(self, pr: PrResult) -> None:
        self.add_check("pr_creation", pr.check_status, pr.message)
        if pr.state == "created" and not self._pr_recorded:
            self.set_fields(pr_url=pr.url, pr_branch=pr.branch)
            self._pr_recorded = True

    def finalize(self, status: str, message: str, exit_code: int | None = None) -> None:
        if status not in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"{status} is not a terminal status")
        self._assert_running()
        values: dict[str, Any] = {
            "status": status,
            "message": message,
            "end_time": _iso(self.clock()),
        }
        if exit_code is not None:
            values["exit_code"] = exit_code
        self.store.set_fields(self.key, **values)
        self.store.append_event("job_finalized", {"key": self.key, "status": status})
        self.status = status
        logger.info("%s finished: %s (%s)", self.key, status, message)

    def _assert_running(self) -> None:
        if self.status != "running":
            raise InvalidTransitionError(f"{self.key} is {self.status}, expected running")


@contextmanager
def job_result_handle(
    store: ResultStore,
    key: str,
    *,
    workflow_name: str,
    clock: Clock = utc_now,
    **seed_fields: Any,
) -> Iterator[JobResultHandle]:
    """Seed a document and guarantee it reaches a terminal status on every exit path."""
    handle = JobResultHandle(store, key, clock=clock)
    handle.seed(**seed_fields)
    try:
        yield handle
    except BaseException as exc:
        if handle.status == "running":
            reason = str(exc) or type(exc).__name__
            handle.finalize(
                "failed", f"{workflow_name} exited unexpectedly: {reason}", exit_code=1
            )
        raise
    finally:
        if handle.status == "running":
            handle.finalize("failed", f"{workflow_name} exited unexpectedly", exit_code=1)


def _safe_job_id(job_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "-", job_id).strip("-")


def result_key(integration: str, job_id: str = "") -> str:
    safe_job = _safe_job_id(job_id)
    return f"{integration}.{safe_job}" if safe_job else integration


def command_check_name(argv: list[str]) -> str:
    words = [Path(argv[0]).name] if argv else []
    words.extend(arg for arg in argv[1:] if not arg.startswith("-"))
    name = "_".join(words[:2])
    return re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_").lower() or "command"


class CheckRunner:
    def __init__(
        self,
        *,
        settings: RunSettings,
        store: ResultStore,
        acquirer: SourceAcquirer,
        publisher: PrPublisher | None = None,
        executor: CommandExecutor = run_command,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings
        self.store = store
        self.acquirer = acquirer
        self.publisher = publisher
        self.executor = executor
        self.clock = clock

    def run(self, integration: str) -> CheckOutcome:
        if not is_valid_work_item(integration):
            raise ConfigurationError(f"INTEGRATION is not a valid integration name: {integration!r}")

        settings = self.settings
        key = result_key(integration, settings.job_id)
        logger.info(
            "Running %s for %s (issue #%s from %s)",
            settings.workflow_name,
            integration,
            settings.issue_number if settings.issue_number is not None else "unknown",
            settings.issue_repo or "unknown",
        )
        with job_result_handle(
            self.store,
            key,
            workflow_name=settings.workflow_name,
            clock=self.clock,
            integration=integration,
            workflow=settings.workflow_name,
            buildkite_job_id=settings.job_id or None,
            issue_number=settings.issue_number,
        ) as handle:
            return self._run(handle, integration)

    def _run(self, handle: JobResultHandle, integration: str) -> CheckOutcome:
        settings = self.settings
        try:
            source = self.acquirer.acquire()
        except AcquisitionError as exc:
            handle.add_check("repository_sync", "failed", str(exc), output=exc.output or None)
            handle.finalize(
                "failed", f"{settings.workflow_name} exited unexpectedly: {exc}", exit_code=1
            )
            return self._outcome(handle, integration, exit_code=1)
        handle.add_check(source.check_name, "passed", source.message)

        resource = resolve_resource(source.repo_dir, settings.resource_prefix, integration)
        if not resource.is_dir():
            handle.add_check("exists", "failed", f"Not found: {resource}")
            handle.finalize(
                "not_found",
                f"Integration '{integration}' not found in {settings.source_repo}",
                exit_code=1,
            )
            return self._outcome(handle, integration, exit_code=1)
        handle.add_check("exists", "passed", f"Found {resource}")

        results = self._run_validation(handle, resource)
        passed = all(result.ok for result in results)
        exit_code = next((result.returncode for result in results if not result.ok), 0)
        handle.set_fields(check_output="\n".join(result.output for result in results))

        pr: PrResult | None = None
        publisher = self.publisher
        if publisher is not None and settings.pr_policy.allows(passed):
            pr = self._publish(publisher, handle, integration, resource, passed)

        if passed:
            handle.finalize(
                "passed", f"{settings.workflow_name} completed successfully", exit_code=0
            )
        else:
            handle.finalize(
                "failed", f"{settings.workflow_name} failed (PR may be opened)", exit_code=exit_code
            )
        return self._outcome(handle, integration, exit_code=exit_code, pr=pr)

    def _run_validation(self, handle: JobResultHandle, resource: Path) -> list[CommandResult]:
        results: list[CommandResult] = []
        for command in self.settings.check_commands:
            argv = shlex.split(command)
            name = command_check_name(argv)
            logger.info("--- Running: %s", command)
            result = self.executor(argv, cwd=resource, timeout=self.settings.timeouts.check_s)
            if result.ok:
                message = f"{command} completed successfully"
            elif result.timed_out:
                message = f"{command} timed out after {self.settings.timeouts.check_s:g}s"
            else:
                message = f"{command} failed (exit {result.returncode})"
            handle.add_check(name, "passed" if result.ok else "failed", message, output=result.output)
            results.append(result)
        return results

    def _publish(
        self,
        publisher: PrPublisher,
        handle: JobResultHandle,
        integration: str,
        resource: Path,
        passed: bool,
    ) -> PrResult:
        settings = self.settings
        branch = self.branch_name(integration, passed)
        title = f"{settings.pr_title_prefix} {integration} integration"
        document = self.store.read(handle.key)
        body = render_pr_body(settings, integration, document, passed, self.clock())
        commit_message = render_commit_message(settings, integration, title)
        pr = publisher.publish(resource, branch, commit_message, title, body)
        handle.record_pr(pr)
        return pr

    def branch_name(self, integration: str, passed: bool) -> str:
        settings = self.settings
        prefix = settings.branch_prefix if passed else settings.fix_branch_prefix
        issue = settings.issue_number if settings.issue_number is not None else "none"
        stamp = self.clock().astimezone(timezone.utc).strftime("%Y%m%d%H%M%S")
        branch = f"{prefix}-{integration}-issue-{issue}-{stamp}"
        # Parallel jobs for the same integration share the timestamp; the job id tells them apart.
        job = _safe_job_id(settings.job_id)[-8:].strip("-.")
        return f"{branch}-{job}" if job else branch

    def _outcome(
        self,
        handle: JobResultHandle,
        integration: str,
        *,
        exit_code: int,
        pr: PrResult | None = None,
    ) -> CheckOutcome:
        return CheckOutcome(
            integration=integration,
            status=handle.status,
            exit_code=exit_code,
            document_path=handle.path,
            pr=pr,
        )


def render_commit_message(settings: RunSettings, integration: str, title: str) -> str:
    return "\n".join(
        [
            title,
            "",
            "- Automated workflow execution",
            f"- {settings.workflow_name}",
            "",
            f"Related: {settings.issue_url}",
            f"Build: {settings.build_url}",
            f"Integration: {integration}",
        ]
    )


def render_pr_body(
    settings: RunSettings,
    integration: str,
    document: dict[str, Any],
    passed: bool,
    generated_at: datetime,
) -> str:
    lines = [
        "## Automated Integration Update",
        "",
        f"This PR contains automated changes for the **{integration}** integration.",
        "",
        f"**Workflow:** {settings.workflow_name}",
        "",
        "### Command Results:",
    ]
    for check in document.get("checks", []):
        icon = "✅" if check.get("status") == "passed" else "❌"
        lines.append(f"- {icon} **{check.get('name', '')}**: {check.get('message', '')}")
    lines.extend(
        [
            "",
            "### Related Information:",
            f"- **Issue**: {settings.issue_url or 'N/A'}",
            f"- **Build**: {settings.build_url or 'N/A'}",
            f"- **Integration**: `{integration}`",
        ]
    )
    if not passed:
        lines.extend(["", "⚠️ **Note:** Some commands failed. This PR addresses the issues."])
    lines.extend(["", f"*This PR was automatically generated at {_iso(generated_at)}*"])
    return "\n".join(lines)
