"""ci-fanout CLI: gate, fan out, check, and summarize integration runs."""

from __future__ import annotations

import json
import logging
import signal
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NoReturn

import typer

from ci_fanout.github.github_client import GitHubAPIError, build_client
from ci_fanout.github.trigger_gate import (
    PayloadError,
    evaluate,
    synthesize_issue_payload,
)
from ci_fanout.models.pipeline_contracts import RunContext
from ci_fanout.orchestration.agent import AgentCommandError, PipelineAgent
from ci_fanout.orchestration.agent_adapters import build_agent
from ci_fanout.orchestration.check_runner import CheckRunner
from ci_fanout.orchestration.pipeline_generator import (
    RESULT_ARTIFACTS,
    GenerationError,
    PipelineGenerator,
    write_pipeline,
)
from ci_fanout.orchestration.pr_publisher import PrPublisher
from ci_fanout.orchestration.result_store import ResultStore
from ci_fanout.orchestration.summary import IssueCommentDestination, SummaryReducer, load_results
from ci_fanout.orchestration.workspace import build_acquirer
from ci_fanout.shared.settings import ConfigurationError, RunSettings

logger = logging.getLogger("ci_fanout.cli")

DEFAULT_PIPELINE_PATH = Path("work/dynamic.yml")
SUMMARY_ARTIFACTS = "summary/*"

app = typer.Typer(add_completion=False, help="ci-fanout: integration check fan-out orchestrator")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _load_settings() -> RunSettings:
    try:
        return RunSettings.from_env()
    except ConfigurationError as exc:
        _fail(str(exc))


def _resolve_payload(settings: RunSettings, payload_file: Path | None) -> str | dict[str, Any]:
    if payload_file is not None:
        return payload_file.read_text()
    if settings.webhook_body.strip():
        return settings.webhook_body
    if settings.issue_number is not None and settings.issue_yaml.strip():
        logger.info("No webhook body; building issue payload from ISSUE_* variables")
        return synthesize_issue_payload(
            issue_number=settings.issue_number,
            issue_url=settings.issue_url,
            repository_full_name=settings.issue_repo,
            body=settings.issue_yaml,
            action=settings.issue_event,
            label=settings.required_label,
        )
    raise ConfigurationError(
        "No trigger payload. Expected BUILDKITE_WEBHOOK_BODY, --payload-file, "
        "or ISSUE_NUMBER and ISSUE_YAML"
    )


def _emit_pipeline(
    settings: RunSettings,
    work_items: Sequence[str],
    context: RunContext,
    output: Path,
    upload: bool,
) -> None:
    try:
        spec = PipelineGenerator(agent_queue=settings.agent_queue).generate(work_items, context)
    except GenerationError as exc:
        _fail(str(exc))

    path = write_pipeline(spec, output)
    typer.echo(f"Generated pipeline with {len(work_items)} check jobs: {path}")

    agent = _agent(settings)
    agent.export_env(
        {
            "ISSUE_NUMBER": str(context.issue_number),
            "ISSUE_URL": context.issue_url,
            "ISSUE_REPO": context.repository_full_name,
        }
    )
    if upload:
        try:
            agent.upload_pipeline(path)
        except AgentCommandError as exc:
            logger.error("Pipeline upload failed: %s\n%s", exc, exc.output)
            _fail(str(exc))


def _agent(settings: RunSettings) -> PipelineAgent:
    try:
        return build_agent(settings.agent)
    except ValueError as exc:
        _fail(f"FANOUT_AGENT: {exc}")


@contextmanager
def _sigterm_as_exit() -> Iterator[None]:
    def _handler(signum: int, _frame: Any) -> None:
        raise SystemExit(f"terminated by {signal.Signals(signum).name}")

    try:
        previous = signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Not in the main thread; nothing to install.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


@app.command()
def status() -> None:
    """Print the resolved run configuration with secrets redacted."""
    settings = _load_settings()
    typer.echo(json.dumps(settings.redacted(), indent=2))


@app.command()
def gate(
    payload_file: Path = typer.Option(None, "--payload-file", help="Webhook JSON payload file."),
    output: Path = typer.Option(DEFAULT_PIPELINE_PATH, "--output"),
    upload: bool = typer.Option(True, "--upload/--no-upload"),
) -> None:
    """Filter an issue event and fan out one check job per integration."""
    settings = _load_settings()
    try:
        raw = _resolve_payload(settings, payload_file)
        decision = evaluate(raw, settings.required_label)
    except (ConfigurationError, PayloadError, OSError) as exc:
        _fail(str(exc))

    if not decision.accepted:
        typer.echo(decision.reason)
        raise typer.Exit(code=0)

    typer.echo(
        f"Issue #{decision.context.issue_number} requests {len(decision.work_items)} "
        f"integrations: {', '.join(decision.work_items)}"
    )
    _emit_pipeline(settings, decision.work_items, decision.context, output, upload)


@app.command()
def orchestrate(
    output: Path = typer.Option(Path("dynamic-pipeline.yml"), "--output"),
    upload: bool = typer.Option(True, "--upload/--no-upload"),
) -> None:
    """Fan out from pre-extracted variables (INTEGRATIONS_JSON) instead of a webhook."""
    settings = _load_settings()
    try:
        settings.require("issue_number", "issue_url", "issue_repo", "integrations_json", "github_token")
        integrations = _parse_integrations(settings.integrations_json)
        context = RunContext(
            issue_number=settings.issue_number,
            issue_url=settings.issue_url,
            repository_full_name=settings.issue_repo,
        )
    except (ConfigurationError, ValueError) as exc:
        _fail(str(exc))

    typer.echo(f"Issue #{settings.issue_number} from {settings.issue_repo}")
    for name in integrations:
        typer.echo(f"  - {name}")
    _emit_pipeline(settings, integrations, context, output, upload)


def _parse_integrations(raw: str) -> list[str]:
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid JSON in INTEGRATIONS_JSON: {exc}") from exc
    if not isinstance(parsed, list) or not parsed:
        raise ConfigurationError("INTEGRATIONS_JSON must be a non-empty JSON array")
    if not all(isinstance(item, str) for item in parsed):
        raise ConfigurationError("INTEGRATIONS_JSON must contain only strings")
    return parsed


@app.command()
def check(
    integration: str = typer.Argument("", help="Integration name (defaults to $INTEGRATION)."),
) -> None:
    """Run the validation commands for one integration and record its result."""
    settings = _load_settings()
    name = integration.strip() or settings.integration
    try:
        if not name:
            raise ConfigurationError("Missing required environment variables: INTEGRATION")
        if settings.create_pr:
            settings.require("github_token")
    except ConfigurationError as exc:
        _fail(str(exc))

    publisher = None
    if settings.create_pr:
        publisher = PrPublisher(
            repo=settings.source_repo,
            base_branch=settings.source_branch,
            client=build_client(settings),
            token=settings.github_token,
            git_user_name=settings.git_user_name,
            git_user_email=settings.git_user_email,
            timeout=settings.timeouts.publish_s,
        )
    runner = CheckRunner(
        settings=settings,
        store=ResultStore(settings.results_dir),
        acquirer=build_acquirer(settings),
        publisher=publisher,
    )

    try:
        with _sigterm_as_exit():
            outcome = runner.run(name)
    except ConfigurationError as exc:
        _fail(str(exc))
    except Exception as exc:
        logger.exception("Check for %s aborted", name)
        _fail(f"{settings.workflow_name} exited unexpectedly: {exc}")

    typer.echo(f"=== {settings.workflow_name} Complete ===")
    typer.echo(f"Status: {outcome.status}")
    typer.echo(f"Result file: {outcome.document_path}")
    if outcome.pr is not None and outcome.pr.url:
        typer.echo(f"PR: {outcome.pr.url}")
    raise typer.Exit(code=outcome.exit_code)


@app.command()
def summarize(
    publish: bool = typer.Option(True, "--publish/--no-publish", help="Comment on the issue."),
    download: bool = typer.Option(True, "--download/--no-download"),
) -> None:
    """Aggregate every published result and report back to the triggering issue."""
    settings = _load_settings()
    if publish:
        try:
            settings.require("issue_number", "issue_repo", "github_token")
        except ConfigurationError as exc:
            _fail(str(exc))

    agent = _agent(settings)
    if download:
        agent.download_artifacts(RESULT_ARTIFACTS, settings.workdir)

    try:
        results = load_results(ResultStore(settings.results_dir))
    except OSError as exc:
        _fail(f"Cannot read results from {settings.results_dir}: {exc}")

    reducer = SummaryReducer(
        run_id=settings.run_id,
        issue_number=settings.issue_number,
        build_url=settings.build_url,
        workflow_name=settings.workflow_name,
    )
    report = reducer.reduce(results)
    metadata = {
        "run_id": settings.run_id,
        "build_number": settings.build_number,
        "build_url": settings.build_url,
        "issue_number": settings.issue_number,
        "issue_repo": settings.issue_repo,
    }
    written = reducer.write(report, settings.summary_dir, metadata)
    typer.echo(
        f"Summary: total={report.total} passed={report.passed} "
        f"failed={report.failed} not_found={report.not_found}"
    )
    if report.total == 0:
        typer.echo("No integration results were found for this run.")
    for path in written:
        typer.echo(f"Wrote {path}")

    try:
        agent.upload_artifacts(SUMMARY_ARTIFACTS, settings.workdir)
    except AgentCommandError as exc:
        logger.warning("Summary artifact upload failed: %s", exc)

    if publish:
        destination = IssueCommentDestination(
            build_client(settings), settings.issue_repo, settings.issue_number
        )
        try:
            result = reducer.publish(report, destination)
        except GitHubAPIError as exc:
            logger.error("Failed to publish summary comment: %s", exc)
        else:
            target = f"{settings.issue_repo}#{settings.issue_number}"
            typer.echo(f"Summary comment {result.action} on {target}")


if __name__ == "__main__":
    app()
