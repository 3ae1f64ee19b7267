from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from ci_fanout import cli
from ci_fanout.github.github_client_inmemory import InMemoryGitHubClient
from ci_fanout.orchestration.result_store import ResultStore

runner = CliRunner()

RUN_ENV_VARS = (
    "ISSUE_NUMBER",
    "ISSUE_URL",
    "ISSUE_REPO",
    "ISSUE_YAML",
    "ISSUE_EVENT",
    "GITHUB_TOKEN",
    "FANOUT_GITHUB_TOKEN",
    "INTEGRATION",
    "INTEGRATIONS_JSON",
    "BUILDKITE_WEBHOOK_BODY",
    "BUILDKITE_MATRIX_SETUP_INTEGRATION",
    "BUILDKITE_BUILD_ID",
    "BUILDKITE_BUILD_NUMBER",
    "BUILDKITE_BUILD_URL",
    "BUILDKITE_JOB_ID",
    "BUILDKITE_ENV_FILE",
    "CREATE_PR",
    "PR_POLICY",
    "CHECK_COMMANDS",
    "REQUIRED_LABEL",
    "FANOUT_SOURCE_DIR",
)


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in RUN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FANOUT_AGENT", "local")
    monkeypatch.setenv("BUILDKITE_BUILD_CHECKOUT_PATH", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _webhook(labels: list[str], body: str) -> str:
    return json.dumps(
        {
            "action": "labeled",
            "issue": {
                "number": 42,
                "html_url": "https://github.com/acme/widgets/issues/42",
                "body": body,
                "labels": [{"name": name} for name in labels],
            },
            "repository": {"full_name": "acme/widgets"},
        }
    )


def test_gate_accepts_and_writes_pipeline(workdir: Path) -> None:
    payload = workdir / "payload.json"
    payload.write_text(_webhook(["ai-doc-gen"], "---\nintegrations:\n  - nginx\n  - apache\n---"))
    output = workdir / "work" / "dynamic.yml"

    result = runner.invoke(
        cli.app, ["gate", "--payload-file", str(payload), "--output", str(output)]
    )

    assert result.exit_code == 0, result.output
    assert "nginx, apache" in result.output
    document = yaml.safe_load(output.read_text())
    assert document["steps"][0]["matrix"]["setup"]["integration"] == ["nginx", "apache"]


def test_gate_reject_exits_zero_without_pipeline(
    workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("BUILDKITE_WEBHOOK_BODY", _webhook(["bug"], "---\nintegrations: [a]\n---"))

    result = runner.invoke(cli.app, ["gate"])

    assert result.exit_code == 0
    assert "No ai-doc-gen label, exiting." in result.output
    assert not (workdir / "work" / "dynamic.yml").exists()


def test_gate_builds_payload_from_issue_variables(
    workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ISSUE_NUMBER", "42")
    monkeypatch.setenv("ISSUE_REPO", "acme/widgets")
    monkeypatch.setenv("ISSUE_YAML", "---\nintegrations:\n  - nginx\n---")

    result = runner.invoke(cli.app, ["gate"])

    assert result.exit_code == 0, result.output
    assert (workdir / "work" / "dynamic.yml").exists()


def test_gate_malformed_payload_exits_one(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUILDKITE_WEBHOOK_BODY", "{broken")
    result = runner.invoke(cli.app, ["gate"])
    assert result.exit_code == 1
    assert "not valid JSON" in result.output


def test_gate_without_any_payload_exits_one(workdir: Path) -> None:
    result = runner.invoke(cli.app, ["gate"])
    assert result.exit_code == 1
    assert "No trigger payload" in result.output


def test_gate_rejects_unsafe_names(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    body = "---\nintegrations:\n  - '../../etc'\n---"
    monkeypatch.setenv("BUILDKITE_WEBHOOK_BODY", _webhook(["ai-doc-gen"], body))
    result = runner.invoke(cli.app, ["gate"])
    assert result.exit_code == 1


def test_gate_blank_integration_rejects_with_exit_zero(
    workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    body = "---\nintegrations:\n  - nginx\n  - \"\"\n---"
    monkeypatch.setenv("BUILDKITE_WEBHOOK_BODY", _webhook(["ai-doc-gen"], body))

    result = runner.invoke(cli.app, ["gate"])

    assert result.exit_code == 0
    assert "non-empty 'integrations' sequence" in result.output
    assert not (workdir / "work" / "dynamic.yml").exists()


def test_orchestrate_requires_all_variables(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ISSUE_NUMBER", "42")
    result = runner.invoke(cli.app, ["orchestrate"])
    assert result.exit_code == 1
    assert "ISSUE_URL" in result.output
    assert "INTEGRATIONS_JSON" in result.output


def test_orchestrate_generates_from_json(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ISSUE_NUMBER", "42")
    monkeypatch.setenv("ISSUE_URL", "https://github.com/acme/widgets/issues/42")
    monkeypatch.setenv("ISSUE_REPO", "acme/widgets")
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_do_not_leak_me")
    monkeypatch.setenv("INTEGRATIONS_JSON", '["nginx", "apache"]')

    result = runner.invoke(cli.app, ["orchestrate"])

    assert result.exit_code == 0, result.output
    rendered = (workdir / "dynamic-pipeline.yml").read_text()
    assert "ghp_do_not_leak_me" not in rendered
    assert yaml.safe_load(rendered)["steps"][1]["key"] == "summarize"


@pytest.mark.parametrize("raw", ["not json", "[]", '{"a": 1}', "[1, 2]"])
def test_orchestrate_rejects_bad_integration_lists(
    workdir: Path, monkeypatch: pytest.MonkeyPatch, raw: str
) -> None:
    monkeypatch.setenv("ISSUE_NUMBER", "42")
    monkeypatch.setenv("ISSUE_URL", "u")
    monkeypatch.setenv("ISSUE_REPO", "acme/widgets")
    monkeypatch.setenv("GITHUB_TOKEN", "t")
    monkeypatch.setenv("INTEGRATIONS_JSON", raw)
    assert runner.invoke(cli.app, ["orchestrate"]).exit_code == 1


def _check_env(workdir: Path, monkeypatch: pytest.MonkeyPatch, command: str) -> None:
    source = workdir / "src"
    (source / "packages" / "nginx").mkdir(parents=True)
    monkeypatch.setenv("FANOUT_SOURCE_DIR", str(source))
    monkeypatch.setenv("CREATE_PR", "false")
    monkeypatch.setenv("ISSUE_NUMBER", "42")
    monkeypatch.setenv("CHECK_COMMANDS", command)


def test_check_passes_and_records_result(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _check_env(workdir, monkeypatch, f"{sys.executable} -c pass")

    result = runner.invoke(cli.app, ["check", "nginx"])

    assert result.exit_code == 0, result.output
    document = ResultStore(workdir / "results").read("nginx")
    assert document["status"] == "passed"
    assert document["issue_number"] == 42


def test_check_exit_code_mirrors_failure(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _check_env(workdir, monkeypatch, f"{sys.executable} -c 'raise SystemExit(2)'")
    monkeypatch.setenv("INTEGRATION", "nginx")

    result = runner.invoke(cli.app, ["check"])

    assert result.exit_code == 2
    assert ResultStore(workdir / "results").read("nginx")["status"] == "failed"


def test_check_missing_integration_exits_one(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _check_env(workdir, monkeypatch, f"{sys.executable} -c pass")

    result = runner.invoke(cli.app, ["check", "zeek"])

    assert result.exit_code == 1
    assert ResultStore(workdir / "results").read("zeek")["status"] == "not_found"


def test_check_without_integration_exits_one(workdir: Path) -> None:
    result = runner.invoke(cli.app, ["check"])
    assert result.exit_code == 1
    assert "INTEGRATION" in result.output


def test_check_with_pr_requires_token(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CREATE_PR", "true")
    result = runner.invoke(cli.app, ["check", "nginx"])
    assert result.exit_code == 1
    assert "GITHUB_TOKEN" in result.output


def _seed_results(workdir: Path) -> None:
    store = ResultStore(workdir / "results")
    store.create("nginx", {"integration": "nginx", "status": "passed", "message": "ok"})
    store.create("zeek", {"integration": "zeek", "status": "not_found", "message": "missing"})


def test_summarize_writes_report_without_publishing(workdir: Path) -> None:
    _seed_results(workdir)

    result = runner.invoke(cli.app, ["summarize", "--no-publish"])

    assert result.exit_code == 0, result.output
    assert "total=2 passed=1 failed=0 not_found=1" in result.output
    report = json.loads((workdir / "summary" / "report.json").read_text())
    assert report["success_rate"] == 50.0


def test_summarize_publishes_issue_comment(
    workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _seed_results(workdir)
    client = InMemoryGitHubClient()
    monkeypatch.setattr(cli, "build_client", lambda settings: client)
    monkeypatch.setenv("ISSUE_NUMBER", "42")
    monkeypatch.setenv("ISSUE_REPO", "acme/widgets")
    monkeypatch.setenv("GITHUB_TOKEN", "tok")
    monkeypatch.setenv("BUILDKITE_BUILD_ID", "0190-build")

    first = runner.invoke(cli.app, ["summarize"])
    second = runner.invoke(cli.app, ["summarize"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    comments = client.comments[("acme/widgets", 42)]
    assert len(comments) == 1
    assert comments[0]["body"].startswith("<!-- ci-fanout-summary run=0190-build -->")


def test_summarize_publish_failure_still_exits_zero(
    workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    client = InMemoryGitHubClient(fail_operations={"list_issue_comments"})
    monkeypatch.setattr(cli, "build_client", lambda settings: client)
    monkeypatch.setenv("ISSUE_NUMBER", "42")
    monkeypatch.setenv("ISSUE_REPO", "acme/widgets")
    monkeypatch.setenv("GITHUB_TOKEN", "tok")

    result = runner.invoke(cli.app, ["summarize"])

    assert result.exit_code == 0, result.output
    assert "No integration results were found" in result.output


def test_summarize_publish_requires_configuration(workdir: Path) -> None:
    result = runner.invoke(cli.app, ["summarize"])
    assert result.exit_code == 1
    assert "ISSUE_NUMBER" in result.output


def test_status_redacts_token(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_1234567890abcdef")
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 0
    assert "ghp_1234567890abcdef" not in result.output
    assert json.loads(result.stdout)["github_token"] == "ghp_...cdef"
