from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from ci_fanout.models.pipeline_contracts import RunContext
from ci_fanout.orchestration.pipeline_generator import (
    CHECK_STEP_KEY,
    SUMMARY_STEP_KEY,
    TOKEN_REFERENCE,
    GenerationError,
    PipelineGenerator,
    is_valid_work_item,
    render_pipeline,
    write_pipeline,
)

CONTEXT = RunContext(
    issue_number=42,
    issue_url="https://github.com/acme/widgets/issues/42",
    repository_full_name="acme/widgets",
)


def test_one_check_instance_per_work_item_in_order() -> None:
    spec = PipelineGenerator().generate(["nginx", "apache", "nginx"], CONTEXT)

    instances = spec.instances(CHECK_STEP_KEY)
    assert [env["INTEGRATION"] for env in instances] == ["nginx", "apache", "nginx"]
    for env in instances:
        assert env["ISSUE_NUMBER"] == "42"
        assert env["ISSUE_URL"] == CONTEXT.issue_url
        assert env["ISSUE_REPO"] == "acme/widgets"


def test_summary_step_runs_after_checks_even_when_they_fail() -> None:
    spec = PipelineGenerator().generate(["nginx"], CONTEXT)

    summary = spec.step(SUMMARY_STEP_KEY)
    assert summary.allow_dependency_failure is True
    assert [dep.step for dep in summary.depends_on] == [CHECK_STEP_KEY]
    assert all(dep.allow_failure for dep in summary.depends_on)
    assert spec.instances(SUMMARY_STEP_KEY) == [
        {"ISSUE_NUMBER": "42", "ISSUE_REPO": "acme/widgets", "GITHUB_TOKEN": TOKEN_REFERENCE}
    ]


def test_rendered_yaml_has_buildkite_shape() -> None:
    spec = PipelineGenerator("batch").generate(["a", "b"], CONTEXT)
    document = yaml.safe_load(render_pipeline(spec))

    check, summary = document["steps"]
    assert check["key"] == "check"
    assert check["matrix"] == {"setup": {"integration": ["a", "b"]}}
    assert check["agents"] == {"queue": "batch"}
    assert check["env"]["INTEGRATION"] == "{{matrix.integration}}"
    assert check["artifact_paths"] == "results/*.json"
    assert "depends_on" not in check
    assert summary["depends_on"] == [{"step": "check", "allow_failure": True}]
    assert summary["allow_dependency_failure"] is True
    assert "matrix" not in summary


def test_token_value_never_enters_the_document() -> None:
    rendered = render_pipeline(PipelineGenerator().generate(["nginx"], CONTEXT))
    assert "${GITHUB_TOKEN}" in rendered
    assert "ghp_" not in rendered


def test_empty_work_items_raise() -> None:
    with pytest.raises(GenerationError, match="no integrations"):
        PipelineGenerator().generate([], CONTEXT)


@pytest.mark.parametrize("name", ["", "../etc", "a b", "nginx;rm", "-flag", "a..b", "$(id)"])
def test_unsafe_work_item_names_are_rejected(name: str) -> None:
    assert not is_valid_work_item(name)
    with pytest.raises(GenerationError):
        PipelineGenerator().generate(["nginx", name], CONTEXT)


@pytest.mark.parametrize("name", ["nginx", "aws_bedrock", "cisco-ios", "1password", "v1.2"])
def test_typical_integration_names_are_valid(name: str) -> None:
    assert is_valid_work_item(name)


def test_write_pipeline_creates_parent_directories(tmp_path: Path) -> None:
    target = tmp_path / "work" / "dynamic.yml"
    written = write_pipeline(PipelineGenerator().generate(["nginx"], CONTEXT), target)

    assert written == target
    assert yaml.safe_load(target.read_text())["steps"][0]["label"].startswith(":package:")
