"""Run settings resolved once per process from CI environment variables."""

from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path

DEFAULT_REQUIRED_LABEL = "ai-doc-gen"
DEFAULT_WORKFLOW_NAME = "Integration Check"
DEFAULT_CHECK_COMMANDS = ("elastic-package check -v",)
TRUTHY_VALUES = {"1", "true", "yes", "on"}
FALSY_VALUES = {"0", "false", "no", "off"}

# Settings field -> environment variable named in error messages.
ENV_NAMES = {
    "issue_number": "ISSUE_NUMBER",
    "issue_url": "ISSUE_URL",
    "issue_repo": "ISSUE_REPO",
    "github_token": "GITHUB_TOKEN",
    "integration": "INTEGRATION",
    "integrations_json": "INTEGRATIONS_JSON",
    "webhook_body": "BUILDKITE_WEBHOOK_BODY",
    "issue_yaml": "ISSUE_YAML",
    "source_repo": "REPOSITORY_NAME",
}


class ConfigurationError(ValueError):
    """A required run parameter is missing or unusable."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class PrPolicy(str, Enum):
    ALWAYS = "always"
    ON_FAILURE = "on_failure"
    ON_SUCCESS = "on_success"
    NEVER = "never"

    def allows(self, passed: bool) -> bool:
        if self is PrPolicy.ALWAYS:
            return True
        if self is PrPolicy.ON_FAILURE:
            return not passed
        if self is PrPolicy.ON_SUCCESS:
            return passed
        return False


@dataclass(frozen=True)
class StageTimeouts:
    acquire_s: float = 600.0
    check_s: float = 1800.0
    publish_s: float = 300.0


@dataclass(frozen=True)
class RunSettings:
    """Explicit configuration handed to every orchestration component."""

    issue_number: int | None = None
    issue_url: str = ""
    issue_repo: str = ""
    github_token: str | None = None
    integration: str = ""
    integrations_json: str = ""
    webhook_body: str = ""
    issue_yaml: str = ""
    issue_event: str = "opened"
    required_label: str = DEFAULT_REQUIRED_LABEL
    workflow_name: str = DEFAULT_WORKFLOW_NAME
    branch_prefix: str = "auto-update"
    fix_branch_prefix: str = "fix"
    pr_title_prefix: str = "feat: Update"
    pr_policy: PrPolicy = PrPolicy.ALWAYS
    git_user_name: str = "Buildkite Bot"
    git_user_email: str = "buildkite-bot@example.com"
    source_repo: str = "elastic/integrations"
    source_branch: str = "main"
    resource_prefix: str = "packages"
    source_dir: Path | None = None
    check_commands: tuple[str, ...] = DEFAULT_CHECK_COMMANDS
    workdir: Path = field(default_factory=Path.cwd)
    timeouts: StageTimeouts = field(default_factory=StageTimeouts)
    build_id: str = ""
    build_number: str = ""
    build_url: str = ""
    job_id: str = ""
    agent: str = ""
    agent_queue: str = "standard"
    github_api_url: str = "https://api.github.com"

    @property
    def results_dir(self) -> Path:
        return self.workdir / "results"

    @property
    def summary_dir(self) -> Path:
        return self.workdir / "summary"

    @property
    def create_pr(self) -> bool:
        return self.pr_policy is not PrPolicy.NEVER

    @property
    def run_id(self) -> str:
        if self.build_id:
            return self.build_id
        if self.build_number:
            return f"build-{self.build_number}"
        if self.issue_number is not None:
            return f"issue-{self.issue_number}"
        return "local"

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "RunSettings":
        source = os.environ if env is None else env

        create_pr = _parse_bool(source.get("CREATE_PR"), default=True, name="CREATE_PR")
        policy_raw = _clean(source.get("PR_POLICY"))
        if not create_pr:
            pr_policy = PrPolicy.NEVER
        elif policy_raw:
            pr_policy = _parse_policy(policy_raw)
        else:
            pr_policy = PrPolicy.ALWAYS

        source_dir = _clean(source.get("FANOUT_SOURCE_DIR"))
        workdir = _clean(source.get("BUILDKITE_BUILD_CHECKOUT_PATH"))
        return cls(
            issue_number=_parse_issue_number(source.get("ISSUE_NUMBER")),
            issue_url=_clean(source.get("ISSUE_URL")) or "",
            issue_repo=_clean(source.get("ISSUE_REPO")) or "",
            github_token=_clean(source.get("FANOUT_GITHUB_TOKEN") or source.get("GITHUB_TOKEN")),
            integration=_clean(
                source.get("INTEGRATION") or source.get("BUILDKITE_MATRIX_SETUP_INTEGRATION")
            )
            or "",
            integrations_json=_clean(source.get("INTEGRATIONS_JSON")) or "",
            webhook_body=source.get("BUILDKITE_WEBHOOK_BODY") or "",
            issue_yaml=source.get("ISSUE_YAML") or "",
            issue_event=_clean(source.get("ISSUE_EVENT")) or "opened",
            required_label=_clean(source.get("REQUIRED_LABEL")) or DEFAULT_REQUIRED_LABEL,
            workflow_name=_clean(source.get("WORKFLOW_NAME")) or DEFAULT_WORKFLOW_NAME,
            branch_prefix=_clean(source.get("BRANCH_PREFIX")) or "auto-update",
            fix_branch_prefix=_clean(source.get("FIX_BRANCH_PREFIX")) or "fix",
            pr_title_prefix=_clean(source.get("PR_TITLE_PREFIX")) or "feat: Update",
            pr_policy=pr_policy,
            git_user_name=_clean(source.get("GIT_USER_NAME")) or "Buildkite Bot",
            git_user_email=_clean(source.get("GIT_USER_EMAIL")) or "buildkite-bot@example.com",
            source_repo=_clean(source.get("REPOSITORY_NAME")) or "elastic/integrations",
            source_branch=_clean(source.get("REPOSITORY_BRANCH")) or "main",
            resource_prefix=_clean(source.get("FANOUT_RESOURCE_PREFIX")) or "packages",
            source_dir=Path(source_dir) if source_dir else None,
            check_commands=_parse_commands(source.get("CHECK_COMMANDS")),
            workdir=Path(workdir) if workdir else Path.cwd(),
            timeouts=StageTimeouts(
                acquire_s=_parse_timeout(source, "FANOUT_ACQUIRE_TIMEOUT_S", 600.0),
                check_s=_parse_timeout(source, "FANOUT_CHECK_TIMEOUT_S", 1800.0),
                publish_s=_parse_timeout(source, "FANOUT_PUBLISH_TIMEOUT_S", 300.0),
            ),
            build_id=_clean(source.get("BUILDKITE_BUILD_ID")) or "",
            build_number=_clean(source.get("BUILDKITE_BUILD_NUMBER")) or "",
            build_url=_clean(source.get("BUILDKITE_BUILD_URL")) or "",
            job_id=_clean(source.get("BUILDKITE_JOB_ID")) or "",
            agent=(_clean(source.get("FANOUT_AGENT")) or "").lower(),
            agent_queue=_clean(source.get("FANOUT_AGENT_QUEUE")) or "standard",
            github_api_url=_clean(source.get("FANOUT_GITHUB_API_URL")) or "https://api.github.com",
        )

    def require(self, *names: str) -> None:
        """Raise ConfigurationError naming every required field that is unset."""
        missing = []
        for name in names:
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(ENV_NAMES.get(name, name.upper()))
        if missing:
            raise ConfigurationError(
                "Missing required environment variables: " + ", ".join(missing),
                missing=missing,
            )

    def redacted(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "github_token":
                out[item.name] = redact_token(value)
            elif item.name == "webhook_body":
                out[item.name] = f"<{len(value)} bytes>" if value else ""
            elif isinstance(value, PrPolicy):
                out[item.name] = value.value
            elif isinstance(value, tuple):
                out[item.name] = "; ".join(value)
            else:
                out[item.name] = "" if value is None else str(value)
        return out


def redact_token(token: str | None) -> str:
    if token is None:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _parse_bool(value: str | None, *, default: bool, name: str) -> bool:
    cleaned = (_clean(value) or "").lower()
    if not cleaned:
        return default
    if cleaned in TRUTHY_VALUES:
        return True
    if cleaned in FALSY_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_policy(value: str) -> PrPolicy:
    normalized = value.strip().lower().replace("-", "_")
    try:
        return PrPolicy(normalized)
    except ValueError as exc:
        allowed = ", ".join(policy.value for policy in PrPolicy)
        raise ConfigurationError(f"PR_POLICY must be one of {allowed}, got {value!r}") from exc


def _parse_issue_number(value: str | None) -> int | None:
    cleaned = _clean(value)
    if cleaned is None:
        return None
    try:
        return int(cleaned)
    except ValueError as exc:
        raise ConfigurationError(f"ISSUE_NUMBER must be an integer, got {value!r}") from exc


def _parse_timeout(source: dict[str, str], name: str, default: float) -> float:
    cleaned = _clean(source.get(name))
    if cleaned is None:
        return default
    try:
        parsed = float(cleaned)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number of seconds, got {cleaned!r}") from exc
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be positive, got {cleaned!r}")
    return parsed


def _parse_commands(value: str | None) -> tuple[str, ...]:
    if not _clean(value):
        return DEFAULT_CHECK_COMMANDS
    commands = [part.strip() for part in re.split(r"[;\n]", value or "") if part.strip()]
    for command in commands:
        try:
            shlex.split(command)
        except ValueError as exc:
            raise ConfigurationError(f"CHECK_COMMANDS entry is not parseable: {command!r}") from exc
    return tuple(commands) or DEFAULT_CHECK_COMMANDS
