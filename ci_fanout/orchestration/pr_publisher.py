"""Stage, commit, push, and open a pull request for one resource directory."""

from __future__ import annotations

import logging
from pathlib import Path

from ci_fanout.github.github_client import GitHubAPIError, GitHubClient
from ci_fanout.models.result_contracts import PrResult
from ci_fanout.orchestration.process import CommandExecutor, CommandResult, run_command
from ci_fanout.orchestration.workspace import authenticated_remote, scrub

logger = logging.getLogger(__name__)


class _StepFailed(Exception):
    pass


class PrPublisher:
    def __init__(
        self,
        *,
        repo: str,
        base_branch: str,
        client: GitHubClient,
        token: str | None = None,
        git_user_name: str = "Buildkite Bot",
        git_user_email: str = "buildkite-bot@example.com",
        timeout: float | None = None,
        executor: CommandExecutor = run_command,
    ) -> None:
        self.repo = repo
        self.base_branch = base_branch
        self.client = client
        self.token = token
        self.git_user_name = git_user_name
        self.git_user_email = git_user_email
        self.timeout = timeout
        self.executor = executor

    def publish(
        self,
        resource_path: Path,
        branch_name: str,
        commit_message: str,
        title: str,
        body: str,
    ) -> PrResult:
        """Never raises; every failure is reported as a failed PrResult."""
        try:
            return self._publish(resource_path, branch_name, commit_message, title, body)
        except _StepFailed as exc:
            logger.warning("Pull request for %s not created: %s", branch_name, exc)
            return PrResult(state="failed", branch=branch_name, message=str(exc))
        except GitHubAPIError as exc:
            logger.warning("Pull request for %s not created: %s", branch_name, exc)
            return PrResult(
                state="failed",
                branch=branch_name,
                message=f"Failed to create PR: {scrub(str(exc), self.token)}",
            )
        except Exception as exc:  # pragma: no cover - publisher boundary
            logger.exception("Unexpected error while publishing %s", branch_name)
            return PrResult(
                state="failed",
                branch=branch_name,
                message=f"Unexpected error while creating PR: {scrub(str(exc), self.token)}",
            )

    def _publish(
        self,
        resource_path: Path,
        branch_name: str,
        commit_message: str,
        title: str,
        body: str,
    ) -> PrResult:
        self._git(resource_path, "checkout", "-b", branch_name)
        self._git(resource_path, "add", "-A", "--", ".")

        diff = self._run(resource_path, "diff", "--staged", "--quiet")
        if diff.returncode == 0:
            logger.info("No changes under %s; skipping pull request", resource_path)
            return PrResult(state="skipped", branch=branch_name, message="No changes to commit")
        if diff.returncode != 1:
            raise _StepFailed(f"git diff failed: {scrub(diff.output, self.token).strip()}")

        self._git(
            resource_path,
            "-c",
            f"user.name={self.git_user_name}",
            "-c",
            f"user.email={self.git_user_email}",
            "commit",
            "-m",
            commit_message,
        )
        if self.token:
            self._git(
                resource_path,
                "remote",
                "set-url",
                "origin",
                authenticated_remote(self.repo, self.token),
            )
        self._git(resource_path, "push", "-u", "origin", branch_name)

        pull = self.client.create_pull_request(
            self.repo, head=branch_name, base=self.base_branch, title=title, body=body
        )
        url = str(pull.get("html_url") or pull.get("url") or "")
        logger.info("Created pull request %s", url)
        return PrResult(state="created", branch=branch_name, url=url, message=f"Created PR: {url}")

    def _run(self, cwd: Path, *args: str) -> CommandResult:
        return self.executor(["git", *args], cwd=cwd, timeout=self.timeout)

    def _git(self, cwd: Path, *args: str) -> CommandResult:
        result = self._run(cwd, *args)
        if not result.ok:
            subcommand = next(arg for arg in args if not arg.startswith("-") and "=" not in arg)
            reason = "timed out" if result.timed_out else f"exited {result.returncode}"
            output = scrub(result.output, self.token).strip()
            raise _StepFailed(f"git {subcommand} {reason}: {output}".rstrip(": "))
        return result
