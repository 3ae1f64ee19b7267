"""GitHub client contract, errors, and factory helpers."""

from __future__ import annotations

from typing import Any, Protocol

from ci_fanout.shared.settings import RunSettings


class GitHubAPIError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubClient(Protocol):
    """Operations the orchestrator performs against the code host."""

    def create_pull_request(
        self, repo: str, *, head: str, base: str, title: str, body: str
    ) -> dict[str, Any]: ...

    def list_issue_comments(self, repo: str, issue_number: int) -> list[dict[str, Any]]: ...

    def create_issue_comment(self, repo: str, issue_number: int, body: str) -> dict[str, Any]: ...

    def update_issue_comment(self, repo: str, comment_id: int, body: str) -> dict[str, Any]: ...


def build_client(settings: RunSettings) -> GitHubClient:
    from ci_fanout.github.github_client_api import GitHubAPIClient

    return GitHubAPIClient(token=settings.github_token, base_url=settings.github_api_url)


__all__ = ["GitHubAPIError", "GitHubClient", "build_client"]
