"""In-memory GitHub client for deterministic tests and dry runs."""

from __future__ import annotations

from typing import Any

from ci_fanout.github.github_client import GitHubAPIError


class InMemoryGitHubClient:
    def __init__(self, fail_operations: set[str] | None = None) -> None:
        self.fail_operations = set(fail_operations or set())
        self.pull_requests: list[dict[str, Any]] = []
        self.comments: dict[tuple[str, int], list[dict[str, Any]]] = {}
        self._next_comment_id = 1

    def _guard(self, operation: str) -> None:
        if operation in self.fail_operations:
            raise GitHubAPIError(f"simulated failure: {operation}", status_code=500)

    def create_pull_request(
        self, repo: str, *, head: str, base: str, title: str, body: str
    ) -> dict[str, Any]:
        self._guard("create_pull_request")
        for existing in self.pull_requests:
            if existing["repo"] == repo and existing["head"] == head:
                raise GitHubAPIError(
                    f"A pull request already exists for {repo}:{head}", status_code=422
                )
        number = len(self.pull_requests) + 1
        pull = {
            "repo": repo,
            "number": number,
            "head": head,
            "base": base,
            "title": title,
            "body": body,
            "html_url": f"https://github.com/{repo}/pull/{number}",
        }
        self.pull_requests.append(pull)
        return dict(pull)

    def list_issue_comments(self, repo: str, issue_number: int) -> list[dict[str, Any]]:
        self._guard("list_issue_comments")
        return [dict(comment) for comment in self.comments.get((repo, issue_number), [])]

    def create_issue_comment(self, repo: str, issue_number: int, body: str) -> dict[str, Any]:
        self._guard("create_issue_comment")
        comment = {"id": self._next_comment_id, "body": body}
        self._next_comment_id += 1
        self.comments.setdefault((repo, issue_number), []).append(comment)
        return dict(comment)

    def update_issue_comment(self, repo: str, comment_id: int, body: str) -> dict[str, Any]:
        self._guard("update_issue_comment")
        for (comment_repo, _), comments in self.comments.items():
            if comment_repo != repo:
                continue
            for comment in comments:
                if comment["id"] == comment_id:
                    comment["body"] = body
                    return dict(comment)
        raise GitHubAPIError(f"comment {comment_id} not found", status_code=404)
