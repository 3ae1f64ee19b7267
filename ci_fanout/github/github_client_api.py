"""GitHub REST API client implementation."""

from __future__ import annotations

import logging
from typing import Any

import requests

from ci_fanout.github.github_client import GitHubAPIError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_COMMENT_PAGES = 20


class GitHubAPIClient:
    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        timeout_s: float = 15,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def create_pull_request(
        self, repo: str, *, head: str, base: str, title: str, body: str
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/repos/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )

    def list_issue_comments(self, repo: str, issue_number: int) -> list[dict[str, Any]]:
        comments: list[dict[str, Any]] = []
        for page in range(1, MAX_COMMENT_PAGES + 1):
            rows = self._request(
                "GET",
                f"/repos/{repo}/issues/{issue_number}/comments",
                params={"per_page": str(PAGE_SIZE), "page": str(page)},
            )
            if not isinstance(rows, list):
                break
            comments.extend(row for row in rows if isinstance(row, dict))
            if len(rows) < PAGE_SIZE:
                break
        return comments

    def create_issue_comment(self, repo: str, issue_number: int, body: str) -> dict[str, Any]:
        return self._request(
            "POST", f"/repos/{repo}/issues/{issue_number}/comments", json={"body": body}
        )

    def update_issue_comment(self, repo: str, comment_id: int, body: str) -> dict[str, Any]:
        return self._request(
            "PATCH", f"/repos/{repo}/issues/comments/{comment_id}", json={"body": body}
        )

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise GitHubAPIError(f"GitHub API {method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub API {method} {path} returned {response.status_code}: "
                f"{_error_message(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()


def _error_message(response: Any) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("message", ""))
    return ""
