"""Issue lookups through the GitHub ``gh`` CLI."""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_ISSUE_FIELDS = "number,title,body,state,url"


class GitHubCommandError(RuntimeError):
    """The ``gh`` CLI failed for a reason other than a missing issue."""

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class IssueNotFoundError(GitHubCommandError):
    """The requested issue does not exist in the repository."""

    def __init__(self, issue_number: int, *, stderr: str = "") -> None:
        super().__init__(f"Issue #{issue_number} not found", stderr=stderr)
        self.issue_number = issue_number


@dataclass(slots=True)
class Issue:
    number: int
    title: str
    body: str = ""
    state: str = "OPEN"
    url: str = ""


class GhIssueService:
    """Fetch issues with ``gh issue view``."""

    def __init__(self, repo_path: Path, *, timeout_seconds: int = 300) -> None:
        self._repo_path = repo_path
        self._timeout = timeout_seconds

    def fetch_issue(self, issue_number: int) -> Issue:
        args = ["gh", "issue", "view", str(issue_number), "--json", _ISSUE_FIELDS]
        logger.debug("Fetching GitHub issue #%d", issue_number)
        try:
            completed = subprocess.run(  # noqa: S603
                args,
                cwd=self._repo_path,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as error:
            raise GitHubCommandError(
                "GitHub CLI (gh) not found. Install it from https://cli.github.com/",
            ) from error
        except subprocess.TimeoutExpired as error:
            raise GitHubCommandError(f"gh timed out after {self._timeout}s") from error
        if completed.returncode != 0:
            stderr = completed.stderr or ""
            if "Could not resolve" in stderr:
                raise IssueNotFoundError(issue_number, stderr=stderr)
            raise GitHubCommandError(
                f"gh issue view failed: {stderr.strip() or completed.returncode}",
                stderr=stderr,
            )
        return parse_issue(completed.stdout)


def parse_issue(payload: str) -> Issue:
    data = json.loads(payload)
    return Issue(
        number=int(data["number"]),
        title=str(data.get("title") or ""),
        body=str(data.get("body") or ""),
        state=str(data.get("state") or "OPEN"),
        url=str(data.get("url") or ""),
    )
