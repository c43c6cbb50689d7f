from __future__ import annotations

import json
import subprocess
from pathlib import Path

import allure
import pytest

from loomkit.github.service import (
    GhIssueService,
    GitHubCommandError,
    IssueNotFoundError,
    parse_issue,
)

pytestmark = [
    allure.epic("Workspace Lifecycle"),
    allure.feature("GitHub Issues"),
]


def _patch_run(monkeypatch: pytest.MonkeyPatch, completed: subprocess.CompletedProcess[str]) -> list:
    calls: list = []

    def fake_run(args, **kwargs) -> subprocess.CompletedProcess[str]:
        calls.append((args, kwargs))
        return completed

    monkeypatch.setattr(subprocess, "run", fake_run)
    return calls


def test_fetch_issue_parses_json(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    payload = json.dumps(
        {
            "number": 42,
            "title": "Add login page",
            "body": None,
            "state": "OPEN",
            "url": "https://github.com/acme/app/issues/42",
        },
    )
    calls = _patch_run(monkeypatch, subprocess.CompletedProcess([], 0, stdout=payload, stderr=""))

    issue = GhIssueService(tmp_path, timeout_seconds=9).fetch_issue(42)

    assert issue.number == 42
    assert issue.title == "Add login page"
    assert issue.body == ""
    args, kwargs = calls[0]
    assert args == ["gh", "issue", "view", "42", "--json", "number,title,body,state,url"]
    assert kwargs["cwd"] == tmp_path
    assert kwargs["timeout"] == 9


def test_unresolvable_issue_raises_not_found(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_run(
        monkeypatch,
        subprocess.CompletedProcess(
            [],
            1,
            stdout="",
            stderr="GraphQL: Could not resolve to an issue or pull request with the number of 7.",
        ),
    )

    with pytest.raises(IssueNotFoundError, match="Issue #7 not found") as exc_info:
        GhIssueService(tmp_path).fetch_issue(7)
    assert exc_info.value.issue_number == 7


def test_other_gh_failures_raise_command_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_run(monkeypatch, subprocess.CompletedProcess([], 4, stdout="", stderr="auth required"))

    with pytest.raises(GitHubCommandError, match="auth required") as exc_info:
        GhIssueService(tmp_path).fetch_issue(7)
    assert not isinstance(exc_info.value, IssueNotFoundError)


def test_missing_gh_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*_args, **_kwargs):
        raise FileNotFoundError("gh")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(GitHubCommandError, match="GitHub CLI"):
        GhIssueService(tmp_path).fetch_issue(1)


def test_parse_issue_defaults() -> None:
    issue = parse_issue('{"number": "3"}')

    assert issue.number == 3
    assert issue.title == ""
    assert issue.state == "OPEN"
