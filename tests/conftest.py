"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from loomkit.agent.base import AgentInvocation
from loomkit.agent.cli_backend import AgentRunError
from loomkit.config import DatabaseSettings, Settings
from loomkit.database.provider import DatabaseBranchError, DatabaseDeletionResult
from loomkit.github.service import Issue, IssueNotFoundError
from loomkit.process.manager import ProcessInfo, ProcessTerminationError
from loomkit.vcs.git import GitCommandError, Worktree, worktree_dir_name
from loomkit.workspace.base import CheckOutcome


class FakeWorktrees:
    """In-memory worktree provider that records every call."""

    def __init__(self, root: Path, worktrees: list[Worktree] | None = None) -> None:
        self.root = root
        self.worktrees = worktrees or [Worktree(path=root / "repo", branch="main", commit="abc")]
        self.uncommitted: set[Path] = set()
        self.ahead: dict[Path, int] = {}
        self.issue_branches: dict[int, list[str]] = {}
        self.existing_branches: set[str] = {"main"}
        self.remove_errors: dict[Path, str] = {}
        self.delete_errors: dict[str, str] = {}
        self.merge_error: str | None = None
        self.current: str | None = None
        self.calls: list[tuple] = []

    def _call(self, *args) -> None:
        self.calls.append(args)

    def list_worktrees(self) -> list[Worktree]:
        self._call("list_worktrees")
        return list(self.worktrees)

    def main_worktree(self) -> Worktree:
        self._call("main_worktree")
        return self.worktrees[0]

    def is_main_worktree(self, worktree: Worktree) -> bool:
        self._call("is_main_worktree", worktree.path)
        return worktree.path == self.worktrees[0].path

    def find_worktree_for_branch(self, branch: str) -> Worktree | None:
        self._call("find_worktree_for_branch", branch)
        return next((wt for wt in self.worktrees if wt.branch == branch), None)

    def find_worktree_for_issue(self, issue_number: int) -> Worktree | None:
        self._call("find_worktree_for_issue", issue_number)
        marker = f"issue-{issue_number}"
        return next(
            (
                wt
                for wt in self.worktrees
                if wt.branch.endswith(marker) or f"{marker}-" in wt.branch
            ),
            None,
        )

    def find_worktree_for_pr(self, pr_number: int, branch: str | None = None) -> Worktree | None:
        self._call("find_worktree_for_pr", pr_number, branch)
        return next((wt for wt in self.worktrees if str(wt.path).endswith(f"_pr_{pr_number}")), None)

    def has_uncommitted_changes(self, path: Path) -> bool:
        self._call("has_uncommitted_changes", path)
        return path in self.uncommitted

    def commits_ahead_of_upstream(self, path: Path) -> int:
        self._call("commits_ahead_of_upstream", path)
        return self.ahead.get(path, 0)

    def current_branch(self, path: Path | None = None) -> str | None:
        self._call("current_branch", path)
        return self.current

    def branch_exists(self, branch: str) -> bool:
        self._call("branch_exists", branch)
        return branch in self.existing_branches

    def default_branch(self) -> str:
        self._call("default_branch")
        return "main"

    def list_branches_for_issue(self, issue_number: int) -> list[str]:
        self._call("list_branches_for_issue", issue_number)
        return list(self.issue_branches.get(issue_number, []))

    def worktree_path_for(self, branch: str) -> Path:
        self._call("worktree_path_for", branch)
        return self.root / worktree_dir_name(branch)

    def create_worktree(
        self,
        path: Path,
        branch: str,
        *,
        create_branch: bool,
        base_branch: str | None = None,
    ) -> Path:
        self._call("create_worktree", path, branch, create_branch, base_branch)
        path.mkdir(parents=True, exist_ok=True)
        self.worktrees.append(Worktree(path=path, branch=branch))
        self.existing_branches.add(branch)
        return path

    def remove_worktree(self, path: Path, *, force: bool = False) -> None:
        self._call("remove_worktree", path, force)
        if path in self.remove_errors:
            raise GitCommandError(["git", "worktree", "remove"], self.remove_errors[path], 1)
        self.worktrees = [wt for wt in self.worktrees if wt.path != path]

    def delete_branch(self, branch: str, *, force: bool = False) -> None:
        self._call("delete_branch", branch, force)
        if branch in self.delete_errors:
            raise GitCommandError(["git", "branch"], self.delete_errors[branch], 1)
        self.existing_branches.discard(branch)

    def merge_fast_forward(self, main_path: Path, branch: str) -> None:
        self._call("merge_fast_forward", main_path, branch)
        if self.merge_error:
            raise GitCommandError(["git", "merge"], self.merge_error, 128)

    def mutating_calls(self) -> list[tuple]:
        return [
            call
            for call in self.calls
            if call[0] in {"remove_worktree", "delete_branch", "create_worktree", "merge_fast_forward"}
        ]


class FakeProcesses:
    def __init__(self) -> None:
        self.listeners: dict[int, ProcessInfo] = {}
        self.stuck_ports: set[int] = set()
        self.terminate_errors: set[int] = set()
        self.terminated: list[int] = []
        self.checked_ports: list[int] = []

    def add_listener(self, port: int, *, name: str = "node", command: str = "next dev", pid: int = 4242) -> None:
        self.listeners[port] = ProcessInfo(
            pid=pid,
            name=name,
            command=command,
            port=port,
            is_dev_server="dev" in command,
        )

    def find_listener(self, port: int) -> ProcessInfo | None:
        self.checked_ports.append(port)
        return self.listeners.get(port)

    def terminate(self, pid: int) -> None:
        if pid in self.terminate_errors:
            raise ProcessTerminationError(pid, "access denied")
        self.terminated.append(pid)
        for port, info in list(self.listeners.items()):
            if info.pid == pid and port not in self.stuck_ports:
                del self.listeners[port]

    def wait_for_port_free(self, port: int, timeout_seconds: float = 2.0) -> bool:
        return port not in self.listeners


class ScriptedConfirmer:
    """Answers prompts from a queue and records each question."""

    def __init__(self, *answers: bool) -> None:
        self.answers = list(answers)
        self.questions: list[tuple[str, bool]] = []

    def confirm(self, message: str, default: bool) -> bool:
        self.questions.append((message, default))
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {message}")
        return self.answers.pop(0)


class FakeIssues:
    def __init__(self, issues: dict[int, str] | None = None) -> None:
        self.issues = issues or {}

    def fetch_issue(self, issue_number: int) -> Issue:
        if issue_number not in self.issues:
            raise IssueNotFoundError(issue_number, stderr="GraphQL: Could not resolve to an issue")
        return Issue(number=issue_number, title=self.issues[issue_number])


class FakeAgent:
    def __init__(self, *, available: bool = True, output: str = "", error: AgentRunError | None = None) -> None:
        self.available = available
        self.output = output
        self.error = error
        self.invocations: list[AgentInvocation] = []

    def is_available(self) -> bool:
        return self.available

    def invoke(self, invocation: AgentInvocation) -> str:
        self.invocations.append(invocation)
        if self.error is not None:
            raise self.error
        return self.output


class FakeRunner:
    """Returns scripted exit codes per command, in order; default is success."""

    def __init__(self, results: dict[str, list[int]] | None = None) -> None:
        self.results = results or {}
        self.runs: list[str] = []

    def run(self, command: str, cwd: Path, timeout_seconds: int) -> CheckOutcome:
        self.runs.append(command)
        queue = self.results.get(command)
        exit_code = queue.pop(0) if queue else 0
        return CheckOutcome(exit_code=exit_code)


@dataclass
class FakeDatabaseProvider:
    cli_available: bool = True
    authenticated: bool = True
    create_error: str | None = None
    delete_error: str | None = None
    existing: set[str] = field(default_factory=set)
    created: list[tuple[str, str | None]] = field(default_factory=list)
    deleted: list[tuple[str, bool]] = field(default_factory=list)

    def is_cli_available(self) -> bool:
        return self.cli_available

    def is_authenticated(self) -> bool:
        return self.authenticated

    def sanitize_branch_name(self, branch_name: str) -> str:
        return branch_name.replace("/", "_")

    def create_branch(self, branch_name: str, parent_branch: str | None = None) -> str:
        if self.create_error:
            raise DatabaseBranchError(self.create_error)
        self.created.append((branch_name, parent_branch))
        self.existing.add(self.sanitize_branch_name(branch_name))
        return f"postgres://user@ep-test.neon.tech/{self.sanitize_branch_name(branch_name)}"

    def delete_branch(self, branch_name: str, *, is_preview: bool = False) -> DatabaseDeletionResult:
        self.deleted.append((branch_name, is_preview))
        if self.delete_error:
            raise DatabaseBranchError(self.delete_error)
        name = self.sanitize_branch_name(branch_name)
        if name not in self.existing:
            return DatabaseDeletionResult(branch_name=name, success=True, not_found=True)
        self.existing.discard(name)
        return DatabaseDeletionResult(branch_name=name, success=True, deleted=True)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(repo_path=tmp_path / "repo")


@pytest.fixture()
def db_settings(tmp_path: Path) -> Settings:
    return Settings(
        repo_path=tmp_path / "repo",
        database=DatabaseSettings(project_id="proj-123", parent_branch="main"),
    )


@pytest.fixture()
def worktrees(tmp_path: Path) -> FakeWorktrees:
    (tmp_path / "repo").mkdir()
    return FakeWorktrees(tmp_path)


@pytest.fixture()
def processes() -> FakeProcesses:
    return FakeProcesses()


def add_worktree(worktrees: FakeWorktrees, branch: str, **kwargs) -> Worktree:
    path = worktrees.root / worktree_dir_name(branch)
    path.mkdir(parents=True, exist_ok=True)
    worktree = Worktree(path=path, branch=branch, **kwargs)
    worktrees.worktrees.append(worktree)
    worktrees.existing_branches.add(branch)
    return worktree
