"""Collaborator interfaces for the workspace orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import rich_click as click

from loomkit.github.service import Issue
from loomkit.process.manager import ProcessInfo
from loomkit.vcs.git import Worktree


@dataclass(slots=True)
class CheckOutcome:
    """Result of one validation command run."""

    exit_code: int
    timed_out: bool = False
    output: str = ""

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class WorktreeProvider(Protocol):
    """Worktree queries and mutations."""

    def list_worktrees(self) -> list[Worktree]: ...

    def main_worktree(self) -> Worktree: ...

    def is_main_worktree(self, worktree: Worktree) -> bool: ...

    def find_worktree_for_branch(self, branch: str) -> Worktree | None: ...

    def find_worktree_for_issue(self, issue_number: int) -> Worktree | None: ...

    def find_worktree_for_pr(self, pr_number: int, branch: str | None = None) -> Worktree | None: ...

    def has_uncommitted_changes(self, path: Path) -> bool: ...

    def commits_ahead_of_upstream(self, path: Path) -> int: ...

    def current_branch(self, path: Path | None = None) -> str | None: ...

    def branch_exists(self, branch: str) -> bool: ...

    def default_branch(self) -> str: ...

    def list_branches_for_issue(self, issue_number: int) -> list[str]: ...

    def worktree_path_for(self, branch: str) -> Path: ...

    def create_worktree(
        self,
        path: Path,
        branch: str,
        *,
        create_branch: bool,
        base_branch: str | None = None,
    ) -> Path: ...

    def remove_worktree(self, path: Path, *, force: bool = False) -> None: ...

    def delete_branch(self, branch: str, *, force: bool = False) -> None: ...

    def merge_fast_forward(self, main_path: Path, branch: str) -> None: ...


class ProcessProvider(Protocol):
    """Port listener detection and termination."""

    def find_listener(self, port: int) -> ProcessInfo | None: ...

    def terminate(self, pid: int) -> None: ...

    def wait_for_port_free(self, port: int, timeout_seconds: float = 2.0) -> bool: ...


class Confirmer(Protocol):
    """Yes/no prompts."""

    def confirm(self, message: str, default: bool) -> bool: ...


class IssueService(Protocol):
    def fetch_issue(self, issue_number: int) -> Issue: ...


class CheckRunner(Protocol):
    """Runs one validation command inside a workspace."""

    def run(self, command: str, cwd: Path, timeout_seconds: int) -> CheckOutcome: ...


class ClickConfirmer:
    """Terminal prompts through click."""

    def confirm(self, message: str, default: bool) -> bool:
        return click.confirm(message, default=default)
