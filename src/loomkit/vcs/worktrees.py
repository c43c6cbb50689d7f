"""Worktree provider backed by the git CLI."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from loomkit.vcs.git import (
    PROTECTED_DEFAULTS,
    GitCommandError,
    Worktree,
    find_branches_for_issue,
    parse_worktree_list,
    run_git,
    worktree_dir_name,
)

logger = logging.getLogger(__name__)


class GitWorktreeManager:
    """Query and mutate the worktrees of one repository."""

    def __init__(
        self,
        repo_path: Path,
        *,
        timeout_seconds: int = 30,
        status_timeout_seconds: int = 5,
        network_timeout_seconds: int = 300,
        protected_branches: tuple[str, ...] = PROTECTED_DEFAULTS,
    ) -> None:
        self._repo_path = repo_path
        self._timeout = timeout_seconds
        self._status_timeout = status_timeout_seconds
        self._network_timeout = network_timeout_seconds
        self._protected_branches = protected_branches

    def _git(self, args: list[str], *, cwd: Path | None = None, timeout: int | None = None) -> str:
        return run_git(
            args,
            cwd=cwd or self._repo_path,
            timeout_seconds=timeout or self._timeout,
        )

    def list_worktrees(self) -> list[Worktree]:
        return parse_worktree_list(self._git(["worktree", "list", "--porcelain"]))

    def main_worktree(self) -> Worktree:
        """The first listed worktree is the main checkout."""

        worktrees = self.list_worktrees()
        if not worktrees:
            raise GitCommandError(["git", "worktree", "list"], "no worktrees listed")
        return worktrees[0]

    def is_main_worktree(self, worktree: Worktree) -> bool:
        return _same_path(worktree.path, self.main_worktree().path)

    def find_worktree_for_branch(self, branch: str) -> Worktree | None:
        return next((wt for wt in self.list_worktrees() if wt.branch == branch), None)

    def find_worktree_for_issue(self, issue_number: int) -> Worktree | None:
        pattern = re.compile(rf"(?:^|[/_-])issue-{issue_number}(?:-|$)")
        return next(
            (wt for wt in self.list_worktrees() if pattern.search(wt.branch)),
            None,
        )

    def find_worktree_for_pr(self, pr_number: int, branch: str | None = None) -> Worktree | None:
        worktrees = self.list_worktrees()
        if branch:
            by_branch = next((wt for wt in worktrees if wt.branch == branch), None)
            if by_branch is not None:
                return by_branch
        path_pattern = re.compile(rf"_pr_{pr_number}$")
        return next((wt for wt in worktrees if path_pattern.search(str(wt.path))), None)

    def has_uncommitted_changes(self, path: Path) -> bool:
        try:
            output = self._git(["status", "--porcelain"], cwd=path, timeout=self._status_timeout)
        except GitCommandError:
            logger.debug("git status failed for %s; treating as clean", path)
            return False
        return bool(output.strip())

    def commits_ahead_of_upstream(self, path: Path) -> int:
        """Unpushed commit count; zero when the branch tracks nothing."""

        try:
            output = self._git(
                ["rev-list", "--count", "@{upstream}..HEAD"],
                cwd=path,
                timeout=self._status_timeout,
            )
        except GitCommandError:
            return 0
        try:
            return int(output.strip() or "0")
        except ValueError:
            return 0

    def current_branch(self, path: Path | None = None) -> str | None:
        try:
            output = self._git(["branch", "--show-current"], cwd=path)
        except GitCommandError:
            return None
        return output.strip() or None

    def branch_exists(self, branch: str) -> bool:
        if self._git(["branch", "--list", branch]).strip():
            return True
        return bool(self._git(["branch", "-r", "--list", f"*/{branch}"]).strip())

    def default_branch(self) -> str:
        try:
            ref = self._git(["symbolic-ref", "refs/remotes/origin/HEAD"]).strip()
        except GitCommandError:
            ref = ""
        if ref.startswith("refs/remotes/origin/"):
            return ref.removeprefix("refs/remotes/origin/")
        for candidate in PROTECTED_DEFAULTS:
            if self.branch_exists(candidate):
                return candidate
        return "main"

    def list_branches_for_issue(self, issue_number: int) -> list[str]:
        return find_branches_for_issue(
            self._git(["branch", "-a"]),
            issue_number,
            self._protected_branches,
        )

    def worktree_path_for(self, branch: str) -> Path:
        """Sibling directory of the main checkout named after the branch."""

        return self.main_worktree().path.parent / worktree_dir_name(branch)

    def create_worktree(
        self,
        path: Path,
        branch: str,
        *,
        create_branch: bool,
        base_branch: str | None = None,
    ) -> Path:
        absolute = path.resolve()
        if absolute.exists():
            raise GitCommandError(["git", "worktree", "add"], f"Path already exists: {absolute}")
        args = ["worktree", "add"]
        if create_branch:
            args.extend(["-b", branch, str(absolute)])
            if base_branch:
                args.append(base_branch)
        else:
            args.extend([str(absolute), branch])
        self._git(args)
        logger.info("Created worktree %s on branch %s", absolute, branch)
        return absolute

    def remove_worktree(self, path: Path, *, force: bool = False) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))
        self._git(args)
        logger.info("Removed worktree %s", path)

    def delete_branch(self, branch: str, *, force: bool = False) -> None:
        self._git(["branch", "-D" if force else "-d", branch])
        logger.info("Deleted branch %s", branch)

    def merge_fast_forward(self, main_path: Path, branch: str) -> None:
        self._git(["merge", "--ff-only", branch], cwd=main_path, timeout=self._network_timeout)
        logger.info("Fast-forwarded %s into %s", branch, main_path)


def _same_path(left: Path, right: Path) -> bool:
    try:
        return left.resolve() == right.resolve()
    except OSError:
        return left == right
