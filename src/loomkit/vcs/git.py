"""Thin wrapper around the ``git`` executable and its porcelain output."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

PROTECTED_DEFAULTS = ("main", "master", "develop")

ISSUE_BRANCH_PREFIXES = frozenset(
    {
        "issue",
        "issues",
        "feat",
        "feature",
        "features",
        "fix",
        "fixes",
        "bugfix",
        "hotfix",
        "pr",
        "pull",
        "test",
        "tests",
        "chore",
        "docs",
        "refactor",
        "perf",
        "style",
        "ci",
        "build",
        "revert",
    },
)

_BRANCH_MARKERS_RE = re.compile(r"^[*+ ]+")
_LAST_WORD_RE = re.compile(r"([a-zA-Z]+)[-_/\s]*$")


class GitCommandError(RuntimeError):
    """A git invocation exited non-zero."""

    def __init__(self, args: list[str], stderr: str, returncode: int | None = None) -> None:
        super().__init__(f"Git command failed: {stderr.strip() or 'unknown git error'}")
        self.args_list = args
        self.stderr = stderr
        self.returncode = returncode


@dataclass(slots=True)
class Worktree:
    """One entry of ``git worktree list --porcelain``."""

    path: Path
    branch: str
    commit: str = ""
    bare: bool = False
    detached: bool = False
    locked: bool = False
    lock_reason: str | None = None


def run_git(args: list[str], *, cwd: Path, timeout_seconds: int = 30) -> str:
    """Run git and return stdout; raise ``GitCommandError`` on non-zero exit."""

    command = ["git", *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        completed = subprocess.run(  # noqa: S603
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except FileNotFoundError as error:
        raise GitCommandError(command, "git executable not found") from error
    except subprocess.TimeoutExpired as error:
        raise GitCommandError(command, f"timed out after {timeout_seconds}s") from error
    if completed.returncode != 0:
        raise GitCommandError(
            command,
            completed.stderr or completed.stdout,
            completed.returncode,
        )
    return completed.stdout


def parse_worktree_list(output: str) -> list[Worktree]:
    """Parse porcelain worktree records separated by ``worktree <path>`` lines."""

    worktrees: list[Worktree] = []
    current: Worktree | None = None
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if line.startswith("worktree "):
            if current is not None:
                worktrees.append(current)
            current = Worktree(path=Path(line[len("worktree ") :]), branch="")
            continue
        if current is None or not line:
            continue
        if line == "bare":
            current.bare = True
            current.branch = "main"
        elif line == "detached":
            current.detached = True
            current.branch = "HEAD"
        elif line.startswith("locked"):
            current.locked = True
            reason = line[len("locked") :].strip()
            current.lock_reason = reason or None
            current.branch = current.branch or "unknown"
        elif line.startswith("HEAD "):
            current.commit = line[len("HEAD ") :].strip()
        elif line.startswith("branch "):
            ref = line[len("branch ") :]
            current.branch = ref.removeprefix("refs/heads/")
    if current is not None:
        worktrees.append(current)
    return worktrees


def clean_branch_line(line: str) -> str:
    """Normalize one ``git branch -a`` line to a bare branch name."""

    cleaned = _BRANCH_MARKERS_RE.sub("", line)
    cleaned = cleaned.removeprefix("remotes/origin/").removeprefix("origin/")
    return cleaned.strip()


def branch_matches_issue(branch: str, issue_number: int) -> bool:
    """Return True for branches like ``issue-25``, ``25-fix`` or ``feat/25`` but not ``tissue-25``."""

    match = re.search(rf"(?<!\d){issue_number}(?!\d)", branch)
    if match is None:
        return False
    before = branch[: match.start()]
    if not before:
        return True
    last_word = _LAST_WORD_RE.search(before)
    if last_word is None:
        return True
    return last_word.group(1).lower() in ISSUE_BRANCH_PREFIXES


def find_branches_for_issue(
    branch_listing: str,
    issue_number: int,
    protected_branches: tuple[str, ...] = PROTECTED_DEFAULTS,
) -> list[str]:
    """Select issue branches from ``git branch -a`` output, excluding protected ones."""

    branches: list[str] = []
    for line in branch_listing.splitlines():
        if not line.strip() or "remotes/origin/HEAD" in line:
            continue
        branch = clean_branch_line(line)
        if branch in protected_branches:
            continue
        if branch_matches_issue(branch, issue_number) and branch not in branches:
            branches.append(branch)
    return branches


def worktree_dir_name(branch: str) -> str:
    return branch.replace("/", "-")
