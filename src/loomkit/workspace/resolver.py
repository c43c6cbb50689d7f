"""Turn raw cleanup arguments into an unambiguous operation plan."""

from __future__ import annotations

import re

from loomkit.vcs.git import Worktree
from loomkit.workspace.base import WorktreeProvider
from loomkit.workspace.models import (
    CleanupMode,
    CleanupOptions,
    OperationPlan,
    TargetKind,
    WorkspaceTarget,
)

_NUMERIC_RE = re.compile(r"^[0-9]+$")
_ISSUE_RE = re.compile(r"issue-(\d+)")
_PR_RE = re.compile(r"(?:pr|PR)[/-](\d+)")
_BARE_NUMBER_RE = re.compile(r"^#?(\d+)$")


class PlanValidationError(ValueError):
    """The combination of cleanup arguments is contradictory or incomplete."""


def resolve_plan(identifier: str | None, options: CleanupOptions) -> OperationPlan:
    """Resolve mode by priority ``list > all > issue flag > auto-detect`` and validate it."""

    trimmed = (identifier or "").strip() or None
    issue_number: int | None = None
    branch_name: str | None = None

    if options.list:
        mode = CleanupMode.LIST
    elif options.all:
        mode = CleanupMode.ALL
    elif options.issue is not None:
        mode = CleanupMode.ISSUE
        issue_number = options.issue
    elif trimmed is not None and _NUMERIC_RE.match(trimmed):
        mode = CleanupMode.ISSUE
        issue_number = int(trimmed)
    elif trimmed is not None:
        mode = CleanupMode.SINGLE
        branch_name = trimmed
    else:
        mode = CleanupMode.SINGLE

    _validate(mode, trimmed, options)

    return OperationPlan(
        mode=mode,
        options=options,
        identifier=trimmed,
        issue_number=issue_number,
        branch_name=branch_name,
        original_input=identifier,
    )


def _validate(mode: CleanupMode, identifier: str | None, options: CleanupOptions) -> None:
    if mode is CleanupMode.LIST:
        if options.all:
            raise PlanValidationError("Cannot use --list with --all (list is informational only)")
        if options.issue is not None:
            raise PlanValidationError(
                "Cannot use --list with --issue (list is informational only)",
            )
        if identifier is not None:
            raise PlanValidationError(
                "Cannot use --list with a specific identifier (list shows all worktrees)",
            )
        return

    if mode is CleanupMode.ALL:
        if identifier is not None or options.issue is not None:
            raise PlanValidationError(
                "Cannot use --all with a specific identifier. Use one or the other.",
            )
        return

    # --issue with a numeric identifier is redundant and accepted
    if options.issue is not None and identifier is not None and not _NUMERIC_RE.match(identifier):
        raise PlanValidationError(
            "Cannot use --issue flag with branch name identifier. "
            "Use numeric identifier or --issue flag alone.",
        )

    if identifier is None and options.issue is None:
        raise PlanValidationError(
            "Missing required argument: identifier. "
            "Use --all to remove all worktrees or --list to list them.",
        )


def parse_target(text: str) -> WorkspaceTarget:
    """Classify ``issue-N``, ``pr/N`` / ``pr-N``, ``#N`` / ``N`` or a plain branch name."""

    stripped = text.strip()
    issue_match = _ISSUE_RE.search(stripped)
    if issue_match:
        return WorkspaceTarget(
            kind=TargetKind.ISSUE,
            original_input=text,
            number=int(issue_match.group(1)),
            branch_name=stripped,
        )
    pr_match = _PR_RE.search(stripped)
    if pr_match:
        return WorkspaceTarget(
            kind=TargetKind.PR,
            original_input=text,
            number=int(pr_match.group(1)),
            branch_name=stripped,
        )
    number_match = _BARE_NUMBER_RE.match(stripped)
    if number_match:
        return WorkspaceTarget(
            kind=TargetKind.ISSUE,
            original_input=text,
            number=int(number_match.group(1)),
        )
    return WorkspaceTarget(kind=TargetKind.BRANCH, original_input=text, branch_name=stripped)


def locate_worktree(worktrees: WorktreeProvider, identifier: str) -> Worktree | None:
    """Exact branch match first, then issue or PR lookup by the detected number."""

    stripped = identifier.strip()
    exact = worktrees.find_worktree_for_branch(stripped)
    if exact is not None:
        return exact
    target = parse_target(stripped)
    if target.number is None:
        return None
    if target.kind is TargetKind.PR:
        return worktrees.find_worktree_for_pr(target.number, target.branch_name)
    return worktrees.find_worktree_for_issue(target.number)
