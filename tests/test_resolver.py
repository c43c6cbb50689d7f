from __future__ import annotations

import allure
import pytest

from conftest import FakeWorktrees, add_worktree
from loomkit.workspace.models import CleanupMode, CleanupOptions, TargetKind
from loomkit.workspace.resolver import (
    PlanValidationError,
    locate_worktree,
    parse_target,
    resolve_plan,
)

pytestmark = [
    allure.epic("Workspace Cleanup"),
    allure.feature("Plan Resolution"),
]


def test_numeric_identifier_resolves_to_issue_mode() -> None:
    plan = resolve_plan("123", CleanupOptions())

    assert plan.mode is CleanupMode.ISSUE
    assert plan.issue_number == 123
    assert plan.branch_name is None


def test_branch_identifier_resolves_to_single_mode() -> None:
    plan = resolve_plan("  feat/issue-7-login ", CleanupOptions())

    assert plan.mode is CleanupMode.SINGLE
    assert plan.branch_name == "feat/issue-7-login"
    assert plan.identifier == "feat/issue-7-login"
    assert plan.original_input == "  feat/issue-7-login "


def test_list_wins_over_everything_but_rejects_combinations() -> None:
    assert resolve_plan(None, CleanupOptions(list=True)).mode is CleanupMode.LIST

    with pytest.raises(PlanValidationError, match="Cannot use --list with --all"):
        resolve_plan(None, CleanupOptions(list=True, all=True))
    with pytest.raises(PlanValidationError, match="Cannot use --list with --issue"):
        resolve_plan(None, CleanupOptions(list=True, issue=4))
    with pytest.raises(PlanValidationError, match="Cannot use --list with a specific identifier"):
        resolve_plan("feature-x", CleanupOptions(list=True))


def test_all_with_identifier_is_rejected() -> None:
    with pytest.raises(PlanValidationError) as exc_info:
        resolve_plan("feature-x", CleanupOptions(all=True))

    assert str(exc_info.value) == "Cannot use --all with a specific identifier. Use one or the other."


def test_issue_flag_with_branch_identifier_is_rejected() -> None:
    with pytest.raises(PlanValidationError, match="Cannot use --issue flag with branch name identifier"):
        resolve_plan("feature-x", CleanupOptions(issue=5))


def test_issue_flag_with_numeric_identifier_is_accepted() -> None:
    plan = resolve_plan("99", CleanupOptions(issue=5))

    assert plan.mode is CleanupMode.ISSUE
    assert plan.issue_number == 5


def test_missing_identifier_is_rejected() -> None:
    with pytest.raises(PlanValidationError, match="Missing required argument: identifier"):
        resolve_plan("   ", CleanupOptions())


@pytest.mark.parametrize(
    ("text", "kind", "number"),
    [
        ("feat/issue-42-login", TargetKind.ISSUE, 42),
        ("pr/17", TargetKind.PR, 17),
        ("pr-17", TargetKind.PR, 17),
        ("#8", TargetKind.ISSUE, 8),
        ("8", TargetKind.ISSUE, 8),
        ("feature-branch", TargetKind.BRANCH, None),
    ],
)
def test_parse_target_classifies_identifier(text: str, kind: TargetKind, number: int | None) -> None:
    target = parse_target(text)

    assert target.kind is kind
    assert target.number == number
    assert target.original_input == text


def test_locate_worktree_prefers_exact_branch(worktrees: FakeWorktrees) -> None:
    exact = add_worktree(worktrees, "42")
    add_worktree(worktrees, "feat/issue-42-other")

    assert locate_worktree(worktrees, "42") == exact


def test_locate_worktree_falls_back_to_issue_number(worktrees: FakeWorktrees) -> None:
    issue = add_worktree(worktrees, "feat/issue-42-login")

    assert locate_worktree(worktrees, "#42") == issue
    assert locate_worktree(worktrees, "unrelated") is None
