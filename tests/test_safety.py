from __future__ import annotations

import allure

from conftest import FakeWorktrees, add_worktree
from loomkit.workspace.safety import SafetyBlockedError, SafetyGate

pytestmark = [
    allure.epic("Workspace Cleanup"),
    allure.feature("Safety Gate"),
]


def test_clean_worktree_is_safe(worktrees: FakeWorktrees) -> None:
    worktree = add_worktree(worktrees, "feature-x")

    result = SafetyGate(worktrees).check(worktree, "feature-x")

    assert result.is_safe
    assert result.warnings == []


def test_main_worktree_is_blocked_even_with_force(worktrees: FakeWorktrees) -> None:
    result = SafetyGate(worktrees).check(worktrees.worktrees[0], "main", force=True)

    assert not result.is_safe
    assert result.blockers[0].startswith('Cannot cleanup main worktree: "main"')


def test_uncommitted_changes_block_without_force(worktrees: FakeWorktrees) -> None:
    worktree = add_worktree(worktrees, "feature-x")
    worktrees.uncommitted.add(worktree.path)

    result = SafetyGate(worktrees).check(worktree, "feature-x")

    assert len(result.blockers) == 1
    blocker = result.blockers[0]
    assert "uncommitted changes" in blocker
    assert f"cd {worktree.path} && git stash" in blocker
    assert "loomkit cleanup feature-x --force" in blocker


def test_force_turns_uncommitted_changes_into_warning(worktrees: FakeWorktrees) -> None:
    worktree = add_worktree(worktrees, "feature-x")
    worktrees.uncommitted.add(worktree.path)

    result = SafetyGate(worktrees).check(worktree, "feature-x", force=True)

    assert result.is_safe
    assert result.warnings == [f"Uncommitted changes in {worktree.path} will be discarded"]


def test_unpushed_commits_and_detached_head_are_warnings(worktrees: FakeWorktrees) -> None:
    worktree = add_worktree(worktrees, "HEAD", detached=True)
    worktrees.ahead[worktree.path] = 2

    result = SafetyGate(worktrees).check(worktree, "HEAD")

    assert result.is_safe
    assert "Branch 'HEAD' has 2 unpushed commit(s)" in result.warnings
    assert any("detached HEAD" in warning for warning in result.warnings)


def test_locked_worktree_is_blocked(worktrees: FakeWorktrees) -> None:
    worktree = add_worktree(worktrees, "feature-x", locked=True, lock_reason="on usb drive")

    result = SafetyGate(worktrees).check(worktree, "feature-x", force=True)

    assert not result.is_safe
    assert "(on usb drive)" in result.blockers[0]
    assert "git worktree unlock" in result.blockers[0]


def test_missing_worktree_is_a_blocker(worktrees: FakeWorktrees) -> None:
    result = SafetyGate(worktrees).check_identifier("nope")

    assert result.blockers == ["No worktree found for: nope"]
    assert result.worktree is None


def test_check_identifier_resolves_issue_number_to_worktree(worktrees: FakeWorktrees) -> None:
    worktree = add_worktree(worktrees, "feat/issue-42-login")

    result = SafetyGate(worktrees).check_identifier("42")

    assert result.is_safe
    assert result.worktree == worktree


def test_blocked_error_lists_every_blocker() -> None:
    error = SafetyBlockedError(["first", "second"])

    assert str(error) == "Cannot proceed with cleanup:\nfirst\nsecond"
    assert error.blockers == ["first", "second"]
