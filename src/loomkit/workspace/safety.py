"""Pre-teardown safety classification."""

from __future__ import annotations

import logging

from loomkit.vcs.git import Worktree
from loomkit.workspace.base import WorktreeProvider
from loomkit.workspace.models import SafetyCheckResult
from loomkit.workspace.resolver import locate_worktree

logger = logging.getLogger(__name__)


class SafetyBlockedError(RuntimeError):
    """Teardown refused because at least one blocker was found."""

    def __init__(self, blockers: list[str]) -> None:
        super().__init__("Cannot proceed with cleanup:\n" + "\n".join(blockers))
        self.blockers = list(blockers)


class SafetyGate:
    """Classify a worktree's state into blockers and warnings.

    ``force`` never removes a blocker. Conditions that ``force`` may override
    (uncommitted changes) are reported as warnings when it is set.
    """

    def __init__(self, worktrees: WorktreeProvider) -> None:
        self._worktrees = worktrees

    def check(self, worktree: Worktree, identifier: str, force: bool = False) -> SafetyCheckResult:
        result = SafetyCheckResult(worktree=worktree)

        if self._worktrees.is_main_worktree(worktree):
            result.blockers.append(
                f'Cannot cleanup main worktree: "{worktree.branch}" @ "{worktree.path}"',
            )
        if worktree.locked:
            reason = f" ({worktree.lock_reason})" if worktree.lock_reason else ""
            result.blockers.append(
                f"Worktree is locked{reason}: {worktree.path}\n"
                f"  Unlock it first: git worktree unlock {worktree.path}",
            )

        if self._worktrees.has_uncommitted_changes(worktree.path):
            if force:
                result.warnings.append(
                    f"Uncommitted changes in {worktree.path} will be discarded",
                )
            else:
                result.blockers.append(_uncommitted_message(worktree, identifier))

        ahead = self._worktrees.commits_ahead_of_upstream(worktree.path)
        if ahead > 0:
            result.warnings.append(
                f"Branch '{worktree.branch}' has {ahead} unpushed commit(s)",
            )
        if worktree.detached:
            result.warnings.append(f"Worktree at {worktree.path} is in detached HEAD state")

        logger.debug(
            "Safety check for %s: %d blocker(s), %d warning(s)",
            identifier,
            len(result.blockers),
            len(result.warnings),
        )
        return result

    def check_identifier(self, identifier: str, force: bool = False) -> SafetyCheckResult:
        """Locate the worktree for ``identifier`` and check it; a miss is a blocker."""

        worktree = locate_worktree(self._worktrees, identifier)
        if worktree is None:
            return SafetyCheckResult(blockers=[f"No worktree found for: {identifier}"])
        return self.check(worktree, identifier, force)


def _uncommitted_message(worktree: Worktree, identifier: str) -> str:
    return (
        "Worktree has uncommitted changes.\n\n"
        "Please resolve before cleanup - you have some options:\n"
        f'  • Commit changes: cd {worktree.path} && git commit -am "message"\n'
        f"  • Stash changes: cd {worktree.path} && git stash\n"
        f"  • Force cleanup: loomkit cleanup {identifier} --force "
        "(WARNING: will discard changes)"
    )
