"""Safe teardown of workspaces: dev server, worktree, branch and database branch."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from loomkit.config import Settings
from loomkit.database.controller import DatabaseBranchController
from loomkit.process.manager import ProcessTerminationError
from loomkit.vcs.git import GitCommandError, Worktree
from loomkit.workspace.base import Confirmer, ProcessProvider, WorktreeProvider
from loomkit.workspace.models import (
    CleanupMode,
    CleanupOptions,
    CleanupReport,
    CleanupResult,
    OperationPlan,
    OperationResult,
    OperationType,
)
from loomkit.workspace.ports import port_for_target
from loomkit.workspace.resolver import parse_target
from loomkit.workspace.safety import SafetyBlockedError, SafetyGate

logger = logging.getLogger(__name__)

DRY_RUN_PREFIX = "[DRY RUN]"


class ProtectedBranchError(RuntimeError):
    """Refused to delete a branch listed as protected."""

    def __init__(self, branch: str) -> None:
        super().__init__(f"Cannot delete protected branch: {branch}")
        self.branch = branch


class UnmergedBranchError(RuntimeError):
    """Safe branch deletion refused because the branch has unmerged commits."""

    def __init__(self, branch: str) -> None:
        super().__init__(
            f"Cannot delete unmerged branch '{branch}'. Use --force to delete anyway.",
        )
        self.branch = branch


class CleanupStage(str, Enum):
    """Per-target teardown lifecycle."""

    RESOLVED = "resolved"
    SAFETY_CHECKED = "safety_checked"
    CONFIRMED = "confirmed"
    TORN_DOWN = "torn_down"
    BRANCH_CONFIRMED = "branch_confirmed"
    REPORTED = "reported"
    CANCELLED = "cancelled"


_TRANSITIONS: dict[CleanupStage, frozenset[CleanupStage]] = {
    CleanupStage.RESOLVED: frozenset({CleanupStage.SAFETY_CHECKED}),
    CleanupStage.SAFETY_CHECKED: frozenset({CleanupStage.CONFIRMED, CleanupStage.CANCELLED}),
    CleanupStage.CONFIRMED: frozenset({CleanupStage.TORN_DOWN}),
    CleanupStage.TORN_DOWN: frozenset({CleanupStage.BRANCH_CONFIRMED, CleanupStage.REPORTED}),
    CleanupStage.BRANCH_CONFIRMED: frozenset({CleanupStage.REPORTED}),
    CleanupStage.REPORTED: frozenset(),
    CleanupStage.CANCELLED: frozenset(),
}


class CleanupLifecycle:
    """Linear, non-resumable stage tracker for one target."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        self.stage = CleanupStage.RESOLVED

    def advance(self, stage: CleanupStage) -> None:
        if stage not in _TRANSITIONS[self.stage]:
            raise RuntimeError(
                f"Illegal cleanup transition for {self.identifier}: "
                f"{self.stage.value} -> {stage.value}",
            )
        logger.debug("%s: %s -> %s", self.identifier, self.stage.value, stage.value)
        self.stage = stage


class CleanupOrchestrator:
    """Run cleanup plans against injected collaborators."""

    def __init__(
        self,
        *,
        worktrees: WorktreeProvider,
        processes: ProcessProvider,
        confirmer: Confirmer,
        settings: Settings,
        database: DatabaseBranchController | None = None,
    ) -> None:
        self._worktrees = worktrees
        self._processes = processes
        self._confirmer = confirmer
        self._settings = settings
        self._database = database
        self._safety = SafetyGate(worktrees)

    def run(self, plan: OperationPlan) -> CleanupReport:
        if plan.mode is CleanupMode.LIST:
            return self.list_workspaces()
        if plan.mode is CleanupMode.ALL:
            return self.cleanup_all(plan.options)
        if plan.mode is CleanupMode.ISSUE:
            if plan.issue_number is None:
                raise RuntimeError("Issue cleanup requires an issue number")
            return self.cleanup_issue(plan.issue_number, plan.options)
        if plan.identifier is None:
            raise RuntimeError("Single cleanup requires an identifier")
        return self.cleanup_single(plan.identifier, plan.options)

    def list_workspaces(self) -> CleanupReport:
        return CleanupReport(mode=CleanupMode.LIST, worktrees=self._worktrees.list_worktrees())

    def cleanup_single(
        self,
        identifier: str,
        options: CleanupOptions,
        *,
        assume_yes: bool = False,
    ) -> CleanupReport:
        """Clean up one workspace.

        ``assume_yes`` skips both confirmations and folds a safe branch deletion
        into teardown; the safety gate still applies in full.
        """

        report = CleanupReport(mode=CleanupMode.SINGLE)
        lifecycle = CleanupLifecycle(identifier)
        safety = self._safety.check_identifier(identifier, force=options.force)
        lifecycle.advance(CleanupStage.SAFETY_CHECKED)

        worktree = safety.worktree
        if worktree is None or not safety.is_safe:
            if options.dry_run:
                report.warnings.extend(
                    f"{DRY_RUN_PREFIX} Would abort: {blocker}" for blocker in safety.blockers
                )
                lifecycle.advance(CleanupStage.CANCELLED)
                report.results.append(CleanupResult(identifier=identifier, cancelled=True))
                return report
            raise SafetyBlockedError(safety.blockers)

        for warning in safety.warnings:
            logger.warning(warning)
        report.warnings.extend(safety.warnings)

        skip_prompts = options.force or options.dry_run or assume_yes
        if not skip_prompts and not self._confirmer.confirm("Remove this worktree?", True):
            logger.info("Cleanup cancelled")
            lifecycle.advance(CleanupStage.CANCELLED)
            report.cancelled = True
            report.results.append(
                CleanupResult(
                    identifier=identifier,
                    branch_name=worktree.branch,
                    worktree_path=worktree.path,
                    cancelled=True,
                ),
            )
            return report
        lifecycle.advance(CleanupStage.CONFIRMED)

        result = self.teardown(
            worktree,
            identifier,
            force=options.force,
            dry_run=options.dry_run,
            delete_branch=options.force or assume_yes,
        )
        lifecycle.advance(CleanupStage.TORN_DOWN)
        report.results.append(result)

        if (
            result.success
            and not skip_prompts
            and _deletable_branch(worktree)
            and self._confirmer.confirm("Also delete the branch?", True)
        ):
            lifecycle.advance(CleanupStage.BRANCH_CONFIRMED)
            self._delete_branch_after_confirmation(result, worktree.branch)
        lifecycle.advance(CleanupStage.REPORTED)

        if result.success:
            logger.info("Cleanup completed successfully")
        else:
            logger.warning("Cleanup completed with errors")
        return report

    def cleanup_issue(self, issue_number: int, options: CleanupOptions) -> CleanupReport:
        """Remove every worktree and branch that belongs to ``issue_number``."""

        report = CleanupReport(mode=CleanupMode.ISSUE)
        logger.info("Finding branches related to GitHub issue #%d", issue_number)
        branches = self._worktrees.list_branches_for_issue(issue_number)
        if not branches:
            report.warnings.append(
                f"No branches found for GitHub issue #{issue_number} "
                f"(searched for issue-{issue_number}, {issue_number}-*, feat-{issue_number}, ...)",
            )
            return report

        by_branch = {wt.branch: wt for wt in self._worktrees.list_worktrees()}
        targets = [(branch, by_branch.get(branch)) for branch in branches]
        worktree_count = sum(1 for _, worktree in targets if worktree is not None)

        if not options.force and not options.dry_run:
            if worktree_count == 0:
                report.warnings.append("No worktrees to remove (all branches are branch-only)")
                confirmed = self._confirmer.confirm(f"Delete {len(targets)} branch(es)?", False)
            else:
                confirmed = self._confirmer.confirm(f"Remove {worktree_count} worktree(s)?", True)
            if not confirmed:
                logger.info("Cleanup cancelled")
                report.cancelled = True
                return report

        for branch, worktree in targets:
            logger.info("Processing branch: %s", branch)
            if worktree is None:
                result = CleanupResult(identifier=branch, branch_name=branch)
            else:
                safety = self._safety.check(worktree, branch, force=options.force)
                if not safety.is_safe:
                    self._skip_blocked(report, branch, safety.blockers, options.dry_run)
                    continue
                report.warnings.extend(safety.warnings)
                result = self.teardown(
                    worktree,
                    branch,
                    force=options.force,
                    dry_run=options.dry_run,
                    delete_branch=False,
                )
                if not result.success:
                    report.failures += 1
                    report.results.append(result)
                    continue
            report.results.append(result)
            self._delete_issue_branch(report, result, branch, options)
        return report

    def cleanup_all(self, options: CleanupOptions) -> CleanupReport:
        report = CleanupReport(mode=CleanupMode.ALL)
        candidates = [
            wt
            for wt in self._worktrees.list_worktrees()
            if not wt.bare and not self._worktrees.is_main_worktree(wt)
        ]
        if not candidates:
            report.warnings.append("No worktrees to remove")
            return report

        if not options.force and not options.dry_run:
            if not self._confirmer.confirm(f"Remove {len(candidates)} worktree(s)?", False):
                logger.info("Cleanup cancelled")
                report.cancelled = True
                return report

        for worktree in candidates:
            identifier = worktree.branch or str(worktree.path)
            safety = self._safety.check(worktree, identifier, force=options.force)
            if not safety.is_safe:
                self._skip_blocked(report, identifier, safety.blockers, options.dry_run)
                continue
            report.warnings.extend(safety.warnings)
            result = self.teardown(
                worktree,
                identifier,
                force=options.force,
                dry_run=options.dry_run,
                delete_branch=options.force,
            )
            if not result.success:
                report.failures += 1
            elif not options.dry_run and any(
                op.type is OperationType.BRANCH and op.success and not op.skipped
                for op in result.operations
            ):
                report.branches_deleted += 1
            report.results.append(result)
        return report

    def teardown(
        self,
        worktree: Worktree,
        identifier: str,
        *,
        force: bool,
        dry_run: bool,
        delete_branch: bool,
    ) -> CleanupResult:
        """Best-effort ordered teardown; each step is recorded, none raises."""

        result = CleanupResult(
            identifier=identifier,
            branch_name=worktree.branch if _deletable_branch(worktree) else None,
            worktree_path=worktree.path,
        )
        if not _deletable_branch(worktree):
            # Port and database branch are both keyed on the branch name.
            result.record(
                _skipped(OperationType.DEV_SERVER, f"No branch to derive a port from: {worktree.path}"),
            )
            result.record(self._remove_worktree(worktree, force=force, dry_run=dry_run))
            result.record(
                _skipped(OperationType.DATABASE, f"No branch to key a database branch on: {worktree.path}"),
            )
            return result

        database_configured = self._database_configured(worktree.path)
        result.record(self._stop_dev_server(worktree, identifier, dry_run=dry_run))
        result.record(self._remove_worktree(worktree, force=force, dry_run=dry_run))
        if delete_branch:
            result.record(self._branch_operation(worktree.branch, force=force, dry_run=dry_run))
        result.record(
            self._delete_database(worktree.branch, database_configured, dry_run=dry_run),
        )
        return result

    def delete_branch(self, branch: str, *, force: bool = False, dry_run: bool = False) -> str:
        """Delete ``branch`` and return a description of what happened."""

        if branch in self._settings.workspace.protected_branches:
            raise ProtectedBranchError(branch)
        if dry_run:
            return f"{DRY_RUN_PREFIX} Would delete branch: {branch}"
        try:
            self._worktrees.delete_branch(branch, force=force)
        except GitCommandError as error:
            if not force and "not fully merged" in error.stderr:
                raise UnmergedBranchError(branch) from error
            raise
        return f"Branch deleted: {branch}"

    def _stop_dev_server(self, worktree: Worktree, identifier: str, *, dry_run: bool) -> OperationResult:
        try:
            port = port_for_target(
                parse_target(worktree.branch or identifier),
                self._settings.workspace.base_port,
            )
        except ValueError as error:
            return OperationResult(
                type=OperationType.DEV_SERVER,
                success=False,
                message="Failed to determine dev server port",
                error=str(error),
            )
        if dry_run:
            return OperationResult(
                type=OperationType.DEV_SERVER,
                success=True,
                message=f"{DRY_RUN_PREFIX} Would check for dev server on port {port}",
            )

        listener = self._processes.find_listener(port)
        if listener is None:
            return OperationResult(
                type=OperationType.DEV_SERVER,
                success=True,
                message=f"No dev server running on port {port}",
            )
        if not listener.is_dev_server:
            logger.warning(
                "Process on port %d (%s) doesn't appear to be a dev server, skipping",
                port,
                listener.name or listener.pid,
            )
            return OperationResult(
                type=OperationType.DEV_SERVER,
                success=True,
                message=f"Left non dev-server process {listener.pid} on port {port} running",
            )

        logger.info("Terminating dev server: %s (PID: %d)", listener.name, listener.pid)
        try:
            self._processes.terminate(listener.pid)
        except ProcessTerminationError as error:
            return OperationResult(
                type=OperationType.DEV_SERVER,
                success=False,
                message="Failed to terminate dev server",
                error=str(error),
            )
        if not self._processes.wait_for_port_free(port):
            return OperationResult(
                type=OperationType.DEV_SERVER,
                success=False,
                message="Failed to terminate dev server",
                error=f"Dev server may still be running on port {port}",
            )
        return OperationResult(
            type=OperationType.DEV_SERVER,
            success=True,
            message=f"Dev server on port {port} terminated",
        )

    def _remove_worktree(self, worktree: Worktree, *, force: bool, dry_run: bool) -> OperationResult:
        if dry_run:
            return OperationResult(
                type=OperationType.WORKTREE,
                success=True,
                message=f"{DRY_RUN_PREFIX} Would remove worktree: {worktree.path}",
            )
        try:
            self._worktrees.remove_worktree(worktree.path, force=force)
        except GitCommandError as error:
            return OperationResult(
                type=OperationType.WORKTREE,
                success=False,
                message="Failed to remove worktree",
                error=str(error),
            )
        return OperationResult(
            type=OperationType.WORKTREE,
            success=True,
            message=f"Worktree removed: {worktree.path}",
        )

    def _branch_operation(self, branch: str, *, force: bool, dry_run: bool) -> OperationResult:
        try:
            message = self.delete_branch(branch, force=force, dry_run=dry_run)
        except (ProtectedBranchError, UnmergedBranchError, GitCommandError) as error:
            return OperationResult(
                type=OperationType.BRANCH,
                success=False,
                message="Failed to delete branch",
                error=str(error),
            )
        return OperationResult(type=OperationType.BRANCH, success=True, message=message)

    def _database_configured(self, worktree_path: Path) -> bool:
        """Read before removal: the env file disappears with the worktree."""

        if self._database is None:
            return False
        return self._database.is_configured(
            worktree_path / self._settings.workspace.env_file_name,
        )

    def _delete_database(self, branch: str, configured: bool, *, dry_run: bool) -> OperationResult:
        if not configured or self._database is None:
            return OperationResult(
                type=OperationType.DATABASE,
                success=True,
                message="Database branching not configured",
                skipped=True,
            )
        if dry_run:
            return OperationResult(
                type=OperationType.DATABASE,
                success=True,
                message=f"{DRY_RUN_PREFIX} Would cleanup database branch for: {branch}",
            )
        deletion = self._database.delete_if_configured(branch, configured=True)
        if not deletion.success:
            return OperationResult(
                type=OperationType.DATABASE,
                success=False,
                message="Database cleanup failed",
                error=deletion.error,
            )
        return OperationResult(
            type=OperationType.DATABASE,
            success=True,
            message=deletion.describe(),
            skipped=not deletion.deleted,
        )

    def _delete_branch_after_confirmation(self, result: CleanupResult, branch: str) -> None:
        try:
            message = self.delete_branch(branch)
        except (ProtectedBranchError, UnmergedBranchError, GitCommandError) as error:
            logger.error("Failed to delete branch: %s", error)
            result.warnings.append(f"Failed to delete branch: {error}")
            return
        result.operations.append(
            OperationResult(type=OperationType.BRANCH, success=True, message=message),
        )

    def _delete_issue_branch(
        self,
        report: CleanupReport,
        result: CleanupResult,
        branch: str,
        options: CleanupOptions,
    ) -> None:
        try:
            message = self.delete_branch(branch, force=options.force, dry_run=options.dry_run)
        except UnmergedBranchError:
            warning = f"Branch '{branch}' not fully merged, skipping deletion. Use --force to delete anyway"
            logger.warning(warning)
            report.warnings.append(warning)
            result.record(
                OperationResult(
                    type=OperationType.BRANCH,
                    success=True,
                    message=f"Kept unmerged branch: {branch}",
                    skipped=True,
                ),
            )
            return
        except (ProtectedBranchError, GitCommandError) as error:
            logger.error("Failed to delete branch %s: %s", branch, error)
            report.failures += 1
            result.record(
                OperationResult(
                    type=OperationType.BRANCH,
                    success=False,
                    message="Failed to delete branch",
                    error=str(error),
                ),
            )
            return
        if not options.dry_run:
            report.branches_deleted += 1
        result.record(OperationResult(type=OperationType.BRANCH, success=True, message=message))

    def _skip_blocked(
        self,
        report: CleanupReport,
        identifier: str,
        blockers: list[str],
        dry_run: bool,
    ) -> None:
        prefix = f"{DRY_RUN_PREFIX} Would abort" if dry_run else "Skipped"
        for blocker in blockers:
            report.warnings.append(f"{prefix} {identifier}: {blocker}")
        logger.warning("Skipping %s: %d blocker(s)", identifier, len(blockers))
        if not dry_run:
            report.failures += 1


def _deletable_branch(worktree: Worktree) -> bool:
    return bool(worktree.branch) and not worktree.detached and not worktree.bare


def _skipped(operation_type: OperationType, message: str) -> OperationResult:
    return OperationResult(type=operation_type, success=True, message=message, skipped=True)
