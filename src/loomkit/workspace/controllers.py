"""Controllers for workspace CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from loomkit.agent.base import AgentBackend
from loomkit.agent.cli_backend import ClaudeCliBackend
from loomkit.config import Settings
from loomkit.database.controller import DatabaseBranchController
from loomkit.database.neon import NeonProvider
from loomkit.github.service import GhIssueService
from loomkit.process.manager import PsutilProcessManager
from loomkit.vcs.git import GitCommandError, Worktree
from loomkit.vcs.worktrees import GitWorktreeManager
from loomkit.workspace.base import (
    CheckRunner,
    ClickConfirmer,
    Confirmer,
    IssueService,
    ProcessProvider,
    WorktreeProvider,
)
from loomkit.workspace.cleanup import CleanupOrchestrator
from loomkit.workspace.models import (
    CleanupMode,
    CleanupOptions,
    CleanupReport,
    CleanupResult,
    ValidationResult,
)
from loomkit.workspace.naming import build_naming_strategy
from loomkit.workspace.ports import port_for_target
from loomkit.workspace.resolver import PlanValidationError, locate_worktree, parse_target, resolve_plan
from loomkit.workspace.safety import SafetyBlockedError, SafetyGate
from loomkit.workspace.starter import StartRequest, WorkspaceStarter
from loomkit.workspace.validation import ShellCheckRunner, ValidationOptions, ValidationPipeline

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CleanupCommand:
    """CLI input for workspace cleanup."""

    identifier: str | None
    list_only: bool = False
    all: bool = False
    issue: int | None = None
    force: bool = False
    dry_run: bool = False


@dataclass(slots=True)
class FinishCommand:
    """CLI input for validate, merge and clean up."""

    identifier: str | None
    dry_run: bool = False
    skip_typecheck: bool = False
    skip_lint: bool = False
    skip_tests: bool = False
    no_cleanup: bool = False


@dataclass(slots=True)
class StartCommand:
    identifier: str
    base_branch: str | None = None
    dry_run: bool = False


@dataclass(slots=True)
class PortCommand:
    identifier: str
    base_port: int | None = None


@dataclass(slots=True)
class CommandOutcome:
    """Lines to print plus the failure message, if any."""

    lines: list[str] = field(default_factory=list)
    success: bool = True
    error: str | None = None


@dataclass(slots=True)
class WorkspaceServices:
    """External collaborators shared by workspace commands."""

    worktrees: WorktreeProvider
    processes: ProcessProvider
    confirmer: Confirmer
    issues: IssueService
    agent: AgentBackend
    runner: CheckRunner
    database: DatabaseBranchController | None = None


def build_services(settings: Settings) -> WorkspaceServices:
    """Wire the real git, gh, agent, psutil and Neon adapters."""

    confirmer = ClickConfirmer()
    database = DatabaseBranchController(
        NeonProvider(
            settings.database.project_id,
            settings.database.parent_branch,
            confirm=confirmer.confirm,
            timeout_seconds=settings.commands.network_timeout_seconds,
            status_timeout_seconds=settings.commands.status_timeout_seconds,
        ),
        settings.database,
    )
    return WorkspaceServices(
        worktrees=GitWorktreeManager(
            settings.repo_path,
            timeout_seconds=settings.commands.git_timeout_seconds,
            status_timeout_seconds=settings.commands.status_timeout_seconds,
            network_timeout_seconds=settings.commands.network_timeout_seconds,
            protected_branches=settings.workspace.protected_branches,
        ),
        processes=PsutilProcessManager(),
        confirmer=confirmer,
        issues=GhIssueService(
            settings.repo_path,
            timeout_seconds=settings.commands.network_timeout_seconds,
        ),
        agent=ClaudeCliBackend(settings.agent.executable),
        runner=ShellCheckRunner(),
        database=database,
    )


class WorkspaceCliController:
    """Coordinates cleanup, finish, start and port CLI operations."""

    def cleanup(self, command: CleanupCommand) -> CommandOutcome:
        options = CleanupOptions(
            force=command.force,
            dry_run=command.dry_run,
            all=command.all,
            list=command.list_only,
            issue=command.issue,
        )
        plan = resolve_plan(command.identifier, options)
        settings = _load_settings()
        services = build_services(settings)
        report = _orchestrator(services, settings).run(plan)

        if report.mode is CleanupMode.LIST:
            return CommandOutcome(lines=_render_worktrees(report.worktrees, services, settings))

        lines = _render_report(report)
        if report.success or command.dry_run or report.cancelled:
            return CommandOutcome(lines=lines)
        return CommandOutcome(
            lines=lines,
            success=False,
            error="Cleanup completed with errors - see details above.",
        )

    def finish(self, command: FinishCommand) -> CommandOutcome:
        settings = _load_settings()
        services = build_services(settings)
        worktrees = services.worktrees

        identifier = (command.identifier or "").strip() or worktrees.current_branch(
            settings.repo_path,
        )
        if not identifier:
            raise PlanValidationError(
                "Cannot determine the current branch. Pass the workspace identifier: "
                "loomkit finish <identifier>",
            )
        worktree = locate_worktree(worktrees, identifier)
        if worktree is None:
            raise PlanValidationError(f"No worktree found for: {identifier}")
        if worktrees.is_main_worktree(worktree):
            raise PlanValidationError(
                f"Cannot finish the main worktree ({worktree.branch}). "
                "Run finish from a workspace or pass its identifier.",
            )

        if not command.dry_run:
            safety = SafetyGate(worktrees).check(worktree, identifier)
            if not safety.is_safe:
                raise SafetyBlockedError(safety.blockers)

        outcome = CommandOutcome(lines=[f"Finishing {worktree.branch} ({worktree.path})"])
        validation = ValidationPipeline(
            runner=services.runner,
            settings=settings,
            agent=services.agent,
        ).run(
            worktree.path,
            ValidationOptions(
                dry_run=command.dry_run,
                skip_typecheck=command.skip_typecheck,
                skip_lint=command.skip_lint,
                skip_tests=command.skip_tests,
            ),
        )
        outcome.lines.extend(_render_validation(validation))
        if not validation.success:
            outcome.success = False
            outcome.error = validation.error or "Validation failed."
            return outcome

        main = worktrees.main_worktree()
        if command.dry_run:
            outcome.lines.append(
                f"[DRY RUN] Would fast-forward {main.branch} to {worktree.branch} in {main.path}",
            )
        else:
            try:
                worktrees.merge_fast_forward(main.path, worktree.branch)
            except GitCommandError as error:
                outcome.success = False
                outcome.error = (
                    f"Fast-forward merge of '{worktree.branch}' into '{main.branch}' failed: "
                    f"{error}\nRebase the workspace first: "
                    f"git -C {worktree.path} rebase {main.branch}"
                )
                return outcome
            outcome.lines.append(f"Merged {worktree.branch} into {main.branch}")

        if command.no_cleanup:
            outcome.lines.append("Skipping cleanup (--no-cleanup)")
            return outcome

        report = _orchestrator(services, settings).cleanup_single(
            worktree.branch,
            CleanupOptions(dry_run=command.dry_run),
            assume_yes=True,
        )
        outcome.lines.extend(_render_report(report))
        if not report.success and not command.dry_run:
            outcome.success = False
            outcome.error = (
                "Merged, but cleanup completed with errors. "
                f"Retry with: loomkit cleanup {worktree.branch}"
            )
        return outcome

    def start(self, command: StartCommand) -> CommandOutcome:
        settings = _load_settings()
        services = build_services(settings)
        starter = WorkspaceStarter(
            worktrees=services.worktrees,
            issues=services.issues,
            naming=build_naming_strategy(
                settings.workspace.branch_naming,
                services.agent,
                settings.agent,
            ),
            settings=settings,
            database=services.database,
        )
        result = starter.start(
            StartRequest(
                identifier=command.identifier,
                base_branch=command.base_branch,
                dry_run=command.dry_run,
            ),
        )
        return CommandOutcome(
            lines=[
                *result.messages,
                f"Workspace: {result.worktree_path}",
                f"Branch: {result.branch}",
                f"Port: {result.port}",
            ],
        )

    def port(self, command: PortCommand) -> CommandOutcome:
        base_port = command.base_port
        if base_port is None:
            base_port = _load_settings().workspace.base_port
        return CommandOutcome(
            lines=[str(port_for_target(parse_target(command.identifier), base_port))],
        )


def _load_settings() -> Settings:
    settings = Settings.from_env()
    settings.validate()
    return settings


def _orchestrator(services: WorkspaceServices, settings: Settings) -> CleanupOrchestrator:
    return CleanupOrchestrator(
        worktrees=services.worktrees,
        processes=services.processes,
        confirmer=services.confirmer,
        settings=settings,
        database=services.database,
    )


def _render_worktrees(
    worktrees: list[Worktree],
    services: WorkspaceServices,
    settings: Settings,
) -> list[str]:
    if not worktrees:
        return ["No worktrees found."]
    lines = ["Worktrees:"]
    for worktree in worktrees:
        markers = []
        if services.worktrees.is_main_worktree(worktree):
            markers.append("[main]")
        if worktree.locked:
            markers.append("[locked]")
        lines.append(
            f"  {worktree.branch or '-'}  {worktree.path}  "
            f"port {_port_label(worktree, settings.workspace.base_port)}"
            + (f"  {' '.join(markers)}" if markers else ""),
        )
    return lines


def _port_label(worktree: Worktree, base_port: int) -> str:
    if not worktree.branch or worktree.detached:
        return "-"
    try:
        return str(port_for_target(parse_target(worktree.branch), base_port))
    except ValueError:
        return "-"


def _render_report(report: CleanupReport) -> list[str]:
    lines = [f"Warning: {warning}" for warning in report.warnings]
    for result in report.results:
        lines.extend(_render_result(result))
    if report.cancelled:
        lines.append("Cleanup cancelled")
    if report.mode in (CleanupMode.ISSUE, CleanupMode.ALL) and report.results:
        removed = sum(
            1
            for result in report.results
            if result.worktree_path is not None and result.success and not result.cancelled
        )
        lines.append(
            f"Summary: {removed} worktree(s) processed, "
            f"{report.branches_deleted} branch(es) deleted, {report.failures} failure(s)",
        )
    return lines


def _render_result(result: CleanupResult) -> list[str]:
    if result.cancelled:
        return []
    lines = [f"Cleanup operations for {result.identifier}:"]
    for operation in result.operations:
        marker = "✓" if operation.success else "✗"
        message = f"{operation.message}: {operation.error}" if operation.error else operation.message
        lines.append(f"  {marker} {message}")
    lines.extend(f"Warning: {warning}" for warning in result.warnings)
    if result.errors:
        lines.append(f"{len(result.errors)} error(s) occurred during cleanup")
    return lines


def _render_validation(result: ValidationResult) -> list[str]:
    lines = []
    for step in result.steps:
        if step.skipped:
            status = "skipped"
        elif step.passed and step.healed:
            status = "passed after agent fix"
        elif step.passed:
            status = "passed"
        else:
            status = "failed"
        lines.append(f"  {step.step.value}: {status}" + (f" ({step.command})" if step.command else ""))
    lines.append(f"Validation {'passed' if result.success else 'failed'} in {result.total_duration:.1f}s")
    return lines