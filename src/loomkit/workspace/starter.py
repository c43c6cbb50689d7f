"""Create (or reuse) a workspace for an issue or branch."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from loomkit.config import Settings
from loomkit.database.controller import DatabaseBranchController
from loomkit.database.envfile import copy_env_file, set_env_value
from loomkit.database.provider import DatabaseBranchError
from loomkit.github.service import IssueNotFoundError
from loomkit.vcs.git import GitCommandError, Worktree
from loomkit.workspace.base import IssueService, WorktreeProvider
from loomkit.workspace.naming import BranchNamingStrategy
from loomkit.workspace.ports import port_for_number, port_for_target
from loomkit.workspace.resolver import PlanValidationError, parse_target

logger = logging.getLogger(__name__)

_ISSUE_NUMBER_RE = re.compile(r"^#?(\d+)$")


class WorkspaceStartError(RuntimeError):
    """Workspace creation failed after side effects may have happened."""


@dataclass(slots=True)
class StartRequest:
    identifier: str
    base_branch: str | None = None
    dry_run: bool = False


@dataclass(slots=True)
class StartResult:
    branch: str
    worktree_path: Path
    port: int
    reused: bool = False
    issue_number: int | None = None
    database_branch_created: bool = False
    messages: list[str] = field(default_factory=list)


class WorkspaceStarter:
    def __init__(
        self,
        *,
        worktrees: WorktreeProvider,
        issues: IssueService,
        naming: BranchNamingStrategy,
        settings: Settings,
        database: DatabaseBranchController | None = None,
    ) -> None:
        self._worktrees = worktrees
        self._issues = issues
        self._naming = naming
        self._settings = settings
        self._database = database

    def start(self, request: StartRequest) -> StartResult:
        identifier = request.identifier.strip()
        if not identifier:
            raise PlanValidationError("Missing required argument: identifier.")

        issue_number: int | None = None
        number_match = _ISSUE_NUMBER_RE.match(identifier)
        if number_match:
            issue_number = int(number_match.group(1))
            existing = self._worktrees.find_worktree_for_issue(issue_number)
            if existing is not None:
                return self._reuse(existing, issue_number)
            branch = self._issue_branch(issue_number)
        else:
            branch = identifier
            existing = self._worktrees.find_worktree_for_branch(branch)
            if existing is not None:
                return self._reuse(existing, None)

        port = self._port(branch, issue_number)
        path = self._worktrees.worktree_path_for(branch)
        result = StartResult(branch=branch, worktree_path=path, port=port, issue_number=issue_number)

        if request.dry_run:
            result.messages.extend(
                [
                    f"[DRY RUN] Would create worktree {path} on branch {branch}",
                    f"[DRY RUN] Would set PORT={port} in {self._settings.workspace.env_file_name}",
                    "[DRY RUN] Would create a database branch if configured",
                ],
            )
            return result

        self._create_worktree(path, branch, request.base_branch)
        result.messages.append(f"Created worktree {path} on branch {branch}")
        env_file = self._prepare_env_file(path, port)
        result.messages.append(f"Dev server port: {port}")
        result.database_branch_created = self._create_database_branch(branch, env_file)
        if result.database_branch_created:
            result.messages.append(f"Database branch ready for {branch}")
        return result

    def _issue_branch(self, issue_number: int) -> str:
        try:
            issue = self._issues.fetch_issue(issue_number)
        except IssueNotFoundError as error:
            raise PlanValidationError(
                f"{error}. Check the number with: gh issue list",
            ) from error
        branch = self._naming.branch_name(issue.number, issue.title)
        logger.info("Issue #%d: %s -> %s", issue.number, issue.title, branch)
        return branch

    def _reuse(self, worktree: Worktree, issue_number: int | None) -> StartResult:
        port = self._port(worktree.branch, issue_number)
        logger.info("Reusing existing worktree %s", worktree.path)
        return StartResult(
            branch=worktree.branch,
            worktree_path=worktree.path,
            port=port,
            reused=True,
            issue_number=issue_number,
            messages=[f"Reusing existing worktree {worktree.path} ({worktree.branch})"],
        )

    def _port(self, branch: str, issue_number: int | None) -> int:
        base_port = self._settings.workspace.base_port
        if issue_number is not None:
            return port_for_number(issue_number, base_port)
        return port_for_target(parse_target(branch), base_port)

    def _create_worktree(self, path: Path, branch: str, base_branch: str | None) -> None:
        try:
            create_branch = not self._worktrees.branch_exists(branch)
            self._worktrees.create_worktree(
                path,
                branch,
                create_branch=create_branch,
                base_branch=(base_branch or self._worktrees.default_branch())
                if create_branch
                else None,
            )
        except GitCommandError as error:
            raise WorkspaceStartError(f"Failed to create worktree for {branch}: {error}") from error

    def _prepare_env_file(self, worktree_path: Path, port: int) -> Path:
        env_name = self._settings.workspace.env_file_name
        env_file = worktree_path / env_name
        if self._settings.workspace.copy_env_file:
            source = self._worktrees.main_worktree().path / env_name
            if copy_env_file(source, env_file):
                logger.info("Copied %s into workspace", env_name)
        set_env_value(env_file, "PORT", str(port))
        return env_file

    def _create_database_branch(self, branch: str, env_file: Path) -> bool:
        if self._database is None:
            return False
        try:
            connection_string = self._database.create_if_configured(branch, env_file)
        except DatabaseBranchError as error:
            raise WorkspaceStartError(
                f"Database branch creation failed: {error}\n"
                f"Remove the partial workspace with: loomkit cleanup {branch} --force",
            ) from error
        if connection_string is None:
            return False
        set_env_value(env_file, self._database.url_env_var, connection_string)
        return True
