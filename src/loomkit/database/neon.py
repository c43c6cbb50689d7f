"""Neon database branching through the ``neon`` CLI."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from collections.abc import Callable

from loomkit.database.provider import DatabaseBranchError, DatabaseDeletionResult

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[str, bool], bool]


class NeonProvider:
    """Create and delete Neon branches for workspaces."""

    def __init__(
        self,
        project_id: str,
        parent_branch: str,
        *,
        confirm: ConfirmFn | None = None,
        executable: str = "neon",
        timeout_seconds: int = 300,
        status_timeout_seconds: int = 5,
    ) -> None:
        self._project_id = project_id
        self._parent_branch = parent_branch
        self._confirm = confirm
        self._executable = executable
        self._timeout = timeout_seconds
        self._status_timeout = status_timeout_seconds

    def _run(self, args: list[str], *, timeout: int | None = None) -> str:
        command = [self._executable, *args]
        logger.debug("neon %s", " ".join(args))
        try:
            completed = subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                timeout=timeout or self._timeout,
                check=False,
            )
        except FileNotFoundError as error:
            raise DatabaseBranchError(f"Neon CLI not found: {self._executable}") from error
        except subprocess.TimeoutExpired as error:
            raise DatabaseBranchError(
                f"Neon CLI timed out after {timeout or self._timeout}s",
            ) from error
        if completed.returncode != 0:
            stderr = completed.stderr or completed.stdout or "unknown Neon CLI error"
            raise DatabaseBranchError(
                f"Neon CLI command failed: {stderr.strip()}",
                stderr=stderr,
            )
        return completed.stdout

    def is_cli_available(self) -> bool:
        return shutil.which(self._executable) is not None

    def is_authenticated(self) -> bool:
        if not self.is_cli_available():
            return False
        try:
            self._run(["me"], timeout=max(self._status_timeout, 10))
        except DatabaseBranchError:
            return False
        return True

    def sanitize_branch_name(self, branch_name: str) -> str:
        return branch_name.replace("/", "_")

    def list_branches(self) -> list[str]:
        output = self._run(
            ["branches", "list", "--project-id", self._project_id, "--output", "json"],
        )
        try:
            payload = json.loads(output)
        except json.JSONDecodeError as error:
            raise DatabaseBranchError(f"Unexpected Neon CLI output: {error}") from error
        return [str(item["name"]) for item in payload]

    def connection_string(self, branch: str) -> str:
        return self._run(
            ["connection-string", "--branch", branch, "--project-id", self._project_id],
        ).strip()

    def find_preview_branch(self, branch_name: str, branches: list[str] | None = None) -> str | None:
        """Vercel preview databases are named ``preview/<b>`` or ``preview_<sanitized>``."""

        existing = branches if branches is not None else self.list_branches()
        for candidate in (
            f"preview/{branch_name}",
            f"preview_{self.sanitize_branch_name(branch_name)}",
        ):
            if candidate in existing:
                logger.info("Found Vercel preview database: %s", candidate)
                return candidate
        return None

    def create_branch(self, branch_name: str, parent_branch: str | None = None) -> str:
        branches = self.list_branches()
        preview = self.find_preview_branch(branch_name, branches)
        if preview is not None:
            logger.info("Using existing Vercel preview database: %s", preview)
            return self.connection_string(preview)

        sanitized = self.sanitize_branch_name(branch_name)
        parent = parent_branch or self._parent_branch
        logger.info("Creating Neon database branch %s from %s", sanitized, parent)
        self._run(
            [
                "branches",
                "create",
                "--name",
                sanitized,
                "--parent",
                parent,
                "--project-id",
                self._project_id,
            ],
        )
        return self.connection_string(sanitized)

    def delete_branch(self, branch_name: str, *, is_preview: bool = False) -> DatabaseDeletionResult:
        sanitized = self.sanitize_branch_name(branch_name)
        branches = self.list_branches()

        if is_preview:
            preview = self.find_preview_branch(branch_name, branches)
            if preview is not None:
                logger.warning(
                    "Preview database %s is managed by Vercel and is cleaned up automatically",
                    preview,
                )
                confirmed = self._confirm is not None and self._confirm(
                    "Delete preview database anyway?",
                    False,
                )
                if not confirmed:
                    logger.info("Skipping preview database deletion")
                    return DatabaseDeletionResult(
                        branch_name=preview,
                        success=True,
                        user_declined=True,
                    )
                self._delete(preview)
                return DatabaseDeletionResult(branch_name=preview, success=True, deleted=True)

        if sanitized not in branches:
            logger.info("No database branch found for '%s'", branch_name)
            return DatabaseDeletionResult(branch_name=sanitized, success=True, not_found=True)
        self._delete(sanitized)
        return DatabaseDeletionResult(branch_name=sanitized, success=True, deleted=True)

    def _delete(self, name: str) -> None:
        self._run(["branches", "delete", name, "--project-id", self._project_id])
        logger.info("Deleted Neon database branch %s", name)
