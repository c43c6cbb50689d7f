"""Database branch lifecycle gated on detected configuration."""

from __future__ import annotations

import logging
from pathlib import Path

from loomkit.config import DatabaseSettings
from loomkit.database.envfile import has_env_key
from loomkit.database.provider import (
    DatabaseBranchError,
    DatabaseDeletionResult,
    DatabaseProvider,
)

logger = logging.getLogger(__name__)


class DatabaseBranchController:
    """Create or delete a per-workspace database branch when the project uses one.

    A project opts in when both the parent database reference (``NEON_PROJECT_ID``,
    ``NEON_PARENT_BRANCH``) is set and the workspace env file defines the
    connection-string variable. Anything less is "not configured" and every
    operation becomes a no-op.
    """

    def __init__(self, provider: DatabaseProvider, settings: DatabaseSettings) -> None:
        self._provider = provider
        self._settings = settings

    @property
    def url_env_var(self) -> str:
        return self._settings.url_env_var

    def is_configured(self, env_file_path: Path) -> bool:
        if not self._settings.has_parent_reference:
            logger.debug("Database branching skipped: provider not configured")
            return False
        if not has_env_key(env_file_path, self._settings.url_env_var):
            logger.debug(
                "Database branching skipped: %s not found in %s",
                self._settings.url_env_var,
                env_file_path,
            )
            return False
        return True

    def create_if_configured(self, key: str, env_file_path: Path) -> str | None:
        """Return the new connection string, or None when branching is unavailable."""

        if not self.is_configured(env_file_path):
            return None
        if not self._provider.is_cli_available():
            logger.warning("Skipping database branch creation: Neon CLI not available")
            logger.warning("Install with: npm install -g neonctl")
            return None
        if not self._provider.is_authenticated():
            logger.warning("Skipping database branch creation: not authenticated with Neon CLI")
            logger.warning("Run: neon auth")
            return None
        try:
            connection_string = self._provider.create_branch(key, self._settings.parent_branch)
        except DatabaseBranchError as error:
            logger.error("Failed to create database branch: %s", error)
            raise
        logger.info("Database branch ready: %s", self._provider.sanitize_branch_name(key))
        return connection_string

    def delete_if_configured(
        self,
        key: str,
        env_file_path: Path | None = None,
        is_preview: bool = False,
        *,
        configured: bool | None = None,
    ) -> DatabaseDeletionResult:
        """Delete the branch for ``key``; provider failures are returned, not raised."""

        if configured is None:
            configured = env_file_path is not None and self.is_configured(env_file_path)
        if not configured or not self._settings.has_parent_reference:
            return DatabaseDeletionResult(branch_name=key, success=True, not_found=True)
        if not self._provider.is_cli_available():
            logger.info("Skipping database branch deletion: CLI tool not available")
            return DatabaseDeletionResult(
                branch_name=key,
                success=False,
                not_found=True,
                error="CLI tool not available",
            )
        if not self._provider.is_authenticated():
            logger.warning("Skipping database branch deletion: not authenticated with Neon CLI")
            return DatabaseDeletionResult(
                branch_name=key,
                success=False,
                error="Not authenticated with DB Provider",
            )
        try:
            result = self._provider.delete_branch(key, is_preview=is_preview)
        except DatabaseBranchError as error:
            logger.warning("Database branch deletion failed: %s", error)
            return DatabaseDeletionResult(branch_name=key, success=False, error=str(error))
        logger.info("%s", result.describe())
        return result
