"""Database branching provider interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class DatabaseBranchError(RuntimeError):
    """The database provider CLI failed."""

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


@dataclass(slots=True)
class DatabaseDeletionResult:
    """What happened to a database branch during teardown."""

    branch_name: str
    success: bool
    deleted: bool = False
    not_found: bool = False
    user_declined: bool = False
    error: str | None = None

    def describe(self) -> str:
        if self.error:
            return f"Database branch '{self.branch_name}' not deleted: {self.error}"
        if self.user_declined:
            return f"Kept preview database branch '{self.branch_name}'"
        if self.deleted:
            return f"Deleted database branch '{self.branch_name}'"
        return f"No database branch for '{self.branch_name}'"


class DatabaseProvider(Protocol):
    """Protocol implemented by database branching backends."""

    def is_cli_available(self) -> bool:
        """Return True when the provider CLI is installed."""

    def is_authenticated(self) -> bool:
        """Return True when the provider CLI holds valid credentials."""

    def sanitize_branch_name(self, branch_name: str) -> str:
        """Map a git branch name to a provider branch name."""

    def create_branch(self, branch_name: str, parent_branch: str | None = None) -> str:
        """Create (or reuse) a branch and return its connection string."""

    def delete_branch(self, branch_name: str, *, is_preview: bool = False) -> DatabaseDeletionResult:
        """Delete the branch for ``branch_name``; raise ``DatabaseBranchError`` on CLI failure."""
