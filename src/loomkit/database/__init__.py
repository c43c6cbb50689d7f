"""Optional per-workspace database branching."""

from loomkit.database.controller import DatabaseBranchController
from loomkit.database.provider import DatabaseBranchError, DatabaseDeletionResult

__all__ = ["DatabaseBranchController", "DatabaseBranchError", "DatabaseDeletionResult"]
