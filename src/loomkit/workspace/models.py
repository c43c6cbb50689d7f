"""Domain models for workspace lifecycle operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from loomkit.vcs.git import Worktree


class CleanupMode(str, Enum):
    """Exactly one mode is active per cleanup invocation."""

    LIST = "list"
    SINGLE = "single"
    ISSUE = "issue"
    ALL = "all"


class TargetKind(str, Enum):
    ISSUE = "issue"
    PR = "pr"
    BRANCH = "branch"


class OperationType(str, Enum):
    """Teardown steps, in execution order."""

    DEV_SERVER = "dev-server"
    WORKTREE = "worktree"
    BRANCH = "branch"
    DATABASE = "database"


class ValidationStep(str, Enum):
    TYPECHECK = "typecheck"
    LINT = "lint"
    TEST = "test"


VALIDATION_ORDER = (ValidationStep.TYPECHECK, ValidationStep.LINT, ValidationStep.TEST)


@dataclass(slots=True, frozen=True)
class CleanupOptions:
    """Flags accepted by the cleanup command."""

    force: bool = False
    dry_run: bool = False
    all: bool = False
    list: bool = False
    issue: int | None = None


@dataclass(slots=True, frozen=True)
class OperationPlan:
    """Unambiguous description of what a cleanup invocation will do."""

    mode: CleanupMode
    options: CleanupOptions
    identifier: str | None = None
    issue_number: int | None = None
    branch_name: str | None = None
    original_input: str | None = None


@dataclass(slots=True, frozen=True)
class WorkspaceTarget:
    """Pattern-detected interpretation of a branch-like identifier."""

    kind: TargetKind
    original_input: str
    number: int | None = None
    branch_name: str | None = None


@dataclass(slots=True)
class SafetyCheckResult:
    warnings: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    worktree: Worktree | None = None

    @property
    def is_safe(self) -> bool:
        return not self.blockers


@dataclass(slots=True)
class OperationResult:
    """Outcome of one teardown step."""

    type: OperationType
    success: bool
    message: str
    error: str | None = None
    skipped: bool = False


@dataclass(slots=True)
class CleanupResult:
    """Per-target teardown record; operations are append-only."""

    identifier: str
    branch_name: str | None = None
    worktree_path: Path | None = None
    operations: list[OperationResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False
    rollback_required: bool = False

    @property
    def success(self) -> bool:
        """Every non-skipped step, database deletion included, must have succeeded."""

        return all(operation.success for operation in self.operations if not operation.skipped)

    def record(self, operation: OperationResult) -> OperationResult:
        self.operations.append(operation)
        if not operation.success and operation.error:
            self.errors.append(operation.error)
        return operation


@dataclass(slots=True)
class CleanupReport:
    """Aggregate outcome of one cleanup invocation."""

    mode: CleanupMode
    results: list[CleanupResult] = field(default_factory=list)
    worktrees: list[Worktree] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False
    branches_deleted: int = 0
    failures: int = 0

    @property
    def success(self) -> bool:
        return self.failures == 0 and all(result.success for result in self.results)


@dataclass(slots=True)
class ValidationStepResult:
    step: ValidationStep
    passed: bool
    skipped: bool = False
    duration: float = 0.0
    healed: bool = False
    command: str | None = None
    error: str | None = None


@dataclass(slots=True)
class ValidationResult:
    success: bool
    steps: list[ValidationStepResult] = field(default_factory=list)
    total_duration: float = 0.0

    @property
    def failed_step(self) -> ValidationStepResult | None:
        return next(
            (step for step in self.steps if not step.passed and not step.skipped),
            None,
        )

    @property
    def error(self) -> str | None:
        failed = self.failed_step
        return failed.error if failed is not None else None
