"""Runtime configuration for workspace lifecycle commands."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

MAX_PORT = 65_535
BRANCH_NAMING_STRATEGIES = ("simple", "agent")

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NEON_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")


@dataclass(slots=True)
class WorkspaceSettings:
    """Workspace layout and naming settings."""

    base_port: int = 3_000
    env_file_name: str = ".env"
    protected_branches: tuple[str, ...] = ("main", "master", "develop")
    branch_naming: str = "simple"
    copy_env_file: bool = True


@dataclass(slots=True)
class DatabaseSettings:
    """Optional database branching settings (Neon)."""

    project_id: str = ""
    parent_branch: str = ""
    url_env_var: str = "DATABASE_URL"

    @property
    def has_parent_reference(self) -> bool:
        """Both process-level variables identifying the parent database are set."""

        return bool(self.project_id.strip()) and bool(self.parent_branch.strip())


@dataclass(slots=True)
class AgentSettings:
    """External agent CLI settings."""

    executable: str = "claude"
    remediation_model: str = "sonnet"
    naming_model: str = "haiku"
    remediation_timeout_seconds: int = 1_800
    headless_timeout_seconds: int = 1_200


@dataclass(slots=True)
class CommandSettings:
    """Timeouts for external commands."""

    git_timeout_seconds: int = 30
    status_timeout_seconds: int = 5
    network_timeout_seconds: int = 300
    check_timeout_seconds: int = 1_800


@dataclass(slots=True)
class ValidationSettings:
    """Explicit pre-merge check commands; ``None`` means detect from the project."""

    typecheck_command: str | None = None
    lint_command: str | None = None
    test_command: str | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    repo_path: Path = field(default_factory=Path.cwd)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    commands: CommandSettings = field(default_factory=CommandSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)

    @classmethod
    def from_env(cls, repo_path: Path | None = None) -> Settings:
        """Load settings from environment once at process start."""

        return cls(
            repo_path=repo_path or Path(os.getenv("LOOMKIT_REPO_PATH", os.getcwd())),
            workspace=WorkspaceSettings(
                base_port=int(os.getenv("LOOMKIT_BASE_PORT", "3000")),
                env_file_name=os.getenv("LOOMKIT_ENV_FILE", ".env"),
                protected_branches=_collect_csv(
                    "LOOMKIT_PROTECTED_BRANCHES",
                    default=("main", "master", "develop"),
                ),
                branch_naming=os.getenv("LOOMKIT_BRANCH_NAMING", "simple").strip().lower(),
                copy_env_file=_env_bool("LOOMKIT_COPY_ENV_FILE", default=True),
            ),
            database=DatabaseSettings(
                project_id=os.getenv("NEON_PROJECT_ID", "").strip(),
                parent_branch=os.getenv("NEON_PARENT_BRANCH", "").strip(),
                url_env_var=os.getenv("LOOMKIT_DATABASE_URL_VAR", "DATABASE_URL").strip(),
            ),
            agent=AgentSettings(
                executable=os.getenv("LOOMKIT_AGENT_EXECUTABLE", "claude"),
                remediation_model=os.getenv("LOOMKIT_AGENT_REMEDIATION_MODEL", "sonnet"),
                naming_model=os.getenv("LOOMKIT_AGENT_NAMING_MODEL", "haiku"),
                remediation_timeout_seconds=int(
                    os.getenv("LOOMKIT_AGENT_REMEDIATION_TIMEOUT_SECONDS", "1800"),
                ),
                headless_timeout_seconds=int(
                    os.getenv("LOOMKIT_AGENT_HEADLESS_TIMEOUT_SECONDS", "1200"),
                ),
            ),
            commands=CommandSettings(
                git_timeout_seconds=int(os.getenv("LOOMKIT_GIT_TIMEOUT_SECONDS", "30")),
                status_timeout_seconds=int(os.getenv("LOOMKIT_STATUS_TIMEOUT_SECONDS", "5")),
                network_timeout_seconds=int(
                    os.getenv("LOOMKIT_NETWORK_TIMEOUT_SECONDS", "300"),
                ),
                check_timeout_seconds=int(os.getenv("LOOMKIT_CHECK_TIMEOUT_SECONDS", "1800")),
            ),
            validation=ValidationSettings(
                typecheck_command=_optional_env("LOOMKIT_TYPECHECK_COMMAND"),
                lint_command=_optional_env("LOOMKIT_LINT_COMMAND"),
                test_command=_optional_env("LOOMKIT_TEST_COMMAND"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values that cannot work at runtime."""

        if not 1 <= self.workspace.base_port <= MAX_PORT:
            raise ValueError(
                f"LOOMKIT_BASE_PORT must be between 1 and {MAX_PORT}, "
                f"got {self.workspace.base_port}.",
            )
        if self.workspace.branch_naming not in BRANCH_NAMING_STRATEGIES:
            raise ValueError(
                "LOOMKIT_BRANCH_NAMING must be one of "
                f"{', '.join(BRANCH_NAMING_STRATEGIES)}: {self.workspace.branch_naming!r}",
            )
        if not self.workspace.env_file_name.strip():
            raise ValueError("LOOMKIT_ENV_FILE must not be empty.")
        if not _ENV_KEY_RE.match(self.database.url_env_var):
            raise ValueError(
                f"LOOMKIT_DATABASE_URL_VAR is not a valid variable name: "
                f"{self.database.url_env_var!r}",
            )
        if self.database.project_id and not _NEON_PROJECT_ID_RE.match(self.database.project_id):
            raise ValueError("NEON_PROJECT_ID contains invalid characters.")
        for name, value in (
            ("LOOMKIT_GIT_TIMEOUT_SECONDS", self.commands.git_timeout_seconds),
            ("LOOMKIT_STATUS_TIMEOUT_SECONDS", self.commands.status_timeout_seconds),
            ("LOOMKIT_NETWORK_TIMEOUT_SECONDS", self.commands.network_timeout_seconds),
            ("LOOMKIT_CHECK_TIMEOUT_SECONDS", self.commands.check_timeout_seconds),
            (
                "LOOMKIT_AGENT_REMEDIATION_TIMEOUT_SECONDS",
                self.agent.remediation_timeout_seconds,
            ),
            ("LOOMKIT_AGENT_HEADLESS_TIMEOUT_SECONDS", self.agent.headless_timeout_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")


def _optional_env(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _collect_csv(name: str, *, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values: list[str] = []
    for part in raw.split(","):
        normalized = part.strip()
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
