from __future__ import annotations

from pathlib import Path

import allure
import pytest

from conftest import FakeDatabaseProvider, FakeIssues, FakeWorktrees, add_worktree
from loomkit.config import Settings
from loomkit.database.controller import DatabaseBranchController
from loomkit.database.envfile import read_env_file
from loomkit.workspace.naming import SimpleBranchNaming
from loomkit.workspace.ports import allocate_port
from loomkit.workspace.resolver import PlanValidationError
from loomkit.workspace.starter import StartRequest, WorkspaceStarter, WorkspaceStartError

pytestmark = [
    allure.epic("Workspace Lifecycle"),
    allure.feature("Workspace Creation"),
]


def _starter(
    worktrees: FakeWorktrees,
    settings: Settings,
    *,
    issues: FakeIssues | None = None,
    database: DatabaseBranchController | None = None,
) -> WorkspaceStarter:
    return WorkspaceStarter(
        worktrees=worktrees,
        issues=issues or FakeIssues({42: "Add login page"}),
        naming=SimpleBranchNaming(),
        settings=settings,
        database=database,
    )


def test_start_from_issue_creates_worktree_and_env(
    worktrees: FakeWorktrees,
    settings: Settings,
) -> None:
    (worktrees.root / "repo" / ".env").write_text("API_KEY=secret\nPORT=1\n")

    result = _starter(worktrees, settings).start(StartRequest(identifier="#42"))

    expected_path = worktrees.root / "feat-issue-42-add-login-page"
    assert result.branch == "feat/issue-42-add-login-page"
    assert result.worktree_path == expected_path
    assert result.port == 3_042
    assert result.issue_number == 42
    assert ("create_worktree", expected_path, result.branch, True, "main") in worktrees.calls
    assert read_env_file(expected_path / ".env") == {"API_KEY": "secret", "PORT": "3042"}


def test_start_from_existing_branch_checks_it_out(
    worktrees: FakeWorktrees,
    settings: Settings,
) -> None:
    worktrees.existing_branches.add("spike")

    result = _starter(worktrees, settings).start(
        StartRequest(identifier="spike", base_branch="develop"),
    )

    assert result.port == allocate_port("spike")
    assert ("create_worktree", worktrees.root / "spike", "spike", False, None) in worktrees.calls


def test_start_reuses_existing_issue_worktree(
    worktrees: FakeWorktrees,
    settings: Settings,
) -> None:
    existing = add_worktree(worktrees, "fix/issue-42-old")

    result = _starter(worktrees, settings).start(StartRequest(identifier="42"))

    assert result.reused
    assert result.worktree_path == existing.path
    assert result.port == 3_042
    assert worktrees.mutating_calls() == []


def test_unknown_issue_is_a_validation_error(
    worktrees: FakeWorktrees,
    settings: Settings,
) -> None:
    with pytest.raises(PlanValidationError, match=r"Issue #7 not found\. Check the number with: gh issue list"):
        _starter(worktrees, settings).start(StartRequest(identifier="7"))


def test_dry_run_creates_nothing(worktrees: FakeWorktrees, settings: Settings) -> None:
    result = _starter(worktrees, settings).start(StartRequest(identifier="42", dry_run=True))

    assert worktrees.mutating_calls() == []
    assert all(message.startswith("[DRY RUN]") for message in result.messages)
    assert not result.worktree_path.exists()


def test_database_branch_written_to_env_file(
    worktrees: FakeWorktrees,
    db_settings: Settings,
) -> None:
    (worktrees.root / "repo" / ".env").write_text("DATABASE_URL=postgres://localhost/main\n")
    provider = FakeDatabaseProvider()
    database = DatabaseBranchController(provider, db_settings.database)

    result = _starter(worktrees, db_settings, database=database).start(
        StartRequest(identifier="feature/db"),
    )

    assert result.database_branch_created
    assert provider.created == [("feature/db", "main")]
    env = read_env_file(result.worktree_path / ".env")
    assert env["DATABASE_URL"] == "postgres://user@ep-test.neon.tech/feature_db"


def test_database_skipped_without_url_in_env(
    worktrees: FakeWorktrees,
    db_settings: Settings,
) -> None:
    provider = FakeDatabaseProvider()
    database = DatabaseBranchController(provider, db_settings.database)

    result = _starter(worktrees, db_settings, database=database).start(
        StartRequest(identifier="feature/db"),
    )

    assert not result.database_branch_created
    assert provider.created == []


def test_database_failure_names_cleanup_command(
    worktrees: FakeWorktrees,
    db_settings: Settings,
) -> None:
    (worktrees.root / "repo" / ".env").write_text("DATABASE_URL=postgres://localhost/main\n")
    database = DatabaseBranchController(
        FakeDatabaseProvider(create_error="quota exceeded"),
        db_settings.database,
    )

    with pytest.raises(WorkspaceStartError) as exc_info:
        _starter(worktrees, db_settings, database=database).start(
            StartRequest(identifier="feature/db"),
        )

    assert "quota exceeded" in str(exc_info.value)
    assert "loomkit cleanup feature/db --force" in str(exc_info.value)


def test_env_file_created_when_main_has_none(worktrees: FakeWorktrees, settings: Settings) -> None:
    result = _starter(worktrees, settings).start(StartRequest(identifier="spike"))

    assert Path(result.worktree_path / ".env").read_text().strip() == f"PORT={allocate_port('spike')}"
