"""CLI entrypoint for loomkit."""

import logging
from collections.abc import Callable

import rich_click as click

from loomkit import __version__
from loomkit.agent.cli_backend import AgentRunError
from loomkit.database.provider import DatabaseBranchError
from loomkit.github.service import GitHubCommandError
from loomkit.vcs.git import GitCommandError
from loomkit.workspace.cleanup import ProtectedBranchError
from loomkit.workspace.controllers import (
    CleanupCommand,
    CommandOutcome,
    FinishCommand,
    PortCommand,
    StartCommand,
    WorkspaceCliController,
)
from loomkit.workspace.safety import SafetyBlockedError
from loomkit.workspace.starter import WorkspaceStartError

click.rich_click.USE_MARKDOWN = True
WORKSPACE_CONTROLLER = WorkspaceCliController()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

_DOMAIN_ERRORS = (
    ValueError,
    SafetyBlockedError,
    ProtectedBranchError,
    WorkspaceStartError,
    GitCommandError,
    GitHubCommandError,
    DatabaseBranchError,
    AgentRunError,
)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="loomkit")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    envvar="LOOMKIT_LOG_LEVEL",
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def loomkit(log_level: str) -> None:
    """Isolated per-issue development workspaces on git worktrees."""

    configure_logging(log_level)


@loomkit.command("cleanup")
@click.argument("identifier", required=False)
@click.option("--list", "list_only", is_flag=True, help="List worktrees and exit.")
@click.option("--all", "all_", is_flag=True, help="Remove every workspace worktree.")
@click.option("--issue", type=click.IntRange(min=1), default=None, help="Clean up everything for an issue.")
@click.option("--force", is_flag=True, help="Skip confirmations and delete branches with -D.")
@click.option("--dry-run", is_flag=True, help="Show what would happen without changing anything.")
def cleanup(  # noqa: PLR0913
    identifier: str | None,
    list_only: bool,
    all_: bool,
    issue: int | None,
    force: bool,
    dry_run: bool,
) -> None:
    """Remove a workspace: dev server, worktree, branch and database branch."""

    _run(
        lambda: WORKSPACE_CONTROLLER.cleanup(
            CleanupCommand(
                identifier=identifier,
                list_only=list_only,
                all=all_,
                issue=issue,
                force=force,
                dry_run=dry_run,
            ),
        ),
    )


@loomkit.command("finish")
@click.argument("identifier", required=False)
@click.option("--dry-run", is_flag=True, help="Report what would run without executing it.")
@click.option("--skip-typecheck", is_flag=True, help="Do not run the typecheck step.")
@click.option("--skip-lint", is_flag=True, help="Do not run the lint step.")
@click.option("--skip-tests", is_flag=True, help="Do not run the test step.")
@click.option("--no-cleanup", is_flag=True, help="Keep the workspace after merging.")
def finish(  # noqa: PLR0913
    identifier: str | None,
    dry_run: bool,
    skip_typecheck: bool,
    skip_lint: bool,
    skip_tests: bool,
    no_cleanup: bool,
) -> None:
    """Validate, fast-forward merge into the main worktree, then clean up."""

    _run(
        lambda: WORKSPACE_CONTROLLER.finish(
            FinishCommand(
                identifier=identifier,
                dry_run=dry_run,
                skip_typecheck=skip_typecheck,
                skip_lint=skip_lint,
                skip_tests=skip_tests,
                no_cleanup=no_cleanup,
            ),
        ),
    )


@loomkit.command("start")
@click.argument("identifier")
@click.option("--base-branch", default=None, help="Branch to create the workspace from.")
@click.option("--dry-run", is_flag=True, help="Show what would be created.")
def start(identifier: str, base_branch: str | None, dry_run: bool) -> None:
    """Create a workspace for an issue number or branch name."""

    _run(
        lambda: WORKSPACE_CONTROLLER.start(
            StartCommand(identifier=identifier, base_branch=base_branch, dry_run=dry_run),
        ),
    )


@loomkit.command("port")
@click.argument("identifier")
@click.option(
    "--base-port",
    type=click.IntRange(min=0, max=65535),
    default=None,
    help="Base port (defaults to LOOMKIT_BASE_PORT or 3000).",
)
def port(identifier: str, base_port: int | None) -> None:
    """Print the dev-server port assigned to a workspace."""

    _run(lambda: WORKSPACE_CONTROLLER.port(PortCommand(identifier=identifier, base_port=base_port)))


def _run(action: Callable[[], CommandOutcome]) -> None:
    try:
        outcome = action()
    except _DOMAIN_ERRORS as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException(outcome.error or "Command failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    loomkit()
