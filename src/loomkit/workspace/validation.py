"""Fail-fast pre-merge checks with a single agent-assisted retry per step."""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from loomkit.agent.base import AgentBackend, AgentInvocation
from loomkit.agent.cli_backend import AgentRunError
from loomkit.config import Settings
from loomkit.workspace.base import CheckOutcome, CheckRunner
from loomkit.workspace.models import (
    VALIDATION_ORDER,
    ValidationResult,
    ValidationStep,
    ValidationStepResult,
)

logger = logging.getLogger(__name__)

PACKAGE_MANAGERS = ("pnpm", "npm", "yarn")
_LOCK_FILES = (
    ("pnpm-lock.yaml", "pnpm"),
    ("package-lock.json", "npm"),
    ("yarn.lock", "yarn"),
)

_FAILURE_TEXT = {
    ValidationStep.TYPECHECK: ("Typecheck failed.", "Fix type errors before merging."),
    ValidationStep.LINT: ("Linting failed.", "Fix linting errors before merging."),
    ValidationStep.TEST: ("Tests failed.", "Fix test failures before merging."),
}

_REMEDIATION_PROMPTS = {
    ValidationStep.TYPECHECK: (
        "There are type errors in this codebase. "
        "Please analyze the typecheck output, identify all type errors, and fix them. "
        "Run '{command}' to see the errors, then make the necessary code changes "
        "to resolve all type issues."
    ),
    ValidationStep.LINT: (
        "There are lint errors in this codebase. "
        "Please analyze the linting output, identify all linting issues, and fix them. "
        "Run '{command}' to see the errors, then make the necessary code changes "
        "to resolve all linting issues. "
        "Focus on code quality, consistency, and following the project's linting rules."
    ),
    ValidationStep.TEST: (
        "There are unit test failures in this codebase. "
        "Please analyze the test output to understand what's failing, then fix the issues. "
        "This might involve updating test code, fixing bugs in the source code, "
        "or updating tests to match new behavior. "
        "Run '{command}' to see the detailed test failures, then make the necessary "
        "changes to get all tests passing."
    ),
}


@dataclass(slots=True)
class ValidationOptions:
    dry_run: bool = False
    skip_typecheck: bool = False
    skip_lint: bool = False
    skip_tests: bool = False

    def skips(self, step: ValidationStep) -> bool:
        return {
            ValidationStep.TYPECHECK: self.skip_typecheck,
            ValidationStep.LINT: self.skip_lint,
            ValidationStep.TEST: self.skip_tests,
        }[step]


class ShellCheckRunner:
    """Run a check command with the terminal attached so output reaches the user."""

    def run(self, command: str, cwd: Path, timeout_seconds: int) -> CheckOutcome:
        logger.debug("Running check %r in %s", command, cwd)
        try:
            completed = subprocess.run(  # noqa: S603
                shlex.split(command),
                cwd=cwd,
                timeout=timeout_seconds,
                check=False,
            )
        except FileNotFoundError:
            return CheckOutcome(exit_code=127, output=f"command not found: {command}")
        except subprocess.TimeoutExpired:
            return CheckOutcome(exit_code=124, timed_out=True)
        return CheckOutcome(exit_code=completed.returncode)


def detect_package_manager(project_path: Path) -> str:
    """``packageManager`` field first, then lock files, else npm."""

    package_json = _read_package_json(project_path)
    declared = str(package_json.get("packageManager") or "").split("@", 1)[0]
    if declared in PACKAGE_MANAGERS:
        return declared
    for lock_file, manager in _LOCK_FILES:
        if (project_path / lock_file).exists():
            return manager
    return "npm"


def script_command(package_manager: str, script: str) -> str:
    if package_manager == "npm":
        return f"npm run {script}"
    return f"{package_manager} {script}"


def _read_package_json(project_path: Path) -> dict:
    path = project_path / "package.json"
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        logger.debug("Could not read %s: %s", path, error)
        return {}
    return data if isinstance(data, dict) else {}


class ValidationPipeline:
    """Typecheck, lint and test in order; the first terminal failure halts the run."""

    def __init__(
        self,
        *,
        runner: CheckRunner,
        settings: Settings,
        agent: AgentBackend | None = None,
    ) -> None:
        self._runner = runner
        self._settings = settings
        self._agent = agent

    def detect_commands(self, project_path: Path) -> dict[ValidationStep, str | None]:
        """Explicit settings win; otherwise a same-named ``package.json`` script."""

        explicit = {
            ValidationStep.TYPECHECK: self._settings.validation.typecheck_command,
            ValidationStep.LINT: self._settings.validation.lint_command,
            ValidationStep.TEST: self._settings.validation.test_command,
        }
        scripts = _read_package_json(project_path).get("scripts") or {}
        package_manager: str | None = None
        commands: dict[ValidationStep, str | None] = {}
        for step in VALIDATION_ORDER:
            if explicit[step]:
                commands[step] = explicit[step]
            elif isinstance(scripts, dict) and step.value in scripts:
                package_manager = package_manager or detect_package_manager(project_path)
                commands[step] = script_command(package_manager, step.value)
            else:
                commands[step] = None
        return commands

    def run(self, project_path: Path, options: ValidationOptions) -> ValidationResult:
        started = time.monotonic()
        commands = self.detect_commands(project_path)
        result = ValidationResult(success=True)

        for step in VALIDATION_ORDER:
            command = commands[step]
            if options.skips(step) or command is None:
                reason = "disabled" if options.skips(step) else "no command configured"
                logger.info("Skipping %s (%s)", step.value, reason)
                result.steps.append(
                    ValidationStepResult(step=step, passed=False, skipped=True, command=command),
                )
                continue
            if options.dry_run:
                logger.info("[DRY RUN] Would run %s: %s", step.value, command)
                result.steps.append(
                    ValidationStepResult(step=step, passed=True, command=command),
                )
                continue

            step_result = self._run_step(step, command, project_path)
            result.steps.append(step_result)
            if not step_result.passed:
                result.success = False
                break

        result.total_duration = time.monotonic() - started
        return result

    def _run_step(self, step: ValidationStep, command: str, project_path: Path) -> ValidationStepResult:
        started = time.monotonic()
        timeout = self._settings.commands.check_timeout_seconds
        logger.info("Running %s: %s", step.value, command)
        outcome = self._runner.run(command, project_path, timeout)
        if outcome.passed:
            return ValidationStepResult(
                step=step,
                passed=True,
                duration=time.monotonic() - started,
                command=command,
            )

        logger.warning("%s failed (exit code %d)", step.value, outcome.exit_code)
        healed = self._remediate(step, command, project_path)
        if healed:
            logger.info("%s passed after agent fix", step.value)
            return ValidationStepResult(
                step=step,
                passed=True,
                healed=True,
                duration=time.monotonic() - started,
                command=command,
            )
        title, advice = _FAILURE_TEXT[step]
        return ValidationStepResult(
            step=step,
            passed=False,
            duration=time.monotonic() - started,
            command=command,
            error=f"{title}\n{advice}\n\nRun '{command}' to see detailed errors.",
        )

    def _remediate(self, step: ValidationStep, command: str, project_path: Path) -> bool:
        """One interactive agent session, then exactly one re-run of the check."""

        if self._agent is None or not self._agent.is_available():
            logger.debug("Agent not available, skipping auto-fix")
            return False
        logger.info("Launching agent to help fix %s errors...", step.value)
        try:
            self._agent.invoke(
                AgentInvocation(
                    prompt=_REMEDIATION_PROMPTS[step].format(command=command),
                    headless=False,
                    model=self._settings.agent.remediation_model,
                    permission_mode="acceptEdits",
                    add_dir=project_path,
                    cwd=project_path,
                    timeout_seconds=self._settings.agent.remediation_timeout_seconds,
                ),
            )
        except AgentRunError as error:
            logger.warning("Agent auto-fix failed: %s", error)
            return False
        logger.info("Re-running %s after agent fixes...", step.value)
        outcome = self._runner.run(
            command,
            project_path,
            self._settings.commands.check_timeout_seconds,
        )
        if not outcome.passed:
            logger.warning("%s still failing after agent help", step.value)
        return outcome.passed
