"""Subprocess-based runner for the agent CLI."""

from __future__ import annotations

import logging
import shutil
import subprocess
import time

from loomkit.agent.base import AgentInvocation

logger = logging.getLogger(__name__)


class AgentRunError(RuntimeError):
    """Agent execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class ClaudeCliBackend:
    """Run the ``claude`` CLI either headless (captured) or interactive (inherited tty)."""

    def __init__(self, executable: str = "claude") -> None:
        self._executable = executable

    def is_available(self) -> bool:
        return shutil.which(self._executable) is not None

    def invoke(self, invocation: AgentInvocation) -> str:
        run_args = build_run_args(self._executable, invocation)
        logger.debug(
            "Launching agent: headless=%s model=%s cwd=%s",
            invocation.headless,
            invocation.model,
            invocation.cwd,
        )
        try:
            if invocation.headless:
                return _run_headless(run_args, invocation)
            _run_interactive(run_args, invocation)
            return ""
        except FileNotFoundError as error:
            raise AgentRunError(
                f"Agent command not found: {self._executable}",
                transient=False,
            ) from error
        except OSError as error:
            raise AgentRunError(f"Agent failed to start: {error}", transient=True) from error


def build_run_args(executable: str, invocation: AgentInvocation) -> list[str]:
    """Build argv; headless prompts go through stdin, interactive ones after ``--``."""

    args = [executable]
    if invocation.headless:
        args.extend(["-p", "--print"])
    if invocation.model:
        args.extend(["--model", invocation.model])
    if invocation.permission_mode:
        args.extend(["--permission-mode", invocation.permission_mode])
    if invocation.add_dir is not None:
        args.extend(["--add-dir", str(invocation.add_dir)])
    if not invocation.headless:
        args.extend(["--", invocation.prompt])
    return args


def _run_headless(run_args: list[str], invocation: AgentInvocation) -> str:
    try:
        completed = subprocess.run(  # noqa: S603
            run_args,
            input=invocation.prompt,
            capture_output=True,
            text=True,
            cwd=invocation.cwd,
            timeout=invocation.timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired as error:
        raise AgentRunError(
            f"Agent timed out after {invocation.timeout_seconds}s.",
            transient=True,
        ) from error
    if completed.returncode != 0:
        detail = (completed.stderr or completed.stdout or "").strip()
        raise AgentRunError(
            f"Agent exited with code {completed.returncode}: {detail}",
            transient=False,
        )
    return completed.stdout.strip()


def _run_interactive(run_args: list[str], invocation: AgentInvocation) -> None:
    process = subprocess.Popen(run_args, cwd=invocation.cwd)  # noqa: S603
    start_monotonic = time.monotonic()
    while True:
        returncode = process.poll()
        if returncode is not None:
            if returncode != 0:
                raise AgentRunError(
                    f"Agent exited with code {returncode}.",
                    transient=False,
                )
            return
        if time.monotonic() - start_monotonic >= invocation.timeout_seconds:
            _terminate_process(process)
            raise AgentRunError(
                f"Agent timed out after {invocation.timeout_seconds}s.",
                transient=True,
            )
        time.sleep(0.1)


def _terminate_process(process: subprocess.Popen[str] | subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
