"""Dev-server detection and termination via psutil."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)

_DEV_SERVER_COMMAND_RE = re.compile(
    r"(next dev|next-server|npm.*dev|pnpm.*dev|yarn.*dev|vite|webpack.*serve|turbo.*dev|dev.*server)",
    re.IGNORECASE,
)


class ProcessTerminationError(RuntimeError):
    """A process could not be stopped."""

    def __init__(self, pid: int, message: str) -> None:
        super().__init__(f"Failed to terminate process {pid}: {message}")
        self.pid = pid


@dataclass(slots=True)
class ProcessInfo:
    pid: int
    name: str
    command: str
    port: int
    is_dev_server: bool


def is_dev_server_command(command: str) -> bool:
    """Classify a listener by its command line."""

    return bool(_DEV_SERVER_COMMAND_RE.search(command))


class PsutilProcessManager:
    """Find the process listening on a port and stop it."""

    def __init__(self, *, kill_wait_seconds: float = 3.0) -> None:
        self._kill_wait_seconds = kill_wait_seconds

    def find_listener(self, port: int) -> ProcessInfo | None:
        pid = _listening_pid(port)
        if pid is None:
            return None
        try:
            proc = psutil.Process(pid)
            name = proc.name()
            command = " ".join(proc.cmdline())
        except psutil.NoSuchProcess:
            return None
        except psutil.AccessDenied:
            name, command = "", ""
        info = ProcessInfo(
            pid=pid,
            name=name,
            command=command,
            port=port,
            is_dev_server=is_dev_server_command(command),
        )
        logger.debug("Port %d held by pid %d (%s)", port, pid, name or "unknown")
        return info

    def terminate(self, pid: int) -> None:
        try:
            proc = psutil.Process(pid)
            proc.kill()
            proc.wait(timeout=self._kill_wait_seconds)
        except psutil.NoSuchProcess:
            return
        except psutil.AccessDenied as error:
            raise ProcessTerminationError(pid, "access denied") from error
        except psutil.TimeoutExpired as error:
            raise ProcessTerminationError(pid, "process still running after SIGKILL") from error
        logger.info("Terminated process %d", pid)

    def is_port_free(self, port: int) -> bool:
        return _listening_pid(port) is None

    def wait_for_port_free(self, port: int, timeout_seconds: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout_seconds
        while True:
            if self.is_port_free(port):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.1)


def _listening_pid(port: int) -> int | None:
    try:
        connections = psutil.net_connections(kind="inet")
    except psutil.AccessDenied:
        return _listening_pid_per_process(port)
    for conn in connections:
        if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
            if conn.pid is not None:
                return conn.pid
            return _listening_pid_per_process(port)
    return None


def _listening_pid_per_process(port: int) -> int | None:
    for proc in psutil.process_iter(["pid"]):
        try:
            for conn in proc.net_connections(kind="inet"):
                if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
                    return proc.pid
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return None
