"""Agent interface used for branch naming and self-healing validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class AgentInvocation:
    """Inputs required to run one agent call."""

    prompt: str
    headless: bool = True
    model: str | None = None
    permission_mode: str | None = None
    add_dir: Path | None = None
    cwd: Path | None = None
    timeout_seconds: int = 1_200


class AgentBackend(Protocol):
    """Protocol implemented by agent runners."""

    def is_available(self) -> bool:
        """Return True when the agent executable can be launched."""

    def invoke(self, invocation: AgentInvocation) -> str:
        """Run the agent and return captured output (empty for interactive runs)."""
