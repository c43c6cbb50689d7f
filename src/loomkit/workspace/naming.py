"""Branch naming strategies for issue workspaces."""

from __future__ import annotations

import logging
import re
from typing import Protocol

from loomkit.agent.base import AgentBackend, AgentInvocation
from loomkit.agent.cli_backend import AgentRunError
from loomkit.config import AgentSettings

logger = logging.getLogger(__name__)

MAX_BRANCH_LENGTH = 50
BRANCH_PREFIXES = ("feat", "fix", "docs", "refactor", "test", "chore")

_SLUG_RE = re.compile(r"[^a-z0-9]+")

_AGENT_PROMPT = """<Task>
Generate a git branch name for the following issue:
<Issue>
<IssueNumber>{number}</IssueNumber>
<IssueTitle>{title}</IssueTitle>
</Issue>

<Requirements>
<IssueNumber>Must use this exact issue number: {number}</IssueNumber>
<Format>Format must be: {{prefix}}/issue-{number}-{{description}}</Format>
<Prefix>Prefix must be one of: {prefixes}</Prefix>
<MaxLength>Maximum {max_length} characters total</MaxLength>
<Characters>Only lowercase letters, numbers, and hyphens allowed</Characters>
<Output>Reply with ONLY the branch name, nothing else</Output>
</Requirements>
</Task>"""


class BranchNamingStrategy(Protocol):
    def branch_name(self, issue_number: int, title: str) -> str: ...


def is_valid_branch_name(name: str, issue_number: int) -> bool:
    pattern = rf"^({'|'.join(BRANCH_PREFIXES)})/issue-{issue_number}-[a-z0-9-]+$"
    return bool(re.match(pattern, name)) and len(name) <= MAX_BRANCH_LENGTH


class SimpleBranchNaming:
    """``feat/issue-<n>-<slug of title>`` truncated to the length limit."""

    def branch_name(self, issue_number: int, title: str) -> str:
        base = f"feat/issue-{issue_number}"
        slug = _SLUG_RE.sub("-", title.lower()).strip("-")
        if not slug:
            return base
        room = MAX_BRANCH_LENGTH - len(base) - 1
        if room <= 0:
            return base
        slug = slug[:room].rstrip("-")
        return f"{base}-{slug}" if slug else base


class AgentBranchNaming:
    """Ask the agent for a name; anything invalid falls back to the simple strategy."""

    def __init__(
        self,
        agent: AgentBackend,
        settings: AgentSettings,
        fallback: BranchNamingStrategy | None = None,
    ) -> None:
        self._agent = agent
        self._settings = settings
        self._fallback = fallback or SimpleBranchNaming()

    def branch_name(self, issue_number: int, title: str) -> str:
        if not self._agent.is_available():
            logger.warning("Agent CLI not available, using fallback branch name")
            return self._fallback.branch_name(issue_number, title)
        prompt = _AGENT_PROMPT.format(
            number=issue_number,
            title=title,
            prefixes=", ".join(BRANCH_PREFIXES),
            max_length=MAX_BRANCH_LENGTH,
        )
        try:
            output = self._agent.invoke(
                AgentInvocation(
                    prompt=prompt,
                    headless=True,
                    model=self._settings.naming_model,
                    timeout_seconds=self._settings.headless_timeout_seconds,
                ),
            )
        except AgentRunError as error:
            logger.warning("Failed to generate branch name with agent: %s", error)
            return self._fallback.branch_name(issue_number, title)
        candidate = output.strip()
        if not is_valid_branch_name(candidate, issue_number):
            logger.warning("Invalid branch name from agent %r, using fallback", candidate)
            return self._fallback.branch_name(issue_number, title)
        return candidate


def build_naming_strategy(
    strategy: str,
    agent: AgentBackend,
    settings: AgentSettings,
) -> BranchNamingStrategy:
    if strategy == "agent":
        return AgentBranchNaming(agent, settings)
    if strategy == "simple":
        return SimpleBranchNaming()
    raise ValueError(f"Unknown branch naming strategy: {strategy!r}")
