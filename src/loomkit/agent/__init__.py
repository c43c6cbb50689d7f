"""Agent CLI backend implementations."""

from loomkit.agent.base import AgentBackend, AgentInvocation
from loomkit.agent.cli_backend import AgentRunError, ClaudeCliBackend

__all__ = [
    "AgentBackend",
    "AgentInvocation",
    "AgentRunError",
    "ClaudeCliBackend",
]
