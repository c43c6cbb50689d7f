"""Ephemeral per-issue development workspaces on top of git worktrees."""

__version__ = "0.1.0"
