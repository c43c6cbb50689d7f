"""GitHub issue service."""
