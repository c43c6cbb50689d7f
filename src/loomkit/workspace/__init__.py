"""Workspace lifecycle: plan resolution, safety, cleanup, validation and creation."""
