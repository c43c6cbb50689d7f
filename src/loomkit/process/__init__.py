"""Local process management."""
