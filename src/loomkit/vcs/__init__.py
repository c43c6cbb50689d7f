"""Git adapters."""
