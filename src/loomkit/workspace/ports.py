"""Deterministic dev-server port assignment."""

from __future__ import annotations

import hashlib

from loomkit.config import MAX_PORT
from loomkit.workspace.models import TargetKind, WorkspaceTarget

DEFAULT_BASE_PORT = 3_000
OFFSET_RANGE = 999


class EmptyPortKeyError(ValueError):
    """Port keys must contain non-whitespace text."""


class PortRangeError(ValueError):
    """Computed port is above the maximum valid TCP port."""

    def __init__(self, port: int, base_port: int) -> None:
        super().__init__(
            f"Calculated port {port} exceeds maximum ({MAX_PORT}). "
            f"Use a lower base port (current: {base_port}).",
        )
        self.port = port
        self.base_port = base_port


def port_offset(key: str) -> int:
    """Offset in ``[1, 999]`` from the first 32 bits of the key's SHA-256."""

    if not key or not key.strip():
        raise EmptyPortKeyError("Branch name cannot be empty")
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % OFFSET_RANGE + 1


def allocate_port(key: str, base_port: int = DEFAULT_BASE_PORT) -> int:
    return _checked(base_port + port_offset(key), base_port)


def port_for_number(number: int, base_port: int = DEFAULT_BASE_PORT) -> int:
    """Issue and PR numbers are added directly."""

    return _checked(base_port + number, base_port)


def port_for_target(target: WorkspaceTarget, base_port: int = DEFAULT_BASE_PORT) -> int:
    if target.kind in (TargetKind.ISSUE, TargetKind.PR) and target.number is not None:
        return port_for_number(target.number, base_port)
    return allocate_port(target.branch_name or target.original_input, base_port)


def _checked(port: int, base_port: int) -> int:
    if port > MAX_PORT:
        raise PortRangeError(port, base_port)
    return port
