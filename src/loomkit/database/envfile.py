"""Workspace ``.env`` file helpers built on python-dotenv."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from dotenv import dotenv_values, set_key

logger = logging.getLogger(__name__)


def read_env_file(path: Path) -> dict[str, str]:
    """Parse ``path``; a missing or unreadable file yields an empty mapping."""

    if not path.is_file():
        return {}
    try:
        values = dotenv_values(path)
    except (OSError, UnicodeDecodeError) as error:
        logger.warning("Cannot read env file %s: %s", path, error)
        return {}
    return {key: value for key, value in values.items() if value is not None}


def has_env_key(path: Path, key: str) -> bool:
    return key in read_env_file(path)


def set_env_value(path: Path, key: str, value: str) -> None:
    """Insert or replace ``key`` in ``path``, creating the file if needed."""

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()
    set_key(str(path), key, value, quote_mode="auto")
    logger.debug("Set %s in %s", key, path)


def copy_env_file(source: Path, destination: Path) -> bool:
    """Copy ``source`` over ``destination``; False when there is nothing to copy."""

    if not source.is_file():
        return False
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
    logger.debug("Copied %s to %s", source, destination)
    return True
