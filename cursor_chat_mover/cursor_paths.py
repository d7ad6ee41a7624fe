"""Helpers to locate Cursor user data directories and tool settings."""

from __future__ import annotations

import os
import sys
from pathlib import Path


ENV_CURSOR_USER_DIR = "CURSOR_USER_DIR"
ENV_LOCK_RETRIES = "CURSOR_CHAT_MOVER_LOCK_RETRIES"

DEFAULT_LOCK_RETRIES = 3


def default_cursor_user_dir() -> Path:
    """Returns the default Cursor `User` directory for the current OS.

    Raises:
        RuntimeError: If APPDATA is missing on Windows.
    """
    if sys.platform.startswith("win"):
        appdata = os.environ.get("APPDATA")
        if not appdata:
            raise RuntimeError("APPDATA is not set; cannot locate Cursor User dir.")
        return Path(appdata) / "Cursor" / "User"

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Cursor" / "User"

    # * Assume Linux / other Unix-like.
    return Path.home() / ".config" / "Cursor" / "User"


def resolve_cursor_user_dir(override: Path | str | None = None) -> Path:
    """Resolves the Cursor `User` dir: explicit override > env var > OS default."""
    if override:
        return Path(override).expanduser()
    env_value = os.environ.get(ENV_CURSOR_USER_DIR, "").strip()
    if env_value:
        return Path(env_value).expanduser()
    return default_cursor_user_dir()


def workspace_storage_root(cursor_user_dir: Path) -> Path:
    """Returns `workspaceStorage` directory under Cursor User dir."""
    return cursor_user_dir / "workspaceStorage"


def global_storage_dir(cursor_user_dir: Path) -> Path:
    """Returns `globalStorage` directory under Cursor User dir."""
    return cursor_user_dir / "globalStorage"


def global_storage_db(cursor_user_dir: Path) -> Path:
    """Returns the shared content store `globalStorage/state.vscdb`."""
    return global_storage_dir(cursor_user_dir) / "state.vscdb"


def lock_retries_from_env() -> int:
    """Returns the bounded number of lock-check attempts per session."""
    raw = os.environ.get(ENV_LOCK_RETRIES, "").strip()
    if not raw:
        return DEFAULT_LOCK_RETRIES
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{ENV_LOCK_RETRIES} must be an integer, got: {raw!r}") from None
    # * At least one attempt; never unbounded.
    return max(1, min(value, 20))
