"""Workspace path normalization and `file://` URI parsing.

Paths are compared as strings after normalization: `~` is expanded, relative
paths are made absolute, separators and `..` segments are collapsed and
trailing separators dropped. Comparison is case-insensitive on Windows only.
Symlinks are not resolved; the path recorded by Cursor may no longer exist.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from urllib.parse import unquote, urlparse


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Returns the canonical string form of a workspace path."""
    raw = os.fspath(path).strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("\"", "'"):
        raw = raw[1:-1].strip()
    if not raw:
        raise ValueError("Workspace path is empty.")
    expanded = os.path.expanduser(raw)
    normalized = os.path.normpath(os.path.abspath(expanded))
    # * normpath keeps a single trailing separator only for roots ("/" or "C:\").
    return normalized


def paths_equal(left: str | os.PathLike[str], right: str | os.PathLike[str]) -> bool:
    """Compares two workspace paths after normalization."""
    a = normalize_path(left)
    b = normalize_path(right)
    if sys.platform.startswith("win"):
        return a.lower() == b.lower()
    return a == b


def folder_uri_to_path(folder_uri: str) -> Path:
    """Converts a `file:///...` URI from `workspace.json` back to a path.

    Raises:
        ValueError: If the URI is not a `file` URI.
    """
    parsed = urlparse(folder_uri)
    if parsed.scheme != "file":
        raise ValueError(f"Expected file URI, got: {folder_uri}")

    raw_path = unquote(parsed.path)
    if sys.platform.startswith("win"):
        # * /g:/GitHub/project -> g:\GitHub\project
        if raw_path.startswith("/") and len(raw_path) >= 4 and raw_path[2] == ":":
            raw_path = raw_path[1:]
        return Path(raw_path.replace("/", "\\"))

    return Path(raw_path)


def contract_home(path: str) -> str:
    """Replaces the home directory prefix with `~` for display."""
    home = os.path.expanduser("~")
    if home and home != "~" and (path == home or path.startswith(home + os.sep)):
        return "~" + path[len(home):]
    return path
