"""Console output helpers (color + consistent formatting) and logging setup.

Status lines for the user go to stdout/stderr through the helpers below;
diagnostics from the library modules go through `logging`.
"""

from __future__ import annotations

import logging
import os
import sys

from colorama import just_fix_windows_console


_RESET = "\x1b[0m"
_BOLD = "\x1b[1m"
_FG_RED = "\x1b[31m"
_FG_GREEN = "\x1b[32m"
_FG_YELLOW = "\x1b[33m"
_FG_CYAN = "\x1b[36m"
_FG_GRAY = "\x1b[90m"

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

_INITIALIZED = False


def init_console() -> None:
    """Enables ANSI escapes on Windows terminals; no-op elsewhere."""
    global _INITIALIZED
    if _INITIALIZED:
        return
    _INITIALIZED = True
    try:
        just_fix_windows_console()
    except OSError:
        # ! Coloring must never break functionality.
        return


def configure_logging(verbose: bool = False) -> None:
    """Routes library log records to stderr (DEBUG with `verbose`, else WARNING)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def _supports_color(stream) -> bool:
    if os.environ.get("NO_COLOR", "").strip():
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def style(text: str, *, fg: str | None = None, bold: bool = False, stream=None) -> str:
    """Formats text with ANSI colors when `stream` is a color-capable terminal."""
    init_console()
    if not _supports_color(stream if stream is not None else sys.stdout):
        return text
    parts: list[str] = []
    if bold:
        parts.append(_BOLD)
    if fg:
        parts.append(fg)
    parts.append(text)
    parts.append(_RESET)
    return "".join(parts)


def dim(text: str) -> str:
    return style(text, fg=_FG_GRAY)


def info(text: str) -> None:
    print(style(text, fg=_FG_CYAN, bold=True), flush=True)


def success(text: str) -> None:
    print(style(text, fg=_FG_GREEN, bold=True), flush=True)


def warn(text: str) -> None:
    print(style(text, fg=_FG_YELLOW, bold=True, stream=sys.stderr), file=sys.stderr, flush=True)


def error(text: str) -> None:
    print(style(text, fg=_FG_RED, bold=True, stream=sys.stderr), file=sys.stderr, flush=True)
