"""Interactive prompts for CLI confirmation."""

from __future__ import annotations

import sys


def is_interactive() -> bool:
    """Returns True when stdin/stdout are interactive terminals."""
    return sys.stdin.isatty() and sys.stdout.isatty()


def prompt_yes_no(prompt: str, default: bool = False) -> bool:
    """Prompts user with a yes/no question.

    Args:
        prompt: Question to ask.
        default: Value used when user presses Enter.

    Returns:
        True for yes, False for no.
    """
    default_str = "Y/n" if default else "y/N"
    while True:
        raw = input(f"{prompt} [{default_str}]: ").strip().lower()
        if not raw:
            return default
        if raw in ("y", "yes"):
            return True
        if raw in ("n", "no"):
            return False
        print("Please answer 'y' or 'n'.\n")


def confirm_mutation(summary: str, *, assume_yes: bool) -> bool:
    """Asks before stores are written; skipped with `--yes` or without a terminal."""
    if assume_yes or not is_interactive():
        return True
    return prompt_yes_no(f"{summary} Close Cursor first. Continue?", default=False)
