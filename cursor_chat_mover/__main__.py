"""Module entrypoint for `python -m cursor_chat_mover`."""

from __future__ import annotations

import sys

from cursor_chat_mover.cli import main


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
