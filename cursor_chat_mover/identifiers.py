"""Session token resolution and identifier generation."""

from __future__ import annotations

import uuid
from typing import Iterable, Sequence

from cursor_chat_mover.errors import SessionNotFoundError
from cursor_chat_mover.listing import SessionSummary


def new_identifier() -> str:
    """Returns a fresh UUID4 string for a session or bubble copy.

    `uuid.uuid4()` draws its bits from `os.urandom`. Bubble ids share one
    namespace across the whole global store, so a weaker generator is not an
    option here.
    """
    return str(uuid.uuid4())


def split_tokens(value: str | int | Iterable[str | int]) -> list[str]:
    """Splits `"1,3,abc"`, `3` or `["1", "abc"]` into a flat token list."""
    if isinstance(value, (str, int)):
        items: Iterable[str | int] = [value]
    else:
        items = value

    tokens: list[str] = []
    for item in items:
        for part in str(item).split(","):
            part = part.strip()
            if part:
                tokens.append(part)
    return tokens


def resolve_session_ids(tokens: Sequence[str], listing: Sequence[SessionSummary]) -> list[str]:
    """Resolves tokens to session ids, one per token, order and duplicates kept.

    Numeric tokens are 1-based positions in `listing`. Anything else is taken
    as a session id verbatim; whether it exists is checked later, when the
    session is located.

    Raises:
        SessionNotFoundError: If a numeric position is out of range.
    """
    by_index = {summary.index: summary.session_id for summary in listing}
    resolved: list[str] = []
    for token in tokens:
        if token.isascii() and token.isdigit():
            sid = by_index.get(int(token))
            if sid is None:
                raise SessionNotFoundError(token)
            resolved.append(sid)
            continue
        resolved.append(token)
    return resolved
