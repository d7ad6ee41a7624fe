"""Duplicate a session's message content in `globalStorage/state.vscdb`.

Cursor keeps the full conversation of a session in the global DB:

  cursorDiskKV["composerData:<sessionId>"]         header payload, including
                                                   `fullConversationHeadersOnly`
                                                   (ordered list of bubble ids)
  cursorDiskKV["bubbleId:<sessionId>:<bubbleId>"]  one message bubble each

A copied session needs its own payload and its own bubbles, otherwise both
sessions would share (and overwrite) the same bubble keys. Copying is done as
"mint new ids, remap references, write new nodes": every bubble id gets a fresh
id and `rewrite_session_references` is the single place that rewrites ids
inside a payload. Add any new internal reference field there.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from cursor_chat_mover.errors import MigrationError, MigrationFailedError
from cursor_chat_mover.identifiers import new_identifier
from cursor_chat_mover.records import open_store, read_kv_raw, table_exists, translate_sqlite_error


logger = logging.getLogger(__name__)

COMPOSER_PAYLOAD_PREFIX = "composerData:"
BUBBLE_PREFIX = "bubbleId:"
HEADER_LIST_FIELD = "fullConversationHeadersOnly"


@dataclass(slots=True)
class ReplicationResult:
    """Summary of one content replication."""

    session_id: str
    new_session_id: str
    bubble_map: dict[str, str] = field(default_factory=dict)
    payload_copied: bool = False
    bubbles_copied: int = 0


def composer_payload_key(session_id: str) -> str:
    return f"{COMPOSER_PAYLOAD_PREFIX}{session_id}"


def bubble_key(session_id: str, bubble_id: str) -> str:
    return f"{BUBBLE_PREFIX}{session_id}:{bubble_id}"


def map_bubble_id(old_bubble_id: str, bubble_map: dict[str, str]) -> str:
    """Returns the new id for `old_bubble_id`, minting one on first use."""
    new_id = bubble_map.get(old_bubble_id)
    if new_id is None:
        new_id = new_identifier()
        bubble_map[old_bubble_id] = new_id
    return new_id


def rewrite_session_references(
    payload: dict,
    new_session_id: str,
    bubble_map: dict[str, str],
    *,
    id_field: str = "composerId",
) -> dict:
    """Returns a deep copy of `payload` pointing at the new session and bubbles.

    `bubble_map` is extended with fresh ids for bubbles seen for the first time.
    """
    out = copy.deepcopy(payload)
    out[id_field] = new_session_id

    headers = out.get(HEADER_LIST_FIELD)
    if isinstance(headers, list):
        rewritten = []
        for header in headers:
            if isinstance(header, dict) and isinstance(header.get("bubbleId"), str):
                header = {**header, "bubbleId": map_bubble_id(header["bubbleId"], bubble_map)}
            rewritten.append(header)
        out[HEADER_LIST_FIELD] = rewritten
    return out


def replicate_session_content(
    global_db_path: Path,
    session_id: str,
    new_session_id: str,
    *,
    bubble_map: dict[str, str] | None = None,
) -> ReplicationResult:
    """Copies the header payload and all bubbles of `session_id` to `new_session_id`.

    All inserts run in one transaction: either every copied key exists
    afterwards or none does. Inserts never replace an existing key.

    Raises:
        MigrationError: On sqlite or JSON errors (the transaction is rolled back).
    """
    result = ReplicationResult(
        session_id=session_id,
        new_session_id=new_session_id,
        bubble_map=bubble_map if bubble_map is not None else {},
    )
    if not global_db_path.exists():
        logger.warning("Global storage DB missing (%s); no message content to copy.", global_db_path)
        return result

    con = open_store(global_db_path, readonly=False)
    try:
        cur = con.cursor()
        if not table_exists(cur, "cursorDiskKV"):
            logger.warning("Global storage has no cursorDiskKV table; no message content to copy.")
            return result

        raw_payload = read_kv_raw(cur, table="cursorDiskKV", key=composer_payload_key(session_id))
        if raw_payload is not None:
            payload = _loads(raw_payload, composer_payload_key(session_id))
            if isinstance(payload, dict):
                new_payload = rewrite_session_references(payload, new_session_id, result.bubble_map)
                _insert(cur, composer_payload_key(new_session_id), _dumps_like(new_payload, raw_payload))
                result.payload_copied = True

        prefix = f"{BUBBLE_PREFIX}{session_id}:"
        rows = cur.execute(
            "SELECT key, value FROM cursorDiskKV WHERE key LIKE ? ESCAPE '\\' ORDER BY rowid",
            (_like_prefix(prefix),),
        ).fetchall()
        for key, raw_bubble in rows:
            key_text = key.decode("utf-8", errors="ignore") if isinstance(key, (bytes, memoryview)) else str(key)
            # * LIKE is case-insensitive for ASCII; require an exact prefix.
            if not key_text.startswith(prefix):
                continue
            old_bubble_id = key_text[len(prefix):]
            new_bubble_id = map_bubble_id(old_bubble_id, result.bubble_map)

            value = raw_bubble
            if raw_bubble is not None:
                try:
                    bubble = _loads(raw_bubble, key_text)
                except MigrationFailedError:
                    # * Opaque bubble: copy the bytes unchanged under the new key.
                    logger.debug("Copying non-JSON bubble %s verbatim", key_text)
                    bubble = None
                if isinstance(bubble, dict):
                    bubble["bubbleId"] = new_bubble_id
                    value = _dumps_like(bubble, raw_bubble)
            _insert(cur, bubble_key(new_session_id, new_bubble_id), value)
            result.bubbles_copied += 1

        con.commit()
    except sqlite3.Error as exc:
        con.rollback()
        raise translate_sqlite_error(exc, global_db_path, session_id=session_id) from exc
    except MigrationError:
        con.rollback()
        raise
    finally:
        con.close()

    logger.debug(
        "Replicated %s -> %s (payload=%s, bubbles=%d)",
        session_id,
        new_session_id,
        result.payload_copied,
        result.bubbles_copied,
    )
    return result


def _insert(cur: sqlite3.Cursor, key: str, value) -> None:
    cur.execute("INSERT INTO cursorDiskKV(key, value) VALUES (?, ?)", (key, value))


def _loads(raw, key: str):
    if isinstance(raw, memoryview):
        raw = raw.tobytes()
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MigrationFailedError(f"Global storage value {key} is not valid JSON: {exc}") from exc


def _dumps_like(payload, original):
    # * Keep the column type Cursor used (TEXT vs BLOB).
    text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    if isinstance(original, str):
        return text
    return text.encode("utf-8")


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"
