"""Read-modify-write access to the session array of a workspace `state.vscdb`.

A workspace DB keeps its chat sessions as one JSON value under a single
`ItemTable` key. Depending on the Cursor version that wrote it, the array lives
under a different key and container layout (see `ArrayShape`). The shape that
was read is carried alongside the records so that writing back never converts
a store from one layout to another.

Every write replaces the whole value with one statement and one commit.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from cursor_chat_mover.errors import (
    DatabaseLockedError,
    MigrationError,
    MigrationFailedError,
    PermissionDeniedError,
)


COMPOSER_DATA_KEY = "composer.composerData"
AICHAT_DATA_KEY = "workbench.panel.aichat.view.aichat.chatdata"
CHAT_DATA_KEY = "workbench.panel.chat.view.chat.chatdata"

# * Selection pointers that must not reference a session the store no longer owns.
SELECTION_FIELDS = ("selectedComposerIds", "lastFocusedComposerIds")

_KV_TABLES = ("ItemTable", "cursorDiskKV")
_BUSY_TIMEOUT_S = 0.5


class ArrayShape(Enum):
    """Where a store keeps its session array: (key, list field, id field)."""

    COMPOSER = (COMPOSER_DATA_KEY, "allComposers", "composerId")
    COMPOSER_LIST = (COMPOSER_DATA_KEY, None, "composerId")
    AICHAT_TABS = (AICHAT_DATA_KEY, "tabs", "tabId")
    CHAT_TABS = (CHAT_DATA_KEY, "tabs", "tabId")

    def __init__(self, key: str, list_field: str | None, id_field: str) -> None:
        self.key = key
        self.list_field = list_field
        self.id_field = id_field


# * Lookup order: current composer key first, then legacy chat panels.
_ARRAY_KEYS = (COMPOSER_DATA_KEY, AICHAT_DATA_KEY, CHAT_DATA_KEY)


@dataclass(frozen=True, slots=True)
class RecordArray:
    """Session array of one store plus the wire shape it was read from."""

    records: list = field(default_factory=list)
    existed: bool = False
    shape: ArrayShape = ArrayShape.COMPOSER
    container: dict | None = None
    binary: bool = False

    def session_ids(self) -> list[str]:
        ids: list[str] = []
        for item in self.records:
            sid = session_id_of(item, self.shape)
            if sid is not None:
                ids.append(sid)
        return ids

    def index_of(self, session_id: str) -> int | None:
        return find_record_index(self.records, self.shape, session_id)

    def empty_like(self) -> "RecordArray":
        """An empty, not-yet-existing array that writes in this array's shape."""
        return RecordArray(records=[], existed=False, shape=self.shape, container=None, binary=self.binary)


def session_id_of(record, shape: ArrayShape) -> str | None:
    if not isinstance(record, dict):
        return None
    sid = record.get(shape.id_field)
    if isinstance(sid, str) and sid:
        return sid
    return None


def find_record_index(records: list, shape: ArrayShape, session_id: str) -> int | None:
    """Returns the position of the first record with `session_id`, or None."""
    for idx, item in enumerate(records):
        if session_id_of(item, shape) == session_id:
            return idx
    return None


def open_store(db_path: Path, *, readonly: bool) -> sqlite3.Connection:
    """Opens an existing store DB; never creates a missing file.

    Raises:
        MigrationFailedError: If the file does not exist.
        DatabaseLockedError / PermissionDeniedError: Translated sqlite errors.
    """
    if not db_path.exists():
        raise MigrationFailedError(f"Store database not found: {db_path}", path=str(db_path))
    mode = "ro" if readonly else "rw"
    try:
        return sqlite3.connect(
            f"file:{db_path.as_posix()}?mode={mode}",
            uri=True,
            timeout=_BUSY_TIMEOUT_S,
        )
    except sqlite3.Error as exc:
        raise translate_sqlite_error(exc, db_path) from exc


def translate_sqlite_error(
    exc: sqlite3.Error,
    db_path: Path,
    *,
    session_id: str | None = None,
) -> MigrationError:
    """Maps a sqlite3 error to the migration error taxonomy."""
    message = str(exc).lower()
    if "locked" in message or "busy" in message:
        return DatabaseLockedError(str(db_path), detail=str(exc), session_id=session_id)
    if "readonly" in message or "read-only" in message or "permission" in message or "access" in message:
        return PermissionDeniedError(str(db_path), session_id=session_id)
    return MigrationFailedError(f"SQLite error on {db_path}: {exc}", session_id=session_id, path=str(db_path))


def ensure_tables_exist(cur: sqlite3.Cursor) -> None:
    # * Cursor DBs use ItemTable + cursorDiskKV.
    cur.execute("CREATE TABLE IF NOT EXISTS ItemTable (key TEXT PRIMARY KEY, value BLOB)")
    cur.execute("CREATE TABLE IF NOT EXISTS cursorDiskKV (key TEXT PRIMARY KEY, value BLOB)")


def table_exists(cur: sqlite3.Cursor, table: str) -> bool:
    row = cur.execute("SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)).fetchone()
    return row is not None


def read_kv_raw(cur: sqlite3.Cursor, *, table: str, key: str):
    """Returns the stored value as-is (str, bytes or memoryview), or None."""
    if table not in _KV_TABLES:
        raise ValueError(f"Unknown key-value table: {table}")
    row = cur.execute(f"SELECT value FROM {table} WHERE key=?", (key,)).fetchone()
    if not row or row[0] is None:
        return None
    return row[0]


def read_records(con: sqlite3.Connection, *, db_path: Path | None = None) -> RecordArray:
    """Reads the session array of a workspace store.

    A store without any known key holds zero sessions; that is not an error.

    Raises:
        MigrationFailedError: If the stored value is not valid JSON of a known layout.
    """
    cur = con.cursor()
    if not table_exists(cur, "ItemTable"):
        return RecordArray()

    for key in _ARRAY_KEYS:
        raw = read_kv_raw(cur, table="ItemTable", key=key)
        if raw is None:
            continue
        binary = not isinstance(raw, str)
        try:
            payload = json.loads(_as_bytes(raw).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MigrationFailedError(
                f"{key} in {db_path or 'store'} is not valid JSON: {exc}",
                path=str(db_path) if db_path else None,
            ) from exc
        return _parse_payload(key, payload, binary=binary, db_path=db_path)

    return RecordArray()


def _parse_payload(key: str, payload, *, binary: bool, db_path: Path | None) -> RecordArray:
    if key == COMPOSER_DATA_KEY and isinstance(payload, list):
        return RecordArray(records=list(payload), existed=True, shape=ArrayShape.COMPOSER_LIST, binary=binary)

    if not isinstance(payload, dict):
        raise MigrationFailedError(
            f"{key} in {db_path or 'store'} has an unexpected layout ({type(payload).__name__}).",
            path=str(db_path) if db_path else None,
        )

    if key == COMPOSER_DATA_KEY:
        shape = ArrayShape.COMPOSER
    elif key == AICHAT_DATA_KEY:
        shape = ArrayShape.AICHAT_TABS
    else:
        shape = ArrayShape.CHAT_TABS

    items = payload.get(shape.list_field)
    records = list(items) if isinstance(items, list) else []
    container = {k: v for k, v in payload.items() if k != shape.list_field}
    return RecordArray(records=records, existed=True, shape=shape, container=container, binary=binary)


def write_records(con: sqlite3.Connection, array: RecordArray) -> None:
    """Replaces the store's session array in the shape it was read with."""
    shape = array.shape
    if shape.list_field is None:
        payload = list(array.records)
    else:
        payload = dict(array.container or {})
        payload[shape.list_field] = list(array.records)

    text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    value = text.encode("utf-8") if array.binary else text

    cur = con.cursor()
    ensure_tables_exist(cur)
    cur.execute("INSERT OR REPLACE INTO ItemTable(key, value) VALUES (?, ?)", (shape.key, value))
    con.commit()


def without_session(array: RecordArray, session_id: str) -> RecordArray | None:
    """Returns a copy with the first matching session removed, or None if absent.

    Selection pointers referring to the removed session are dropped as well.
    """
    idx = array.index_of(session_id)
    if idx is None:
        return None
    records = array.records[:idx] + array.records[idx + 1:]

    container = array.container
    if container is not None:
        container = dict(container)
        for name in SELECTION_FIELDS:
            value = container.get(name)
            if isinstance(value, list):
                container[name] = [item for item in value if _pointer_id(item) != session_id]
    return replace(array, records=records, container=container)


def with_session(array: RecordArray, record) -> RecordArray:
    """Returns a copy with `record` appended; existing sessions are kept."""
    return replace(array, records=[*array.records, record])


def read_store_records(db_path: Path) -> RecordArray:
    """Opens a store read-only, reads its session array and closes it."""
    con = open_store(db_path, readonly=True)
    try:
        return read_records(con, db_path=db_path)
    except sqlite3.Error as exc:
        raise translate_sqlite_error(exc, db_path) from exc
    finally:
        con.close()


def _pointer_id(item) -> str | None:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        cid = item.get("composerId")
        if isinstance(cid, str):
            return cid
    return None


def _as_bytes(val) -> bytes:
    if isinstance(val, memoryview):
        return val.tobytes()
    if isinstance(val, bytes):
        return val
    return str(val).encode("utf-8")
