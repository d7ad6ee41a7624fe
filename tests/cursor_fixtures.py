"""Builders for throwaway Cursor `User` directories used by the tests.

The layout mirrors a real installation:

  <root>/Cursor/User/workspaceStorage/<id>/workspace.json
  <root>/Cursor/User/workspaceStorage/<id>/state.vscdb   (ItemTable, cursorDiskKV)
  <root>/Cursor/User/globalStorage/state.vscdb           (cursorDiskKV)
"""

from __future__ import annotations

import json
import sqlite3
import sys
from pathlib import Path
from urllib.parse import quote

from cursor_chat_mover.paths import normalize_path
from cursor_chat_mover.records import COMPOSER_DATA_KEY, ArrayShape


def composer(composer_id: str, *, created_at: int = 1_700_000_000_000, name: str | None = None) -> dict:
    record = {"composerId": composer_id, "createdAt": created_at, "unifiedMode": "agent"}
    if name is not None:
        record["name"] = name
    return record


def path_to_folder_uri(path: Path) -> str:
    """The `file:///...` form Cursor writes to `workspace.json`; Windows drives become `g%3A`."""
    normalized = Path(normalize_path(path))
    if sys.platform.startswith("win"):
        # * Example: G:\GitHub\project -> file:///g%3A/GitHub/project
        drive = normalized.drive
        if not drive or len(drive) < 2 or drive[1] != ":":
            raise ValueError(f"Expected a drive path, got: {normalized}")
        suffix = normalized.as_posix()[2:]
        if not suffix.startswith("/"):
            suffix = "/" + suffix
        return "file:///" + drive[0].lower() + "%3A" + quote(suffix, safe="/")

    posix_path = normalized.as_posix()
    if not posix_path.startswith("/"):
        raise ValueError(f"Expected an absolute POSIX path, got: {posix_path}")
    return "file://" + quote(posix_path, safe="/")


def create_store_db(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(path.as_posix())
    try:
        cur = con.cursor()
        cur.execute("CREATE TABLE IF NOT EXISTS ItemTable (key TEXT PRIMARY KEY, value BLOB)")
        cur.execute("CREATE TABLE IF NOT EXISTS cursorDiskKV (key TEXT PRIMARY KEY, value BLOB)")
        con.commit()
    finally:
        con.close()


def put_kv(db_path: Path, table: str, key: str, value) -> None:
    con = sqlite3.connect(db_path.as_posix())
    try:
        con.execute(f"INSERT OR REPLACE INTO {table}(key, value) VALUES (?, ?)", (key, value))
        con.commit()
    finally:
        con.close()


def get_kv(db_path: Path, table: str, key: str):
    con = sqlite3.connect(f"file:{db_path.as_posix()}?mode=ro", uri=True)
    try:
        row = con.execute(f"SELECT value FROM {table} WHERE key=?", (key,)).fetchone()
    finally:
        con.close()
    if not row:
        return None
    return row[0]


def get_json(db_path: Path, table: str, key: str):
    raw = get_kv(db_path, table, key)
    if raw is None:
        return None
    if isinstance(raw, (bytes, memoryview)):
        raw = bytes(raw).decode("utf-8")
    return json.loads(raw)


def kv_keys(db_path: Path, table: str) -> list[str]:
    con = sqlite3.connect(f"file:{db_path.as_posix()}?mode=ro", uri=True)
    try:
        return [row[0] for row in con.execute(f"SELECT key FROM {table} ORDER BY key")]
    finally:
        con.close()


class CursorUserDir:
    """A fake Cursor `User` dir plus workspace folders under one temp root."""

    def __init__(self, tmp_root: Path) -> None:
        self.tmp_root = tmp_root
        self.path = tmp_root / "Cursor" / "User"
        (self.path / "workspaceStorage").mkdir(parents=True)
        (self.path / "globalStorage").mkdir(parents=True)

    @property
    def global_db(self) -> Path:
        return self.path / "globalStorage" / "state.vscdb"

    def folder(self, name: str) -> Path:
        folder = self.tmp_root / "projects" / name
        folder.mkdir(parents=True, exist_ok=True)
        return folder

    def add_workspace(
        self,
        storage_id: str,
        folder: Path,
        *,
        records: list | None = None,
        shape: ArrayShape = ArrayShape.COMPOSER,
        container: dict | None = None,
        binary: bool = True,
    ) -> Path:
        """Creates `workspaceStorage/<storage_id>` for `folder` and returns its DB path."""
        storage_dir = self.path / "workspaceStorage" / storage_id
        storage_dir.mkdir(parents=True)
        (storage_dir / "workspace.json").write_text(
            json.dumps({"folder": path_to_folder_uri(folder)}),
            encoding="utf-8",
        )
        db_path = storage_dir / "state.vscdb"
        create_store_db(db_path)
        put_kv(db_path, "ItemTable", "workbench.sideBar.width", "300")
        if records is not None:
            self.write_records(db_path, records, shape=shape, container=container, binary=binary)
        return db_path

    def write_records(
        self,
        db_path: Path,
        records: list,
        *,
        shape: ArrayShape = ArrayShape.COMPOSER,
        container: dict | None = None,
        binary: bool = True,
    ) -> None:
        if shape.list_field is None:
            payload = records
        else:
            payload = dict(container or {})
            payload[shape.list_field] = records
        text = json.dumps(payload)
        put_kv(db_path, "ItemTable", shape.key, text.encode("utf-8") if binary else text)

    def records(self, db_path: Path, key: str = COMPOSER_DATA_KEY) -> list:
        payload = get_json(db_path, "ItemTable", key)
        if payload is None:
            return []
        if isinstance(payload, list):
            return payload
        return payload.get("allComposers", payload.get("tabs", []))

    def add_conversation(self, session_id: str, bubble_ids: list[str]) -> None:
        """Writes a header payload and one bubble per id into the global store."""
        if not self.global_db.exists():
            create_store_db(self.global_db)
        payload = {
            "composerId": session_id,
            "fullConversationHeadersOnly": [
                {"bubbleId": bid, "type": 1 if i % 2 == 0 else 2} for i, bid in enumerate(bubble_ids)
            ],
            "status": "completed",
        }
        put_kv(self.global_db, "cursorDiskKV", f"composerData:{session_id}", json.dumps(payload))
        for i, bid in enumerate(bubble_ids):
            bubble = {"bubbleId": bid, "type": 1 if i % 2 == 0 else 2, "text": f"message {i}"}
            put_kv(self.global_db, "cursorDiskKV", f"bubbleId:{session_id}:{bid}", json.dumps(bubble))
