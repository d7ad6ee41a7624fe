"""Numbered session listing across all workspace stores.

The 1-based indexes shown by `list` are what users pass to `migrate-session`,
so the ordering here (newest first) is part of the CLI contract.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from cursor_chat_mover.errors import MigrationError
from cursor_chat_mover.paths import paths_equal
from cursor_chat_mover.records import ArrayShape, read_store_records, session_id_of
from cursor_chat_mover.workspace_storage import WorkspaceStore, find_stores_by_path, iter_workspace_stores


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionSummary:
    index: int
    session_id: str
    title: str | None
    created_at: int
    workspace_path: str | None
    workspace_id: str
    db_path: Path

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "sessionId": self.session_id,
            "title": self.title,
            "createdAt": self.created_at,
            "workspacePath": self.workspace_path,
            "workspaceId": self.workspace_id,
        }


def list_sessions(cursor_user_dir: Path, *, workspace_path: str | None = None) -> list[SessionSummary]:
    """Lists every session, newest first, with indexes assigned after sorting.

    Indexes always refer to the full listing; `workspace_path` only filters the
    returned items so that an index stays valid with or without the filter.
    """
    rows: list[tuple[int, str, str | None, WorkspaceStore]] = []
    for store in iter_workspace_stores(cursor_user_dir):
        try:
            array = read_store_records(store.db_path)
        except MigrationError as exc:
            logger.debug("Skipping unreadable store %s: %s", store.db_path, exc)
            continue
        for record in array.records:
            sid = session_id_of(record, array.shape)
            if sid is None:
                continue
            rows.append((_created_at(record), sid, _title(record, array.shape), store))

    rows.sort(key=lambda row: row[0], reverse=True)

    summaries = [
        SessionSummary(
            index=i,
            session_id=sid,
            title=title,
            created_at=created,
            workspace_path=store.workspace_path,
            workspace_id=store.workspace_id,
            db_path=store.db_path,
        )
        for i, (created, sid, title, store) in enumerate(rows, start=1)
    ]
    if workspace_path is None:
        return summaries
    return [s for s in summaries if s.workspace_path is not None and paths_equal(s.workspace_path, workspace_path)]


def iter_sessions_for_path(cursor_user_dir: Path, workspace_path: str) -> Iterator[str]:
    """Yields the ids of all sessions owned by stores of exactly `workspace_path`.

    Ids come in store array order, stores in discovery order.
    """
    for store in find_stores_by_path(cursor_user_dir, workspace_path):
        array = read_store_records(store.db_path)
        yield from array.session_ids()


def _created_at(record: dict) -> int:
    for name in ("createdAt", "lastUpdatedAt", "lastSendTime"):
        value = record.get(name)
        if isinstance(value, (int, float)):
            return int(value)
    return 0


def _title(record: dict, shape: ArrayShape) -> str | None:
    names = ("name", "title") if shape.id_field == "composerId" else ("chatTitle", "title", "name")
    for name in names:
        value = record.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
