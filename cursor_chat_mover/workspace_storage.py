"""Workspace storage discovery and session location."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from cursor_chat_mover.cursor_paths import workspace_storage_root
from cursor_chat_mover.errors import MigrationError, SessionNotFoundError, WorkspaceNotFoundError
from cursor_chat_mover.paths import folder_uri_to_path, normalize_path, paths_equal
from cursor_chat_mover.records import ArrayShape, read_store_records


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WorkspaceStorageEntry:
    """Represents one `workspaceStorage/<id>` directory."""

    workspace_id: str
    storage_dir: Path
    meta_path: Path | None
    folder_uri: str | None
    workspace_config_uri: str | None


@dataclass(frozen=True, slots=True)
class WorkspaceStore:
    """A workspace store: its DB file and the workspace path it belongs to."""

    workspace_id: str
    storage_dir: Path
    db_path: Path
    workspace_path: str | None


@dataclass(frozen=True, slots=True)
class SessionLocation:
    """Where a session currently lives."""

    store: WorkspaceStore
    index: int
    record: dict
    shape: ArrayShape


def iter_workspace_storage_entries(cursor_user_dir: Path) -> Iterator[WorkspaceStorageEntry]:
    """Iterates `workspaceStorage/*` entries and parses their `workspace.json`."""
    root = workspace_storage_root(cursor_user_dir)
    if not root.exists():
        return

    for child in sorted(root.iterdir(), key=lambda p: p.name):
        if not child.is_dir():
            continue
        workspace_id = child.name
        meta = child / "workspace.json"
        if not meta.exists():
            yield WorkspaceStorageEntry(
                workspace_id=workspace_id,
                storage_dir=child,
                meta_path=None,
                folder_uri=None,
                workspace_config_uri=None,
            )
            continue

        folder_uri = None
        workspace_uri = None
        try:
            payload = json.loads(meta.read_text(encoding="utf-8"))
            if isinstance(payload, dict):
                folder_uri = payload.get("folder")
                workspace_uri = payload.get("workspace")
        except (OSError, json.JSONDecodeError):
            # ! Malformed metadata should not crash discovery.
            logger.debug("Ignoring unreadable %s", meta)

        yield WorkspaceStorageEntry(
            workspace_id=workspace_id,
            storage_dir=child,
            meta_path=meta,
            folder_uri=folder_uri if isinstance(folder_uri, str) else None,
            workspace_config_uri=workspace_uri if isinstance(workspace_uri, str) else None,
        )


def entry_workspace_path(entry: WorkspaceStorageEntry) -> str | None:
    """Returns the normalized folder (or `.code-workspace`) path of an entry."""
    uri = entry.folder_uri or entry.workspace_config_uri
    if not uri:
        return None
    try:
        return normalize_path(folder_uri_to_path(uri))
    except ValueError:
        # * Remote workspaces (vscode-remote://...) have no local path.
        return None


def iter_workspace_stores(cursor_user_dir: Path) -> Iterator[WorkspaceStore]:
    """Yields every workspaceStorage entry that owns a `state.vscdb`."""
    for entry in iter_workspace_storage_entries(cursor_user_dir):
        db_path = entry.storage_dir / "state.vscdb"
        if not db_path.is_file():
            continue
        yield WorkspaceStore(
            workspace_id=entry.workspace_id,
            storage_dir=entry.storage_dir,
            db_path=db_path,
            workspace_path=entry_workspace_path(entry),
        )


def find_stores_by_path(cursor_user_dir: Path, path: str | Path) -> list[WorkspaceStore]:
    """Returns all stores associated with exactly `path` (after normalization)."""
    target = normalize_path(path)
    return [
        store
        for store in iter_workspace_stores(cursor_user_dir)
        if store.workspace_path is not None and paths_equal(store.workspace_path, target)
    ]


def find_store_by_path(cursor_user_dir: Path, path: str | Path) -> WorkspaceStore:
    """Returns the store Cursor uses for `path`.

    Cursor can leave several workspaceStorage entries for one folder (e.g. after
    the folder was moved back and forth). The entry with the most recently
    modified DB is the one Cursor currently opens.

    Raises:
        WorkspaceNotFoundError: If no store is associated with the path.
    """
    matches = find_stores_by_path(cursor_user_dir, path)
    if not matches:
        raise WorkspaceNotFoundError(normalize_path(path))
    if len(matches) > 1:
        logger.debug(
            "Multiple workspaceStorage entries for %s: %s",
            path,
            ", ".join(m.workspace_id for m in matches),
        )
    return max(matches, key=_db_mtime)


def locate_session(cursor_user_dir: Path, session_id: str) -> SessionLocation:
    """Finds the store that currently owns `session_id`.

    Raises:
        SessionNotFoundError: If no workspace store holds the session.
    """
    skipped: list[Path] = []
    for store in iter_workspace_stores(cursor_user_dir):
        try:
            array = read_store_records(store.db_path)
        except MigrationError as exc:
            logger.debug("Skipping unreadable store %s: %s", store.db_path, exc)
            skipped.append(store.db_path)
            continue
        idx = array.index_of(session_id)
        if idx is None:
            continue
        return SessionLocation(store=store, index=idx, record=array.records[idx], shape=array.shape)

    if skipped:
        logger.warning(
            "Session %s not found; %d store(s) could not be read: %s",
            session_id,
            len(skipped),
            ", ".join(str(p) for p in skipped),
        )
    raise SessionNotFoundError(session_id)


def _db_mtime(store: WorkspaceStore) -> float:
    mtimes = []
    for suffix in ("", "-wal"):
        try:
            mtimes.append(store.db_path.with_name(store.db_path.name + suffix).stat().st_mtime)
        except OSError:
            continue
    return max(mtimes, default=0.0)
