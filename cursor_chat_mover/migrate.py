"""Move or copy chat sessions between Cursor workspace stores.

`migrate_session` is the primitive: it relocates (move) or duplicates (copy)
exactly one session. `migrate_sessions` runs it for many ids without stopping
at the first failure, and `migrate_workspace` feeds it every session owned by
one workspace. `migrate_one` is the id/index front end used by the CLI.

Error policy:
  - Lookup/validation errors (unknown session, unknown destination, same
    workspace, empty source, non-empty destination) are raised before any
    store is touched.
  - Errors while stores are being read for update or written are returned as
    failed `SessionMigrationResult`s so sibling sessions still migrate.

There is no transaction spanning two DB files. A move writes the source
first; if the destination write then fails, the session is in neither array
and the failed result carries the session JSON under
`details["orphaned_record"]`.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence

from cursor_chat_mover.backups import StoreBackups
from cursor_chat_mover.cursor_paths import global_storage_db, lock_retries_from_env, resolve_cursor_user_dir
from cursor_chat_mover.errors import (
    DestinationHasSessionsError,
    MigrationError,
    MigrationErrorCode,
    MigrationFailedError,
    NoSessionsFoundError,
    PermissionDeniedError,
    SameWorkspaceError,
    WorkspaceNotFoundError,
)
from cursor_chat_mover.identifiers import new_identifier, resolve_session_ids, split_tokens
from cursor_chat_mover.listing import iter_sessions_for_path, list_sessions
from cursor_chat_mover.locks import store_lock_targets, wait_for_unlocked
from cursor_chat_mover.paths import normalize_path, paths_equal
from cursor_chat_mover.records import (
    RecordArray,
    open_store,
    read_records,
    read_store_records,
    translate_sqlite_error,
    with_session,
    without_session,
    write_records,
)
from cursor_chat_mover.replicate import replicate_session_content, rewrite_session_references
from cursor_chat_mover.workspace_storage import (
    SessionLocation,
    WorkspaceStore,
    find_store_by_path,
    locate_session,
)


logger = logging.getLogger(__name__)

ProgressCallback = Callable[["SessionMigrationResult"], None]


class MigrationMode(str, Enum):
    MOVE = "move"
    COPY = "copy"


@dataclass(slots=True)
class SessionMigrationResult:
    """Outcome of migrating one session."""

    success: bool
    session_id: str
    source_workspace: str | None
    destination_workspace: str
    mode: MigrationMode
    dry_run: bool
    new_session_id: str | None = None
    error_code: MigrationErrorCode | None = None
    error: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = {
            "success": self.success,
            "sessionId": self.session_id,
            "sourceWorkspace": self.source_workspace,
            "destinationWorkspace": self.destination_workspace,
            "mode": self.mode.value,
            "dryRun": self.dry_run,
        }
        if self.new_session_id is not None:
            out["newSessionId"] = self.new_session_id
        if self.error_code is not None:
            out["error"] = {
                "code": self.error_code.value,
                "message": self.error,
                "sessionId": self.session_id,
                "details": self.details,
            }
        return out


@dataclass(slots=True)
class WorkspaceMigrationResult:
    """Aggregate outcome of migrating every session of a workspace."""

    success: bool
    source: str
    destination: str
    mode: MigrationMode
    total_sessions: int
    success_count: int
    failure_count: int
    results: list[SessionMigrationResult]
    dry_run: bool

    @classmethod
    def from_results(
        cls,
        *,
        source: str,
        destination: str,
        mode: MigrationMode,
        dry_run: bool,
        results: list[SessionMigrationResult],
    ) -> "WorkspaceMigrationResult":
        success_count = sum(1 for r in results if r.success)
        return cls(
            success=success_count == len(results),
            source=source,
            destination=destination,
            mode=mode,
            total_sessions=len(results),
            success_count=success_count,
            failure_count=len(results) - success_count,
            results=results,
            dry_run=dry_run,
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "source": self.source,
            "destination": self.destination,
            "mode": self.mode.value,
            "totalSessions": self.total_sessions,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "results": [r.to_dict() for r in self.results],
            "dryRun": self.dry_run,
        }


def migrate_session(
    session_id: str,
    destination: str | Path,
    *,
    mode: MigrationMode | str = MigrationMode.MOVE,
    dry_run: bool = False,
    cursor_user_dir: Path | None = None,
    backups: StoreBackups | None = None,
    lock_retries: int | None = None,
) -> SessionMigrationResult:
    """Moves or copies one session into the workspace store of `destination`.

    Raises:
        SessionNotFoundError: No workspace store holds `session_id`.
        SameWorkspaceError: The session already lives in the destination workspace.
        WorkspaceNotFoundError: No workspace store exists for `destination`.
    """
    user_dir = resolve_cursor_user_dir(cursor_user_dir)
    mode = MigrationMode(mode)
    dest_path = normalize_path(destination)

    source = locate_session(user_dir, session_id)
    source_workspace = source.store.workspace_path or str(source.store.storage_dir)

    if source.store.workspace_path is not None and paths_equal(source.store.workspace_path, dest_path):
        raise SameWorkspaceError(dest_path, session_id=session_id)
    try:
        dest_store = find_store_by_path(user_dir, dest_path)
    except WorkspaceNotFoundError as exc:
        exc.session_id = session_id
        raise
    if _same_file(source.store.db_path, dest_store.db_path):
        raise SameWorkspaceError(dest_path, session_id=session_id)

    def _result(**kwargs) -> SessionMigrationResult:
        return SessionMigrationResult(
            session_id=session_id,
            source_workspace=source_workspace,
            destination_workspace=dest_path,
            mode=mode,
            dry_run=dry_run,
            **kwargs,
        )

    if dry_run:
        logger.info("[dry-run] would %s %s: %s -> %s", mode.value, session_id, source_workspace, dest_path)
        return _result(success=True)

    attempts = lock_retries if lock_retries is not None else lock_retries_from_env()
    try:
        if mode is MigrationMode.MOVE:
            _move_session(source, dest_store, session_id, backups=backups, attempts=attempts)
            new_session_id = None
        else:
            new_session_id = _copy_session(
                source,
                dest_store,
                session_id,
                global_db=global_storage_db(user_dir),
                backups=backups,
                attempts=attempts,
            )
    except MigrationError as exc:
        logger.error("Failed to %s session %s to %s: %s", mode.value, session_id, dest_path, exc)
        return _result(success=False, error_code=exc.code, error=str(exc), details=exc.details)
    except PermissionError as exc:
        denied = PermissionDeniedError(exc.filename or str(source.store.db_path), session_id=session_id)
        logger.error("Failed to %s session %s to %s: %s", mode.value, session_id, dest_path, denied)
        return _result(success=False, error_code=denied.code, error=str(denied))

    logger.info("%s %s: %s -> %s", "Moved" if mode is MigrationMode.MOVE else "Copied", session_id, source_workspace, dest_path)
    return _result(success=True, new_session_id=new_session_id)


def migrate_sessions(
    session_ids: Sequence[str],
    destination: str | Path,
    *,
    mode: MigrationMode | str = MigrationMode.MOVE,
    dry_run: bool = False,
    cursor_user_dir: Path | None = None,
    backup: bool = False,
    progress: ProgressCallback | None = None,
    lock_retries: int | None = None,
) -> list[SessionMigrationResult]:
    """Migrates each session in order; one result per id, failures included."""
    user_dir = resolve_cursor_user_dir(cursor_user_dir)
    mode = MigrationMode(mode)
    backups = StoreBackups() if backup and not dry_run else None

    results: list[SessionMigrationResult] = []
    for session_id in session_ids:
        try:
            result = migrate_session(
                session_id,
                destination,
                mode=mode,
                dry_run=dry_run,
                cursor_user_dir=user_dir,
                backups=backups,
                lock_retries=lock_retries,
            )
        except MigrationError as exc:
            result = _failure(session_id, destination, mode=mode, dry_run=dry_run, exc=exc)
        except Exception as exc:  # noqa: BLE001 - one broken session must not stop the batch
            logger.exception("Unexpected error while migrating session %s", session_id)
            result = _failure(
                session_id,
                destination,
                mode=mode,
                dry_run=dry_run,
                exc=MigrationFailedError(f"Unexpected error: {exc}", session_id=session_id),
            )
        results.append(result)
        if progress is not None:
            progress(result)
    return results


def migrate_one(
    sessions: str | int | Iterable[str | int],
    destination: str | Path,
    *,
    mode: MigrationMode | str = MigrationMode.MOVE,
    dry_run: bool = False,
    force: bool = False,
    cursor_user_dir: Path | None = None,
    backup: bool = False,
    progress: ProgressCallback | None = None,
) -> list[SessionMigrationResult]:
    """Migrates sessions given by id or 1-based listing index.

    `sessions` accepts `"3"`, `3`, `"1,3,abc-..."` or a list of those.
    `force` only matters for whole-workspace migration; it is accepted here so
    both entry points take the same options.

    Raises:
        ValueError: If no session token is given.
        SessionNotFoundError: If a numeric index is out of range.
        WorkspaceNotFoundError: If `destination` has no workspace store.
    """
    user_dir = resolve_cursor_user_dir(cursor_user_dir)
    tokens = split_tokens(sessions)
    if not tokens:
        raise ValueError("No session id or index given.")

    listing = list_sessions(user_dir) if any(t.isascii() and t.isdigit() for t in tokens) else []
    session_ids = resolve_session_ids(tokens, listing)
    find_store_by_path(user_dir, destination)

    return migrate_sessions(
        session_ids,
        destination,
        mode=mode,
        dry_run=dry_run,
        cursor_user_dir=user_dir,
        backup=backup,
        progress=progress,
    )


def migrate_workspace(
    source: str | Path,
    destination: str | Path,
    *,
    mode: MigrationMode | str = MigrationMode.MOVE,
    dry_run: bool = False,
    force: bool = False,
    cursor_user_dir: Path | None = None,
    backup: bool = False,
    progress: ProgressCallback | None = None,
) -> WorkspaceMigrationResult:
    """Migrates every session owned by the `source` workspace (exact path match).

    Raises:
        SameWorkspaceError: Source and destination are the same path.
        WorkspaceNotFoundError: No workspace store exists for `destination`.
        NoSessionsFoundError: The source workspace owns no sessions.
        DestinationHasSessionsError: Destination owns sessions and `force` is False.
    """
    user_dir = resolve_cursor_user_dir(cursor_user_dir)
    mode = MigrationMode(mode)
    src_path = normalize_path(source)
    dst_path = normalize_path(destination)

    if paths_equal(src_path, dst_path):
        raise SameWorkspaceError(src_path)

    dest_store = find_store_by_path(user_dir, dst_path)

    session_ids = list(iter_sessions_for_path(user_dir, src_path))
    if not session_ids:
        raise NoSessionsFoundError(src_path)

    # * Checked once, before any session moves: additive merge only with force.
    if not force:
        existing = read_store_records(dest_store.db_path)
        if existing.records:
            raise DestinationHasSessionsError(dst_path, len(existing.records))

    results = migrate_sessions(
        session_ids,
        dst_path,
        mode=mode,
        dry_run=dry_run,
        cursor_user_dir=user_dir,
        backup=backup,
        progress=progress,
    )
    aggregate = WorkspaceMigrationResult.from_results(
        source=src_path,
        destination=dst_path,
        mode=mode,
        dry_run=dry_run,
        results=results,
    )
    logger.info(
        "Workspace migration %s -> %s: %d/%d succeeded",
        src_path,
        dst_path,
        aggregate.success_count,
        aggregate.total_sessions,
    )
    return aggregate


def _move_session(
    source: SessionLocation,
    dest_store: WorkspaceStore,
    session_id: str,
    *,
    backups: StoreBackups | None,
    attempts: int,
) -> None:
    src_db = source.store.db_path
    dst_db = dest_store.db_path

    wait_for_unlocked(store_lock_targets([src_db, dst_db]), attempts=attempts, session_id=session_id)
    if backups is not None:
        backups.ensure(src_db)
        backups.ensure(dst_db)

    src_con = open_store(src_db, readonly=False)
    try:
        dst_con = open_store(dst_db, readonly=False)
        try:
            with _sqlite_errors(src_db, session_id):
                src_array = read_records(src_con, db_path=src_db)
            updated_src = without_session(src_array, session_id)
            if updated_src is None:
                raise MigrationFailedError(
                    f"Session {session_id} disappeared from {src_db} between lookup and update.",
                    session_id=session_id,
                    path=str(src_db),
                )
            record = src_array.records[src_array.index_of(session_id)]

            with _sqlite_errors(dst_db, session_id):
                dst_array = read_records(dst_con, db_path=dst_db)
            dst_array = _prepare_destination(dst_array, src_array, session_id, dst_db, reject_existing=True)

            with _sqlite_errors(src_db, session_id):
                write_records(src_con, updated_src)

            try:
                with _sqlite_errors(dst_db, session_id):
                    write_records(dst_con, with_session(dst_array, record))
            except MigrationError as exc:
                logger.error(
                    "Session %s was removed from %s but could not be written to %s; "
                    "its JSON is kept in the failed result.",
                    session_id,
                    src_db,
                    dst_db,
                )
                raise MigrationFailedError(
                    f"Session {session_id} was removed from the source but writing the destination failed: {exc}",
                    session_id=session_id,
                    path=str(dst_db),
                    details={"orphaned_record": record, "cause": exc.code.value},
                ) from exc
        finally:
            dst_con.close()
    finally:
        src_con.close()


def _copy_session(
    source: SessionLocation,
    dest_store: WorkspaceStore,
    session_id: str,
    *,
    global_db: Path,
    backups: StoreBackups | None,
    attempts: int,
) -> str:
    src_db = source.store.db_path
    dst_db = dest_store.db_path

    # * The source is only read in copy mode; lock-check what gets written.
    wait_for_unlocked(store_lock_targets([dst_db, global_db]), attempts=attempts, session_id=session_id)
    if backups is not None:
        backups.ensure(dst_db)
        if global_db.exists():
            backups.ensure(global_db)

    src_array = read_store_records(src_db)
    idx = src_array.index_of(session_id)
    if idx is None:
        raise MigrationFailedError(
            f"Session {session_id} disappeared from {src_db} between lookup and copy.",
            session_id=session_id,
            path=str(src_db),
        )
    record = src_array.records[idx]

    dst_con = open_store(dst_db, readonly=False)
    try:
        with _sqlite_errors(dst_db, session_id):
            dst_array = read_records(dst_con, db_path=dst_db)
        dst_array = _prepare_destination(dst_array, src_array, session_id, dst_db, reject_existing=False)

        new_session_id = new_identifier()
        replication = replicate_session_content(global_db, session_id, new_session_id)
        copied = rewrite_session_references(
            record,
            new_session_id,
            replication.bubble_map,
            id_field=src_array.shape.id_field,
        )

        try:
            with _sqlite_errors(dst_db, session_id):
                write_records(dst_con, with_session(dst_array, copied))
        except MigrationError as exc:
            raise MigrationFailedError(
                f"Copied message content for {session_id} as {new_session_id} "
                f"but writing the destination failed: {exc}",
                session_id=session_id,
                path=str(dst_db),
                details={"new_session_id": new_session_id, "cause": exc.code.value},
            ) from exc
    finally:
        dst_con.close()
    return new_session_id


def _prepare_destination(
    dst_array: RecordArray,
    src_array: RecordArray,
    session_id: str,
    dst_db: Path,
    *,
    reject_existing: bool,
) -> RecordArray:
    """Validates the destination array before anything is written.

    `reject_existing` is set for moves; a copy is inserted under a fresh id, so
    the source id already being present in the destination is no conflict.
    """
    if not dst_array.existed:
        # * Empty destination: keep the layout the session came from.
        return src_array.empty_like()
    if dst_array.shape.id_field != src_array.shape.id_field:
        raise MigrationFailedError(
            f"Destination {dst_db} stores chats as {dst_array.shape.name}, "
            f"source uses {src_array.shape.name}; refusing to mix layouts.",
            session_id=session_id,
            path=str(dst_db),
        )
    if reject_existing and dst_array.index_of(session_id) is not None:
        raise MigrationFailedError(
            f"Session {session_id} already exists in {dst_db}.",
            session_id=session_id,
            path=str(dst_db),
        )
    return dst_array


@contextmanager
def _sqlite_errors(db_path: Path, session_id: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise translate_sqlite_error(exc, db_path, session_id=session_id) from exc


def _same_file(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a == b


def _failure(
    session_id: str,
    destination: str | Path,
    *,
    mode: MigrationMode,
    dry_run: bool,
    exc: MigrationError,
) -> SessionMigrationResult:
    try:
        dest_path = normalize_path(destination)
    except ValueError:
        dest_path = str(destination)
    return SessionMigrationResult(
        success=False,
        session_id=session_id,
        source_workspace=None,
        destination_workspace=dest_path,
        mode=mode,
        dry_run=dry_run,
        error_code=exc.code,
        error=str(exc),
        details=exc.details,
    )
