"""Pre-migration snapshots of store DBs using the sqlite backup API."""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path

from cursor_chat_mover.errors import MigrationFailedError
from cursor_chat_mover.records import translate_sqlite_error


logger = logging.getLogger(__name__)


def backup_store(db_path: Path, *, label: str = "premigrate") -> Path:
    """Writes a consistent copy of `db_path` next to it and returns its path.

    Raises:
        MigrationFailedError: If the copy fails `PRAGMA integrity_check`.
    """
    ts = time.strftime("%Y%m%d-%H%M%S")
    backup_db = db_path.with_name(f"{db_path.name}.{label}-{ts}")
    counter = 1
    while backup_db.exists():
        counter += 1
        backup_db = db_path.with_name(f"{db_path.name}.{label}-{ts}-{counter}")

    try:
        src_con = sqlite3.connect(f"file:{db_path.as_posix()}?mode=ro", uri=True)
        try:
            dst_con = sqlite3.connect(backup_db.as_posix())
            try:
                src_con.backup(dst_con)
                check = dst_con.execute("PRAGMA integrity_check").fetchone()
            finally:
                dst_con.close()
        finally:
            src_con.close()
    except sqlite3.Error as exc:
        raise translate_sqlite_error(exc, db_path) from exc

    if not check or check[0] != "ok":
        raise MigrationFailedError(
            f"SQLite integrity_check failed for backup of {db_path}: {check[0] if check else 'unknown'}",
            path=str(db_path),
        )
    logger.info("Backup of %s written to %s", db_path, backup_db)
    return backup_db


class StoreBackups:
    """Takes at most one backup per store DB for the lifetime of one request."""

    def __init__(self, label: str = "premigrate") -> None:
        self.label = label
        self.paths: dict[Path, Path] = {}

    def ensure(self, db_path: Path) -> Path:
        key = db_path.resolve()
        existing = self.paths.get(key)
        if existing is not None:
            return existing
        backup = backup_store(db_path, label=self.label)
        self.paths[key] = backup
        return backup
