"""Cross-platform checks for store file locks.

This module is intentionally conservative: if we cannot prove a store file is
available, we treat it as locked and the session is not migrated.

Check before opening any sqlite connection to the same file in this process:
POSIX record locks belong to the process, and closing the checking descriptor
releases every lock the process holds on that file.
"""

from __future__ import annotations

import errno
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from cursor_chat_mover.errors import DatabaseLockedError, PermissionDeniedError


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LockedPath:
    """Represents a locked path detected by the lock check."""

    path: Path
    reason: str


def store_lock_targets(db_paths: Iterable[Path]) -> list[Path]:
    """Returns each database plus its `-wal` / `-shm` siblings."""
    # * SQLite can keep state in WAL/SHM files; treat them as part of the lock set.
    targets: list[Path] = []
    for db in db_paths:
        targets.append(db)
        targets.append(db.with_name(db.name + "-wal"))
        targets.append(db.with_name(db.name + "-shm"))
    return targets


def assert_paths_unlocked(paths: Iterable[Path], *, session_id: str | None = None) -> None:
    """Raises if any of the provided paths are locked/in use.

    Raises:
        DatabaseLockedError: If one or more paths are locked.
        PermissionDeniedError: If a path cannot be opened for writing.
    """
    locked: list[LockedPath] = []
    for path in paths:
        try:
            held = check_path_lock(path)
        except PermissionError:
            raise PermissionDeniedError(str(path), session_id=session_id) from None
        if held is not None:
            locked.append(held)
    if not locked:
        return

    details = "\n".join(f"- {lp.path}: {lp.reason}" for lp in locked)
    raise DatabaseLockedError(str(locked[0].path), detail=f"Locked paths:\n{details}", session_id=session_id)


def wait_for_unlocked(
    paths: Iterable[Path],
    *,
    attempts: int,
    delay_s: float = 0.25,
    session_id: str | None = None,
) -> None:
    """Retries `assert_paths_unlocked` a bounded number of times.

    Raises:
        DatabaseLockedError: If the paths are still locked after the last attempt.
    """
    targets = list(paths)
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            assert_paths_unlocked(targets, session_id=session_id)
            return
        except DatabaseLockedError:
            if attempt == attempts:
                raise
            logger.debug("Store locked (attempt %d/%d), retrying in %.2fs", attempt, attempts, delay_s)
            time.sleep(delay_s)


def check_path_lock(path: Path) -> LockedPath | None:
    """Returns lock info if a path is locked, else None.

    Notes:
        - If the path does not exist, it's treated as unlocked (nothing to lock).
        - On Windows we use CreateFile with shareMode=0 to detect any open handle.
        - On POSIX we use `fcntl.lockf` exclusive lock (non-blocking).
    """
    if not path.exists():
        return None

    if sys.platform.startswith("win"):
        return _check_windows_share_none(path)

    return _check_posix_lockf(path)


def _check_posix_lockf(path: Path) -> LockedPath | None:
    # * This uses advisory locks compatible with SQLite's fcntl locking model.
    import fcntl  # pylint: disable=import-outside-toplevel

    fd = os.open(path, os.O_RDWR)
    try:
        try:
            fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:  # noqa: PERF203 - we need errno
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                return LockedPath(path=path, reason=f"posix lockf denied (errno={exc.errno})")
            return LockedPath(path=path, reason=f"posix lockf error (errno={exc.errno})")
        return None
    finally:
        os.close(fd)


def _check_windows_share_none(path: Path) -> LockedPath | None:
    # * CreateFileW shareMode=0 fails if ANY handle is already open (sharing violation).
    import ctypes  # pylint: disable=import-outside-toplevel
    from ctypes import wintypes  # pylint: disable=import-outside-toplevel

    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)

    create_file_w = kernel32.CreateFileW
    create_file_w.argtypes = [
        wintypes.LPCWSTR,
        wintypes.DWORD,
        wintypes.DWORD,
        wintypes.LPVOID,
        wintypes.DWORD,
        wintypes.DWORD,
        wintypes.HANDLE,
    ]
    create_file_w.restype = wintypes.HANDLE

    close_handle = kernel32.CloseHandle
    close_handle.argtypes = [wintypes.HANDLE]
    close_handle.restype = wintypes.BOOL

    generic_read = 0x80000000
    share_none = 0x00000000
    open_existing = 3
    file_attribute_normal = 0x00000080
    invalid_handle_value = wintypes.HANDLE(-1).value

    handle = create_file_w(str(path), generic_read, share_none, None, open_existing, file_attribute_normal, None)
    if handle == invalid_handle_value:
        winerr = ctypes.get_last_error()
        # * 5 = ERROR_ACCESS_DENIED
        if winerr == 5:
            raise PermissionError(errno.EACCES, "Access denied", str(path))
        # * 32 = ERROR_SHARING_VIOLATION, 33 = ERROR_LOCK_VIOLATION
        if winerr in (32, 33):
            return LockedPath(path=path, reason=f"windows sharing/lock violation (winerr={winerr})")
        return LockedPath(path=path, reason=f"windows CreateFileW failed (winerr={winerr})")

    close_handle(handle)
    return None
