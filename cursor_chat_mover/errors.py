"""Error taxonomy for session migration.

Validation errors (session/workspace lookup, same location, empty source,
non-empty destination) are raised before any store is mutated and are safe to
retry after fixing the input. Mutation errors are normally reported as failed
results instead of being raised, see `cursor_chat_mover.migrate`.
"""

from __future__ import annotations

from enum import Enum


class MigrationErrorCode(str, Enum):
    """Stable error codes for programmatic handling."""

    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    DESTINATION_NOT_FOUND = "DESTINATION_NOT_FOUND"
    SAME_LOCATION = "SAME_LOCATION"
    DATABASE_LOCKED = "DATABASE_LOCKED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NO_RECORDS_FOUND = "NO_RECORDS_FOUND"
    DESTINATION_NOT_EMPTY = "DESTINATION_NOT_EMPTY"
    MIGRATION_FAILED = "MIGRATION_FAILED"


class MigrationError(RuntimeError):
    """Base class for all migration failures."""

    code: MigrationErrorCode = MigrationErrorCode.MIGRATION_FAILED

    def __init__(
        self,
        message: str,
        *,
        session_id: str | None = None,
        path: str | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.path = path
        self.details = dict(details or {})


class SessionNotFoundError(MigrationError):
    """Raised when a session index or id cannot be resolved to a stored session."""

    code = MigrationErrorCode.RECORD_NOT_FOUND

    def __init__(self, identifier: str | int) -> None:
        super().__init__(
            f"Session not found: {identifier}. Run the `list` command to see available sessions.",
            session_id=str(identifier),
        )
        self.identifier = identifier


class WorkspaceNotFoundError(MigrationError):
    """Raised when no workspaceStorage entry is associated with a path."""

    code = MigrationErrorCode.DESTINATION_NOT_FOUND

    def __init__(self, path: str) -> None:
        super().__init__(
            f"No workspace found for path: {path}. Open the project in Cursor once to create it.",
            path=path,
        )


class SameWorkspaceError(MigrationError):
    """Raised when source and destination resolve to the same workspace."""

    code = MigrationErrorCode.SAME_LOCATION

    def __init__(self, path: str, *, session_id: str | None = None) -> None:
        super().__init__(f"Source and destination are the same: {path}", session_id=session_id, path=path)


class DatabaseLockedError(MigrationError):
    """Raised when a store file is held open by Cursor or another process."""

    code = MigrationErrorCode.DATABASE_LOCKED

    def __init__(self, path: str, *, detail: str | None = None, session_id: str | None = None) -> None:
        message = f"Database is locked: {path}. Close Cursor (and any other app using it) and retry."
        if detail:
            message += "\n" + detail
        super().__init__(message, session_id=session_id, path=path)


class PermissionDeniedError(MigrationError):
    """Raised when a store file cannot be opened for writing."""

    code = MigrationErrorCode.PERMISSION_DENIED

    def __init__(self, path: str, *, session_id: str | None = None) -> None:
        super().__init__(f"Permission denied: {path}", session_id=session_id, path=path)


class NoSessionsFoundError(MigrationError):
    """Raised when the source workspace owns no sessions."""

    code = MigrationErrorCode.NO_RECORDS_FOUND

    def __init__(self, path: str) -> None:
        super().__init__(
            f"No sessions found for workspace: {path}. "
            f'Run `list --workspace "{path}"` to verify.',
            path=path,
        )


class DestinationHasSessionsError(MigrationError):
    """Raised when the destination already owns sessions and force is not set."""

    code = MigrationErrorCode.DESTINATION_NOT_EMPTY

    def __init__(self, path: str, session_count: int) -> None:
        super().__init__(
            f"Destination already has {session_count} session(s): {path}. "
            "Use --force to add sessions alongside the existing ones.",
            path=path,
        )
        self.session_count = session_count


class MigrationFailedError(MigrationError):
    """Raised for failures while a store is being read or written."""

    code = MigrationErrorCode.MIGRATION_FAILED
