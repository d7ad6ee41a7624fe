"""CLI for cursor-chat-mover."""

from __future__ import annotations

import argparse
import json
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from tqdm import tqdm

from cursor_chat_mover.console import configure_logging, dim, error, info, success, warn
from cursor_chat_mover.cursor_paths import resolve_cursor_user_dir
from cursor_chat_mover.errors import MigrationError
from cursor_chat_mover.identifiers import split_tokens
from cursor_chat_mover.listing import SessionSummary, list_sessions
from cursor_chat_mover.migrate import (
    MigrationMode,
    SessionMigrationResult,
    WorkspaceMigrationResult,
    migrate_one,
    migrate_workspace,
)
from cursor_chat_mover.paths import contract_home
from cursor_chat_mover.prompts import confirm_mutation


EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 130


def main(argv: list[str] | None = None) -> int:
    try:
        if argv is None:
            argv = sys.argv[1:]

        parser = _build_parser()
        args = parser.parse_args(argv)
        configure_logging(args.verbose)
        cursor_user_dir = resolve_cursor_user_dir(args.cursor_user_dir)

        try:
            if args.cmd == "list":
                return _cmd_list(
                    cursor_user_dir,
                    workspace=args.workspace,
                    limit=args.limit,
                    as_json=args.json,
                )
            if args.cmd == "migrate-session":
                return _cmd_migrate_session(cursor_user_dir, args)
            if args.cmd == "migrate":
                return _cmd_migrate_workspace(cursor_user_dir, args)
        except MigrationError as exc:
            if getattr(args, "json", False):
                _print_json({"success": False, "error": {"code": exc.code.value, "message": str(exc)}})
            else:
                error(str(exc))
            return EXIT_INVALID
        except ValueError as exc:
            error(str(exc))
            return EXIT_INVALID

        raise RuntimeError(f"Unhandled command: {args.cmd}")
    except KeyboardInterrupt:
        # * Stores are written one session at a time; an interrupt never leaves a half-written array.
        print(file=sys.stderr, flush=True)
        warn("Interrupted by user (Ctrl+C).")
        return EXIT_INTERRUPTED


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cursor-chat-mover",
        description="Move or copy Cursor chat sessions between workspaces.",
    )
    parser.add_argument(
        "--cursor-user-dir",
        type=Path,
        default=None,
        help="Override Cursor User directory (default: $CURSOR_USER_DIR or auto-detect).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug details to stderr.")

    sub = parser.add_subparsers(dest="cmd", required=True)

    list_cmd = sub.add_parser("list", help="List chat sessions, newest first, with their index.")
    list_cmd.add_argument("--workspace", help="Only show sessions owned by this workspace folder.")
    list_cmd.add_argument("--limit", type=int, default=None, help="Show at most N sessions.")
    list_cmd.add_argument("--json", action="store_true", help="Print machine-readable JSON.")

    session_cmd = sub.add_parser(
        "migrate-session",
        help="Move (or copy) sessions, by index or id, to another workspace.",
    )
    session_cmd.add_argument("sessions", help='Session index or id, or a comma separated list ("1,3,abc-...").')
    session_cmd.add_argument("destination", help="Destination workspace folder.")
    _add_migration_flags(session_cmd)

    workspace_cmd = sub.add_parser("migrate", help="Move (or copy) every session of one workspace to another.")
    workspace_cmd.add_argument("source", help="Source workspace folder.")
    workspace_cmd.add_argument("destination", help="Destination workspace folder.")
    _add_migration_flags(workspace_cmd)

    return parser


def _add_migration_flags(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("--copy", action="store_true", help="Copy instead of move (source keeps its sessions).")
    cmd.add_argument("--dry-run", action="store_true", help="Show what would happen without writing anything.")
    cmd.add_argument(
        "--force",
        action="store_true",
        help="Add sessions even if the destination workspace already has some.",
    )
    cmd.add_argument(
        "--backup",
        action="store_true",
        help="Snapshot every store DB before it is first written.",
    )
    cmd.add_argument("--json", action="store_true", help="Print machine-readable JSON.")
    cmd.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation.")


def _cmd_list(cursor_user_dir: Path, *, workspace: str | None, limit: int | None, as_json: bool) -> int:
    sessions = list_sessions(cursor_user_dir, workspace_path=workspace)
    if limit is not None:
        if limit < 0:
            raise ValueError("--limit must be >= 0.")
        sessions = sessions[:limit]

    if as_json:
        _print_json([s.to_dict() for s in sessions])
        return EXIT_OK

    if not sessions:
        warn("No chat sessions found.")
        return EXIT_OK
    for summary in sessions:
        print(_format_summary(summary))
    return EXIT_OK


def _cmd_migrate_session(cursor_user_dir: Path, args: argparse.Namespace) -> int:
    mode = MigrationMode.COPY if args.copy else MigrationMode.MOVE
    tokens = split_tokens(args.sessions)
    if not args.dry_run and not confirm_mutation(
        f"About to {mode.value} {len(tokens)} session(s) to {args.destination}.",
        assume_yes=args.yes,
    ):
        warn("Aborted by user.")
        return EXIT_PARTIAL

    with _progress(total=len(tokens), enabled=not args.json) as on_result:
        results = migrate_one(
            tokens,
            args.destination,
            mode=mode,
            dry_run=args.dry_run,
            force=args.force,
            cursor_user_dir=cursor_user_dir,
            backup=args.backup,
            progress=on_result,
        )

    if args.json:
        _print_json([r.to_dict() for r in results])
    else:
        for result in results:
            _print_result(result)
    return EXIT_OK if all(r.success for r in results) else EXIT_PARTIAL


def _cmd_migrate_workspace(cursor_user_dir: Path, args: argparse.Namespace) -> int:
    mode = MigrationMode.COPY if args.copy else MigrationMode.MOVE
    if not args.dry_run and not confirm_mutation(
        f"About to {mode.value} all sessions of {args.source} to {args.destination}.",
        assume_yes=args.yes,
    ):
        warn("Aborted by user.")
        return EXIT_PARTIAL

    with _progress(total=None, enabled=not args.json) as on_result:
        outcome = migrate_workspace(
            args.source,
            args.destination,
            mode=mode,
            dry_run=args.dry_run,
            force=args.force,
            cursor_user_dir=cursor_user_dir,
            backup=args.backup,
            progress=on_result,
        )

    if args.json:
        _print_json(outcome.to_dict())
    else:
        for result in outcome.results:
            _print_result(result)
        _print_workspace_summary(outcome)
    return EXIT_OK if outcome.success else EXIT_PARTIAL


@contextmanager
def _progress(*, total: int | None, enabled: bool) -> Iterator:
    # * tqdm writes to stderr by default.
    if not enabled or not sys.stderr.isatty():
        yield None
        return
    with tqdm(total=total, unit="session", desc="Migrating", leave=False) as pbar:
        def _on_result(result: SessionMigrationResult) -> None:
            pbar.set_postfix_str(result.session_id[:8], refresh=False)
            pbar.update(1)

        yield _on_result


def _format_summary(summary: SessionSummary) -> str:
    title = summary.title or "(untitled)"
    created = time.strftime("%Y-%m-%d %H:%M", time.localtime(summary.created_at / 1000)) if summary.created_at else "-"
    workspace = contract_home(summary.workspace_path) if summary.workspace_path else f"<{summary.workspace_id}>"
    return f"{summary.index:>4}  {created}  {title}\n      {dim(summary.session_id)}  {dim(workspace)}"


def _print_result(result: SessionMigrationResult) -> None:
    verb = "Moved" if result.mode is MigrationMode.MOVE else "Copied"
    if result.dry_run and result.success:
        info(f"[dry-run] would {result.mode.value} {result.session_id} -> {result.destination_workspace}")
        return
    if result.success:
        suffix = f" as {result.new_session_id}" if result.new_session_id else ""
        success(f"{verb} {result.session_id}{suffix} -> {result.destination_workspace}")
        return
    code = result.error_code.value if result.error_code else "MIGRATION_FAILED"
    error(f"[{code}] {result.session_id}: {result.error}")
    if "orphaned_record" in result.details:
        warn("The session is in neither workspace now. Its JSON follows; keep it to restore the session:")
        _print_json(result.details["orphaned_record"])


def _print_workspace_summary(outcome: WorkspaceMigrationResult) -> None:
    line = f"{outcome.success_count}/{outcome.total_sessions} session(s) migrated"
    if outcome.dry_run:
        line += " (dry run)"
    if outcome.success:
        success(line)
    else:
        warn(f"{line}, {outcome.failure_count} failed.")


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))
