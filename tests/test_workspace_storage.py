"""Unit tests for `workspaceStorage` discovery and session location."""

from __future__ import annotations

import json
import os
import tempfile
import time
import unittest
from pathlib import Path

from cursor_chat_mover.errors import MigrationErrorCode, SessionNotFoundError, WorkspaceNotFoundError
from cursor_chat_mover.listing import iter_sessions_for_path, list_sessions
from cursor_chat_mover.paths import normalize_path
from cursor_chat_mover.records import ArrayShape
from cursor_chat_mover.workspace_storage import (
    find_store_by_path,
    iter_workspace_storage_entries,
    iter_workspace_stores,
    locate_session,
)
from cursor_fixtures import CursorUserDir, composer, path_to_folder_uri, put_kv


class WorkspaceStorageTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.user = CursorUserDir(Path(self._tmp.name).resolve())

    def test_iter_workspace_storage_entries_parses_workspace_json(self) -> None:
        folder = self.user.folder("workspace")
        root = self.user.path / "workspaceStorage"

        good = root / "aaa"
        good.mkdir()
        (good / "workspace.json").write_text(json.dumps({"folder": path_to_folder_uri(folder)}), encoding="utf-8")

        bad_json = root / "bbb"
        bad_json.mkdir()
        (bad_json / "workspace.json").write_text("{bad json", encoding="utf-8")

        no_meta = root / "ccc"
        no_meta.mkdir()

        entries = {e.workspace_id: e for e in iter_workspace_storage_entries(self.user.path)}
        self.assertEqual(set(entries.keys()), {"aaa", "bbb", "ccc"})
        self.assertEqual(entries["aaa"].folder_uri, path_to_folder_uri(folder))
        self.assertIsNone(entries["bbb"].folder_uri)
        self.assertIsNone(entries["ccc"].meta_path)

    def test_entries_without_db_are_not_stores(self) -> None:
        folder = self.user.folder("workspace")
        self.user.add_workspace("with-db", folder)
        (self.user.path / "workspaceStorage" / "no-db").mkdir()

        self.assertEqual([s.workspace_id for s in iter_workspace_stores(self.user.path)], ["with-db"])

    def test_find_store_by_path_matches_normalized_path(self) -> None:
        folder = self.user.folder("workspace")
        db = self.user.add_workspace("aaa", folder)

        store = find_store_by_path(self.user.path, str(folder) + os.sep)
        self.assertEqual(store.db_path, db)
        self.assertEqual(store.workspace_path, normalize_path(folder))

    def test_find_store_by_path_raises_destination_not_found(self) -> None:
        self.user.add_workspace("aaa", self.user.folder("workspace"))
        with self.assertRaises(WorkspaceNotFoundError) as ctx:
            find_store_by_path(self.user.path, self.user.folder("elsewhere"))
        self.assertEqual(ctx.exception.code, MigrationErrorCode.DESTINATION_NOT_FOUND)

    def test_find_store_by_path_does_not_match_parent_or_child(self) -> None:
        parent = self.user.folder("workspace")
        child = self.user.folder("workspace/sub")
        self.user.add_workspace("child", child)
        with self.assertRaises(WorkspaceNotFoundError):
            find_store_by_path(self.user.path, parent)

    def test_duplicate_stores_pick_most_recently_modified_db(self) -> None:
        folder = self.user.folder("workspace")
        old_db = self.user.add_workspace("aaa", folder)
        new_db = self.user.add_workspace("bbb", folder)
        now = time.time()
        os.utime(old_db, (now, now))
        os.utime(new_db, (now - 3600, now - 3600))

        self.assertEqual(find_store_by_path(self.user.path, folder).db_path, old_db)

    def test_locate_session_finds_owning_store(self) -> None:
        a = self.user.folder("a")
        b = self.user.folder("b")
        self.user.add_workspace("ws-a", a, records=[composer("s1")])
        db_b = self.user.add_workspace("ws-b", b, records=[composer("s2"), composer("s3")])

        location = locate_session(self.user.path, "s3")
        self.assertEqual(location.store.db_path, db_b)
        self.assertEqual(location.index, 1)
        self.assertEqual(location.shape, ArrayShape.COMPOSER)
        self.assertEqual(location.record["composerId"], "s3")

    def test_locate_session_skips_unreadable_store(self) -> None:
        broken = self.user.add_workspace("ws-broken", self.user.folder("broken"))
        put_kv(broken, "ItemTable", "composer.composerData", b"{broken")
        self.user.add_workspace("ws-ok", self.user.folder("ok"), records=[composer("s1")])

        self.assertEqual(locate_session(self.user.path, "s1").store.workspace_id, "ws-ok")
        with self.assertRaises(SessionNotFoundError) as ctx:
            locate_session(self.user.path, "nope")
        self.assertEqual(ctx.exception.code, MigrationErrorCode.RECORD_NOT_FOUND)


class ListingTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.user = CursorUserDir(Path(self._tmp.name).resolve())

    def test_list_sessions_is_newest_first_with_stable_indexes(self) -> None:
        a = self.user.folder("a")
        b = self.user.folder("b")
        self.user.add_workspace(
            "ws-a",
            a,
            records=[composer("old", created_at=1_000, name="Old"), composer("new", created_at=3_000)],
        )
        self.user.add_workspace("ws-b", b, records=[composer("mid", created_at=2_000, name="  Mid  ")])

        listing = list_sessions(self.user.path)
        self.assertEqual([(s.index, s.session_id) for s in listing], [(1, "new"), (2, "mid"), (3, "old")])
        self.assertEqual(listing[1].title, "Mid")
        self.assertIsNone(listing[0].title)

        filtered = list_sessions(self.user.path, workspace_path=str(a))
        self.assertEqual([(s.index, s.session_id) for s in filtered], [(1, "new"), (3, "old")])

    def test_iter_sessions_for_path_uses_array_order(self) -> None:
        a = self.user.folder("a")
        self.user.add_workspace("ws-a", a, records=[composer("x", created_at=1), composer("y", created_at=9)])
        self.assertEqual(list(iter_sessions_for_path(self.user.path, str(a))), ["x", "y"])

    def test_legacy_tabs_are_listed(self) -> None:
        a = self.user.folder("a")
        self.user.add_workspace(
            "ws-a",
            a,
            records=[{"tabId": "t1", "chatTitle": "Legacy chat", "lastSendTime": 5}],
            shape=ArrayShape.AICHAT_TABS,
        )
        listing = list_sessions(self.user.path)
        self.assertEqual(listing[0].session_id, "t1")
        self.assertEqual(listing[0].title, "Legacy chat")
        self.assertEqual(listing[0].created_at, 5)


if __name__ == "__main__":
    unittest.main()
