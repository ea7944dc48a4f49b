import unittest

from sitemigrate.database.schema.ensure import ensure_schema
from sitemigrate.services.activity_log_store import ActivityLogStore
from sitemigrate.tests._util_tempdir import cleanup_dir, make_temp_dir


class TestActivityLogStoreUnit(unittest.TestCase):
    def test_log_and_read_newest_first(self):
        td = make_temp_dir(prefix="sitemigrate_activity")
        try:
            db_path = td / "state.db"
            ensure_schema(db_path)
            store = ActivityLogStore(db_path)

            store.log("migration_created", {"id": "m1", "size": 10})
            store.log("migration_downloaded", {"id": "m1"}, actor="u1")
            store.log("custom_action")

            entries = store.get_entries()
            self.assertEqual([e.action for e in entries], ["custom_action", "migration_downloaded", "migration_created"])
            self.assertEqual(entries[1].label, "Migration Backup Downloaded")
            self.assertEqual(entries[1].actor, "u1")
            self.assertEqual(entries[2].details, {"id": "m1", "size": 10})
            self.assertEqual(entries[0].label, "custom_action")
            self.assertEqual(entries[0].as_dict()["actor"], "system")
        finally:
            cleanup_dir(td)

    def test_rolling_window_trims_oldest(self):
        td = make_temp_dir(prefix="sitemigrate_activity")
        try:
            db_path = td / "state.db"
            ensure_schema(db_path)
            store = ActivityLogStore(db_path, max_entries=3)

            for i in range(5):
                store.log("migration_created", {"n": i})

            entries = store.get_entries()
            self.assertEqual([e.details["n"] for e in entries], [4, 3, 2])
        finally:
            cleanup_dir(td)

    def test_log_never_raises_without_schema(self):
        td = make_temp_dir(prefix="sitemigrate_activity")
        try:
            store = ActivityLogStore(td / "state.db")
            store.log("migration_created", {"id": "x"})
            ensure_schema(td / "state.db")
            self.assertEqual(store.get_entries(), [])
        finally:
            cleanup_dir(td)

    def test_ensure_schema_is_idempotent(self):
        td = make_temp_dir(prefix="sitemigrate_activity")
        try:
            ensure_schema(td / "state.db")
            ensure_schema(td / "state.db")
            store = ActivityLogStore(td / "state.db")
            store.log("migration_deleted")
            store.clear()
            self.assertEqual(store.get_entries(), [])
        finally:
            cleanup_dir(td)
