import sqlite3
import unittest
import zipfile
from dataclasses import replace
from unittest.mock import MagicMock

from sitemigrate.services.migration.archivers import ZipfileArchiver
from sitemigrate.services.migration.catalog import ArchiveCatalog
from sitemigrate.services.migration.checkpoint import SqliteCheckpointProvider
from sitemigrate.services.migration.export_service import MigrationExportService
from sitemigrate.services.migration.restore_service import MigrationRestoreService
from sitemigrate.tests._util_site import (
    SITE_URL,
    StepClock,
    count_rows,
    make_content_tree,
    make_environment,
    make_site_db,
)
from sitemigrate.tests._util_tempdir import cleanup_dir, make_temp_dir


class TestMigrationRestoreServiceUnit(unittest.TestCase):
    def setUp(self):
        self.td = make_temp_dir(prefix="sitemigrate_restore")
        self.migrations = self.td / "migrations"
        make_site_db(self.td / "old.db", posts=6, spam=0, revisions=0)
        make_content_tree(self.td / "old_content")

        exporter = MigrationExportService(
            migration_dir=self.migrations,
            content_root=self.td / "old_content",
            site_db_path=self.td / "old.db",
            environment=make_environment(),
            archiver=ZipfileArchiver(),
            use_external_dump=False,
        )
        record = exporter.run_export_to_completion()
        self.assertIsNone(record.error)
        self.source_id = record.id

        # The destination site: a different database and an almost empty content tree.
        make_site_db(self.td / "new.db", posts=1, spam=0, revisions=0)
        (self.td / "new_content").mkdir()

    def tearDown(self):
        cleanup_dir(self.td)

    def _service(self, **kwargs):
        kwargs.setdefault("archiver", ZipfileArchiver())
        return MigrationRestoreService(
            migration_dir=self.migrations,
            content_root=self.td / "new_content",
            site_db_path=self.td / "new.db",
            **kwargs,
        )

    def test_round_trip_restores_database_and_files(self):
        checkpoints = SqliteCheckpointProvider(self.td / "checkpoints", self.td / "new.db", site_url=SITE_URL)
        service = self._service(checkpoints=checkpoints)

        record = service.run_restore_to_completion(self.source_id)

        self.assertIsNone(record.error)
        self.assertTrue(record.completed)
        self.assertEqual(record.progress, 100)
        self.assertEqual(count_rows(self.td / "new.db", "wp_posts"), 6)
        self.assertEqual(
            (self.td / "new_content" / "index.php").read_text(encoding="utf-8"),
            (self.td / "old_content" / "index.php").read_text(encoding="utf-8"),
        )
        self.assertTrue((self.td / "new_content" / "uploads" / "2024" / "01" / "photo.jpg").exists())
        self.assertFalse((self.td / "new_content" / "cache").exists())
        self.assertEqual(record.db_statements_failed, 0)
        self.assertGreater(record.db_statements_ok, 0)

        # The checkpoint holds the pre-restore database.
        self.assertIsNotNone(record.checkpoint_id)
        ok, reason = checkpoints.restore_checkpoint(record.checkpoint_id)
        self.assertTrue(ok, reason)
        self.assertEqual(count_rows(self.td / "new.db", "wp_posts"), 1)

        # Working directory is gone; the source archive is untouched.
        self.assertFalse((self.migrations / record.id).exists())
        self.assertIsNotNone(service.catalog.get_archive_metadata(self.source_id))

    def test_sliced_restore_extracts_every_entry_once(self):
        service = self._service(clock=StepClock(1.0), slice_time_budget_s=0.5)
        record = service.init_restore(self.source_id)
        slices = 0
        while not record.completed and not record.error:
            record = service.process_restore_slice(record.id)
            slices += 1
            self.assertLess(slices, 500)

        self.assertIsNone(record.error)
        self.assertGreater(slices, 4)
        self.assertEqual(record.extracted_files, 6)
        self.assertEqual(record.rejected_entries, 0)
        self.assertEqual(record.extract_index, record.total_entries)

    def test_database_phase_reentry_does_not_replay_dump(self):
        service = self._service()
        record = service.init_restore(self.source_id)
        record = service.process_restore_slice(record.id)  # checkpoint
        record = service.process_restore_slice(record.id)  # database
        self.assertEqual(record.phase, "files")
        self.assertTrue(record.db_imported)
        imported_ok = record.db_statements_ok

        # A driver that lost the last save comes back to the database phase.
        stored = service.store.load(record.id)
        stored.phase = "database"
        service.store.save(record.id, stored)
        conn = sqlite3.connect(str(self.td / "new.db"))
        try:
            conn.execute("INSERT INTO wp_posts (post_title, post_content) VALUES ('after import', 'x')")
            conn.commit()
        finally:
            conn.close()

        record = service.process_restore_slice(record.id)

        self.assertIsNone(record.error)
        self.assertEqual(record.phase, "files")
        self.assertEqual(record.db_statements_ok, imported_ok)
        self.assertEqual(count_rows(self.td / "new.db", "wp_posts"), 7)
        self.assertEqual(count_rows(self.td / "new.db", "wp_posts", "post_title = 'after import'"), 1)

    def test_checkpoint_failure_does_not_block_restore(self):
        checkpoints = MagicMock()
        checkpoints.create_checkpoint.side_effect = RuntimeError("disk full")
        service = self._service(checkpoints=checkpoints)

        record = service.run_restore_to_completion(self.source_id)

        self.assertIsNone(record.error)
        self.assertIsNone(record.checkpoint_id)
        checkpoints.create_checkpoint.assert_called_once_with("migration_restore")

    def test_restore_options_skip_database(self):
        service = self._service()

        record = service.run_restore_to_completion(self.source_id, {"restore_database": False})

        self.assertIsNone(record.error)
        self.assertEqual(count_rows(self.td / "new.db", "wp_posts"), 1)
        self.assertTrue((self.td / "new_content" / "index.php").exists())

    def test_restore_options_skip_files(self):
        service = self._service()

        record = service.run_restore_to_completion(self.source_id, {"restore_files": "false"})

        self.assertIsNone(record.error)
        self.assertEqual(count_rows(self.td / "new.db", "wp_posts"), 6)
        self.assertEqual(list((self.td / "new_content").iterdir()), [])

    def test_unknown_source_and_missing_archiver(self):
        self.assertEqual(self._service().init_restore("nope").error, "Migration backup not found")
        self.assertEqual(self._service().init_restore("../x").error, "Migration backup not found")
        self.assertEqual(
            self._service(archiver=None).init_restore(self.source_id).error,
            "No ZIP archiver available on this server",
        )
        self.assertEqual(self._service().process_restore_slice("restore_nope").error, "Restore state not found")

    def test_archive_deleted_mid_restore_fails(self):
        service = self._service()
        record = service.init_restore(self.source_id)
        service.catalog.delete_archive(self.source_id)

        record = service.process_restore_slice(record.id)

        self.assertEqual(record.error, "Migration backup not found")
        self.assertEqual(service.store.load(record.id).error, "Migration backup not found")

    def test_hostile_and_protected_entries_are_rejected(self):
        adir = self.migrations / "upload_hostile"
        adir.mkdir(parents=True)
        container = adir / "migration.zip"
        with zipfile.ZipFile(container, "w") as zf:
            zf.writestr("content/", "")
            zf.writestr("content/../../escape.txt", "bad")
            zf.writestr("content/site-migrations/planted/state.json", "{}")
            zf.writestr("content/ok.txt", "ok")
        catalog = ArchiveCatalog(self.migrations, archiver=ZipfileArchiver())
        meta = catalog.get_archive_metadata(self.source_id)
        catalog.write_metadata("upload_hostile", replace(meta, id="upload_hostile"))
        service = self._service(protected_dirs=("site-migrations",))

        record = service.run_restore_to_completion("upload_hostile", {"restore_database": False})

        self.assertIsNone(record.error)
        self.assertEqual(record.extracted_files, 1)
        self.assertEqual(record.rejected_entries, 2)
        self.assertTrue((self.td / "new_content" / "ok.txt").exists())
        self.assertFalse((self.td / "escape.txt").exists())
        self.assertFalse((self.td / "new_content" / "site-migrations").exists())

    def test_broken_dump_fails_database_phase(self):
        adir = self.migrations / "upload_broken"
        adir.mkdir(parents=True)
        with zipfile.ZipFile(adir / "migration.zip", "w") as zf:
            zf.writestr("database.sql", "INSERT INTO nope VALUES (1);\nINSERT INTO nope VALUES (2);\n")
        catalog = ArchiveCatalog(self.migrations, archiver=ZipfileArchiver())
        meta = catalog.get_archive_metadata(self.source_id)
        catalog.write_metadata("upload_broken", replace(meta, id="upload_broken"))
        service = self._service()

        record = service.run_restore_to_completion("upload_broken")

        self.assertEqual(record.error, "Database import failed: 2 statements failed, 0 succeeded")
        self.assertEqual(record.phase, "database")
        self.assertFalse((self.migrations / record.id / "database.sql").exists())
        conn = sqlite3.connect(str(self.td / "new.db"))
        try:
            self.assertEqual(conn.execute("SELECT COUNT(*) FROM wp_posts").fetchone()[0], 1)
        finally:
            conn.close()
