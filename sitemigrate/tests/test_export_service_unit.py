import unittest
import zipfile

from sitemigrate.services.migration.archivers import ZipfileArchiver
from sitemigrate.services.migration.catalog import ARCHIVE_FILE, METADATA_FILE
from sitemigrate.services.migration.export_service import MigrationExportService
from sitemigrate.services.migration.export_steps.context import SCRATCH_FILES
from sitemigrate.services.migration.store import STATE_FILE
from sitemigrate.tests._util_site import StepClock, make_content_tree, make_environment, make_site_db
from sitemigrate.tests._util_tempdir import cleanup_dir, make_temp_dir

EXPECTED_FILES = {
    "content/index.php",
    "content/plugins/akismet/akismet.php",
    "content/plugins/hello-dolly/hello.php",
    "content/themes/oldtheme/style.css",
    "content/themes/twentytwenty/style.css",
    "content/uploads/2024/01/photo.jpg",
}


def _make_service(td, **kwargs):
    kwargs.setdefault("use_external_dump", False)
    return MigrationExportService(
        migration_dir=td / "migrations",
        content_root=td / "content",
        site_db_path=td / "site.db",
        environment=make_environment(),
        archiver=ZipfileArchiver(),
        **kwargs,
    )


def _names(container):
    with zipfile.ZipFile(container) as zf:
        return zf.namelist()


class TestMigrationExportServiceUnit(unittest.TestCase):
    def setUp(self):
        self.td = make_temp_dir(prefix="sitemigrate_export")
        make_site_db(self.td / "site.db")
        make_content_tree(self.td / "content")

    def tearDown(self):
        cleanup_dir(self.td)

    def test_run_to_completion_publishes_archive(self):
        service = _make_service(self.td)

        record = service.run_export_to_completion()

        self.assertIsNone(record.error)
        self.assertTrue(record.completed)
        self.assertEqual(record.progress, 100)
        job_dir = self.td / "migrations" / record.id
        self.assertTrue((job_dir / METADATA_FILE).exists())
        for name in SCRATCH_FILES:
            self.assertFalse((job_dir / name).exists(), name)

        names = _names(job_dir / ARCHIVE_FILE)
        self.assertEqual(names[:2], ["config.json", "database.sql"])
        self.assertEqual({n for n in names if n.startswith("content/")}, EXPECTED_FILES)
        self.assertEqual(len(names), len(set(names)))

        meta = service.catalog.get_archive_metadata(record.id)
        self.assertTrue(meta.has_database)
        self.assertEqual(meta.total_files, len(EXPECTED_FILES))
        self.assertEqual(meta.site_url, "http://old.example.com")
        self.assertEqual(meta.source, "local")

    def test_sliced_export_matches_single_run(self):
        whole = _make_service(self.td).run_export_to_completion()

        # Every clock read advances 1s against a 0.5s budget: one unit of work per slice.
        sliced_service = _make_service(self.td, clock=StepClock(1.0), slice_time_budget_s=0.5)
        record = sliced_service.init_export()
        slices = 0
        while not record.completed and not record.error:
            record = sliced_service.process_export_slice(record.id)
            slices += 1
            self.assertLess(slices, 500)
            if not record.completed:
                self.assertTrue((self.td / "migrations" / record.id / STATE_FILE).exists())

        self.assertIsNone(record.error)
        self.assertGreater(slices, 8)
        whole_meta = sliced_service.catalog.get_archive_metadata(whole.id)
        sliced_meta = sliced_service.catalog.get_archive_metadata(record.id)
        self.assertEqual(sliced_meta.total_files, whole_meta.total_files)
        self.assertEqual(sliced_meta.total_files_size, whole_meta.total_files_size)
        self.assertEqual(sliced_meta.has_database, whole_meta.has_database)

        sliced_names = _names(self.td / "migrations" / record.id / ARCHIVE_FILE)
        self.assertEqual(sorted(sliced_names), sorted(_names(self.td / "migrations" / whole.id / ARCHIVE_FILE)))

    def test_slice_persists_cursor_and_progress_never_decreases(self):
        service = _make_service(self.td, clock=StepClock(1.0), slice_time_budget_s=0.5)
        record = service.init_export()
        last = 0
        while not record.completed and not record.error:
            record = service.process_export_slice(record.id)
            self.assertGreaterEqual(record.progress, last)
            last = record.progress
            if record.phase == "archive" and not record.completed:
                stored = service.store.load(record.id)
                self.assertEqual(stored.filemap_offset, record.filemap_offset)
        self.assertEqual(last, 100)

    def test_slice_after_completion_returns_completed_record(self):
        service = _make_service(self.td)
        done = service.run_export_to_completion()

        again = service.process_export_slice(done.id)

        self.assertTrue(again.completed)
        self.assertEqual(again.phase, "complete")
        self.assertEqual(again.archive_size, done.archive_size)

    def test_unknown_job_is_a_failure_record(self):
        service = _make_service(self.td)
        record = service.process_export_slice("20260101_000000_nope")
        self.assertEqual(record.error, "Migration state not found")
        self.assertEqual(record.phase, "error")
        self.assertFalse(record.completed)

    def test_options_skip_database_and_themes(self):
        service = _make_service(self.td)

        record = service.run_export_to_completion({"include_database": False, "include_themes": "0"})

        self.assertIsNone(record.error)
        names = _names(self.td / "migrations" / record.id / ARCHIVE_FILE)
        self.assertNotIn("database.sql", names)
        self.assertFalse(any(n.startswith("content/themes/") for n in names))
        self.assertFalse(service.catalog.get_archive_metadata(record.id).has_database)

    def test_missing_site_database_fails_and_is_persisted(self):
        (self.td / "site.db").unlink()
        service = _make_service(self.td)

        record = service.run_export_to_completion()

        self.assertIn("Site database not found", record.error)
        stored = service.store.load(record.id)
        self.assertEqual(stored.error, record.error)
        # A failed job stays failed.
        self.assertEqual(service.process_export_slice(record.id).error, record.error)

    def test_manifest_entries_outside_content_root_are_skipped(self):
        service = _make_service(self.td)
        record = service.init_export()
        for _ in range(3):  # config, database, enumerate
            record = service.process_export_slice(record.id, time_budget_s=300)
        self.assertEqual(record.phase, "archive")

        manifest = self.td / "migrations" / record.id / "filemap.txt"
        with manifest.open("a", encoding="utf-8") as fh:
            fh.write("../site.db\n")

        while not record.completed and not record.error:
            record = service.process_export_slice(record.id, time_budget_s=300)

        self.assertIsNone(record.error)
        self.assertEqual(record.skipped_files, 1)
        names = _names(self.td / "migrations" / record.id / ARCHIVE_FILE)
        self.assertFalse(any("site.db" in n for n in names))

    def test_retention_keeps_newest_archives(self):
        service = _make_service(self.td, max_migrations=3)

        ids = [service.run_export_to_completion().id for _ in range(4)]

        remaining = {m.id for m in service.catalog.list_archives()}
        self.assertEqual(remaining, set(ids[1:]))
        self.assertFalse((self.td / "migrations" / ids[0]).exists())

    def test_cancel_removes_in_flight_job_only(self):
        service = _make_service(self.td)
        record = service.init_export()
        service.process_export_slice(record.id)

        self.assertTrue(service.cancel_export(record.id))
        self.assertFalse((self.td / "migrations" / record.id).exists())
        self.assertFalse(service.cancel_export(record.id))

        done = service.run_export_to_completion()
        self.assertFalse(service.cancel_export(done.id))
        self.assertIsNotNone(service.catalog.get_archive_metadata(done.id))
        self.assertFalse(service.cancel_export("../escape"))

    def test_own_directories_are_never_exported(self):
        migrations = self.td / "content" / "site-migrations"
        service = MigrationExportService(
            migration_dir=migrations,
            content_root=self.td / "content",
            site_db_path=self.td / "site.db",
            environment=make_environment(),
            archiver=ZipfileArchiver(),
            own_dirs=("site-migrations",),
            use_external_dump=False,
        )

        first = service.run_export_to_completion()
        second = service.run_export_to_completion()

        self.assertIsNone(second.error)
        names = _names(migrations / second.id / ARCHIVE_FILE)
        self.assertFalse(any(n.startswith("content/site-migrations") for n in names))
        self.assertIsNotNone(first.id)

    def test_no_archiver_fails_in_archive_phase(self):
        service = MigrationExportService(
            migration_dir=self.td / "migrations",
            content_root=self.td / "content",
            site_db_path=self.td / "site.db",
            environment=make_environment(),
            archiver=None,
            use_external_dump=False,
        )

        record = service.run_export_to_completion()

        self.assertEqual(record.error, "No ZIP archiver available on this server")
        self.assertEqual(record.phase, "archive")
