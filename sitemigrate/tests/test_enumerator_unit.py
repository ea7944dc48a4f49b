import os
import unittest

from sitemigrate.services.migration.enumerator import (
    build_exclusions,
    enumerate_tree,
    is_excluded,
    iter_manifest,
    write_manifest,
)
from sitemigrate.services.migration.environment import ComponentRegistry
from sitemigrate.services.migration.models import ExportOptions
from sitemigrate.tests._util_site import make_content_tree
from sitemigrate.tests._util_tempdir import cleanup_dir, make_temp_dir


class TestEnumeratorUnit(unittest.TestCase):
    def test_manifest_skips_excluded_directory(self):
        td = make_temp_dir(prefix="sitemigrate_enum")
        try:
            root = td / "content"
            (root / "b").mkdir(parents=True)
            (root / "cache").mkdir()
            (root / "a.txt").write_bytes(b"x" * 10)
            (root / "b" / "c.txt").write_bytes(b"y" * 20)
            (root / "cache" / "d.txt").write_bytes(b"z" * 5)

            manifest = td / "filemap.txt"
            result = write_manifest(root, ["cache"], manifest)

            entries = list(iter_manifest(manifest))
            self.assertEqual([rel for rel, _ in entries], ["a.txt", "b/c.txt"])
            self.assertEqual(entries[-1][1], manifest.stat().st_size)
            # Resuming at the first entry's end offset yields only what follows it.
            self.assertEqual(list(iter_manifest(manifest, entries[0][1])), entries[1:])
            self.assertEqual(result.file_count, 2)
            self.assertEqual(result.total_bytes, 30)
        finally:
            cleanup_dir(td)

    def test_exclusion_matches_name_at_any_depth_and_raw_prefix(self):
        self.assertTrue(is_excluded("cache", "plugins/foo/cache", ["cache"]))
        self.assertTrue(is_excluded("uploads", "uploads", ["uploads"]))
        # Raw prefix match: "uploads" also prunes a sibling named "uploads-old".
        self.assertTrue(is_excluded("uploads-old", "uploads-old", ["uploads"]))
        self.assertFalse(is_excluded("themes", "themes", ["plugins/akismet"]))

    def test_inactive_plugins_excluded_active_kept(self):
        td = make_temp_dir(prefix="sitemigrate_enum")
        try:
            root = make_content_tree(td / "content")
            (root / "plugins" / "sitemigrate").mkdir()
            (root / "plugins" / "sitemigrate" / "main.php").write_text("<?php", encoding="utf-8")
            registry = ComponentRegistry(
                theme="twentytwenty",
                plugins=("akismet/akismet.php", "hello.php"),
                always_active_plugins=("sitemigrate",),
            )
            options = ExportOptions.from_mapping({"exclude_inactive_plugins": True})

            exclusions = build_exclusions(options, root, registry)
            paths = [rel for rel, _ in enumerate_tree(root, exclusions)]

            self.assertIn("plugins/hello-dolly", exclusions)
            self.assertNotIn("plugins/akismet", exclusions)
            self.assertIn("plugins/akismet/akismet.php", paths)
            self.assertIn("plugins/sitemigrate/main.php", paths)
            self.assertFalse(any(p.startswith("plugins/hello-dolly/") for p in paths))
            # Themes untouched when only plugins are filtered.
            self.assertIn("themes/oldtheme/style.css", paths)
        finally:
            cleanup_dir(td)

    def test_inactive_themes_keep_active_and_parent(self):
        td = make_temp_dir(prefix="sitemigrate_enum")
        try:
            root = make_content_tree(td / "content")
            (root / "themes" / "parent").mkdir()
            registry = ComponentRegistry(theme="twentytwenty", parent_theme="parent")
            options = ExportOptions.from_mapping({"exclude_inactive_themes": "yes"})

            exclusions = build_exclusions(options, root, registry)

            self.assertIn("themes/oldtheme", exclusions)
            self.assertNotIn("themes/twentytwenty", exclusions)
            self.assertNotIn("themes/parent", exclusions)
        finally:
            cleanup_dir(td)

    def test_option_driven_exclusions(self):
        td = make_temp_dir(prefix="sitemigrate_enum")
        try:
            root = make_content_tree(td / "content")
            options = ExportOptions.from_mapping(
                {"include_themes": False, "include_uploads": "false", "exclude_cache": False}
            )

            exclusions = build_exclusions(options, root, own_dirs=("site-migrations",))
            paths = [rel for rel, _ in enumerate_tree(root, exclusions)]

            for expected in ("site-migrations", "ai1wm-backups", "upgrade", "themes", "uploads", "mu-plugins"):
                self.assertIn(expected, exclusions)
            self.assertNotIn("cache", exclusions)
            self.assertIn("cache/page.html", paths)
            self.assertIn("index.php", paths)
            self.assertFalse(any(p.startswith(("themes/", "uploads/")) for p in paths))
        finally:
            cleanup_dir(td)

    def test_output_is_sorted_depth_first(self):
        td = make_temp_dir(prefix="sitemigrate_enum")
        try:
            root = td / "content"
            for rel in ("b/z.txt", "b/a.txt", "a.txt", "c/d/e.txt"):
                (root / rel).parent.mkdir(parents=True, exist_ok=True)
                (root / rel).write_text("1", encoding="utf-8")

            paths = [rel for rel, _ in enumerate_tree(root, [])]

            self.assertEqual(paths, ["a.txt", "b/a.txt", "b/z.txt", "c/d/e.txt"])
        finally:
            cleanup_dir(td)

    @unittest.skipIf(os.name == "nt", "symlinks need privileges on Windows")
    def test_symlink_loop_terminates(self):
        td = make_temp_dir(prefix="sitemigrate_enum")
        try:
            root = td / "content"
            (root / "a").mkdir(parents=True)
            (root / "a" / "f.txt").write_text("f", encoding="utf-8")
            os.symlink(root / "a", root / "a" / "loop")

            paths = [rel for rel, _ in enumerate_tree(root, [])]

            self.assertEqual(paths, ["a/f.txt"])
        finally:
            cleanup_dir(td)
