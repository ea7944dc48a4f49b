from __future__ import annotations

import sqlite3
from pathlib import Path

from sitemigrate.services.migration.environment import ComponentRegistry, SiteEnvironment

SITE_URL = "http://old.example.com"


class StepClock:
    """Fake monotonic clock that advances `step` seconds on every read."""

    def __init__(self, step: float = 1.0) -> None:
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        self.now += self.step
        return self.now


def make_site_db(path: Path, *, posts: int = 5, spam: int = 2, revisions: int = 1) -> Path:
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(
            """
            CREATE TABLE wp_options (option_id INTEGER PRIMARY KEY, option_name TEXT UNIQUE, option_value TEXT);
            CREATE TABLE wp_posts (
                ID INTEGER PRIMARY KEY,
                post_title TEXT,
                post_content TEXT,
                post_type TEXT NOT NULL DEFAULT 'post'
            );
            CREATE INDEX idx_posts_type ON wp_posts(post_type);
            CREATE TABLE wp_comments (
                comment_ID INTEGER PRIMARY KEY,
                comment_post_ID INTEGER,
                comment_content TEXT,
                comment_approved TEXT NOT NULL DEFAULT '1'
            );
            """
        )
        conn.execute("INSERT INTO wp_options (option_name, option_value) VALUES ('siteurl', ?)", (SITE_URL,))
        conn.execute("INSERT INTO wp_options (option_name, option_value) VALUES ('blogname', 'It''s a blog')")
        for i in range(posts):
            conn.execute(
                "INSERT INTO wp_posts (post_title, post_content, post_type) VALUES (?, ?, 'post')",
                (f"Post {i}", f"line one\nline two {i}; done"),
            )
        for i in range(revisions):
            conn.execute(
                "INSERT INTO wp_posts (post_title, post_content, post_type) VALUES (?, ?, 'revision')",
                (f"Revision {i}", "old"),
            )
        conn.execute("INSERT INTO wp_comments (comment_post_ID, comment_content) VALUES (1, 'nice')")
        conn.execute("INSERT INTO wp_comments (comment_post_ID, comment_content, comment_approved) VALUES (1, NULL, '0')")
        for i in range(spam):
            conn.execute(
                "INSERT INTO wp_comments (comment_post_ID, comment_content, comment_approved) VALUES (1, ?, 'spam')",
                (f"buy now {i}",),
            )
        conn.commit()
    finally:
        conn.close()
    return path


def count_rows(db_path: Path, table: str, where: str = "") -> int:
    conn = sqlite3.connect(str(db_path))
    try:
        sql = f"SELECT COUNT(*) FROM {table}" + (f" WHERE {where}" if where else "")
        return int(conn.execute(sql).fetchone()[0])
    finally:
        conn.close()


def make_content_tree(root: Path) -> Path:
    files = {
        "themes/twentytwenty/style.css": "body{}",
        "themes/oldtheme/style.css": "p{}",
        "plugins/akismet/akismet.php": "<?php // akismet",
        "plugins/hello-dolly/hello.php": "<?php // dolly",
        "uploads/2024/01/photo.jpg": "JPEGDATA" * 10,
        "cache/page.html": "<html></html>",
        "index.php": "<?php // silence",
    }
    for rel, text in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
    return root


def make_environment(table_prefix: str = "wp_") -> SiteEnvironment:
    return SiteEnvironment(
        site_url=SITE_URL,
        platform_version="6.4",
        tool_version="1.2.0",
        table_prefix=table_prefix,
        registry=ComponentRegistry(theme="twentytwenty", plugins=("akismet/akismet.php",)),
    )
