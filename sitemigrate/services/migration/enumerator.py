from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

from .environment import ComponentRegistry
from .models import ExportOptions

logger = logging.getLogger(__name__)

# Never ship other backup tools' output or the core-update scratch area.
BASE_EXCLUSIONS = ("ai1wm-backups", "upgrade")
CACHE_EXCLUSIONS = ("cache", "et-cache", "w3tc-config", "wp-rocket-config")


@dataclass(frozen=True)
class EnumerationResult:
    file_count: int
    total_bytes: int


def _subdirs(path: Path) -> list[str]:
    try:
        return sorted(e.name for e in os.scandir(path) if e.is_dir())
    except OSError:
        return []


def build_exclusions(
    options: ExportOptions,
    content_root: Path,
    registry: ComponentRegistry | None = None,
    *,
    own_dirs: Iterable[str] = (),
) -> list[str]:
    """
    Relative directory prefixes / bare names to leave out of the manifest.

    `own_dirs` are the tool's own archive/checkpoint directories and are always excluded so an
    export never contains earlier exports.
    """
    registry = registry or ComponentRegistry()
    exclusions: list[str] = [d for d in own_dirs if d]
    exclusions.extend(BASE_EXCLUSIONS)

    if not options.include_themes:
        exclusions.append("themes")
    elif options.exclude_inactive_themes:
        active = registry.active_theme_slugs()
        exclusions.extend(f"themes/{t}" for t in _subdirs(content_root / "themes") if t not in active)

    if not options.include_plugins:
        exclusions.append("plugins")
    elif options.exclude_inactive_plugins:
        active = registry.active_plugin_slugs()
        exclusions.extend(f"plugins/{p}" for p in _subdirs(content_root / "plugins") if p not in active)

    if not options.include_uploads:
        exclusions.append("uploads")

    if not options.include_mu_plugins:
        exclusions.append("mu-plugins")

    if options.exclude_cache:
        exclusions.extend(CACHE_EXCLUSIONS)

    return exclusions


def is_excluded(name: str, relative: str, exclusions: Iterable[str]) -> bool:
    for exclusion in exclusions:
        if name == exclusion or relative.startswith(exclusion):
            return True
    return False


def enumerate_tree(root: Path, exclusions: Iterable[str]) -> Iterator[tuple[str, int]]:
    """
    Walk `root` depth-first in name order, yielding `(relative_path, size)` for every file.

    Directories matching an exclusion are pruned with their whole subtree. Unreadable files are
    dropped. A directory already visited (same device/inode, e.g. reached again through a
    symlink loop) is not descended twice.
    """
    exclusions = tuple(exclusions)
    visited: set[tuple[int, int]] = set()

    def _walk(full: Path, relative: str) -> Iterator[tuple[str, int]]:
        try:
            st = full.stat()
        except OSError:
            return
        key = (st.st_dev, st.st_ino)
        if key in visited:
            logger.warning("[Migration] directory already visited, skipping: %s", relative or ".")
            return
        visited.add(key)

        try:
            entries = sorted(os.scandir(full), key=lambda e: e.name)
        except OSError:
            return

        for entry in entries:
            item_relative = f"{relative}/{entry.name}" if relative else entry.name
            if "\n" in entry.name or "\r" in entry.name:
                logger.warning("[Migration] skipping path with newline: %r", item_relative)
                continue
            try:
                is_dir = entry.is_dir()
            except OSError:
                continue

            if is_dir:
                if is_excluded(entry.name, item_relative, exclusions):
                    continue
                yield from _walk(Path(entry.path), item_relative)
                continue

            if not os.access(entry.path, os.R_OK):
                continue
            try:
                size = entry.stat().st_size
            except OSError:
                continue
            yield item_relative, int(size)

    yield from _walk(Path(root), "")


def write_manifest(root: Path, exclusions: Iterable[str], manifest_path: Path) -> EnumerationResult:
    total_files = 0
    total_size = 0
    with manifest_path.open("w", encoding="utf-8", errors="surrogateescape", newline="\n") as fh:
        for relative, size in enumerate_tree(root, exclusions):
            fh.write(relative + "\n")
            total_files += 1
            total_size += size
    return EnumerationResult(file_count=total_files, total_bytes=total_size)


def iter_manifest(manifest_path: Path, offset: int = 0) -> Iterator[tuple[str, int]]:
    """Yield `(relative path, byte offset just past its line)` from `offset` on; blank lines are skipped."""
    with manifest_path.open("rb") as fh:
        fh.seek(offset)
        for line in iter(fh.readline, b""):
            rel = line.decode("utf-8", errors="surrogateescape").rstrip("\r\n")
            if rel:
                yield rel, fh.tell()
