from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable
from uuid import uuid4

from .common import ensure_dir, remove_tree, run_cmd, run_cmd_to_file
from .errors import MigrationError, PathTraversalError

logger = logging.getLogger(__name__)

CONFIG_ENTRY = "config.json"
DUMP_ENTRY = "database.sql"
CONTENT_PREFIX = "content/"

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


def safe_relative(name: str) -> str:
    """Normalize an archive-relative path; reject absolute paths and any `..` segment."""
    rel = str(name or "").replace("\\", "/")
    if rel.startswith("/") or _DRIVE_RE.match(rel):
        raise PathTraversalError(f"absolute path not allowed: {name!r}")
    parts = [p for p in rel.split("/") if p not in ("", ".")]
    if not parts:
        raise PathTraversalError(f"empty path: {name!r}")
    if any(p == ".." for p in parts):
        raise PathTraversalError(f"parent-directory segment not allowed: {name!r}")
    return "/".join(parts)


def content_relative(name: str) -> str | None:
    """
    Path of a `content/` entry relative to the content root.

    None for entries outside `content/` and for the `content/` directory entry itself; raises
    PathTraversalError for unsafe names.
    """
    if not name.startswith(CONTENT_PREFIX):
        return None
    rest = name[len(CONTENT_PREFIX):]
    if all(p in ("", ".") for p in rest.replace("\\", "/").split("/")):
        return None
    return safe_relative(rest)


def resolve_within(root: Path, relative: str) -> Path:
    """Resolve `root/relative` and make sure the real path is still inside `root`."""
    root_real = Path(root).resolve()
    target = (root_real / relative).resolve()
    if target != root_real and root_real not in target.parents:
        raise PathTraversalError(f"path escapes root: {relative!r}")
    return target


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    size: int = 0

    @property
    def is_dir(self) -> bool:
        return self.name.endswith("/")


@dataclass
class ExtractStats:
    extracted: int = 0
    rejected: int = 0


class ArchiveWriter(ABC):
    def __enter__(self) -> "ArchiveWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abstractmethod
    def add(self, src: Path, arcname: str) -> None: ...

    def flush(self) -> None:
        return None

    @abstractmethod
    def close(self) -> None: ...


class ArchiveReader(ABC):
    """Random access to container entries by index."""

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abstractmethod
    def entry_count(self) -> int: ...

    @abstractmethod
    def name_at(self, index: int) -> str: ...

    @abstractmethod
    def extract_to(self, index: int, dest: Path) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class Archiver(ABC):
    name: str = ""
    supports_random_access: bool = False

    @abstractmethod
    def open_writer(self, container: Path, *, scratch_dir: Path) -> ArchiveWriter: ...

    @abstractmethod
    def list_entries(self, container: Path) -> list[ArchiveEntry]: ...

    @abstractmethod
    def read_entry(self, container: Path, name: str) -> bytes | None: ...

    @abstractmethod
    def extract_member(self, container: Path, name: str, dest: Path) -> bool: ...

    def open_reader(self, container: Path) -> ArchiveReader:
        raise NotImplementedError(f"{self.name} does not support random access")

    @abstractmethod
    def extract_all(
        self,
        container: Path,
        dest_root: Path,
        *,
        scratch_dir: Path,
        is_protected: Callable[[str], bool] | None = None,
    ) -> ExtractStats: ...


def _extract_member_stream(src, dest: Path) -> None:
    ensure_dir(dest.parent)
    with dest.open("wb") as out:
        shutil.copyfileobj(src, out, 1024 * 1024)


# --- zipfile: incremental appends, random access -------------------------------------------


class _ZipfileWriter(ArchiveWriter):
    def __init__(self, container: Path) -> None:
        mode = "a" if container.exists() else "w"
        try:
            self._zf = zipfile.ZipFile(container, mode, compression=zipfile.ZIP_DEFLATED, allowZip64=True)
        except (OSError, zipfile.BadZipFile) as e:
            raise MigrationError(f"Failed to open ZIP archive: {e}") from e
        self._names = set(self._zf.namelist())

    def add(self, src: Path, arcname: str) -> None:
        if arcname in self._names:
            return
        self._zf.write(src, arcname)
        self._names.add(arcname)

    def close(self) -> None:
        self._zf.close()


class _ZipfileReader(ArchiveReader):
    def __init__(self, container: Path) -> None:
        try:
            self._zf = zipfile.ZipFile(container, "r")
        except (OSError, zipfile.BadZipFile) as e:
            raise MigrationError(f"Failed to open ZIP archive: {e}") from e
        self._infos = self._zf.infolist()

    def entry_count(self) -> int:
        return len(self._infos)

    def name_at(self, index: int) -> str:
        return self._infos[index].filename

    def extract_to(self, index: int, dest: Path) -> None:
        info = self._infos[index]
        if info.is_dir():
            ensure_dir(dest)
            return
        with self._zf.open(info, "r") as src:
            _extract_member_stream(src, dest)

    def close(self) -> None:
        self._zf.close()


class ZipfileArchiver(Archiver):
    name = "zipfile"
    supports_random_access = True

    def open_writer(self, container: Path, *, scratch_dir: Path) -> ArchiveWriter:
        return _ZipfileWriter(container)

    def open_reader(self, container: Path) -> ArchiveReader:
        return _ZipfileReader(container)

    def list_entries(self, container: Path) -> list[ArchiveEntry]:
        try:
            with zipfile.ZipFile(container, "r") as zf:
                return [ArchiveEntry(i.filename, int(i.file_size)) for i in zf.infolist()]
        except (OSError, zipfile.BadZipFile) as e:
            raise MigrationError(f"Failed to open ZIP archive: {e}") from e

    def read_entry(self, container: Path, name: str) -> bytes | None:
        try:
            with zipfile.ZipFile(container, "r") as zf:
                return zf.read(name)
        except KeyError:
            return None
        except (OSError, zipfile.BadZipFile) as e:
            raise MigrationError(f"Failed to open ZIP archive: {e}") from e

    def extract_member(self, container: Path, name: str, dest: Path) -> bool:
        try:
            with zipfile.ZipFile(container, "r") as zf:
                try:
                    info = zf.getinfo(name)
                except KeyError:
                    return False
                with zf.open(info, "r") as src:
                    _extract_member_stream(src, dest)
        except (OSError, zipfile.BadZipFile) as e:
            raise MigrationError(f"Failed to open ZIP archive: {e}") from e
        return True

    def extract_all(
        self,
        container: Path,
        dest_root: Path,
        *,
        scratch_dir: Path,
        is_protected: Callable[[str], bool] | None = None,
    ) -> ExtractStats:
        stats = ExtractStats()
        with self.open_reader(container) as reader:
            for index in range(reader.entry_count()):
                try:
                    rel = content_relative(reader.name_at(index))
                    if rel is None:
                        continue
                    if is_protected is not None and is_protected(rel):
                        raise PathTraversalError(f"protected directory: {rel!r}")
                    target = resolve_within(dest_root, rel)
                except PathTraversalError as e:
                    logger.warning("[Restore] rejected archive entry: %s", e)
                    stats.rejected += 1
                    continue
                reader.extract_to(index, target)
                stats.extracted += 1
        return stats


# --- zip/unzip command line: bulk adds only, one-shot extraction ----------------------------


class _ZipCliBatchWriter(ArchiveWriter):
    """
    Stages symlinks named after the archive paths and hands them to `zip -@` in batches.

    `zip` stores the link targets' contents, so arbitrary source files end up under the
    requested archive names.
    """

    def __init__(self, container: Path, stage_dir: Path, *, zip_bin: str, batch_size: int) -> None:
        self.container = container.resolve()
        self.stage_dir = stage_dir
        self.zip_bin = zip_bin
        self.batch_size = int(max(1, batch_size))
        self._pending: list[str] = []
        remove_tree(stage_dir)
        ensure_dir(stage_dir)

    def add(self, src: Path, arcname: str) -> None:
        link = self.stage_dir / arcname
        ensure_dir(link.parent)
        if link.is_symlink() or link.exists():
            link.unlink()
        os.symlink(Path(src).resolve(), link)
        self._pending.append(arcname)
        if len(self._pending) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self._pending:
            return
        names = "\n".join(self._pending) + "\n"
        code, out = run_cmd([self.zip_bin, "-q", "-nw", str(self.container), "-@"], cwd=self.stage_dir, stdin_text=names)
        if code != 0:
            raise MigrationError(f"zip failed (code={code}): {out}")
        self._pending = []
        remove_tree(self.stage_dir)
        ensure_dir(self.stage_dir)

    def close(self) -> None:
        try:
            self.flush()
        finally:
            remove_tree(self.stage_dir)


class ZipCliArchiver(Archiver):
    name = "zip_cli"
    supports_random_access = False

    def __init__(self, *, zip_bin: str = "zip", unzip_bin: str = "unzip", batch_size: int = 50) -> None:
        self.zip_bin = zip_bin
        self.unzip_bin = unzip_bin
        self.batch_size = batch_size

    @classmethod
    def available(cls) -> bool:
        return bool(shutil.which("zip") and shutil.which("unzip"))

    def open_writer(self, container: Path, *, scratch_dir: Path) -> ArchiveWriter:
        return _ZipCliBatchWriter(
            container, scratch_dir / ".zip_stage", zip_bin=self.zip_bin, batch_size=self.batch_size
        )

    def list_entries(self, container: Path) -> list[ArchiveEntry]:
        code, out = run_cmd([self.unzip_bin, "-l", str(container)])
        if code != 0:
            raise MigrationError(f"Failed to open ZIP archive: {out}")
        # Rows sit between the two dashed rules: "length date time name".
        entries: list[ArchiveEntry] = []
        in_table = False
        for line in out.splitlines():
            if line.lstrip().startswith("---"):
                if in_table:
                    break
                in_table = True
                continue
            if not in_table:
                continue
            parts = line.split(None, 3)
            if len(parts) == 4 and parts[0].isdigit():
                entries.append(ArchiveEntry(parts[3], int(parts[0])))
        return entries

    def read_entry(self, container: Path, name: str) -> bytes | None:
        try:
            proc = subprocess.run([self.unzip_bin, "-p", str(container), name], capture_output=True, shell=False)
        except OSError as e:
            raise MigrationError(f"Failed to run {self.unzip_bin}: {e}") from e
        if proc.returncode == 11:  # no matching entry
            return None
        if proc.returncode != 0:
            raise MigrationError(f"Failed to read {name} from archive (code={proc.returncode})")
        return proc.stdout

    def extract_member(self, container: Path, name: str, dest: Path) -> bool:
        ensure_dir(dest.parent)
        code, err = run_cmd_to_file([self.unzip_bin, "-p", str(container), name], dest)
        if code == 11:
            dest.unlink(missing_ok=True)
            return False
        if code != 0:
            raise MigrationError(f"Failed to extract {name} from archive (code={code}): {err}")
        return True

    def extract_all(
        self,
        container: Path,
        dest_root: Path,
        *,
        scratch_dir: Path,
        is_protected: Callable[[str], bool] | None = None,
    ) -> ExtractStats:
        stats = ExtractStats()
        # unzip rewrites unsafe names (`content/../x` is staged as `content/x`), so only staged
        # files whose listed name was accepted here are moved onto the content tree.
        allowed: set[str] = set()
        shadowed: set[str] = set()
        for entry in self.list_entries(container):
            if entry.is_dir:
                continue
            try:
                rel = content_relative(entry.name)
                if rel is None:
                    continue
                if is_protected is not None and is_protected(rel):
                    raise PathTraversalError(f"protected directory: {rel!r}")
            except PathTraversalError as e:
                logger.warning("[Restore] rejected archive entry: %s", e)
                stats.rejected += 1
                rest = entry.name[len(CONTENT_PREFIX):].replace("\\", "/")
                shadowed.add("/".join(p for p in rest.split("/") if p not in ("", ".", "..")))
                continue
            allowed.add(rel)

        for rel in sorted(allowed & shadowed):
            logger.warning("[Restore] rejected archive entry shadowed by an unsafe name: %s", rel)
            allowed.discard(rel)
            stats.rejected += 1
        if not allowed:
            return stats

        stage = scratch_dir / f".unzip_{uuid4().hex}"
        ensure_dir(stage)
        try:
            code, out = run_cmd([self.unzip_bin, "-o", "-q", str(container), CONTENT_PREFIX + "*", "-d", str(stage)])
            # 1 = warnings (e.g. unsafe names skipped), 11 = nothing matched.
            if code not in (0, 1, 11):
                raise MigrationError(f"unzip failed (code={code}): {out}")

            staged_root = stage / CONTENT_PREFIX.rstrip("/")
            if not staged_root.is_dir():
                return stats
            for dirpath, dirnames, filenames in os.walk(staged_root):
                # unzip recreates stored symlinks; never carry those onto the content tree.
                linked = [d for d in dirnames if (Path(dirpath) / d).is_symlink()]
                for d in linked:
                    if (Path(dirpath) / d).relative_to(staged_root).as_posix() in allowed:
                        logger.warning("[Restore] rejected symlink entry: %s", d)
                        stats.rejected += 1
                dirnames[:] = [d for d in dirnames if d not in linked]
                for filename in filenames:
                    staged = Path(dirpath) / filename
                    rel = staged.relative_to(staged_root).as_posix()
                    if rel not in allowed:
                        continue
                    if staged.is_symlink():
                        logger.warning("[Restore] rejected symlink entry: %s", rel)
                        stats.rejected += 1
                        continue
                    try:
                        target = resolve_within(dest_root, rel)
                    except PathTraversalError as e:
                        logger.warning("[Restore] rejected archive entry: %s", e)
                        stats.rejected += 1
                        continue
                    ensure_dir(target.parent)
                    shutil.move(str(staged), str(target))
                    stats.extracted += 1
        finally:
            remove_tree(stage)
        return stats


def zipfile_available() -> bool:
    # ZIP_DEFLATED needs zlib; without it the stdlib writer is unusable for our containers.
    try:
        import zlib  # noqa: F401
    except ImportError:
        return False
    return True


def get_archiver(preference: str = "auto") -> Archiver | None:
    """Pick the container backend once; None when no backend is usable."""
    pref = str(preference or "auto").strip().lower()
    if pref in ("auto", "zipfile") and zipfile_available():
        return ZipfileArchiver()
    if pref in ("auto", "zip_cli") and ZipCliArchiver.available():
        return ZipCliArchiver()
    return None
