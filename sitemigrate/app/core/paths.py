from __future__ import annotations

from pathlib import Path

from sitemigrate.app.core.config import settings


def package_root() -> Path:
    # sitemigrate/app/core/paths.py -> sitemigrate
    return Path(__file__).resolve().parents[2]


def repo_root() -> Path:
    return package_root().parent


def resolve_repo_path(path: str | Path) -> Path:
    """
    Resolve a path relative to the repository root (the parent of `sitemigrate/`).

    This is the base for runtime configuration paths such as:
    - settings.SITE_DB_PATH (default: data/site.db)
    - settings.CONTENT_DIR (default: data/content)
    - settings.STATE_DB_PATH (default: data/sitemigrate.db)
    """
    p = Path(path)
    if p.is_absolute():
        return p
    return repo_root() / p


def resolve_content_dir() -> Path:
    return resolve_repo_path(settings.CONTENT_DIR)


def resolve_site_db_path() -> Path:
    return resolve_repo_path(settings.SITE_DB_PATH)


def resolve_migration_dir() -> Path:
    # Defaults to a folder inside the content tree; enumeration always excludes it.
    if settings.MIGRATION_DIR:
        return resolve_repo_path(settings.MIGRATION_DIR)
    return resolve_content_dir() / "site-migrations"


def resolve_checkpoint_dir() -> Path:
    if settings.CHECKPOINT_DIR:
        return resolve_repo_path(settings.CHECKPOINT_DIR)
    return resolve_content_dir() / "site-checkpoints"
