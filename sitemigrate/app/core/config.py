from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Site Migrate"
    APP_VERSION: str = "1.2.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8001
    CORS_ORIGINS: list[str] = ["http://localhost:3001"]

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    # Auth (bearer tokens issued by the management console)
    JWT_SECRET_KEY: str = "CHANGE_THIS_TO_A_SECRET_KEY"
    JWT_ALGORITHM: str = "HS256"

    # Site being migrated
    SITE_URL: str = "http://localhost"
    HOME_URL: str = ""  # falls back to SITE_URL
    PLATFORM_VERSION: str = ""
    SITE_CHARSET: str = "UTF-8"
    SITE_LANGUAGE: str = "en_US"
    SITE_DB_PATH: str = "data/site.db"
    TABLE_PREFIX: str = "wp_"
    CONTENT_DIR: str = "data/content"

    # Active components (used when excluding inactive themes/plugins)
    ACTIVE_THEME: str = ""
    PARENT_THEME: str = ""
    ACTIVE_PLUGINS: list[str] = []  # e.g. ["akismet/akismet.php"]
    SELF_PLUGIN_SLUG: str = "sitemigrate"

    # Tool bookkeeping (activity log); never part of an export
    STATE_DB_PATH: str = "data/sitemigrate.db"

    # Working directories; empty means "inside CONTENT_DIR"
    MIGRATION_DIR: str = ""
    CHECKPOINT_DIR: str = ""

    # Pipeline
    SLICE_TIME_BUDGET_S: float = 10.0
    FULL_RUN_TIME_BUDGET_S: float = 300.0
    MAX_MIGRATIONS: int = 3
    MAX_CHECKPOINTS: int = 5
    ARCHIVE_BACKEND: str = "auto"  # auto | zipfile | zip_cli
    DUMP_USE_EXTERNAL: bool = True
    SQLITE_BIN: str = "sqlite3"

    # Uploads
    MAX_UPLOAD_BYTES: int = 2 * 1024 * 1024 * 1024  # 2 GB

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
