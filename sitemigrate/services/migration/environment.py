from __future__ import annotations

import platform
import sqlite3
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ComponentRegistry:
    """Which theme/plugin directories are active on the site."""

    theme: str = ""
    parent_theme: str = ""
    # Plugin entry files relative to the plugins dir, e.g. "akismet/akismet.php".
    plugins: tuple[str, ...] = ()
    always_active_plugins: tuple[str, ...] = ()

    def active_theme_slugs(self) -> set[str]:
        return {t for t in (self.theme, self.parent_theme) if t}

    def active_plugin_slugs(self) -> set[str]:
        # Single-file plugins ("hello.php") have no directory of their own.
        slugs = {p.split("/", 1)[0] for p in self.plugins if "/" in p}
        slugs.update(s for s in self.always_active_plugins if s)
        return slugs


@dataclass(frozen=True)
class SiteEnvironment:
    site_url: str
    home_url: str = ""
    platform_version: str = ""
    tool_version: str = ""
    charset: str = "UTF-8"
    language: str = ""
    table_prefix: str = ""
    registry: ComponentRegistry = field(default_factory=ComponentRegistry)

    @property
    def python_version(self) -> str:
        return platform.python_version()

    @property
    def engine_version(self) -> str:
        return sqlite3.sqlite_version

    def package_config(self, options: dict[str, bool], *, created_at: str) -> dict[str, Any]:
        """Build the `config.json` document stored at the top of every container."""
        reg = self.registry
        return {
            "generator": "sitemigrate",
            "version": self.tool_version,
            "created_at": created_at,
            "site_url": self.site_url,
            "home_url": self.home_url or self.site_url,
            "platform_version": self.platform_version,
            "python_version": self.python_version,
            "engine_version": self.engine_version,
            "charset": self.charset,
            "language": self.language,
            "theme": reg.theme,
            "parent_theme": reg.parent_theme if reg.parent_theme and reg.parent_theme != reg.theme else None,
            "plugins": list(reg.plugins),
            "table_prefix": self.table_prefix,
            "options": dict(options),
        }


def environment_from_settings(settings) -> SiteEnvironment:
    registry = ComponentRegistry(
        theme=settings.ACTIVE_THEME,
        parent_theme=settings.PARENT_THEME,
        plugins=tuple(settings.ACTIVE_PLUGINS or ()),
        always_active_plugins=(settings.SELF_PLUGIN_SLUG,),
    )
    return SiteEnvironment(
        site_url=settings.SITE_URL,
        home_url=settings.HOME_URL,
        platform_version=settings.PLATFORM_VERSION or settings.APP_VERSION,
        tool_version=settings.APP_VERSION,
        charset=settings.SITE_CHARSET,
        language=settings.SITE_LANGUAGE,
        table_prefix=settings.TABLE_PREFIX,
        registry=registry,
    )
