from __future__ import annotations

from authx import AuthX, AuthXConfig

from sitemigrate.app.core.config import settings

auth_config = AuthXConfig(
    JWT_SECRET_KEY=settings.JWT_SECRET_KEY,
    JWT_ALGORITHM=settings.JWT_ALGORITHM,
    JWT_TOKEN_LOCATION=["headers", "query"],
)

auth = AuthX(config=auth_config)
