from typing import Optional

from pydantic import BaseModel


class ExportOptionsBody(BaseModel):
    include_database: Optional[bool] = None
    include_themes: Optional[bool] = None
    include_plugins: Optional[bool] = None
    include_uploads: Optional[bool] = None
    include_mu_plugins: Optional[bool] = None
    exclude_cache: Optional[bool] = None
    exclude_inactive_themes: Optional[bool] = None
    exclude_inactive_plugins: Optional[bool] = None
    exclude_spam_comments: Optional[bool] = None
    exclude_post_revisions: Optional[bool] = None

    def as_options(self) -> dict:
        # Unset fields fall back to the export defaults.
        return self.model_dump(exclude_none=True)


class RestoreOptionsBody(BaseModel):
    restore_database: Optional[bool] = None
    restore_files: Optional[bool] = None

    def as_options(self) -> dict:
        return self.model_dump(exclude_none=True)
