from __future__ import annotations


class MigrationError(RuntimeError):
    """A phase failed; the message becomes the job record's `error`."""


class UploadRejectedError(ValueError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PathTraversalError(ValueError):
    pass
