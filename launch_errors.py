from __future__ import annotations

from typing import Optional

from meta_client import MetaAPIError


class LaunchRequestError(RuntimeError):
    """Batch-fatal failure: abort before any draft is processed."""

    def __init__(self, message: str, *, http_status: int = 400, error: str | None = None):
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.error = error

    def to_payload(self) -> dict:
        out = {"message": self.message}
        if self.error:
            out["error"] = self.error
        return out


class AssetUploadError(RuntimeError):
    """A single asset could not be uploaded; recorded on the asset."""


class DraftLaunchError(RuntimeError):
    """A draft could not be published.

    `fatal=True` forces the ERROR status regardless of asset uploads
    (video processing failures and readiness timeouts).
    """

    def __init__(self, message: str, *, meta_error: Optional[MetaAPIError] = None, fatal: bool = False):
        super().__init__(message)
        self.meta_error = meta_error
        self.fatal = fatal
