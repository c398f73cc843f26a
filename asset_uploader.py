"""
Per-asset upload to Meta.

Images: fetch bytes -> multipart /adimages -> image hash.
Videos: remote-URL ingestion first (Meta pulls the file itself); when that
fails, fetch the bytes and run a resumable upload that restarts every attempt
from the byte offset the upload host has confirmed.

Failures are recorded on the asset (`meta_upload_error`) and never stop
sibling assets or drafts.
"""

from __future__ import annotations

import logging
import mimetypes
import re
import time
from typing import Callable, List, Optional, Tuple

import requests

from launch_errors import AssetUploadError
from launch_models import AdDraft, AdDraftAsset
from meta_client import MetaAPIError, MetaClient
from retry_policy import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

MAX_VIDEO_BYTES = 10 * 1024 ** 3
MIN_VIDEO_SIDE_PX = 500
ACCEPTED_VIDEO_MIME = {
    "video/mp4",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-matroska",
    "video/webm",
    "video/mpeg",
}

_RESOLUTION_RE = re.compile(r"(?<![0-9])(\d{3,5})\s*[xX]\s*(\d{3,5})(?![0-9])")


def resolution_from_filename(filename: str) -> Optional[Tuple[int, int]]:
    m = _RESOLUTION_RE.search(filename or "")
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


def video_quality_warnings(filename: str, content_type: Optional[str]) -> List[str]:
    """Non-fatal checks: MIME type and (filename-declared) resolution."""
    warnings: List[str] = []
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime and mime not in ACCEPTED_VIDEO_MIME:
        warnings.append(f"unexpected video MIME type {mime}")
    res = resolution_from_filename(filename)
    if res and min(res) < MIN_VIDEO_SIDE_PX:
        warnings.append(f"low resolution {res[0]}x{res[1]} (minimum side {MIN_VIDEO_SIDE_PX}px)")
    return warnings


def is_retryable_upload_error(e: Exception) -> bool:
    """5xx and transport errors retry; any 4xx aborts the resumable upload."""
    return isinstance(e, MetaAPIError) and (e.http_status is None or e.http_status >= 500)


class AssetUploader:
    def __init__(
        self,
        client: MetaClient,
        *,
        session: Optional[requests.Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        fetch_timeout_s: int = 300,
    ):
        self.client = client
        self.session = session or requests.Session()
        self.retry_policy = retry_policy or RetryPolicy.fixed(3, 5.0)
        self.sleep = sleep
        self.fetch_timeout_s = fetch_timeout_s

    # -----------------------------
    # Entry points
    # -----------------------------

    def upload_draft_assets(self, draft: AdDraft) -> None:
        for asset in draft.assets:
            self.upload_asset(asset)

    def upload_asset(self, asset: AdDraftAsset) -> AdDraftAsset:
        """Annotate `asset` in place with meta_hash / meta_video_id / meta_upload_error."""
        try:
            if asset.type == "image":
                asset.meta_hash = self.upload_image(asset)
                logger.info("[Upload] image %s -> hash %s", asset.name, asset.meta_hash)
            elif asset.type == "video":
                asset.meta_video_id = self.upload_video(asset)
                logger.info("[Upload] video %s -> id %s", asset.name, asset.meta_video_id)
            else:
                asset.meta_upload_error = f"Unsupported type: {asset.type or 'unknown'}"
        except (AssetUploadError, MetaAPIError, ValueError) as e:
            logger.warning("[Upload] %s failed: %s", asset.name, e)
            asset.meta_upload_error = str(e)
        except Exception as e:
            logger.exception("[Upload] %s failed unexpectedly", asset.name)
            asset.meta_upload_error = str(e) or e.__class__.__name__
        return asset

    # -----------------------------
    # Source bytes
    # -----------------------------

    def fetch_source(self, asset: AdDraftAsset) -> Tuple[bytes, Optional[str]]:
        url = (asset.supabase_url or "").strip()
        if not url:
            raise AssetUploadError(f"Asset {asset.name} has no source URL")
        try:
            resp = self.session.get(url, timeout=self.fetch_timeout_s)
        except requests.RequestException as e:
            raise AssetUploadError(f"Failed to fetch {asset.name}: {e}") from e
        if resp.status_code >= 400:
            raise AssetUploadError(f"Failed to fetch {asset.name}: HTTP {resp.status_code}")
        content_type = resp.headers.get("Content-Type") or mimetypes.guess_type(asset.name)[0]
        return resp.content or b"", content_type

    # -----------------------------
    # Images
    # -----------------------------

    def upload_image(self, asset: AdDraftAsset) -> str:
        data, content_type = self.fetch_source(asset)
        if not data:
            raise AssetUploadError(f"Empty image payload for {asset.name}")
        return self.client.upload_image(
            image_bytes=data,
            filename=asset.name,
            content_type=content_type or "image/jpeg",
        )

    # -----------------------------
    # Videos
    # -----------------------------

    def upload_video(self, asset: AdDraftAsset) -> str:
        try:
            return self.upload_video_from_url(asset)
        except (AssetUploadError, MetaAPIError) as e:
            remote_error = str(e)
            logger.warning("[Upload] remote URL upload failed for %s, falling back to resumable: %s", asset.name, e)

        try:
            return self.upload_video_resumable(asset)
        except (AssetUploadError, MetaAPIError) as e:
            raise AssetUploadError(
                f"Remote URL upload failed: {remote_error}; Resumable upload failed: {e}"
            ) from e

    def upload_video_from_url(self, asset: AdDraftAsset) -> str:
        url = (asset.supabase_url or "").strip()
        if not url:
            raise AssetUploadError(f"Asset {asset.name} has no source URL")
        video_id, upload_url = self.client.start_video_upload()
        self.client.transfer_video_from_url(upload_url, url)
        self.client.finish_video_upload(video_id, title=asset.name)
        return video_id

    def upload_video_resumable(self, asset: AdDraftAsset) -> str:
        data, content_type = self.fetch_source(asset)
        size = len(data)
        if size == 0:
            raise AssetUploadError(f"Empty video payload for {asset.name}")
        if size > MAX_VIDEO_BYTES:
            raise AssetUploadError(f"Video {asset.name} is {size} bytes, above the 10 GiB limit")
        for w in video_quality_warnings(asset.name, content_type):
            logger.warning("[Upload] %s: %s", asset.name, w)

        video_id, upload_url = self.client.start_video_upload(file_size=size)

        def _attempt(attempt: int) -> None:
            offset = min(max(self.client.get_upload_offset(upload_url), 0), size)
            if offset >= size:
                return
            if offset:
                logger.info("[Upload] resuming %s at byte %d of %d (attempt %d)", asset.name, offset, size, attempt)
            self.client.transfer_video_bytes(upload_url, data[offset:], offset=offset, file_size=size)

        run_with_retry(
            _attempt,
            self.retry_policy,
            is_retryable=is_retryable_upload_error,
            sleep=self.sleep,
            label=f"resumable upload of {asset.name}",
        )

        confirmed = self.client.get_upload_offset(upload_url)
        if confirmed != size:
            raise AssetUploadError(f"Upload incomplete: server has {confirmed} of {size} bytes")

        self.client.finish_video_upload(video_id, title=asset.name)
        return video_id
