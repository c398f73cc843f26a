from __future__ import annotations

import io
import logging
import posixpath
import re
from typing import Any, Optional

import requests
from PIL import Image, UnidentifiedImageError

from launch_models import AdDraft, AdDraftAsset
from meta_client import MetaAPIError, MetaClient
from object_storage import storage_path_from_public_url

logger = logging.getLogger(__name__)

MAX_THUMBNAIL_BYTES = 30 * 1024 * 1024
ACCEPTED_THUMBNAIL_MIME = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
}


class ThumbnailError(ValueError):
    pass


def thumbnail_name_pattern(video_name: str) -> re.Pattern:
    """`<base>_thumbnail.*`, `<base>-thumb.*` or `<base>.jpg|png` for a video file name."""
    base = re.escape(posixpath.splitext(posixpath.basename(video_name))[0])
    return re.compile(
        rf"^(?:{base}_thumbnail\.[a-z0-9]+|{base}-thumb\.[a-z0-9]+|{base}\.(?:jpe?g|png))$",
        re.IGNORECASE,
    )


def validate_thumbnail(data: bytes) -> str:
    """Return the image MIME type, raising ThumbnailError when unusable."""
    if not data:
        raise ThumbnailError("thumbnail is empty")
    if len(data) > MAX_THUMBNAIL_BYTES:
        raise ThumbnailError(f"thumbnail is {len(data)} bytes, above the 30 MB limit")
    try:
        img = Image.open(io.BytesIO(data))
        fmt = img.format
        img.verify()
    except Image.DecompressionBombError as e:
        raise ThumbnailError(f"thumbnail dimensions too large: {e}")
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ThumbnailError(f"thumbnail is not a valid image: {e}")
    mime = Image.MIME.get(fmt or "", "")
    if mime not in ACCEPTED_THUMBNAIL_MIME:
        raise ThumbnailError(f"unsupported thumbnail type {mime or fmt or 'unknown'}")
    return mime


class ThumbnailResolver:
    """Find, validate and upload a poster image for each uploaded video asset.

    Lookup order: the asset's own thumbnail_url, the persisted asset record,
    then a filename-pattern search in the asset's storage folder (or the
    concept folder). Nothing here is fatal; a video without a thumbnail is
    still publishable.
    """

    def __init__(
        self,
        client: MetaClient,
        *,
        session: Optional[requests.Session] = None,
        store: Any = None,
        storage: Any = None,
        timeout_s: int = 60,
    ):
        self.client = client
        self.session = session or requests.Session()
        self.store = store
        self.storage = storage
        self.timeout_s = timeout_s

    def resolve_draft(self, draft: AdDraft) -> None:
        for asset in draft.assets:
            if asset.type == "video" and asset.uploaded and not asset.thumbnail_hash:
                asset.thumbnail_hash = self.resolve(draft, asset)

    def resolve(self, draft: AdDraft, asset: AdDraftAsset) -> Optional[str]:
        try:
            url = self.find_thumbnail_url(draft, asset)
        except Exception as e:
            logger.exception("[Thumbnail] lookup failed for %s: %s", asset.name, e)
            return None
        if not url:
            logger.info("[Thumbnail] none found for %s", asset.name)
            return None
        asset.thumbnail_url = url
        try:
            return self._upload(url, asset)
        except (ThumbnailError, MetaAPIError, requests.RequestException) as e:
            logger.warning("[Thumbnail] %s unusable for %s: %s", url, asset.name, e)
            return None
        except Exception as e:
            logger.exception("[Thumbnail] unexpected error for %s: %s", asset.name, e)
            return None

    def find_thumbnail_url(self, draft: AdDraft, asset: AdDraftAsset) -> Optional[str]:
        if asset.thumbnail_url:
            return asset.thumbnail_url

        if self.store is not None:
            try:
                persisted = self.store.get_asset_thumbnail_url(draft.id, asset.name)
            except Exception as e:
                logger.warning("[Thumbnail] asset record lookup failed for %s: %s", asset.name, e)
                persisted = None
            if persisted:
                return persisted

        found = self._search_storage(draft, asset)
        if found and self.store is not None:
            try:
                self.store.put_asset_thumbnail_url(draft.id, asset.name, found)
            except Exception as e:
                logger.warning("[Thumbnail] could not persist thumbnail URL for %s: %s", asset.name, e)
        return found

    def _search_storage(self, draft: AdDraft, asset: AdDraftAsset) -> Optional[str]:
        if self.storage is None:
            return None
        path = storage_path_from_public_url(asset.supabase_url, self.storage.bucket)
        folder = posixpath.dirname(path) if path else (draft.concept_id or "")
        if not folder:
            return None
        pattern = thumbnail_name_pattern(asset.name)
        try:
            names = self.storage.list_folder(folder)
        except Exception as e:
            logger.warning("[Thumbnail] listing %s failed: %s", folder, e)
            return None
        for name in names:
            if pattern.match(name):
                try:
                    return self.storage.public_url(f"{folder}/{name}")
                except Exception as e:
                    logger.warning("[Thumbnail] public URL for %s/%s failed: %s", folder, name, e)
                    return None
        return None

    def _upload(self, url: str, asset: AdDraftAsset) -> str:
        resp = self.session.get(url, timeout=self.timeout_s)
        if resp.status_code >= 400:
            raise ThumbnailError(f"HTTP {resp.status_code} fetching thumbnail")
        data = resp.content or b""
        mime = validate_thumbnail(data)
        ext = mime.split("/")[-1].replace("jpeg", "jpg")
        base = posixpath.splitext(posixpath.basename(asset.name))[0]
        image_hash = self.client.upload_image(
            image_bytes=data,
            filename=f"{base}_thumbnail.{ext}",
            content_type=mime,
        )
        logger.info("[Thumbnail] %s -> hash %s", asset.name, image_hash)
        return image_hash
