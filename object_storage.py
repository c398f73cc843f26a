from __future__ import annotations

import logging
from typing import Any, List, Optional
from urllib.parse import unquote, urlparse

from supabase import create_client

logger = logging.getLogger(__name__)


def storage_path_from_public_url(url: str, bucket: str) -> Optional[str]:
    """'https://x.supabase.co/storage/v1/object/public/<bucket>/a/b.mp4' -> 'a/b.mp4'."""
    path = unquote(urlparse(url or "").path)
    marker = f"/object/public/{bucket}/"
    idx = path.find(marker)
    if idx < 0:
        return None
    return path[idx + len(marker):] or None


class SupabaseObjectStorage:
    """Folder listing + public URLs over a Supabase Storage bucket."""

    def __init__(self, client: Any, bucket: str = "ad-creatives"):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, url: Optional[str], key: Optional[str], bucket: str = "ad-creatives"):
        """None when Supabase is not configured (thumbnail search is then skipped)."""
        if not (url and key):
            return None
        return cls(create_client(url, key), bucket)

    def list_folder(self, folder: str) -> List[str]:
        """Object names (not full paths) directly under `folder`."""
        items = self.client.storage.from_(self.bucket).list(folder.strip("/"))
        names = []
        for item in items or []:
            name = item.get("name") if isinstance(item, dict) else getattr(item, "name", None)
            if name:
                names.append(str(name))
        return names

    def public_url(self, path: str) -> str:
        url = self.client.storage.from_(self.bucket).get_public_url(path.lstrip("/"))
        if isinstance(url, dict):
            url = url.get("publicURL") or url.get("publicUrl") or ""
        return str(url).rstrip("?")
