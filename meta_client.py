"""
Meta Graph API client used by the ad launch pipeline.

Covers only the protocol surface the launcher needs:
- AdImage upload (multipart) -> image hash
- AdVideo upload sessions (remote-URL ingestion and resumable byte upload)
- AdVideo processing status
- AdSet read, Ad create with an inline creative
- Page-backed Instagram account list/create

Resumable / remote-URL video protocol
-------------------------------------
1) POST /act_<id>/advideos upload_phase=start [file_size=N] -> video_id (+ upload_url)
2) POST <upload_url> with either a `file_url` header (remote ingestion) or the
   remaining bytes plus `offset` / `file_size` headers (resumable)
   GET  <upload_url> -> {"offset": <bytes confirmed>}
3) POST /act_<id>/advideos upload_phase=finish video_id=<id>
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from retry_policy import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


# -----------------------------
# Exceptions
# -----------------------------

class MetaAPIError(RuntimeError):
    def __init__(self, message: str, *, http_status: int | None = None, error: dict | None = None):
        super().__init__(message)
        self.http_status = http_status
        self.error = error or {}

    @property
    def code(self) -> Optional[int]:
        try:
            return int(self.error["code"]) if self.error.get("code") is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def subcode(self) -> Optional[int]:
        try:
            return int(self.error["error_subcode"]) if self.error.get("error_subcode") is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def is_client_error(self) -> bool:
        return self.http_status is not None and 400 <= self.http_status < 500

    @property
    def is_transient(self) -> bool:
        """5xx, rate limits and transport errors (no HTTP status) are worth retrying."""
        return self.http_status is None or self.http_status >= 500 or self.http_status == 429


def is_transient_meta_error(e: Exception) -> bool:
    return isinstance(e, MetaAPIError) and e.is_transient


# -----------------------------
# Config
# -----------------------------

@dataclass(frozen=True)
class MetaConfig:
    access_token: str
    ad_account_id: str
    api_version: str = "v21.0"
    app_secret: str | None = None
    timeout_s: int = 30


def normalize_ad_account_id(ad_account_id: str) -> str:
    """
    Meta endpoints use act_<AD_ACCOUNT_ID>.
    Accept either 'act_123' or '123' from the caller.
    """
    ad_account_id = (ad_account_id or "").strip()
    if ad_account_id.startswith("act_"):
        return ad_account_id
    return f"act_{ad_account_id}"


# -----------------------------
# Meta Client (REST via requests)
# -----------------------------

class MetaClient:
    def __init__(
        self,
        cfg: MetaConfig,
        *,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cfg = cfg
        self.session = session or requests.Session()
        self.sleep = sleep
        self.base_url = f"https://graph.facebook.com/{cfg.api_version}"
        self.video_base_url = f"https://graph-video.facebook.com/{cfg.api_version}"
        self.rupload_base_url = f"https://rupload.facebook.com/video-upload/{cfg.api_version}"
        self.account_path = "/" + normalize_ad_account_id(cfg.ad_account_id)

    def _auth_params(self) -> dict:
        out = {"access_token": self.cfg.access_token}
        # If "App Secret Proof for Server API calls" is enabled on the app,
        # every call must carry this HMAC.
        if self.cfg.app_secret:
            out["appsecret_proof"] = hmac.new(
                self.cfg.app_secret.encode("utf-8"),
                self.cfg.access_token.encode("utf-8"),
                hashlib.sha256,
            ).hexdigest()
        return out

    @staticmethod
    def _parse_response(resp: requests.Response) -> dict:
        text = resp.text or ""
        if not text.strip():
            if resp.status_code >= 400:
                raise MetaAPIError(f"Meta API error ({resp.status_code}): empty response body", http_status=resp.status_code)
            raise MetaAPIError("Meta API returned an empty response body", http_status=resp.status_code)

        try:
            payload = resp.json()
        except ValueError:
            raise MetaAPIError(
                f"Meta API returned non-JSON response ({resp.status_code}): {text[:200]}",
                http_status=resp.status_code,
            )
        if not isinstance(payload, dict):
            payload = {"data": payload}

        if resp.status_code >= 400 or ("error" in payload):
            error_obj = payload.get("error") or {}
            if not isinstance(error_obj, dict):
                error_obj = {"message": str(error_obj)}
            msg = error_obj.get("error_user_msg") or error_obj.get("message") or "Unknown Meta API error"
            raise MetaAPIError(
                f"Meta API error ({resp.status_code}): {msg}",
                http_status=resp.status_code,
                error=error_obj,
            )
        return payload

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        data: Any = None,
        files: Optional[dict] = None,
        headers: Optional[dict] = None,
        url: Optional[str] = None,
        max_retries: int = 2,
        use_video: bool = False,
        oauth_header: bool = False,
    ) -> dict:
        if url is None:
            base = self.video_base_url if use_video else self.base_url
            url = base + "/" + path.lstrip("/")
        params = dict(params or {})
        headers = dict(headers or {})

        # Graph accepts access_token as query or form field; the upload host
        # wants an OAuth Authorization header instead.
        if oauth_header:
            headers.setdefault("Authorization", f"OAuth {self.cfg.access_token}")
        elif method.upper() == "GET" or files is not None or not isinstance(data, (dict, type(None))):
            for k, v in self._auth_params().items():
                params.setdefault(k, v)
        else:
            data = dict(data or {})
            for k, v in self._auth_params().items():
                data.setdefault(k, v)

        def _once(attempt: int) -> dict:
            try:
                resp = self.session.request(
                    method=method.upper(),
                    url=url,
                    params=params,
                    data=data,
                    files=files,
                    headers=headers or None,
                    timeout=self.cfg.timeout_s,
                )
            except requests.RequestException as e:
                raise MetaAPIError(f"Network error calling Meta API: {e}") from e
            return self._parse_response(resp)

        # Retry only for transient-ish server errors/rate limits/network errors.
        policy = RetryPolicy.linear_backoff(max_retries + 1, 1.5)
        return run_with_retry(
            _once,
            policy,
            is_retryable=is_transient_meta_error,
            sleep=self.sleep,
            label=f"{method.upper()} {url.split('?')[0]}",
        )

    # -----------------------------
    # Diagnostics
    # -----------------------------

    def get_object(self, object_id: str, fields: str, *, max_retries: int = 2) -> dict:
        return self._request("GET", f"/{object_id}", params={"fields": fields}, max_retries=max_retries)

    # -----------------------------
    # Images
    # -----------------------------

    def upload_image(
        self,
        *,
        image_bytes: bytes,
        filename: str = "image.jpg",
        content_type: str = "image/jpeg",
    ) -> str:
        """
        Uploads an image and returns image_hash.
        Meta expects the file under the multipart field name `filename` and
        keys the response by that name.
        """
        if not image_bytes:
            raise ValueError("Refusing to upload an empty image payload.")

        files = {"filename": (filename, image_bytes, content_type)}
        payload = self._request("POST", f"{self.account_path}/adimages", files=files, data={})

        images = payload.get("images") if isinstance(payload, dict) else None
        if not images or not isinstance(images, dict):
            raise MetaAPIError(f"Upload did not return images. Response: {payload}")

        img_obj = images.get(filename) or images[next(iter(images.keys()))]
        image_hash = img_obj.get("hash") if isinstance(img_obj, dict) else None
        if not image_hash:
            raise MetaAPIError(f"Could not parse image_hash from response: {payload}")
        return str(image_hash)

    # -----------------------------
    # Videos
    # -----------------------------

    def start_video_upload(self, *, file_size: Optional[int] = None) -> Tuple[str, str]:
        """Open an upload session. Returns (video_id, upload_url)."""
        data: Dict[str, Any] = {"upload_phase": "start"}
        if file_size is not None:
            data["file_size"] = str(int(file_size))
        payload = self._request("POST", f"{self.account_path}/advideos", data=data, use_video=True)
        video_id = str(payload.get("video_id") or payload.get("id") or "").strip()
        if not video_id:
            raise MetaAPIError(f"Video upload session did not return video_id. Response: {payload}")
        upload_url = str(payload.get("upload_url") or "").strip() or f"{self.rupload_base_url}/{video_id}"
        return video_id, upload_url

    def transfer_video_from_url(self, upload_url: str, file_url: str) -> dict:
        """Ask Meta to pull the video bytes from `file_url` itself."""
        return self._request(
            "POST",
            "",
            url=upload_url,
            headers={"file_url": file_url},
            oauth_header=True,
            max_retries=0,
        )

    def transfer_video_bytes(self, upload_url: str, chunk: bytes, *, offset: int, file_size: int) -> dict:
        """Send `chunk` (bytes from `offset` to the end of the file)."""
        return self._request(
            "POST",
            "",
            url=upload_url,
            data=chunk,
            headers={
                "offset": str(int(offset)),
                "file_size": str(int(file_size)),
                "Content-Type": "application/octet-stream",
            },
            oauth_header=True,
            max_retries=0,
        )

    def get_upload_offset(self, upload_url: str) -> int:
        """Bytes the upload host has confirmed for this session."""
        payload = self._request("GET", "", url=upload_url, oauth_header=True, max_retries=0)
        for key in ("offset", "bytes_received", "start_offset"):
            if payload.get(key) is not None:
                try:
                    return int(payload[key])
                except (TypeError, ValueError):
                    break
        raise MetaAPIError(f"Upload status did not include a byte offset. Response: {payload}")

    def finish_video_upload(self, video_id: str, *, title: Optional[str] = None) -> dict:
        data: Dict[str, Any] = {"upload_phase": "finish", "video_id": video_id}
        if title:
            data["title"] = title
        payload = self._request("POST", f"{self.account_path}/advideos", data=data, use_video=True)
        if payload.get("success") is False:
            raise MetaAPIError(f"Video upload finish was rejected for {video_id}. Response: {payload}")
        return payload

    def get_video_status(self, video_id: str) -> dict:
        """Single status read (no internal retries; the readiness gate polls)."""
        return self.get_object(str(video_id), fields="status", max_retries=0)

    # -----------------------------
    # Ads
    # -----------------------------

    def get_adset(self, adset_id: str) -> dict:
        return self.get_object(adset_id, fields="id,name,status,effective_status,campaign_id")

    def create_ad(self, *, name: str, adset_id: str, creative: dict, status: str = "PAUSED") -> str:
        data = {
            "name": name,
            "adset_id": adset_id,
            # inline creative, serialized as JSON
            "creative": json.dumps(creative),
            "status": status,
        }
        payload = self._request("POST", f"{self.account_path}/ads", data=data)
        ad_id = str(payload.get("id") or "").strip()
        if not ad_id:
            raise MetaAPIError(f"Ad ID not found in Meta response: {payload}")
        return ad_id

    # -----------------------------
    # Page-backed Instagram accounts
    # -----------------------------

    def list_page_backed_instagram_accounts(self, page_id: str) -> List[dict]:
        payload = self._request("GET", f"/{page_id}/page_backed_instagram_accounts", params={"fields": "id"})
        data = payload.get("data") or []
        return data if isinstance(data, list) else []

    def create_page_backed_instagram_account(self, page_id: str) -> str:
        payload = self._request("POST", f"/{page_id}/page_backed_instagram_accounts", data={})
        pbia_id = str(payload.get("id") or "").strip()
        if not pbia_id:
            raise MetaAPIError(f"Page-backed Instagram account creation returned no id: {payload}")
        return pbia_id
