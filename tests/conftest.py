import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

TEST_KEY = "0123456789abcdef" * 4

os.environ.setdefault("META_TOKEN_ENCRYPTION_KEY", TEST_KEY)
os.environ.setdefault("SLACK_ENABLED", "false")

from launch_config import LaunchConfig  # noqa: E402
from launch_models import AppStatus  # noqa: E402
from meta_client import MetaAPIError  # noqa: E402
from token_store import BrandTokenInfo, encrypt_access_token  # noqa: E402


class FakeResponse:
    def __init__(self, status_code: int = 200, *, json_data: Any = None, content: bytes = b"", text: Optional[str] = None, headers: Optional[dict] = None):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.headers = headers or {}
        if text is not None:
            self.text = text
        elif json_data is not None:
            self.text = json.dumps(json_data)
        else:
            self.text = content.decode("latin-1") if content else ""

    def json(self):
        if self._json is None:
            raise ValueError("not json")
        return self._json


class FakeSession:
    """requests.Session stand-in serving canned responses by URL."""

    def __init__(self, routes: Optional[Dict[str, FakeResponse]] = None):
        self.routes = dict(routes or {})
        self.calls: List[tuple] = []

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        return self.routes.get(url) or FakeResponse(404, text="not found")

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        return self.routes.get(url) or FakeResponse(200, text="ok")


def meta_error(message: str = "boom", *, status: Optional[int] = 400, code: Optional[int] = None, subcode: Optional[int] = None, type_: Optional[str] = None) -> MetaAPIError:
    error: Dict[str, Any] = {"message": message}
    if code is not None:
        error["code"] = code
    if subcode is not None:
        error["error_subcode"] = subcode
    if type_:
        error["type"] = type_
    return MetaAPIError(f"Meta API error ({status}): {message}", http_status=status, error=error)


class FakeMetaClient:
    """In-memory Graph API covering the calls the launch pipeline makes."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.video_status: Dict[str, str] = {}
        self.remote_upload_error: Optional[Exception] = None
        self.image_errors: Dict[str, Exception] = {}
        self.adset_errors: Dict[str, Exception] = {}
        self.create_ad_error: Optional[Exception] = None
        self.created_ads: List[dict] = []
        self.pbias: Dict[str, List[str]] = {}
        self.pbia_create_error: Optional[Exception] = None
        self._next_video = 0
        self._next_ad = 0

    def upload_image(self, *, image_bytes, filename="image.jpg", content_type="image/jpeg"):
        self.calls.append(("upload_image", filename))
        if filename in self.image_errors:
            raise self.image_errors[filename]
        return f"hash_{filename}"

    def start_video_upload(self, *, file_size=None):
        self._next_video += 1
        vid = f"vid_{self._next_video}"
        self.calls.append(("start_video_upload", file_size))
        return vid, f"https://rupload.test/{vid}"

    def transfer_video_from_url(self, upload_url, file_url):
        self.calls.append(("transfer_video_from_url", file_url))
        if self.remote_upload_error is not None:
            raise self.remote_upload_error
        return {"success": True}

    def finish_video_upload(self, video_id, *, title=None):
        self.calls.append(("finish_video_upload", video_id))
        return {"success": True}

    def get_video_status(self, video_id):
        self.calls.append(("get_video_status", video_id))
        return {"id": video_id, "status": {"video_status": self.video_status.get(video_id, "ready")}}

    def get_adset(self, adset_id):
        self.calls.append(("get_adset", adset_id))
        if adset_id in self.adset_errors:
            raise self.adset_errors[adset_id]
        return {"id": adset_id, "name": "Ad set"}

    def create_ad(self, *, name, adset_id, creative, status="PAUSED"):
        self.calls.append(("create_ad", name))
        if self.create_ad_error is not None:
            raise self.create_ad_error
        self._next_ad += 1
        self.created_ads.append({"name": name, "adset_id": adset_id, "creative": creative, "status": status})
        return f"ad_{self._next_ad}"

    def list_page_backed_instagram_accounts(self, page_id):
        self.calls.append(("list_pbia", page_id))
        return [{"id": i} for i in self.pbias.get(page_id, [])]

    def create_page_backed_instagram_account(self, page_id):
        self.calls.append(("create_pbia", page_id))
        if self.pbia_create_error is not None:
            raise self.pbia_create_error
        pbia = f"pbia_{page_id}"
        self.pbias.setdefault(page_id, []).append(pbia)
        return pbia

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]


class FakeStore:
    def __init__(self, brands: Optional[Dict[str, BrandTokenInfo]] = None):
        self.brands = dict(brands or {})
        self.statuses: Dict[str, AppStatus] = {}
        self.ad_ids: Dict[str, str] = {}
        self.thumbnails: Dict[tuple, str] = {}
        self.pbia_updates: List[tuple] = []
        self.status_writes: List[tuple] = []

    def get_brand(self, brand_id):
        return self.brands.get(brand_id)

    def update_pbia_mapping(self, brand_id, mapping):
        self.pbia_updates.append((brand_id, dict(mapping)))

    def set_draft_status(self, draft_ids, status, *, ad_id=None):
        for i in draft_ids:
            self.statuses[i] = status
            self.status_writes.append((i, status))
            if ad_id:
                self.ad_ids[i] = ad_id

    def get_asset_thumbnail_url(self, draft_id, asset_name):
        return self.thumbnails.get((draft_id, asset_name))

    def put_asset_thumbnail_url(self, draft_id, asset_name, thumbnail_url):
        self.thumbnails[(draft_id, asset_name)] = thumbnail_url


def make_brand(*, token: str = "EAAB-test-token", expires_in: Optional[timedelta] = timedelta(days=30), **kwargs) -> BrandTokenInfo:
    enc, iv, tag = encrypt_access_token(token, key_hex=TEST_KEY)
    expires_at = datetime.now(timezone.utc) + expires_in if expires_in is not None else None
    return BrandTokenInfo(
        id=kwargs.pop("id", "brand-1"),
        name=kwargs.pop("name", "Acme"),
        meta_access_token=enc,
        meta_access_token_iv=iv,
        meta_access_token_auth_tag=tag,
        meta_access_token_expires_at=expires_at,
        **kwargs,
    )


def draft_payload(draft_id: str = "d1", *, assets: Optional[List[dict]] = None, **overrides) -> Dict[str, Any]:
    body = {
        "id": draft_id,
        "adName": f"Ad {draft_id}",
        "campaignId": "cmp_1",
        "adSetId": "as_1",
        "primaryText": "Primary text",
        "headline": "Headline",
        "destinationUrl": "https://example.com/landing",
        "callToAction": "Shop now",
        "status": "PAUSED",
        "assets": assets
        if assets is not None
        else [{"name": "hero_1x1.jpg", "type": "image", "supabaseUrl": f"https://cdn.test/{draft_id}/hero_1x1.jpg"}],
    }
    body.update(overrides)
    return body


def launch_body(drafts: List[dict], **overrides) -> Dict[str, Any]:
    body = {
        "drafts": drafts,
        "brandId": "brand-1",
        "adAccountId": "123",
        "fbPageId": "page_1",
    }
    body.update(overrides)
    return body


@pytest.fixture
def cfg() -> LaunchConfig:
    return LaunchConfig(token_encryption_key=TEST_KEY, video_ready_timeout_s=30, video_ready_poll_s=10)


@pytest.fixture
def fake_client() -> FakeMetaClient:
    return FakeMetaClient()


@pytest.fixture
def asset_session() -> FakeSession:
    """Serves any https://cdn.test/... URL with a small payload."""

    class _CdnSession(FakeSession):
        def get(self, url, **kwargs):
            self.calls.append(("GET", url, kwargs))
            if url in self.routes:
                return self.routes[url]
            if url.startswith("https://cdn.test/"):
                return FakeResponse(200, content=b"x" * 2048, headers={"Content-Type": "image/jpeg"})
            return FakeResponse(404, text="not found")

    return _CdnSession()


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
