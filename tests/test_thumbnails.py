import io

import pytest
from PIL import Image

from conftest import FakeMetaClient, FakeResponse, FakeSession, FakeStore, meta_error
from launch_models import AdDraft
from object_storage import storage_path_from_public_url
from thumbnails import ThumbnailError, ThumbnailResolver, thumbnail_name_pattern, validate_thumbnail

PUBLIC = "https://proj.supabase.co/storage/v1/object/public/ad-creatives"


def _png_bytes() -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 10, 10)).save(out, format="PNG")
    return out.getvalue()


class FakeStorage:
    bucket = "ad-creatives"

    def __init__(self, folders):
        self.folders = folders
        self.listed = []

    def list_folder(self, folder):
        self.listed.append(folder)
        return self.folders.get(folder, [])

    def public_url(self, path):
        return f"{PUBLIC}/{path}"


def _draft(**asset_overrides):
    asset = {
        "name": "clip_9x16.mp4",
        "type": "video",
        "supabaseUrl": f"{PUBLIC}/concept-7/clip_9x16.mp4",
        "metaVideoId": "v1",
    }
    asset.update(asset_overrides)
    return AdDraft.model_validate({"id": "d1", "adName": "Ad", "conceptId": "concept-7", "assets": [asset]})


def test_pattern_matches_known_thumbnail_names():
    pattern = thumbnail_name_pattern("clip_9x16.mp4")
    for name in ("clip_9x16_thumbnail.jpg", "clip_9x16-thumb.PNG", "clip_9x16.jpg", "clip_9x16.png"):
        assert pattern.match(name), name
    for name in ("clip_9x16.mp4", "other_thumbnail.jpg", "clip_9x16.gif"):
        assert not pattern.match(name), name


def test_validate_thumbnail():
    assert validate_thumbnail(_png_bytes()) == "image/png"
    with pytest.raises(ThumbnailError, match="empty"):
        validate_thumbnail(b"")
    with pytest.raises(ThumbnailError, match="not a valid image"):
        validate_thumbnail(b"definitely not an image")


def test_oversized_thumbnail_rejected(monkeypatch):
    import thumbnails

    monkeypatch.setattr(thumbnails, "MAX_THUMBNAIL_BYTES", 10)
    with pytest.raises(ThumbnailError, match="30 MB"):
        validate_thumbnail(_png_bytes())


def test_persisted_thumbnail_url_wins():
    url = "https://cdn.test/thumbs/clip.png"
    client = FakeMetaClient()
    store = FakeStore()
    store.thumbnails[("d1", "clip_9x16.mp4")] = url
    storage = FakeStorage({})
    resolver = ThumbnailResolver(
        client,
        session=FakeSession({url: FakeResponse(200, content=_png_bytes())}),
        store=store,
        storage=storage,
    )
    draft = _draft()
    resolver.resolve_draft(draft)

    asset = draft.assets[0]
    assert asset.thumbnail_hash == "hash_clip_9x16_thumbnail.png"
    assert asset.thumbnail_url == url
    assert storage.listed == []


def test_folder_search_finds_thumbnail_by_name():
    url = f"{PUBLIC}/concept-7/clip_9x16_thumbnail.png"
    client = FakeMetaClient()
    storage = FakeStorage({"concept-7": ["clip_9x16.mp4", "clip_9x16_thumbnail.png"]})
    store = FakeStore()
    resolver = ThumbnailResolver(
        client,
        session=FakeSession({url: FakeResponse(200, content=_png_bytes())}),
        store=store,
        storage=storage,
    )
    draft = _draft()
    resolver.resolve_draft(draft)

    assert draft.assets[0].thumbnail_hash == "hash_clip_9x16_thumbnail.png"
    assert storage.listed == ["concept-7"]
    assert store.thumbnails[("d1", "clip_9x16.mp4")] == url


def test_missing_thumbnail_is_not_fatal():
    resolver = ThumbnailResolver(FakeMetaClient(), session=FakeSession(), store=FakeStore(), storage=FakeStorage({}))
    draft = _draft()
    resolver.resolve_draft(draft)
    assert draft.assets[0].thumbnail_hash is None


def test_upload_failure_is_not_fatal():
    url = "https://cdn.test/thumbs/clip.png"
    client = FakeMetaClient()
    client.image_errors["clip_9x16_thumbnail.png"] = meta_error("Invalid image")
    resolver = ThumbnailResolver(
        client,
        session=FakeSession({url: FakeResponse(200, content=_png_bytes())}),
    )
    draft = _draft(thumbnailUrl=url)
    resolver.resolve_draft(draft)
    assert draft.assets[0].thumbnail_hash is None


def test_failed_video_assets_are_skipped():
    client = FakeMetaClient()
    resolver = ThumbnailResolver(client, session=FakeSession(), store=FakeStore(), storage=FakeStorage({}))
    draft = _draft(metaVideoId=None, metaUploadError="upload failed")
    resolver.resolve_draft(draft)
    assert client.calls == []


def test_storage_path_from_public_url():
    assert storage_path_from_public_url(f"{PUBLIC}/concept-7/a%20b.mp4", "ad-creatives") == "concept-7/a b.mp4"
    assert storage_path_from_public_url("https://cdn.test/x.mp4", "ad-creatives") is None


def test_oversized_dimensions_rejected(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
    with pytest.raises(ThumbnailError, match="dimensions too large"):
        validate_thumbnail(_png_bytes())


def test_decompression_bomb_thumbnail_is_not_fatal(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
    url = "https://cdn.test/thumbs/huge.png"
    client = FakeMetaClient()
    resolver = ThumbnailResolver(client, session=FakeSession({url: FakeResponse(200, content=_png_bytes())}))
    draft = _draft(thumbnailUrl=url)

    resolver.resolve_draft(draft)

    assert draft.assets[0].thumbnail_hash is None
    assert client.calls == []


def test_unexpected_upload_error_is_not_fatal():
    url = "https://cdn.test/thumbs/clip.png"
    client = FakeMetaClient()
    client.image_errors["clip_9x16_thumbnail.png"] = AttributeError("'str' object has no attribute 'get'")
    resolver = ThumbnailResolver(client, session=FakeSession({url: FakeResponse(200, content=_png_bytes())}))
    draft = _draft(thumbnailUrl=url)

    resolver.resolve_draft(draft)

    assert draft.assets[0].thumbnail_hash is None


def test_storage_public_url_failure_is_not_fatal():
    class BrokenStorage(FakeStorage):
        def public_url(self, path):
            raise RuntimeError("storage unavailable")

    resolver = ThumbnailResolver(
        FakeMetaClient(),
        session=FakeSession(),
        store=FakeStore(),
        storage=BrokenStorage({"concept-7": ["clip_9x16_thumbnail.png"]}),
    )
    draft = _draft()

    resolver.resolve_draft(draft)

    assert draft.assets[0].thumbnail_hash is None
