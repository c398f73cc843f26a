from conftest import FakeMetaClient, FakeStore, make_brand, meta_error
from instagram_actor import resolve_instagram_actor


def test_plain_request_id_is_used_as_is():
    client = FakeMetaClient()
    brand = make_brand(meta_instagram_actor_id="ig_default")
    assert resolve_instagram_actor(client, brand, fb_page_id="page_1", requested_id="ig_req") == "ig_req"
    assert client.calls == []


def test_brand_default_when_nothing_requested():
    brand = make_brand(meta_instagram_actor_id="ig_default")
    assert resolve_instagram_actor(FakeMetaClient(), brand, fb_page_id="page_1") == "ig_default"


def test_no_identity_at_all_means_facebook_only():
    assert resolve_instagram_actor(FakeMetaClient(), make_brand(), fb_page_id="page_1") is None


def test_cached_pbia_used_without_platform_calls():
    client = FakeMetaClient()
    brand = make_brand(meta_use_page_as_actor=True, meta_page_backed_instagram_accounts={"page_1": "pbia_cached"})
    assert resolve_instagram_actor(client, brand, fb_page_id="page_1") == "pbia_cached"
    assert client.calls == []


def test_placeholder_cache_entry_triggers_lookup_of_existing_pbia():
    client = FakeMetaClient()
    client.pbias["page_1"] = ["pbia_existing"]
    store = FakeStore()
    brand = make_brand(meta_use_page_as_actor=True, meta_page_backed_instagram_accounts={"page_1": "PBIA:page_1"})

    actor = resolve_instagram_actor(client, brand, fb_page_id="page_1", store=store)

    assert actor == "pbia_existing"
    assert "create_pbia" not in client.names()
    assert store.pbia_updates == [("brand-1", {"page_1": "pbia_existing"})]


def test_placeholder_request_creates_pbia_for_that_page():
    client = FakeMetaClient()
    store = FakeStore()
    brand = make_brand()

    actor = resolve_instagram_actor(client, brand, fb_page_id="page_1", requested_id="PBIA:page_9", store=store)

    assert actor == "pbia_page_9"
    assert client.names() == ["list_pbia", "create_pbia"]
    assert brand.meta_page_backed_instagram_accounts == {"page_9": "pbia_page_9"}


def test_creation_failure_falls_back_to_brand_default():
    client = FakeMetaClient()
    client.pbia_create_error = meta_error("Permissions error", code=200)
    brand = make_brand(meta_use_page_as_actor=True, meta_instagram_actor_id="ig_default")

    assert resolve_instagram_actor(client, brand, fb_page_id="page_1", requested_id="PBIA:page_1") == "ig_default"


def test_creation_failure_prefers_explicit_request_id():
    client = FakeMetaClient()
    client.pbia_create_error = meta_error("nope", code=100)
    brand = make_brand(meta_use_page_as_actor=True, meta_instagram_actor_id="ig_default")

    assert resolve_instagram_actor(client, brand, fb_page_id="page_1", requested_id="ig_req") == "ig_req"


def test_mapping_persist_failure_is_not_fatal():
    class BrokenStore(FakeStore):
        def update_pbia_mapping(self, brand_id, mapping):
            raise RuntimeError("db down")

    client = FakeMetaClient()
    brand = make_brand(meta_use_page_as_actor=True)
    assert resolve_instagram_actor(client, brand, fb_page_id="page_1", store=BrokenStore()) == "pbia_page_1"
