from __future__ import annotations

import logging
from typing import Any, Optional

from meta_client import MetaAPIError, MetaClient
from token_store import BrandTokenInfo

logger = logging.getLogger(__name__)

PBIA_PREFIX = "PBIA:"


def is_pbia_placeholder(value: Optional[str]) -> bool:
    return bool(value) and str(value).startswith(PBIA_PREFIX)


def page_id_from_placeholder(value: str) -> str:
    return str(value)[len(PBIA_PREFIX):].strip()


def _ensure_pbia(client: MetaClient, page_id: str) -> str:
    """Existing page-backed account for the page, or a freshly created one."""
    try:
        existing = client.list_page_backed_instagram_accounts(page_id)
    except MetaAPIError as e:
        # listing is advisory; creation below is the authoritative call
        logger.warning("[Actor] listing page-backed accounts for %s failed: %s", page_id, e)
        existing = []
    for acct in existing:
        acct_id = str((acct or {}).get("id") or "").strip()
        if acct_id:
            return acct_id
    pbia_id = client.create_page_backed_instagram_account(page_id)
    logger.info("[Actor] created page-backed Instagram account %s for page %s", pbia_id, page_id)
    return pbia_id


def resolve_instagram_actor(
    client: MetaClient,
    brand: BrandTokenInfo,
    *,
    fb_page_id: str,
    requested_id: Optional[str] = None,
    store: Any = None,
) -> Optional[str]:
    """Pick the Instagram identity to attach to every ad in the batch.

    Order:
      - page-as-actor (brand flag or `PBIA:<page>` request): cached mapping,
        else list/create on the page, persisting a new mapping best-effort
      - explicit request id (when not a placeholder)
      - brand default `meta_instagram_actor_id`
      - None (Facebook-only ads)
    """
    requested = (requested_id or "").strip() or None
    fallback = None if is_pbia_placeholder(requested) else requested
    fallback = fallback or (brand.meta_instagram_actor_id or "").strip() or None

    use_page = brand.meta_use_page_as_actor or is_pbia_placeholder(requested)
    if not use_page:
        return fallback

    page_id = page_id_from_placeholder(requested) if is_pbia_placeholder(requested) else fb_page_id
    page_id = (page_id or fb_page_id or "").strip()
    mapping = dict(brand.meta_page_backed_instagram_accounts or {})

    cached = str(mapping.get(page_id) or "").strip()
    if cached and not is_pbia_placeholder(cached):
        return cached

    try:
        pbia_id = _ensure_pbia(client, page_id)
    except MetaAPIError as e:
        logger.warning("[Actor] page-backed account unavailable for page %s, falling back: %s", page_id, e)
        return fallback

    mapping[page_id] = pbia_id
    brand.meta_page_backed_instagram_accounts = mapping
    if store is not None:
        try:
            store.update_pbia_mapping(brand.id, mapping)
        except Exception as e:
            logger.warning("[Actor] could not persist page-backed account mapping for brand %s: %s", brand.id, e)
    return pbia_id
