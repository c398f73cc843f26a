"""
Ad launch orchestrator: one call per launch batch.

Flow (strictly in this order):
  1) validate request, load brand, decrypt token          (batch-fatal)
  2) resolve the Instagram actor once for the batch
  3) mark drafts UPLOADING
  4) upload every asset of every draft                     (asset-level)
  5) resolve video thumbnails                              (best-effort)
  6) one readiness gate over all unique video ids
  7) build creative + create ad per draft                  (draft-level)
  8) persist each terminal status, then send one summary   (best-effort)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Union

import requests
from pydantic import ValidationError

from ad_publisher import AdPublisher
from asset_uploader import AssetUploader
from instagram_actor import resolve_instagram_actor
from launch_config import LaunchConfig
from launch_errors import LaunchRequestError
from launch_models import AdDraft, DraftResult, LaunchAdsRequest, LaunchResponse, LaunchSummary
from launch_store import build_launch_store
from meta_client import MetaClient, MetaConfig
from object_storage import SupabaseObjectStorage
from slack_notify import SlackNotifier
from status_reporter import StatusReporter
from thumbnails import ThumbnailResolver
from token_store import BrandTokenInfo, get_valid_access_token
from video_readiness import ReadinessResult, wait_for_videos

logger = logging.getLogger(__name__)

ClientFactory = Callable[[MetaConfig], MetaClient]


def validate_launch_request(body: Union[LaunchAdsRequest, Dict[str, Any]]) -> LaunchAdsRequest:
    """Reject incomplete requests before any store or platform call."""
    if isinstance(body, LaunchAdsRequest):
        req = body
    else:
        try:
            req = LaunchAdsRequest.model_validate(body or {})
        except ValidationError as e:
            raise LaunchRequestError("Invalid launch request body.", http_status=400, error=str(e))

    if not req.drafts:
        raise LaunchRequestError("No ad drafts provided for launch.")
    if not (req.brand_id or "").strip():
        raise LaunchRequestError("Brand ID is missing.")
    if not (req.ad_account_id or "").strip():
        raise LaunchRequestError("Meta Ad Account ID is missing.")
    if not (req.fb_page_id or "").strip():
        raise LaunchRequestError("Facebook Page ID is missing.")
    return req


class LaunchOrchestrator:
    def __init__(
        self,
        cfg: LaunchConfig,
        *,
        store: Any,
        storage: Any = None,
        notifier: Any = None,
        client_factory: Optional[ClientFactory] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        cancel: Optional[threading.Event] = None,
    ):
        self.cfg = cfg
        self.store = store
        self.storage = storage
        self.reporter = StatusReporter(store, notifier)
        self.client_factory = client_factory or self._default_client
        self.session = session or requests.Session()
        self.sleep = sleep
        self.clock = clock
        self.cancel = cancel

    def _default_client(self, meta_cfg: MetaConfig) -> MetaClient:
        return MetaClient(meta_cfg, session=self.session, sleep=self.sleep)

    # -----------------------------
    # Batch-fatal setup
    # -----------------------------

    def _load_brand(self, brand_id: str) -> BrandTokenInfo:
        try:
            brand = self.store.get_brand(brand_id)
        except Exception as e:
            logger.error("[Launch] error fetching brand %s: %s", brand_id, e)
            raise LaunchRequestError("Failed to fetch brand details.", http_status=500, error=str(e))
        if brand is None:
            raise LaunchRequestError("Brand not found.", http_status=404)
        return brand

    # -----------------------------
    # Run
    # -----------------------------

    def run(self, body: Union[LaunchAdsRequest, Dict[str, Any]]) -> LaunchResponse:
        req = validate_launch_request(body)
        drafts: List[AdDraft] = list(req.drafts or [])
        logger.info(
            "[Launch] %d draft(s) for brand %s, ad account %s, page %s",
            len(drafts),
            req.brand_id,
            req.ad_account_id,
            req.fb_page_id,
        )

        brand = self._load_brand(req.brand_id)
        token = get_valid_access_token(brand, key_hex=self.cfg.token_encryption_key)

        client = self.client_factory(
            MetaConfig(
                access_token=token,
                ad_account_id=req.ad_account_id,
                api_version=self.cfg.api_version,
                app_secret=self.cfg.app_secret,
                timeout_s=self.cfg.timeout_s,
            )
        )

        instagram_user_id = resolve_instagram_actor(
            client,
            brand,
            fb_page_id=req.fb_page_id,
            requested_id=req.instagram_user_id,
            store=self.store,
        )
        logger.info("[Launch] Instagram actor: %s", instagram_user_id or "none (Facebook only)")

        self.reporter.mark_uploading(drafts)

        finished: List[str] = []
        results: List[DraftResult] = []
        try:
            uploader = AssetUploader(
                client,
                session=self.session,
                retry_policy=self.cfg.upload_retry_policy,
                sleep=self.sleep,
            )
            for draft in drafts:
                logger.info("[Launch] uploading %d asset(s) for %s", len(draft.assets), draft.ad_name)
                uploader.upload_draft_assets(draft)

            thumbnails = ThumbnailResolver(client, session=self.session, store=self.store, storage=self.storage)
            for draft in drafts:
                thumbnails.resolve_draft(draft)

            readiness = self._wait_for_videos(client, drafts)

            publisher = AdPublisher(client, page_id=req.fb_page_id, instagram_user_id=instagram_user_id)
            for draft in drafts:
                result = publisher.publish(draft, readiness)
                self.reporter.record(draft, result)
                results.append(result)
                finished.append(draft.id)
        except Exception as e:
            # drafts must not stay UPLOADING once the batch aborts
            logger.exception("[Launch] batch aborted after %d of %d draft(s)", len(finished), len(drafts))
            self.reporter.fail_unfinished(drafts, finished, e)
            raise

        summary = LaunchSummary.from_results(results)
        logger.info(
            "[Launch] done: %d total, %d published, %d uploaded, %d failed",
            summary.total,
            summary.successful,
            summary.uploaded,
            summary.failed,
        )
        self.reporter.notify(
            brand,
            ad_account_id=req.ad_account_id,
            batch_name=req.batch_name,
            results=results,
            summary=summary,
        )

        return LaunchResponse(
            message=f"Ad launch processing complete for {len(drafts)} ad draft(s).",
            results=results,
            summary=summary,
        )

    def _wait_for_videos(self, client: MetaClient, drafts: List[AdDraft]) -> ReadinessResult:
        video_ids = [
            a.meta_video_id
            for d in drafts
            for a in d.assets
            if a.type == "video" and a.uploaded
        ]
        return wait_for_videos(
            client,
            video_ids,
            timeout_s=self.cfg.video_ready_timeout_s,
            poll_s=self.cfg.video_ready_poll_s,
            clock=self.clock,
            sleep=self.sleep,
            cancel=self.cancel,
        )


def build_orchestrator(cfg: LaunchConfig) -> LaunchOrchestrator:
    """Wire the env-configured store, storage and Slack notifier."""
    store = build_launch_store(cfg.launch_db_path, source=cfg.store_source, database_url=cfg.database_url or "")
    storage = SupabaseObjectStorage.from_settings(cfg.supabase_url, cfg.supabase_key, cfg.thumbnail_bucket)
    return LaunchOrchestrator(
        cfg,
        store=store,
        storage=storage,
        notifier=SlackNotifier(enabled=cfg.slack_enabled),
    )
