from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from launch_models import AdDraft, AppStatus, AssetResult, DraftResult, LaunchSummary
from slack_notify import LaunchNotification, SlackNotifier
from token_store import BrandTokenInfo

logger = logging.getLogger(__name__)


class StatusReporter:
    """Writes draft lifecycle status to the store and sends the batch summary.

    UPLOADING is written best-effort at batch start. Terminal statuses are
    written per draft; a write failure is logged and does not change the
    result returned to the caller. The Slack summary never raises.
    """

    def __init__(self, store: Any, notifier: Optional[SlackNotifier] = None):
        self.store = store
        self.notifier = notifier

    def mark_uploading(self, drafts: Iterable[AdDraft]) -> None:
        drafts = list(drafts)
        ids = [d.id for d in drafts]
        for d in drafts:
            d.app_status = AppStatus.UPLOADING
        try:
            self.store.set_draft_status(ids, AppStatus.UPLOADING)
        except Exception as e:
            logger.warning("[Status] could not mark %d draft(s) UPLOADING: %s", len(ids), e)

    def record(self, draft: AdDraft, result: DraftResult) -> None:
        draft.app_status = result.status
        try:
            self.store.set_draft_status([draft.id], result.status, ad_id=result.ad_id)
        except Exception as e:
            logger.error("[Status] failed to persist %s for draft %s: %s", result.status.value, draft.id, e)

    def notify(
        self,
        brand: BrandTokenInfo,
        *,
        ad_account_id: str,
        batch_name: Optional[str],
        results: List[DraftResult],
        summary: LaunchSummary,
    ) -> None:
        if self.notifier is None:
            return
        notification = LaunchNotification(
            brand_id=brand.id,
            brand_name=brand.name,
            batch_name=batch_name,
            ad_account_id=ad_account_id,
            results=results,
            summary=summary,
        )
        try:
            self.notifier.send_launch_summary(brand, notification)
        except Exception as e:
            logger.warning("[Slack] launch summary for brand %s not delivered: %s", brand.id, e)

    def fail_unfinished(self, drafts: Iterable[AdDraft], finished: Iterable[str], error: Exception) -> None:
        """Record ERROR for every draft that has no terminal status yet."""
        done = set(finished)
        message = str(error) or error.__class__.__name__
        for draft in drafts:
            if draft.id in done:
                continue
            self.record(
                draft,
                DraftResult(
                    ad_name=draft.ad_name,
                    status=AppStatus.ERROR,
                    assets=[AssetResult.from_asset(a) for a in draft.assets],
                    campaign_id=draft.campaign_id,
                    ad_set_id=draft.ad_set_id,
                    ad_error=message,
                ),
            )
