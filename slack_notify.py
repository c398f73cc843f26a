from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from launch_models import AppStatus, DraftResult, LaunchSummary
from token_store import BrandTokenInfo

logger = logging.getLogger(__name__)

MAX_BLOCK_TEXT = 2900
MAX_AD_LINES = 40

_STATUS_ICON = {
    AppStatus.PUBLISHED: ":white_check_mark:",
    AppStatus.UPLOADED: ":warning:",
    AppStatus.ERROR: ":x:",
}


@dataclass
class LaunchNotification:
    """Batch summary handed to the notification sink."""

    brand_id: str
    brand_name: str
    batch_name: Optional[str]
    ad_account_id: str
    results: List[DraftResult] = field(default_factory=list)
    summary: LaunchSummary = field(default_factory=LaunchSummary)

    @property
    def campaign_ids(self) -> List[str]:
        return sorted({r.campaign_id for r in self.results if r.campaign_id})

    @property
    def ad_set_ids(self) -> List[str]:
        return sorted({r.ad_set_id for r in self.results if r.ad_set_id})


def _truncate(s: str, limit: int) -> str:
    return s if len(s) <= limit else (s[: max(0, limit - 1)] + "…")


def _mk_section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": _truncate(text, MAX_BLOCK_TEXT)}}


def _mk_context(text: str) -> Dict[str, Any]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": _truncate(text, MAX_BLOCK_TEXT)}]}


def _mk_divider() -> Dict[str, Any]:
    return {"type": "divider"}


def build_launch_blocks(n: LaunchNotification) -> List[Dict[str, Any]]:
    s = n.summary
    title = f"*Meta ads launched for {n.brand_name or n.brand_id}*"
    if n.batch_name:
        title += f" ({n.batch_name})"
    totals = (
        f"Total {s.total} | Published {s.successful} | Uploaded {s.uploaded} | Failed {s.failed}"
    )
    blocks: List[Dict[str, Any]] = [_mk_section(title), _mk_section(totals)]

    lines = []
    for r in n.results[:MAX_AD_LINES]:
        icon = _STATUS_ICON.get(r.status, "")
        line = f"{icon} {r.ad_name}: {r.status.value}"
        if r.ad_id:
            line += f" (ad {r.ad_id})"
        elif r.ad_error:
            line += f" ({_truncate(r.ad_error, 200)})"
        lines.append(line)
    if len(n.results) > MAX_AD_LINES:
        lines.append(f"... and {len(n.results) - MAX_AD_LINES} more")
    if lines:
        blocks.append(_mk_divider())
        blocks.append(_mk_section("\n".join(lines)))

    ctx = [f"Account {n.ad_account_id}"]
    if n.campaign_ids:
        ctx.append("Campaigns " + ", ".join(n.campaign_ids))
    if n.ad_set_ids:
        ctx.append("Ad sets " + ", ".join(n.ad_set_ids))
    blocks.append(_mk_context(" | ".join(ctx)))
    return blocks


def channel_for(brand: BrandTokenInfo) -> Optional[str]:
    cfg = brand.slack_channel_config or {}
    channel = str(cfg.get("meta_launch") or cfg.get("ads") or brand.slack_channel_name or "").strip()
    return channel or None


class SlackNotifier:
    """Incoming-webhook sender for launch summaries (brand-level webhook)."""

    def __init__(self, *, enabled: bool = True, session: Optional[requests.Session] = None, timeout_s: int = 10):
        self.enabled = enabled
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def is_routable(self, brand: BrandTokenInfo) -> bool:
        return self.enabled and brand.slack_notifications_enabled and bool((brand.slack_webhook_url or "").strip())

    def send_launch_summary(self, brand: BrandTokenInfo, notification: LaunchNotification) -> bool:
        """Post the summary; False when Slack is not configured for the brand."""
        if not self.is_routable(brand):
            logger.info("[Slack] notifications disabled for brand %s", brand.id)
            return False

        s = notification.summary
        payload: Dict[str, Any] = {
            "text": f"Meta ads launched: {s.successful}/{s.total} published",
            "blocks": build_launch_blocks(notification),
        }
        channel = channel_for(brand)
        if channel:
            payload["channel"] = channel

        resp = self.session.post(brand.slack_webhook_url.strip(), json=payload, timeout=self.timeout_s)
        if resp.status_code >= 400:
            raise RuntimeError(f"Slack webhook returned HTTP {resp.status_code}: {(resp.text or '')[:200]}")
        return True
