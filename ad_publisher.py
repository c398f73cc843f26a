"""
Per-draft publish step and terminal-status classification.

ASSETS_PROCESSED -> PUBLISHED | UPLOADED | ERROR

1) every uploaded video of the draft must be ready (readiness gate result)
2) the target ad set must be readable
3) POST /act_<id>/ads with the inline creative and the requested status

Failures are classified: configuration errors -> ERROR; otherwise a draft
with at least one uploaded asset -> UPLOADED (kept for manual retry); else
ERROR.
"""

from __future__ import annotations

import logging
from typing import Optional

from creative_spec import build_creative_spec, to_graph_creative
from launch_errors import DraftLaunchError
from launch_models import AdDraft, AppStatus, AssetResult, DraftResult
from meta_client import MetaAPIError, MetaClient
from video_readiness import ReadinessResult

logger = logging.getLogger(__name__)

# Graph error codes that mean the request itself (or the account setup) is wrong.
CONFIG_ERROR_CODES = {10, 102, 190}
PERMISSION_CODE_RANGE = range(200, 300)
INVALID_PARAMETER_CODE = 100
OBJECT_DOES_NOT_EXIST_SUBCODE = 33

# Used only when the error carries no structured code.
CONFIG_ERROR_SIGNATURES = (
    "regional regulation",
    "invalid parameter",
    "oauthexception",
    "ad creation failed",
    "ad set creation failed",
    "dsa",
    "payor",
    "beneficiary",
)


def _meta_error_of(e: Exception) -> Optional[MetaAPIError]:
    if isinstance(e, MetaAPIError):
        return e
    if isinstance(e, DraftLaunchError):
        return e.meta_error
    return None


def is_configuration_error(e: Exception) -> bool:
    meta = _meta_error_of(e)
    if meta is not None and meta.code is not None:
        code, subcode = meta.code, meta.subcode
        if code == INVALID_PARAMETER_CODE:
            return subcode != OBJECT_DOES_NOT_EXIST_SUBCODE
        if code in CONFIG_ERROR_CODES or code in PERMISSION_CODE_RANGE:
            return True
        return str(meta.error.get("type") or "") == "OAuthException"

    text = str(e).lower()
    return any(sig in text for sig in CONFIG_ERROR_SIGNATURES)


def classify_failure(draft: AdDraft, e: Exception) -> AppStatus:
    if isinstance(e, DraftLaunchError) and e.fatal:
        return AppStatus.ERROR
    if is_configuration_error(e):
        return AppStatus.ERROR
    if any(a.uploaded for a in draft.assets):
        return AppStatus.UPLOADED
    return AppStatus.ERROR


class AdPublisher:
    def __init__(self, client: MetaClient, *, page_id: str, instagram_user_id: Optional[str] = None):
        self.client = client
        self.page_id = page_id
        self.instagram_user_id = instagram_user_id

    def publish(self, draft: AdDraft, readiness: Optional[ReadinessResult] = None) -> DraftResult:
        """Never raises: every draft ends with a terminal status and adId or adError."""
        result = DraftResult(
            ad_name=draft.ad_name,
            status=AppStatus.ERROR,
            assets=[AssetResult.from_asset(a) for a in draft.assets],
            campaign_id=draft.campaign_id,
            ad_set_id=draft.ad_set_id,
        )
        try:
            result.ad_id = self._publish(draft, readiness)
            result.status = AppStatus.PUBLISHED
            logger.info("[Publish] %s -> ad %s", draft.ad_name, result.ad_id)
        except Exception as e:
            result.status = classify_failure(draft, e)
            result.ad_error = str(e)
            logger.warning("[Publish] %s -> %s: %s", draft.ad_name, result.status.value, e)
        return result

    def _publish(self, draft: AdDraft, readiness: Optional[ReadinessResult]) -> str:
        video_ids = [a.meta_video_id for a in draft.assets if a.type == "video" and a.uploaded]
        if video_ids and readiness is not None:
            failure = readiness.failure_for(video_ids)
            if failure:
                raise DraftLaunchError(failure, fatal=True)

        adset_id = (draft.ad_set_id or "").strip()
        if not adset_id:
            raise DraftLaunchError("Draft has no target ad set", fatal=True)
        try:
            self.client.get_adset(adset_id)
        except MetaAPIError as e:
            raise DraftLaunchError(f"Ad set {adset_id} not found or not accessible: {e}", meta_error=e) from e

        spec = build_creative_spec(draft, self.page_id, self.instagram_user_id)
        try:
            return self.client.create_ad(
                name=draft.ad_name,
                adset_id=adset_id,
                creative=to_graph_creative(spec),
                status=draft.status,
            )
        except MetaAPIError as e:
            raise DraftLaunchError(f"Failed to create ad: {e}", meta_error=e) from e
