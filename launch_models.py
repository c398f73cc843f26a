"""Request/response models for a launch batch (camelCase on the wire)."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class AppStatus(str, Enum):
    DRAFT = "DRAFT"
    UPLOADING = "UPLOADING"
    PUBLISHED = "PUBLISHED"
    UPLOADED = "UPLOADED"
    ERROR = "ERROR"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SiteLink(CamelModel):
    title: str = ""
    url: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.title.strip()) and bool(self.url.strip())


class AdDraftAsset(CamelModel):
    name: str
    type: str
    supabase_url: str = ""
    aspect_ratios: List[str] = Field(default_factory=list)
    thumbnail_url: Optional[str] = None

    # Filled in by the uploader; exactly one of these ends up set.
    meta_hash: Optional[str] = None
    meta_video_id: Optional[str] = None
    meta_upload_error: Optional[str] = None
    thumbnail_hash: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v):
        return str(v or "").strip().lower()

    @field_validator("aspect_ratios", mode="before")
    @classmethod
    def _coerce_ratios(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return [str(x).strip() for x in v if str(x).strip()]

    @property
    def uploaded(self) -> bool:
        return bool(self.meta_hash or self.meta_video_id) and not self.meta_upload_error


class AdDraft(CamelModel):
    id: str
    ad_name: str
    brand_id: Optional[str] = None
    campaign_id: Optional[str] = None
    ad_set_id: Optional[str] = None
    primary_text: str = ""
    headline: Optional[str] = None
    description: Optional[str] = None
    destination_url: str = ""
    call_to_action: Optional[str] = None
    assets: List[AdDraftAsset] = Field(default_factory=list)
    status: str = "PAUSED"
    app_status: AppStatus = AppStatus.DRAFT
    site_links: List[SiteLink] = Field(default_factory=list)
    advantage_plus_creative: Dict[str, Any] = Field(default_factory=dict)
    concept_id: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        s = str(v or "").strip().upper()
        return s if s in {"ACTIVE", "PAUSED"} else "PAUSED"

    @field_validator("app_status", mode="before")
    @classmethod
    def _default_app_status(cls, v):
        return v or AppStatus.DRAFT

    @field_validator("advantage_plus_creative", mode="before")
    @classmethod
    def _coerce_enhancements(cls, v):
        return v if isinstance(v, dict) else {}


class LaunchAdsRequest(CamelModel):
    drafts: Optional[List[AdDraft]] = None
    brand_id: Optional[str] = None
    ad_account_id: Optional[str] = None
    fb_page_id: Optional[str] = None
    instagram_user_id: Optional[str] = None
    batch_name: Optional[str] = None


class AssetResult(CamelModel):
    name: str
    type: str
    supabase_url: str = ""
    meta_hash: Optional[str] = None
    meta_video_id: Optional[str] = None
    upload_error: Optional[str] = None

    @classmethod
    def from_asset(cls, asset: AdDraftAsset) -> "AssetResult":
        return cls(
            name=asset.name,
            type=asset.type,
            supabase_url=asset.supabase_url,
            meta_hash=asset.meta_hash,
            meta_video_id=asset.meta_video_id,
            upload_error=asset.meta_upload_error,
        )


class DraftResult(CamelModel):
    ad_name: str
    status: AppStatus
    assets: List[AssetResult] = Field(default_factory=list)
    campaign_id: Optional[str] = None
    ad_set_id: Optional[str] = None
    ad_id: Optional[str] = None
    ad_error: Optional[str] = None


class LaunchSummary(CamelModel):
    total: int = 0
    successful: int = 0
    uploaded: int = 0
    failed: int = 0

    @classmethod
    def from_results(cls, results: List[DraftResult]) -> "LaunchSummary":
        return cls(
            total=len(results),
            successful=sum(1 for r in results if r.status == AppStatus.PUBLISHED),
            uploaded=sum(1 for r in results if r.status == AppStatus.UPLOADED),
            failed=sum(1 for r in results if r.status == AppStatus.ERROR),
        )


class LaunchResponse(CamelModel):
    message: str
    results: List[DraftResult] = Field(default_factory=list)
    summary: LaunchSummary = Field(default_factory=LaunchSummary)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
