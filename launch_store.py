from __future__ import annotations

import json
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from launch_models import AppStatus
from token_store import BrandTokenInfo, parse_expiry


def _loads(raw: Any, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    if isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def brand_from_row(row: Dict[str, Any]) -> BrandTokenInfo:
    """Map a `brands` row (SQLite or Postgres) onto BrandTokenInfo."""
    return BrandTokenInfo(
        id=str(row["id"]),
        name=row.get("name") or "",
        meta_access_token=row.get("meta_access_token"),
        meta_access_token_iv=row.get("meta_access_token_iv"),
        meta_access_token_auth_tag=row.get("meta_access_token_auth_tag"),
        meta_access_token_expires_at=parse_expiry(row.get("meta_access_token_expires_at")),
        meta_use_page_as_actor=bool(row.get("meta_use_page_as_actor")),
        meta_instagram_actor_id=row.get("meta_instagram_actor_id"),
        meta_page_backed_instagram_accounts=_loads(row.get("meta_page_backed_instagram_accounts"), {}),
        slack_webhook_url=row.get("slack_webhook_url"),
        slack_notifications_enabled=bool(row.get("slack_notifications_enabled")),
        slack_channel_name=row.get("slack_channel_name"),
        slack_channel_config=_loads(row.get("slack_channel_config"), {}),
    )


class LaunchStore:
    """SQLite-backed record store for the launch pipeline.

    Tables:
      - brands: Meta credentials, actor settings and Slack settings per brand
      - ad_drafts: app_status (+ meta_ad_id) per draft
      - ad_draft_assets: persisted asset metadata (thumbnail_url by asset name)

    For production, prefer LaunchStorePG (Postgres) with LAUNCH_STORE_SOURCE=db.
    """

    def __init__(self, db_path: str = ".launch_state.db"):
        self.db_path = db_path
        self._init()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init(self) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS brands (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    meta_access_token TEXT,
                    meta_access_token_iv TEXT,
                    meta_access_token_auth_tag TEXT,
                    meta_access_token_expires_at TEXT,
                    meta_use_page_as_actor INTEGER NOT NULL DEFAULT 0,
                    meta_instagram_actor_id TEXT,
                    meta_page_backed_instagram_accounts TEXT,
                    slack_webhook_url TEXT,
                    slack_notifications_enabled INTEGER NOT NULL DEFAULT 0,
                    slack_channel_name TEXT,
                    slack_channel_config TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ad_drafts (
                    id TEXT PRIMARY KEY,
                    app_status TEXT NOT NULL,
                    meta_ad_id TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ad_draft_assets (
                    draft_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    thumbnail_url TEXT,
                    PRIMARY KEY (draft_id, name)
                )
                """
            )
            conn.commit()

    # -----------------------------
    # Brands
    # -----------------------------

    def get_brand(self, brand_id: str) -> Optional[BrandTokenInfo]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM brands WHERE id=?", (brand_id,)).fetchone()
        if not row:
            return None
        return brand_from_row(dict(row))

    def put_brand(self, brand: BrandTokenInfo) -> None:
        expires = brand.meta_access_token_expires_at.isoformat() if brand.meta_access_token_expires_at else None
        with self._conn() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO brands (
                    id, name, meta_access_token, meta_access_token_iv, meta_access_token_auth_tag,
                    meta_access_token_expires_at, meta_use_page_as_actor, meta_instagram_actor_id,
                    meta_page_backed_instagram_accounts, slack_webhook_url, slack_notifications_enabled,
                    slack_channel_name, slack_channel_config
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    brand.id,
                    brand.name,
                    brand.meta_access_token,
                    brand.meta_access_token_iv,
                    brand.meta_access_token_auth_tag,
                    expires,
                    int(brand.meta_use_page_as_actor),
                    brand.meta_instagram_actor_id,
                    json.dumps(brand.meta_page_backed_instagram_accounts or {}),
                    brand.slack_webhook_url,
                    int(brand.slack_notifications_enabled),
                    brand.slack_channel_name,
                    json.dumps(brand.slack_channel_config or {}),
                ),
            )
            conn.commit()

    def update_pbia_mapping(self, brand_id: str, mapping: Dict[str, str]) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE brands SET meta_page_backed_instagram_accounts=? WHERE id=?",
                (json.dumps(mapping), brand_id),
            )
            conn.commit()

    # -----------------------------
    # Drafts
    # -----------------------------

    def set_draft_status(self, draft_ids: Sequence[str], status: AppStatus, *, ad_id: Optional[str] = None) -> None:
        ids = [str(i) for i in draft_ids if i]
        if not ids:
            return
        now = datetime.now(timezone.utc).isoformat()
        with self._conn() as conn:
            conn.executemany(
                """
                INSERT INTO ad_drafts (id, app_status, meta_ad_id, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    app_status=excluded.app_status,
                    meta_ad_id=COALESCE(excluded.meta_ad_id, ad_drafts.meta_ad_id),
                    updated_at=excluded.updated_at
                """,
                [(i, AppStatus(status).value, ad_id, now) for i in ids],
            )
            conn.commit()

    def get_draft_status(self, draft_id: str) -> Optional[AppStatus]:
        with self._conn() as conn:
            row = conn.execute("SELECT app_status FROM ad_drafts WHERE id=?", (draft_id,)).fetchone()
        return AppStatus(row["app_status"]) if row else None

    def get_asset_thumbnail_url(self, draft_id: str, asset_name: str) -> Optional[str]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT thumbnail_url FROM ad_draft_assets WHERE draft_id=? AND name=?",
                (draft_id, asset_name),
            ).fetchone()
        if not row or not row["thumbnail_url"]:
            return None
        return str(row["thumbnail_url"])

    def put_asset_thumbnail_url(self, draft_id: str, asset_name: str, thumbnail_url: str) -> None:
        with self._conn() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO ad_draft_assets (draft_id, name, thumbnail_url) VALUES (?, ?, ?)",
                (draft_id, asset_name, thumbnail_url),
            )
            conn.commit()


def build_launch_store(db_path: str, *, source: Optional[str] = None, database_url: Optional[str] = None):
    """Factory: SQLite (default) or Postgres.

    Enable Postgres store by setting:
      LAUNCH_STORE_SOURCE=db
      DATABASE_URL=...
    """
    source = (source if source is not None else os.getenv("LAUNCH_STORE_SOURCE") or "").strip().lower()
    database_url = (database_url if database_url is not None else os.getenv("DATABASE_URL") or "").strip()
    if source == "db" and database_url:
        from launch_store_pg import LaunchStorePG

        return LaunchStorePG(database_url)
    return LaunchStore(db_path)
