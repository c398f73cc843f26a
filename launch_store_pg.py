import json
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from launch_models import AppStatus
from launch_store import brand_from_row
from token_store import BrandTokenInfo


class LaunchStorePG:
    """Postgres-backed record store for the launch pipeline.

    Production backend: the same brands / ad_drafts / ad_draft_assets tables
    as the SQLite LaunchStore, with JSONB for the structured brand columns.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._init()

    def _conn(self):
        return psycopg.connect(self.database_url, row_factory=dict_row)

    def _init(self) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS brands (
                      id TEXT PRIMARY KEY,
                      name TEXT,
                      meta_access_token TEXT,
                      meta_access_token_iv TEXT,
                      meta_access_token_auth_tag TEXT,
                      meta_access_token_expires_at TIMESTAMPTZ,
                      meta_use_page_as_actor BOOLEAN NOT NULL DEFAULT FALSE,
                      meta_instagram_actor_id TEXT,
                      meta_page_backed_instagram_accounts JSONB,
                      slack_webhook_url TEXT,
                      slack_notifications_enabled BOOLEAN NOT NULL DEFAULT FALSE,
                      slack_channel_name TEXT,
                      slack_channel_config JSONB
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ad_drafts (
                      id TEXT PRIMARY KEY,
                      app_status TEXT NOT NULL,
                      meta_ad_id TEXT,
                      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
                # Backward-compatible migration (safe if column already exists)
                cur.execute("ALTER TABLE ad_drafts ADD COLUMN IF NOT EXISTS meta_ad_id TEXT")
                cur.execute(
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

    def get_brand(self, brand_id: str) -> Optional[BrandTokenInfo]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM brands WHERE id=%s", (brand_id,))
                row = cur.fetchone()
        if not row:
            return None
        return brand_from_row(dict(row))

    def put_brand(self, brand: BrandTokenInfo) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO brands (
                      id, name, meta_access_token, meta_access_token_iv, meta_access_token_auth_tag,
                      meta_access_token_expires_at, meta_use_page_as_actor, meta_instagram_actor_id,
                      meta_page_backed_instagram_accounts, slack_webhook_url, slack_notifications_enabled,
                      slack_channel_name, slack_channel_config
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s, %s::jsonb)
                    ON CONFLICT (id) DO UPDATE SET
                      name=EXCLUDED.name,
                      meta_access_token=EXCLUDED.meta_access_token,
                      meta_access_token_iv=EXCLUDED.meta_access_token_iv,
                      meta_access_token_auth_tag=EXCLUDED.meta_access_token_auth_tag,
                      meta_access_token_expires_at=EXCLUDED.meta_access_token_expires_at,
                      meta_use_page_as_actor=EXCLUDED.meta_use_page_as_actor,
                      meta_instagram_actor_id=EXCLUDED.meta_instagram_actor_id,
                      meta_page_backed_instagram_accounts=EXCLUDED.meta_page_backed_instagram_accounts,
                      slack_webhook_url=EXCLUDED.slack_webhook_url,
                      slack_notifications_enabled=EXCLUDED.slack_notifications_enabled,
                      slack_channel_name=EXCLUDED.slack_channel_name,
                      slack_channel_config=EXCLUDED.slack_channel_config
                    """,
                    (
                        brand.id,
                        brand.name,
                        brand.meta_access_token,
                        brand.meta_access_token_iv,
                        brand.meta_access_token_auth_tag,
                        brand.meta_access_token_expires_at,
                        brand.meta_use_page_as_actor,
                        brand.meta_instagram_actor_id,
                        json.dumps(brand.meta_page_backed_instagram_accounts or {}),
                        brand.slack_webhook_url,
                        brand.slack_notifications_enabled,
                        brand.slack_channel_name,
                        json.dumps(brand.slack_channel_config or {}),
                    ),
                )
            conn.commit()

    def update_pbia_mapping(self, brand_id: str, mapping: Dict[str, str]) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE brands SET meta_page_backed_instagram_accounts=%s::jsonb WHERE id=%s",
                    (json.dumps(mapping), brand_id),
                )
            conn.commit()

    def set_draft_status(self, draft_ids: Sequence[str], status: AppStatus, *, ad_id: Optional[str] = None) -> None:
        ids = [str(i) for i in draft_ids if i]
        if not ids:
            return
        now = datetime.now(timezone.utc)
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO ad_drafts (id, app_status, meta_ad_id, updated_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                      app_status=EXCLUDED.app_status,
                      meta_ad_id=COALESCE(EXCLUDED.meta_ad_id, ad_drafts.meta_ad_id),
                      updated_at=EXCLUDED.updated_at
                    """,
                    [(i, AppStatus(status).value, ad_id, now) for i in ids],
                )
            conn.commit()

    def get_draft_status(self, draft_id: str) -> Optional[AppStatus]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT app_status FROM ad_drafts WHERE id=%s", (draft_id,))
                row = cur.fetchone()
        return AppStatus(row["app_status"]) if row else None

    def get_asset_thumbnail_url(self, draft_id: str, asset_name: str) -> Optional[str]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT thumbnail_url FROM ad_draft_assets WHERE draft_id=%s AND name=%s",
                    (draft_id, asset_name),
                )
                row = cur.fetchone()
        if not row or not row.get("thumbnail_url"):
            return None
        return str(row["thumbnail_url"])

    def put_asset_thumbnail_url(self, draft_id: str, asset_name: str, thumbnail_url: str) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO ad_draft_assets (draft_id, name, thumbnail_url)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (draft_id, name) DO UPDATE SET thumbnail_url=EXCLUDED.thumbnail_url
                    """,
                    (draft_id, asset_name, thumbnail_url),
                )
            conn.commit()
