"""launch_config.py

Service configuration for the ad launch pipeline.

Everything the orchestrator needs (API version, timeouts, readiness gate and
upload retry constants, store/storage selection) is read once from the
environment (optionally via .env) and passed down explicitly.

Environment variables
---------------------
- META_API_VERSION (default: v21.0)
- META_TIMEOUT_S (default: 30)
- META_APP_SECRET (optional; adds appsecret_proof to Graph calls)
- META_TOKEN_ENCRYPTION_KEY (64 hex chars, AES-256 key for stored brand tokens)
- VIDEO_READY_TIMEOUT_S (default: 300)
- VIDEO_READY_POLL_S (default: 10)
- VIDEO_UPLOAD_MAX_ATTEMPTS (default: 3)
- VIDEO_UPLOAD_BACKOFF_S (default: 5)
- LAUNCH_STORE_SOURCE ("db" to use Postgres via DATABASE_URL)
- LAUNCH_DB_PATH (default: .launch_state.db; ignored if LAUNCH_STORE_SOURCE=db)
- SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY / THUMBNAIL_BUCKET
- SLACK_ENABLED (default: true)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from retry_policy import RetryPolicy


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip() or default


def _env_int(name: str, default: int) -> int:
    v = (os.getenv(name) or "").strip()
    if not v:
        return int(default)
    try:
        return int(v)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {v!r}.")


def _env_bool(name: str, default: bool) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if not v:
        return default
    return v not in {"0", "false", "no", "off"}


@dataclass(frozen=True)
class LaunchConfig:
    api_version: str = "v21.0"
    timeout_s: int = 30
    app_secret: str | None = None
    token_encryption_key: str | None = None

    # Video readiness gate
    video_ready_timeout_s: int = 300
    video_ready_poll_s: int = 10

    # Resumable video upload
    video_upload_max_attempts: int = 3
    video_upload_backoff_s: float = 5.0

    # Collaborators
    store_source: str = ""
    database_url: str | None = None
    launch_db_path: str = ".launch_state.db"
    supabase_url: str | None = None
    supabase_key: str | None = None
    thumbnail_bucket: str = "ad-creatives"
    slack_enabled: bool = True

    @property
    def upload_retry_policy(self) -> RetryPolicy:
        return RetryPolicy.fixed(self.video_upload_max_attempts, self.video_upload_backoff_s)

    @staticmethod
    def from_env(env_path: Optional[str] = None) -> "LaunchConfig":
        """Loads config from environment variables (optionally via .env)."""
        if env_path:
            load_dotenv(env_path, override=False)
        else:
            load_dotenv(override=False)

        key = _env_str("META_TOKEN_ENCRYPTION_KEY") or None
        if key is not None and len(key) != 64:
            raise ValueError("META_TOKEN_ENCRYPTION_KEY must be 64 hex characters (32 bytes) for AES-256.")

        return LaunchConfig(
            api_version=_env_str("META_API_VERSION", "v21.0"),
            timeout_s=_env_int("META_TIMEOUT_S", 30),
            app_secret=_env_str("META_APP_SECRET") or None,
            token_encryption_key=key,
            video_ready_timeout_s=_env_int("VIDEO_READY_TIMEOUT_S", 300),
            video_ready_poll_s=_env_int("VIDEO_READY_POLL_S", 10),
            video_upload_max_attempts=_env_int("VIDEO_UPLOAD_MAX_ATTEMPTS", 3),
            video_upload_backoff_s=float(_env_int("VIDEO_UPLOAD_BACKOFF_S", 5)),
            store_source=_env_str("LAUNCH_STORE_SOURCE").lower(),
            database_url=_env_str("DATABASE_URL") or None,
            launch_db_path=_env_str("LAUNCH_DB_PATH", ".launch_state.db"),
            supabase_url=_env_str("SUPABASE_URL") or None,
            supabase_key=_env_str("SUPABASE_SERVICE_ROLE_KEY") or None,
            thumbnail_bucket=_env_str("THUMBNAIL_BUCKET", "ad-creatives"),
            slack_enabled=_env_bool("SLACK_ENABLED", True),
        )
