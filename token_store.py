# token_store.py
from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from launch_errors import LaunchRequestError

# Additional authenticated data bound into every stored token.
TOKEN_AAD = b"meta-token"
IV_LENGTH = 12


@dataclass
class BrandTokenInfo:
    """Per-brand Meta credential bundle plus actor and Slack settings."""

    id: str
    name: str = ""
    meta_access_token: Optional[str] = None
    meta_access_token_iv: Optional[str] = None
    meta_access_token_auth_tag: Optional[str] = None
    meta_access_token_expires_at: Optional[datetime] = None
    meta_use_page_as_actor: bool = False
    meta_instagram_actor_id: Optional[str] = None
    meta_page_backed_instagram_accounts: Dict[str, str] = field(default_factory=dict)
    slack_webhook_url: Optional[str] = None
    slack_notifications_enabled: bool = False
    slack_channel_name: Optional[str] = None
    slack_channel_config: Dict[str, Any] = field(default_factory=dict)


def parse_expiry(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value).strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _load_key(key_hex: Optional[str]) -> bytes:
    key_hex = (key_hex or os.getenv("META_TOKEN_ENCRYPTION_KEY") or "").strip()
    if not key_hex:
        raise ValueError("META_TOKEN_ENCRYPTION_KEY environment variable is not set")
    if len(key_hex) != 64:
        raise ValueError("META_TOKEN_ENCRYPTION_KEY must be 64 characters (32 bytes) for AES-256")
    return bytes.fromhex(key_hex)


def encrypt_access_token(token: str, *, key_hex: Optional[str] = None) -> Tuple[str, str, str]:
    """AES-256-GCM encrypt. Returns base64 (encrypted_token, iv, auth_tag)."""
    key = _load_key(key_hex)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, token.encode("utf-8"), TOKEN_AAD)
    ciphertext, tag = sealed[:-16], sealed[-16:]
    return (
        base64.b64encode(ciphertext).decode("ascii"),
        base64.b64encode(iv).decode("ascii"),
        base64.b64encode(tag).decode("ascii"),
    )


def decrypt_access_token(encrypted_token: str, iv: str, auth_tag: str, *, key_hex: Optional[str] = None) -> str:
    """Inverse of encrypt_access_token; the auth tag is verified by AESGCM."""
    key = _load_key(key_hex)
    try:
        ciphertext = base64.b64decode(encrypted_token)
        nonce = base64.b64decode(iv)
        tag = base64.b64decode(auth_tag)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Stored token fields are not valid base64: {e}") from e
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, TOKEN_AAD)
    except InvalidTag:
        raise ValueError("Token integrity check failed (auth tag mismatch).")
    return plaintext.decode("utf-8")


def get_valid_access_token(
    brand: BrandTokenInfo,
    *,
    key_hex: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Decrypt the brand's token, refusing incomplete or expired credentials."""
    if not (brand.meta_access_token and brand.meta_access_token_iv and brand.meta_access_token_auth_tag):
        raise LaunchRequestError(
            "Brand not fully connected to Meta or essential token data is missing.",
            http_status=400,
        )

    now = now or datetime.now(timezone.utc)
    expires_at = parse_expiry(brand.meta_access_token_expires_at)
    if expires_at is not None and expires_at <= now:
        raise LaunchRequestError("Meta access token has expired. Please reconnect.", http_status=401)

    try:
        token = decrypt_access_token(
            brand.meta_access_token,
            brand.meta_access_token_iv,
            brand.meta_access_token_auth_tag,
            key_hex=key_hex,
        )
    except ValueError as e:
        raise LaunchRequestError("Failed to decrypt Meta access token.", http_status=500, error=str(e))

    if not token.strip():
        raise LaunchRequestError("Decrypted access token is invalid.", http_status=500)
    return token
