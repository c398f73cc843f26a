from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional

from aspect_ratio import detect_aspect_ratio, placement_for
from launch_config import LaunchConfig
from launch_errors import LaunchRequestError
from launch_orchestrator import build_orchestrator
from launch_store import build_launch_store
from meta_client import MetaAPIError, MetaClient, MetaConfig
from token_store import BrandTokenInfo, encrypt_access_token, get_valid_access_token, parse_expiry


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="launch_cli.py",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=textwrap.dedent(
            """
            Meta Ad Launch CLI

            Examples:
              # 1) Run a launch batch from a request JSON (same body as POST /launch-ads)
              python launch_cli.py launch --request batch.json

              # 2) Check a video's processing status
              python launch_cli.py video-status --brand-id <BRAND_ID> --ad-account-id <ACT> --id <VIDEO_ID>

              # 3) Read an ad set
              python launch_cli.py adset --brand-id <BRAND_ID> --ad-account-id <ACT> --id <ADSET_ID>

              # 4) Show how a filename is placed
              python launch_cli.py detect-ratio "hero_9x16.mp4"

              # 5) Register or update a brand (plain access_token is encrypted before storing)
              python launch_cli.py brand-put --file brand.json

              # 6) Persisted status of a draft
              python launch_cli.py draft-status --id <DRAFT_ID>
            """
        ),
    )

    p.add_argument("--env", default=".env", help="Path to .env file (default: .env).")
    p.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level.")

    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("launch", help="Run a launch batch from a request JSON file.")
    sp.add_argument("--request", required=True)

    for name, help_text in (
        ("video-status", "GET /<video_id>?fields=status"),
        ("adset", "GET /<adset_id> (validates the ad set is readable)."),
    ):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("--id", required=True)
        sp.add_argument("--brand-id", required=True, help="Brand whose stored token is used.")
        sp.add_argument("--ad-account-id", required=True)

    sp = sub.add_parser("detect-ratio", help="Aspect ratio and placement detected from a filename.")
    sp.add_argument("name")

    sp = sub.add_parser("brand-put", help="Store a brand record from a JSON file.")
    sp.add_argument("--file", required=True)

    sp = sub.add_parser("draft-status", help="Persisted app_status of a draft.")
    sp.add_argument("--id", required=True)

    return p


def _store_for(cfg: LaunchConfig):
    return build_launch_store(cfg.launch_db_path, source=cfg.store_source, database_url=cfg.database_url or "")


def _client_for(cfg: LaunchConfig, brand_id: str, ad_account_id: str) -> MetaClient:
    brand = _store_for(cfg).get_brand(brand_id)
    if brand is None:
        raise LaunchRequestError("Brand not found.", http_status=404)
    token = get_valid_access_token(brand, key_hex=cfg.token_encryption_key)
    return MetaClient(
        MetaConfig(
            access_token=token,
            ad_account_id=ad_account_id,
            api_version=cfg.api_version,
            app_secret=cfg.app_secret,
            timeout_s=cfg.timeout_s,
        )
    )


def brand_from_json(data: Dict[str, Any], *, key_hex: Optional[str]) -> BrandTokenInfo:
    """Build a brand record; a plain `access_token` is encrypted on the way in."""
    data = dict(data)
    token = (data.pop("access_token", None) or "").strip()
    known = {f.name for f in dataclasses.fields(BrandTokenInfo)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown brand fields: {', '.join(unknown)}")
    if not str(data.get("id") or "").strip():
        raise ValueError("Brand JSON needs an 'id'.")
    brand = BrandTokenInfo(**data)
    brand.meta_access_token_expires_at = parse_expiry(brand.meta_access_token_expires_at)
    if token:
        (
            brand.meta_access_token,
            brand.meta_access_token_iv,
            brand.meta_access_token_auth_tag,
        ) = encrypt_access_token(token, key_hex=key_hex)
    return brand


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "detect-ratio":
        ratio = detect_aspect_ratio(args.name)
        print(json.dumps({"name": args.name, "aspect_ratio": ratio, "placement": placement_for(ratio)}, indent=2))
        return 0

    env_path = Path(args.env)
    try:
        cfg = LaunchConfig.from_env(str(env_path) if env_path.exists() else None)
    except Exception as e:
        print(f"[CONFIG ERROR] {e}", file=sys.stderr)
        return 2

    try:
        if args.cmd == "launch":
            body = json.loads(Path(args.request).read_text(encoding="utf-8"))
            response = build_orchestrator(cfg).run(body)
            print(json.dumps(response.to_payload(), indent=2, ensure_ascii=False))
            return 0

        if args.cmd == "video-status":
            client = _client_for(cfg, args.brand_id, args.ad_account_id)
            print(json.dumps(client.get_video_status(args.id), indent=2))
            return 0

        if args.cmd == "adset":
            client = _client_for(cfg, args.brand_id, args.ad_account_id)
            print(json.dumps(client.get_adset(args.id), indent=2))
            return 0

        if args.cmd == "brand-put":
            data = json.loads(Path(args.file).read_text(encoding="utf-8"))
            brand = brand_from_json(data, key_hex=cfg.token_encryption_key)
            _store_for(cfg).put_brand(brand)
            print(json.dumps({"id": brand.id, "stored": True}, indent=2))
            return 0

        if args.cmd == "draft-status":
            status = _store_for(cfg).get_draft_status(args.id)
            print(json.dumps({"id": args.id, "app_status": status.value if status else None}, indent=2))
            return 0

        print(f"Unknown command: {args.cmd}", file=sys.stderr)
        return 2

    except LaunchRequestError as e:
        print(f"\n[LaunchRequestError {e.http_status}]", e.message, file=sys.stderr)
        if e.error:
            print(e.error, file=sys.stderr)
        return 1
    except MetaAPIError as e:
        print("\n[MetaAPIError]", e, file=sys.stderr)
        if e.error:
            print(json.dumps(e.error, indent=2), file=sys.stderr)
        return 1
    except Exception as e:
        print("\n[ERROR]", e, file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
