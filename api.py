"""api

FastAPI surface for the Meta ad launch pipeline.

Endpoints
---------
- GET  /health      -> basic health check
- GET  /            -> basic root info
- POST /launch-ads  -> JSON body: {drafts, brandId, adAccountId, fbPageId,
                       instagramUserId?, batchName?}; runs one launch batch

Responses
---------
200 with {message, results, summary} even when some drafts fail.
400 / 401 / 404 / 500 with {message, error?} for batch-fatal failures.

Optional API Key
----------------
If you set SERVICE_API_KEY in the environment, requests must include:
  X-API-Key: <SERVICE_API_KEY>

Environment variables
---------------------
See launch_config.py (META_TOKEN_ENCRYPTION_KEY, META_API_VERSION,
VIDEO_READY_TIMEOUT_S, LAUNCH_STORE_SOURCE / DATABASE_URL, SUPABASE_URL, ...).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse

from launch_config import LaunchConfig
from launch_errors import LaunchRequestError
from launch_orchestrator import LaunchOrchestrator, build_orchestrator, validate_launch_request

logger = logging.getLogger(__name__)

app = FastAPI(title="Meta Ad Launch API", version="1.0.0")


def _require_api_key(x_api_key: Optional[str]) -> None:
    expected = (os.getenv("SERVICE_API_KEY") or "").strip()
    if not expected:
        return
    if not x_api_key or x_api_key.strip() != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _get_orchestrator() -> LaunchOrchestrator:
    """Build the orchestrator from env configuration (one per request)."""
    return build_orchestrator(LaunchConfig.from_env())


@app.get("/")
def root() -> JSONResponse:
    return JSONResponse({"ok": True, "docs": "/docs", "health": "/health"})


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True}


@app.post("/launch-ads")
def launch_ads(
    body: Any = Body(default=None),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> JSONResponse:
    _require_api_key(x_api_key)

    try:
        req = validate_launch_request(body or {})
    except LaunchRequestError as e:
        return JSONResponse(e.to_payload(), status_code=e.http_status)

    try:
        orchestrator = _get_orchestrator()
    except Exception as e:
        logger.error("[Launch API] server misconfigured: %s", e)
        return JSONResponse({"message": "Server misconfigured.", "error": str(e)}, status_code=500)

    try:
        response = orchestrator.run(req)
    except LaunchRequestError as e:
        logger.warning("[Launch API] %s (%d)", e.message, e.http_status)
        return JSONResponse(e.to_payload(), status_code=e.http_status)
    except Exception as e:
        logger.exception("[Launch API] top-level error")
        return JSONResponse(
            {"message": "Failed to process ad launch request.", "error": str(e)},
            status_code=500,
        )

    return JSONResponse(response.to_payload(), status_code=200)
