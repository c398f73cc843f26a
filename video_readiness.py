from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from meta_client import MetaAPIError, MetaClient

logger = logging.getLogger(__name__)

READY = "ready"
FAILED_STATUSES = {"error", "expired"}


@dataclass
class ReadinessResult:
    ready: Set[str] = field(default_factory=set)
    errored: Dict[str, str] = field(default_factory=dict)
    pending: Set[str] = field(default_factory=set)

    @property
    def all_ready(self) -> bool:
        return not self.errored and not self.pending

    def failure_for(self, video_ids: Iterable[str]) -> Optional[str]:
        """Human-readable failure for a draft's videos, or None if all are ready."""
        ids = list(dict.fromkeys(str(v) for v in video_ids if v))
        errored = [f"{v} ({self.errored[v]})" for v in ids if v in self.errored]
        pending = [v for v in ids if v not in self.ready and v not in self.errored]
        if not errored and not pending:
            return None
        parts = []
        if errored:
            parts.append("Video processing failed: " + ", ".join(errored))
        if pending:
            parts.append("Videos still processing after timeout: " + ", ".join(pending))
        return "; ".join(parts)


def processing_error_message(payload: dict) -> str:
    """Collect the structured error messages Meta attaches to a failed video."""
    status = (payload or {}).get("status") or {}
    messages: List[str] = []
    for phase in ("uploading_phase", "processing_phase", "publishing_phase"):
        for err in ((status.get(phase) or {}).get("errors") or []):
            msg = (err or {}).get("message") if isinstance(err, dict) else str(err)
            if msg:
                messages.append(str(msg))
    if messages:
        return "; ".join(messages)
    return f"status {status.get('video_status') or 'unknown'}"


def video_status(payload: dict) -> str:
    status = (payload or {}).get("status") or {}
    if isinstance(status, str):
        return status.lower()
    return str(status.get("video_status") or "").lower()


def wait_for_videos(
    client: MetaClient,
    video_ids: Iterable[str],
    *,
    timeout_s: float = 300,
    poll_s: float = 10,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    cancel: Optional[threading.Event] = None,
) -> ReadinessResult:
    """Poll every unique video until each is ready/errored or the deadline passes.

    4xx status reads mark a video permanently errored; 5xx and transport
    errors leave it pending for the next poll.
    """
    result = ReadinessResult(pending=set(str(v) for v in video_ids if v))
    if not result.pending:
        return result

    deadline = clock() + float(timeout_s)
    logger.info("[Readiness] waiting for %d video(s), deadline %.0fs", len(result.pending), timeout_s)

    while True:
        for vid in sorted(result.pending):
            try:
                payload = client.get_video_status(vid)
            except MetaAPIError as e:
                if e.is_client_error:
                    result.errored[vid] = str(e)
                    logger.warning("[Readiness] %s status lookup rejected: %s", vid, e)
                else:
                    logger.info("[Readiness] %s status lookup failed (will retry): %s", vid, e)
                continue

            status = video_status(payload)
            if status == READY:
                result.ready.add(vid)
            elif status in FAILED_STATUSES:
                result.errored[vid] = processing_error_message(payload)
                logger.warning("[Readiness] %s failed processing: %s", vid, result.errored[vid])

        result.pending -= result.ready
        result.pending -= set(result.errored)

        if not result.pending:
            break
        if cancel is not None and cancel.is_set():
            logger.info("[Readiness] cancelled with %d video(s) pending", len(result.pending))
            break
        remaining = deadline - clock()
        if remaining <= 0:
            logger.warning("[Readiness] timed out with pending videos: %s", ", ".join(sorted(result.pending)))
            break
        sleep(min(float(poll_s), remaining))

    return result
