"""Aspect-ratio tagging and feed/story placement grouping for draft assets."""

from __future__ import annotations

import re
from typing import Iterable, Optional

KNOWN_RATIOS = {"1:1", "4:5", "9:16", "16:9"}
STORY_RATIOS = {"9:16"}

FEED = "feed"
STORY = "story"

# Ratio tokens like 9x16, 9X16, (9:16), 4.0x5.0, 16 x 9 delimited by anything non-numeric.
_RATIO_RE = re.compile(
    r"(?<![0-9.])(16|9|4|1)(?:\.0)?\s*[x:]\s*(16|9|5|1)(?:\.0)?(?![0-9])",
    re.IGNORECASE,
)


def normalize_ratio(value: Optional[str]) -> Optional[str]:
    """'9x16' / '9:16' / ' 9 X 16 ' -> '9:16'; unknown ratios -> None."""
    if not value:
        return None
    m = _RATIO_RE.search(str(value).strip())
    if not m:
        return None
    ratio = f"{m.group(1)}:{m.group(2)}"
    return ratio if ratio in KNOWN_RATIOS else None


def detect_aspect_ratio(filename: str) -> Optional[str]:
    """Best-effort ratio from a filename, in colon form.

    Scans every ratio-looking token so that e.g. `v2_1x1_9x16.mp4` still
    finds a known ratio when an earlier token is not one.
    """
    for m in _RATIO_RE.finditer(filename or ""):
        ratio = f"{m.group(1)}:{m.group(2)}"
        if ratio in KNOWN_RATIOS:
            return ratio
    return None


def resolve_aspect_ratio(tags: Iterable[str], filename: str) -> Optional[str]:
    """Explicit tags win; the filename detector is the fallback."""
    for tag in tags or []:
        ratio = normalize_ratio(tag)
        if ratio:
            return ratio
    return detect_aspect_ratio(filename)


def placement_for(ratio: Optional[str]) -> str:
    """9:16 goes to story placements; everything else (or unknown) is feed."""
    return STORY if ratio in STORY_RATIOS else FEED
