"""
functions/scoring/score_parser.py

Best-effort extraction of the integer score from a free-text model reply.

Rules:
- One case-insensitive pattern: an optional "ATS Score:" / "Score:" label,
  Markdown emphasis after the label tolerated ("**ATS Score:** 82/100"),
  then a digit run and an optional "/100".
- The label is optional, so the FIRST digit run in the reply wins, labelled
  or not ("Reviewed 3 sections. ATS Score: 77" -> 3).
- None, blank text, or no digits at all -> 0.
- Out-of-range values are passed through unchanged (no clamping).
"""

from __future__ import annotations

import re
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

_SCORE = re.compile(
    r"(?:(?:ATS\s+Score|\bScore)\s*:\s*[*_]*\s*)?(\d+)(?:\s*/\s*100)?",
    re.IGNORECASE,
)


def parse_score(text: Optional[str]) -> int:
    if text is None or not text.strip():
        return 0

    match = _SCORE.search(text)
    if match is None:
        logger.info("score_not_found_in_reply", reply_length=len(text))
        return 0

    return int(match.group(1))
