"""Strict parsing of rating service responses.

Quality scores must come back as a JSON array of exactly N integers in
[0, 100]. Anything else raises ``RatingError`` so the caller can fall back.
Surrounding prose is tolerated; the first bracketed array is taken.
"""

from __future__ import annotations

import json
import re
from typing import Any, List

from tricheck.oracle.scoring.types import MarketSentiment, RatingError
from tricheck.shared.enums import ConfidenceTier

_ARRAY_RE = re.compile(r"\[[^\[\]]*\]")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def _as_score(value: Any) -> int:
    if isinstance(value, bool):
        raise RatingError(f"score {value!r} is not an integer")
    if isinstance(value, int):
        score = value
    elif isinstance(value, float) and value.is_integer():
        score = int(value)
    else:
        raise RatingError(f"score {value!r} is not an integer")
    if not 0 <= score <= 100:
        raise RatingError(f"score {score} outside [0, 100]")
    return score


def parse_score_array(text: str, expected: int) -> List[int]:
    """Parse an ordered array of ``expected`` quality scores."""
    match = _ARRAY_RE.search(text or "")
    if not match:
        raise RatingError("no JSON array in response")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise RatingError(f"unparsable score array: {e}") from e
    if len(raw) != expected:
        raise RatingError(f"expected {expected} scores, got {len(raw)}")
    return [_as_score(v) for v in raw]


def check_scores(scores: Any, expected: int) -> List[int]:
    """Validate an already-decoded score list from any rating implementation."""
    if not isinstance(scores, (list, tuple)):
        raise RatingError(f"expected a list of scores, got {type(scores).__name__}")
    if len(scores) != expected:
        raise RatingError(f"expected {expected} scores, got {len(scores)}")
    return [_as_score(v) for v in scores]


def parse_sentiment(text: str) -> MarketSentiment:
    """Parse the market-level sentiment object, clamping into range."""
    match = _OBJECT_RE.search(text or "")
    if not match:
        raise RatingError("no JSON object in response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise RatingError(f"unparsable sentiment object: {e}") from e
    if not isinstance(data, dict):
        raise RatingError("sentiment response is not an object")

    score = data.get("sentiment_score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise RatingError(f"sentiment_score missing or not numeric: {score!r}")
    confidence = data.get("confidence", 0)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0

    return MarketSentiment(
        score=max(0, min(100, round(score))),
        confidence=ConfidenceTier(max(0, min(2, int(confidence)))),
        summary=str(data.get("reasoning") or ""),
    )


__all__ = ["parse_score_array", "check_scores", "parse_sentiment"]
