"""Input validation for the settlement scorer.

All validation happens BEFORE data enters the scoring pipeline. A job that
fails here is rejected at enqueue time and never reaches a worker.

Degenerate but legal inputs (empty sets, zero stake, all-slashed opinions)
are NOT errors; the scorer handles them with equal-share fallbacks.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping

import pydantic

from .types import Opinion, ValidationError


def parse_opinion(raw: Mapping[str, Any] | Opinion) -> Opinion:
    """Build an Opinion from a raw mapping.

    Raises:
        ValidationError: If any field is missing or out of bounds
    """
    if isinstance(raw, Opinion):
        return raw
    try:
        return Opinion.model_validate(raw)
    except pydantic.ValidationError as e:
        ident = raw.get("id", "?") if isinstance(raw, Mapping) else "?"
        raise ValidationError(f"invalid opinion {ident}: {e.error_count()} error(s): {e}") from e


def validate_opinion_set(opinions: Iterable[Mapping[str, Any] | Opinion]) -> List[Opinion]:
    """Validate and normalise one market's opinion set.

    Checks:
    - Every opinion is individually valid
    - Opinion ids are unique within the set

    Returns:
        Opinions in input order
    """
    parsed = [parse_opinion(raw) for raw in opinions]
    seen: set[str] = set()
    for op in parsed:
        if op.id in seen:
            raise ValidationError(f"duplicate opinion id {op.id}")
        seen.add(op.id)
    return parsed


def validate_total_stake(total_stake: object) -> int:
    """Total stake must be a non-negative integer amount."""
    if isinstance(total_stake, bool) or not isinstance(total_stake, int):
        raise ValidationError(f"total_stake must be an integer, got {type(total_stake).__name__}")
    if total_stake < 0:
        raise ValidationError(f"total_stake must be non-negative, got {total_stake}")
    return total_stake


__all__ = ["parse_opinion", "validate_opinion_set", "validate_total_stake"]
