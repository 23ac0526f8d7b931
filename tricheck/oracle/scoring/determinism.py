"""Determinism utilities for reproducible settlement.

This module ensures that settlement computations are fully deterministic:
1. Integer and Decimal arithmetic instead of floating point
2. Canonical ordering for aggregations

Two runs over the same opinion snapshot MUST produce identical scores and
pool amounts. Only the jackpot draw is random, and it takes an explicit RNG.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

from tricheck.oracle.config.settlement_params import BPS_DENOMINATOR

from .types import ValidationError


# ─────────────────────────────────────────────────────────────────────────────
# Decimal / Integer Arithmetic
# ─────────────────────────────────────────────────────────────────────────────


def round_places(value: Decimal, places: int) -> Decimal:
    """Round a Decimal to ``places`` using ROUND_HALF_UP."""
    quantum = Decimal(1).scaleb(-places)
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def div_round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up, for non-negative operands."""
    if denominator <= 0:
        raise ValidationError(f"denominator must be positive, got {denominator}")
    if numerator < 0:
        raise ValidationError(f"numerator must be non-negative, got {numerator}")
    return (2 * numerator + denominator) // (2 * denominator)


def apply_bps(amount: int, bps: int) -> int:
    """Floor of ``amount * bps / 10000`` in exact integer arithmetic."""
    return (amount * bps) // BPS_DENOMINATOR


def pro_rata(weight: int, pool: int, total_weight: int) -> int:
    """Floor of ``weight * pool / total_weight``. Never exceeds the pool share."""
    if total_weight <= 0:
        return 0
    return (weight * pool) // total_weight


def safe_divide(
    numerator: Decimal,
    denominator: Decimal,
    default: Decimal = Decimal("0"),
) -> Decimal:
    """Safely divide two Decimals, returning default on zero/invalid."""
    if denominator == Decimal("0"):
        return default
    if denominator.is_nan() or numerator.is_nan():
        return default

    result = numerator / denominator
    if result.is_nan() or result.is_infinite():
        return default

    return result


def clamp(value: int, min_val: int, max_val: int) -> int:
    """Clamp a value to a range."""
    return max(min_val, min(value, max_val))


# ─────────────────────────────────────────────────────────────────────────────
# Canonical Ordering
# ─────────────────────────────────────────────────────────────────────────────


def deterministic_weighted_sum(
    items: Iterable[Tuple[str, Decimal, Decimal]],
) -> Tuple[Decimal, Decimal]:
    """Compute weighted sum with deterministic ordering.

    Args:
        items: Iterable of (id, value, weight) tuples

    Returns:
        (weighted_sum, weight_sum)
    """
    sorted_items = sorted(items, key=lambda x: x[0])

    weighted_sum = Decimal("0")
    weight_sum = Decimal("0")

    for _, value, weight in sorted_items:
        weighted_sum += value * weight
        weight_sum += weight

    return weighted_sum, weight_sum


def deterministic_weighted_mean(
    items: Iterable[Tuple[str, Decimal, Decimal]],
    default: Decimal = Decimal("0"),
) -> Decimal:
    """Weighted mean with deterministic ordering, ``default`` when no weight."""
    weighted_sum, weight_sum = deterministic_weighted_sum(items)
    return safe_divide(weighted_sum, weight_sum, default)


__all__ = [
    "round_places",
    "round_half_up",
    "floor_int",
    "div_round_half_up",
    "apply_bps",
    "pro_rata",
    "safe_divide",
    "clamp",
    "deterministic_weighted_sum",
    "deterministic_weighted_mean",
]
