"""Settlement scoring for Tricheck markets.

This package contains the triple-check scorer:
- Crowd score and the three scoring layers (weight, prediction, AI)
- Dual-pool payout and the jackpot draw
- Determinism utilities so reruns over a snapshot agree
- Audit hashing and the settlement report
"""

from __future__ import annotations

__all__: list[str] = []
