"""Audit module for settlement verification.

Provides tools for:
- Hashing settlement results so reruns can be compared
- Logging the settlement trail and payout report
"""

from __future__ import annotations

__all__: list[str] = []
