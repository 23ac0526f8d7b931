"""Durable state for the settlement queue and step journal."""

from __future__ import annotations

__all__: list[str] = []
