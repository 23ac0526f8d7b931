"""Periodic pollers that discover markets for settlement and live scoring."""

from __future__ import annotations

__all__: list[str] = []
