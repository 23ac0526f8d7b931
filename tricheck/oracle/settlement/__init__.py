"""Settlement pipeline: job record, durable queue, step journal, coordinator."""

from __future__ import annotations

__all__: list[str] = []
