"""External text rating: interface, prompts, parsing and implementations."""

from __future__ import annotations

from .anthropic_client import AnthropicRatingService
from .base import RatingService

__all__ = ["RatingService", "AnthropicRatingService"]
