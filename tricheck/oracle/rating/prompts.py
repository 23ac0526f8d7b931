"""Prompt templates for the rating service."""

from __future__ import annotations

from typing import Sequence

from tricheck.oracle.scoring.types import Opinion

MICRO_UNITS = 1_000_000

OPINION_QUALITY_PROMPT = """You are an objective evaluator for a prediction market. Rate each opinion on a scale of 0-100.

Market Question: "{statement}"

Scoring criteria:
- Clarity (20 pts): Is the argument easy to understand?
- Insight (30 pts): Does it add meaningful perspective or new information?
- Reasoning (30 pts): Is the position backed by logic or evidence?
- Originality (20 pts): More than a generic platitude?

Scores: 0-20 = spam/bot-like, 21-40 = weak, 41-60 = average, 61-80 = good, 81-100 = excellent

{opinions}

Respond ONLY with a JSON array of {count} integers, one per opinion in order. Example: [72, 45, 88, 31]
No other text."""

MARKET_SENTIMENT_PROMPT = """Analyze the following market opinions and provide a market-level sentiment score.

Market: "{statement}"

Opinions:
{opinions}

Respond in JSON:
{{
  "sentiment_score": <0-100>,
  "confidence": <0=low, 1=medium, 2=high>,
  "reasoning": "<one sentence summary>"
}}"""


def truncate(text: str | None, max_chars: int) -> str:
    return (text or "")[:max_chars]


def build_quality_prompt(statement: str, texts: Sequence[str]) -> str:
    lines = "\n".join(f'Opinion {i + 1}: "{text}"' for i, text in enumerate(texts))
    return OPINION_QUALITY_PROMPT.format(statement=statement, opinions=lines, count=len(texts))


def build_sentiment_prompt(
    statement: str,
    opinions: Sequence[Opinion],
    max_chars: int,
) -> str:
    lines = "\n".join(
        f'Opinion {i + 1} (stake: ${op.amount / MICRO_UNITS:.2f}): "{truncate(op.opinion_text, max_chars)}"'
        for i, op in enumerate(opinions)
    )
    return MARKET_SENTIMENT_PROMPT.format(statement=statement, opinions=lines)


__all__ = [
    "OPINION_QUALITY_PROMPT",
    "MARKET_SENTIMENT_PROMPT",
    "truncate",
    "build_quality_prompt",
    "build_sentiment_prompt",
]
