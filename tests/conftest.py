"""Shared fixtures for oracle tests."""

from __future__ import annotations

import asyncio
import random
from typing import Callable, List, Optional, Sequence

import pytest

from tricheck.oracle.config.settlement_params import SettlementParams
from tricheck.oracle.database.dbm import DBM
from tricheck.oracle.rating.base import RatingService
from tricheck.oracle.scoring.scorer import TripleCheckScorer
from tricheck.oracle.scoring.types import MarketSentiment, Opinion
from tricheck.shared.enums import ConfidenceTier


class FakeRating(RatingService):
    """Scripted rating service that records its calls."""

    def __init__(
        self,
        score: int = 60,
        scores: Optional[List[int]] = None,
        sentiment: Optional[MarketSentiment] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.score = score
        self.scores = scores
        self.sentiment = sentiment or MarketSentiment(
            score=70,
            confidence=ConfidenceTier.MEDIUM,
            summary="Crowd leans yes.",
        )
        self.delay = delay
        self.error = error
        self.rate_calls: List[List[str]] = []
        self.summary_calls = 0

    async def rate_opinions(self, statement: str, texts: Sequence[str]) -> List[int]:
        self.rate_calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.scores is not None:
            return list(self.scores)
        return [self.score] * len(texts)

    async def summarize_market(self, statement: str, opinions: Sequence[Opinion]) -> MarketSentiment:
        self.summary_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.sentiment


@pytest.fixture
def make_opinion() -> Callable[..., Opinion]:
    """Factory for opinions; backing defaults to the author's stake."""

    def _make(
        id: str,
        amount: int = 1_000_000,
        opinion_score: int = 50,
        market_prediction: int = 50,
        backing_total: Optional[int] = None,
        slashing_total: int = 0,
        staker: Optional[str] = None,
        opinion_text: str = "",
    ) -> Opinion:
        return Opinion(
            id=id,
            staker=staker or f"Staker{id.upper()}xxxxxxxxxxxxxxxxxxxxxx",
            amount=amount,
            opinion_text=opinion_text or f"Opinion text for {id}",
            opinion_score=opinion_score,
            market_prediction=market_prediction,
            backing_total=amount if backing_total is None else backing_total,
            slashing_total=slashing_total,
        )

    return _make


@pytest.fixture
def reference_opinions(make_opinion) -> List[Opinion]:
    """Three stakers of $1, $2, $2 with scores 80/40/60 and predictions 70/50/55."""
    return [
        make_opinion("a", amount=1_000_000, opinion_score=80, market_prediction=70),
        make_opinion("b", amount=2_000_000, opinion_score=40, market_prediction=50),
        make_opinion("c", amount=2_000_000, opinion_score=60, market_prediction=55),
    ]


@pytest.fixture
def params() -> SettlementParams:
    return SettlementParams()


@pytest.fixture
def fake_rating() -> FakeRating:
    return FakeRating(score=60)


@pytest.fixture
def rating_factory() -> Callable[..., FakeRating]:
    return FakeRating


@pytest.fixture
def scorer(fake_rating, params) -> TripleCheckScorer:
    return TripleCheckScorer(fake_rating, params=params, rng=random.Random(7))


@pytest.fixture
async def dbm(tmp_path):
    """Fresh SQLite database per test."""
    manager = DBM(f"sqlite+aiosqlite:///{tmp_path / 'oracle.db'}")
    await manager.create_all()
    yield manager
    await manager.dispose()
