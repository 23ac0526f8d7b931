"""Settlement ledger interface.

The ledger is the authoritative record of a settlement. Instructions are
issued in a fixed order per market:

    record_sentiment -> record_ai_score (xN) -> settle_opinion (xN)
    -> finalize_settlement -> claim_payout (xN) -> claim_jackpot

Market state moves Closed -> Scored -> Settled. Every instruction except
``claim_payout`` must be signed by the settlement authority.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from tricheck.oracle.scoring.audit.hashing import compute_hash
from tricheck.shared.enums import ConfidenceTier, MarketState

from .http import GatewayError, JsonHttpClient

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────


class LedgerError(Exception):
    """A ledger write failed. Retryable unless a subclass says otherwise."""

    retryable = True


class LedgerAuthorizationError(LedgerError):
    """The signer is not allowed to issue this instruction."""

    retryable = False


class MarketAlreadySettledError(LedgerError):
    """The market was settled outside this settlement run."""

    retryable = False


class LedgerStateError(LedgerError):
    """The instruction is not valid for the market's current state."""

    retryable = False


class DuplicateInstructionError(LedgerError):
    """The instruction was already applied (e.g. a second claim)."""

    retryable = False


# ─────────────────────────────────────────────────────────────────────────────
# Interface
# ─────────────────────────────────────────────────────────────────────────────


class LedgerReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    market_id: str
    instruction: str
    reference: str
    opinion_id: Optional[str] = None
    amount: int = 0
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SettlementLedger(ABC):
    """Ordered settlement instructions against one market account."""

    @abstractmethod
    async def market_state(self, market_id: str) -> MarketState:
        """Current on-ledger state of the market."""

    @abstractmethod
    async def record_sentiment(
        self,
        market_id: str,
        score: int,
        confidence: ConfidenceTier,
        summary_hash: str,
    ) -> LedgerReceipt:
        """Market-level sentiment. Moves the market from Closed to Scored."""

    @abstractmethod
    async def record_ai_score(self, market_id: str, opinion_id: str, ai_score: int) -> LedgerReceipt:
        ...

    @abstractmethod
    async def settle_opinion(
        self,
        market_id: str,
        opinion_id: str,
        crowd_score: int,
        weight_score: int,
        prediction_score: int,
    ) -> LedgerReceipt:
        ...

    @abstractmethod
    async def finalize_settlement(self, market_id: str) -> LedgerReceipt:
        """Take the protocol fee and move the market to Settled."""

    @abstractmethod
    async def claim_payout(
        self,
        market_id: str,
        opinion_id: str,
        staker: str,
        amount: int,
        total_net_backing: int,
        total_prediction_weight: int,
    ) -> LedgerReceipt:
        ...

    @abstractmethod
    async def claim_jackpot(self, market_id: str, winner_staker: str, amount: int) -> LedgerReceipt:
        ...

    async def close(self) -> None:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# In-process ledger
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class _MarketAccount:
    state: MarketState = MarketState.CLOSED
    sentiment: Optional[Dict[str, Any]] = None
    ai_scores: Dict[str, int] = field(default_factory=dict)
    settled_opinions: Dict[str, Dict[str, int]] = field(default_factory=dict)
    paid: Dict[str, int] = field(default_factory=dict)
    jackpot: Optional[Dict[str, Any]] = None


class LocalLedger(SettlementLedger):
    """In-memory ledger enforcing the same rules as the external one.

    Unknown markets are treated as Closed. Nothing survives a restart; use
    the gateway mode for anything that moves real funds.
    """

    def __init__(self, authority: str, signer: Optional[str] = None):
        self.authority = authority
        self.signer = signer if signer is not None else authority
        self._accounts: Dict[str, _MarketAccount] = {}
        self._lock = asyncio.Lock()

    def account(self, market_id: str) -> _MarketAccount:
        return self._accounts.setdefault(market_id, _MarketAccount())

    def open_market(self, market_id: str, state: MarketState = MarketState.CLOSED) -> None:
        self._accounts[market_id] = _MarketAccount(state=state)

    async def market_state(self, market_id: str) -> MarketState:
        return self.account(market_id).state

    async def record_sentiment(
        self,
        market_id: str,
        score: int,
        confidence: ConfidenceTier,
        summary_hash: str,
    ) -> LedgerReceipt:
        async with self._lock:
            self._authorize("record_sentiment")
            acct = self.account(market_id)
            if acct.state == MarketState.SCORED and acct.sentiment is not None:
                raise DuplicateInstructionError(f"sentiment already recorded for {market_id}")
            self._require(acct, market_id, MarketState.CLOSED, "record_sentiment")
            acct.sentiment = {
                "score": score,
                "confidence": int(confidence),
                "summary_hash": summary_hash,
            }
            acct.state = MarketState.SCORED
            return self._receipt(market_id, "record_sentiment")

    async def record_ai_score(self, market_id: str, opinion_id: str, ai_score: int) -> LedgerReceipt:
        async with self._lock:
            self._authorize("record_ai_score")
            acct = self.account(market_id)
            self._require(acct, market_id, MarketState.SCORED, "record_ai_score")
            acct.ai_scores[opinion_id] = ai_score
            return self._receipt(market_id, "record_ai_score", opinion_id)

    async def settle_opinion(
        self,
        market_id: str,
        opinion_id: str,
        crowd_score: int,
        weight_score: int,
        prediction_score: int,
    ) -> LedgerReceipt:
        async with self._lock:
            self._authorize("settle_opinion")
            acct = self.account(market_id)
            self._require(acct, market_id, MarketState.SCORED, "settle_opinion")
            acct.settled_opinions[opinion_id] = {
                "crowd_score": crowd_score,
                "weight_score": weight_score,
                "prediction_score": prediction_score,
            }
            return self._receipt(market_id, "settle_opinion", opinion_id)

    async def finalize_settlement(self, market_id: str) -> LedgerReceipt:
        async with self._lock:
            self._authorize("finalize_settlement")
            acct = self.account(market_id)
            if acct.state == MarketState.SETTLED:
                raise MarketAlreadySettledError(f"market {market_id} is already settled")
            self._require(acct, market_id, MarketState.SCORED, "finalize_settlement")
            acct.state = MarketState.SETTLED
            return self._receipt(market_id, "finalize_settlement")

    async def claim_payout(
        self,
        market_id: str,
        opinion_id: str,
        staker: str,
        amount: int,
        total_net_backing: int,
        total_prediction_weight: int,
    ) -> LedgerReceipt:
        async with self._lock:
            acct = self.account(market_id)
            self._require(acct, market_id, MarketState.SETTLED, "claim_payout")
            if opinion_id in acct.paid:
                raise DuplicateInstructionError(f"payout for {opinion_id} already claimed")
            acct.paid[opinion_id] = amount
            return self._receipt(market_id, "claim_payout", opinion_id, amount)

    async def claim_jackpot(self, market_id: str, winner_staker: str, amount: int) -> LedgerReceipt:
        async with self._lock:
            self._authorize("claim_jackpot")
            acct = self.account(market_id)
            self._require(acct, market_id, MarketState.SETTLED, "claim_jackpot")
            if acct.jackpot is not None:
                raise DuplicateInstructionError(f"jackpot for {market_id} already claimed")
            acct.jackpot = {"winner": winner_staker, "amount": amount}
            return self._receipt(market_id, "claim_jackpot", amount=amount)

    def _authorize(self, instruction: str) -> None:
        if self.signer != self.authority:
            raise LedgerAuthorizationError(
                f"{instruction} requires the settlement authority, signer is {self.signer!r}"
            )

    @staticmethod
    def _require(
        acct: _MarketAccount,
        market_id: str,
        expected: MarketState,
        instruction: str,
    ) -> None:
        if acct.state != expected:
            raise LedgerStateError(
                f"{instruction} needs market {market_id} in {expected.value}, found {acct.state.value}"
            )

    @staticmethod
    def _receipt(
        market_id: str,
        instruction: str,
        opinion_id: Optional[str] = None,
        amount: int = 0,
    ) -> LedgerReceipt:
        reference = compute_hash({
            "market_id": market_id,
            "instruction": instruction,
            "opinion_id": opinion_id,
        })
        return LedgerReceipt(
            market_id=market_id,
            instruction=instruction,
            reference=reference,
            opinion_id=opinion_id,
            amount=amount,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Gateway relay
# ─────────────────────────────────────────────────────────────────────────────


class LedgerGatewayClient(SettlementLedger):
    """Relays instructions to an external signing service over HTTP.

    ``POST /ledger/markets/{id}/{instruction}`` with a JSON body; the service
    answers ``{"reference": ...}``. Status 401/403 maps to an authorization
    error, 409 to an already-settled or duplicate error depending on
    ``code``.
    """

    def __init__(self, http: JsonHttpClient, signer: str):
        self.http = http
        self.signer = signer

    async def market_state(self, market_id: str) -> MarketState:
        payload = await self._call("GET", f"/ledger/markets/{market_id}")
        try:
            return MarketState(payload["state"])
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerError(f"unexpected market state payload for {market_id}: {payload!r}") from e

    async def record_sentiment(
        self,
        market_id: str,
        score: int,
        confidence: ConfidenceTier,
        summary_hash: str,
    ) -> LedgerReceipt:
        return await self._instruction(
            market_id,
            "record_sentiment",
            {"score": score, "confidence": int(confidence), "summary_hash": summary_hash},
        )

    async def record_ai_score(self, market_id: str, opinion_id: str, ai_score: int) -> LedgerReceipt:
        return await self._instruction(
            market_id, "record_ai_score", {"ai_score": ai_score}, opinion_id=opinion_id
        )

    async def settle_opinion(
        self,
        market_id: str,
        opinion_id: str,
        crowd_score: int,
        weight_score: int,
        prediction_score: int,
    ) -> LedgerReceipt:
        return await self._instruction(
            market_id,
            "settle_opinion",
            {
                "crowd_score": crowd_score,
                "weight_score": weight_score,
                "prediction_score": prediction_score,
            },
            opinion_id=opinion_id,
        )

    async def finalize_settlement(self, market_id: str) -> LedgerReceipt:
        return await self._instruction(market_id, "finalize_settlement", {})

    async def claim_payout(
        self,
        market_id: str,
        opinion_id: str,
        staker: str,
        amount: int,
        total_net_backing: int,
        total_prediction_weight: int,
    ) -> LedgerReceipt:
        return await self._instruction(
            market_id,
            "claim_payout",
            {
                "staker": staker,
                "amount": amount,
                "total_net_backing": total_net_backing,
                "total_prediction_weight": total_prediction_weight,
            },
            opinion_id=opinion_id,
            amount=amount,
        )

    async def claim_jackpot(self, market_id: str, winner_staker: str, amount: int) -> LedgerReceipt:
        return await self._instruction(
            market_id,
            "claim_jackpot",
            {"winner": winner_staker, "amount": amount},
            amount=amount,
        )

    async def _instruction(
        self,
        market_id: str,
        instruction: str,
        body: Dict[str, Any],
        *,
        opinion_id: Optional[str] = None,
        amount: int = 0,
    ) -> LedgerReceipt:
        payload = {**body, "signer": self.signer}
        if opinion_id is not None:
            payload["opinion_id"] = opinion_id
        response = await self._call("POST", f"/ledger/markets/{market_id}/{instruction}", payload)
        reference = response.get("reference") if isinstance(response, dict) else None
        if not reference:
            raise LedgerError(f"{instruction} for {market_id} returned no reference")
        logger.debug({"ledger_instruction": {"market_id": market_id, "instruction": instruction, "opinion_id": opinion_id}})
        return LedgerReceipt(
            market_id=market_id,
            instruction=instruction,
            reference=str(reference),
            opinion_id=opinion_id,
            amount=amount,
        )

    async def _call(self, method: str, path: str, body: Any = None) -> Any:
        try:
            return await self.http.request_json(method, path, json=body)
        except GatewayError as e:
            if e.status_code in (401, 403):
                raise LedgerAuthorizationError(str(e)) from e
            if e.status_code == 409:
                if "already_settled" in str(e):
                    raise MarketAlreadySettledError(str(e)) from e
                raise DuplicateInstructionError(str(e)) from e
            if e.status_code == 422:
                raise LedgerStateError(str(e)) from e
            raise LedgerError(str(e)) from e

    async def close(self) -> None:
        await self.http.close()


__all__ = [
    "LedgerError",
    "LedgerAuthorizationError",
    "MarketAlreadySettledError",
    "LedgerStateError",
    "DuplicateInstructionError",
    "LedgerReceipt",
    "SettlementLedger",
    "LocalLedger",
    "LedgerGatewayClient",
]
