"""Settlement audit trail and human-readable payout report.

The report is written once per successful settlement, sorted by payout,
so an operator can eyeball who got paid what without querying the ledger.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from tricheck.shared.logging import log_event

from ..types import ScoredOpinion, SettlementResult

MICRO_UNITS = 1_000_000
RULE_WIDTH = 100
STATEMENT_CHARS = 70


def abbreviate_staker(staker: str) -> str:
    """First six and last four characters of a staker identifier."""
    if len(staker) <= 12:
        return staker
    return f"{staker[:6]}...{staker[-4:]}"


def format_usd(micro: int) -> str:
    return f"${micro / MICRO_UNITS:.2f}"


def _jackpot_marker(op: ScoredOpinion) -> str:
    if op.jackpot_winner:
        return "WIN"
    if op.jackpot_eligible:
        return "yes"
    return " - "


def format_settlement_report(statement: str, result: SettlementResult) -> List[str]:
    """Render the report as lines, highest payout first.

    Total pool here is the sum of stake plus backing over all opinions, which
    is what stakers see on the market page, not the escrowed total stake.
    """
    ordered = sorted(result.opinions, key=lambda op: op.payout_amount, reverse=True)
    total_pool = sum(op.amount + op.backing_total for op in result.opinions)

    lines = [
        "═" * RULE_WIDTH,
        "Triple-Check Settlement Report (Dual Pool)",
        f'Market: "{statement[:STATEMENT_CHARS]}"',
        f"Crowd Score (weighted mean of opinion_scores): {result.crowd_score:.1f}",
        f"Total Pool: {format_usd(total_pool)} USDC",
        "─" * RULE_WIDTH,
        f"{'Staker':<12} {'W':>4} {'P':>4} {'A':>4} {'OpPay':>8} {'PrPay':>8} {'Total':>8} {'JP':>3}",
    ]
    for op in ordered:
        lines.append(
            f"{abbreviate_staker(op.staker):<12} "
            f"{op.weight_score:>4} {op.prediction_score:>4} {op.ai_score:>4} "
            f"{format_usd(op.opinion_payout):>8} {format_usd(op.prediction_payout):>8} "
            f"{format_usd(op.payout_amount):>8} {_jackpot_marker(op):>3}"
        )
    if result.jackpot_winner_id is not None:
        lines.append(
            f"Jackpot: {format_usd(result.jackpot_amount)} to "
            f"{abbreviate_staker(result.jackpot_winner_staker or '')}"
        )
    lines.append("═" * RULE_WIDTH)
    return lines


class SettlementAuditLogger:
    """Structured logger for the settlement audit trail.

    Logs key events and hashes during settlement so a rerun can be compared
    against the first attempt.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        """Initialize the audit logger.

        Args:
            logger: Optional logger instance (creates one if not provided)
        """
        self.logger = logger or logging.getLogger("tricheck.audit")

    def log_settlement_start(
        self,
        job_id: str,
        market_id: str,
        attempt: int,
        snapshot_hash: str,
    ) -> None:
        self.logger.info({
            "event": "settlement_start",
            "job_id": job_id,
            "market_id": market_id,
            "attempt": attempt,
            "snapshot_hash": snapshot_hash[:16] + "...",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def log_step(self, market_id: str, step_key: str, reused: bool = False) -> None:
        """Log one ledger or store step.

        Args:
            market_id: Market being settled
            step_key: Journal key of the step
            reused: True when the step was already journaled and skipped
        """
        self.logger.debug({
            "event": "settlement_step",
            "market_id": market_id,
            "step": step_key,
            "reused": reused,
        })

    def log_settlement_complete(
        self,
        job_id: str,
        market_id: str,
        result: SettlementResult,
        settlement_hash: str,
        duration_seconds: float,
    ) -> None:
        record = {
            "event": "settlement_complete",
            "job_id": job_id,
            "market_id": market_id,
            "opinions": len(result.opinions),
            "crowd_score": str(result.crowd_score),
            "total_payout": result.total_payout,
            "jackpot_winner": result.jackpot_winner_staker,
            "jackpot_amount": result.jackpot_amount,
            "ai_fallback": result.ai_fallback,
            "settlement_hash": settlement_hash[:16] + "...",
            "duration_seconds": round(duration_seconds, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.logger.info(record)
        log_event(record)

    def log_report(self, statement: str, result: SettlementResult) -> None:
        """Emit the payout report, one log record per line."""
        for line in format_settlement_report(statement, result):
            self.logger.info(line)

    def log_error(
        self,
        event: str,
        error: str,
        context: Optional[dict] = None,
    ) -> None:
        """Log an error event.

        Args:
            event: Event type
            error: Error message
            context: Additional context
        """
        self.logger.error({
            "event": event,
            "error": error,
            "context": context or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })


__all__ = [
    "SettlementAuditLogger",
    "format_settlement_report",
    "abbreviate_staker",
    "format_usd",
]
