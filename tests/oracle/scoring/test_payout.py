"""Tests for the dual-pool payout and jackpot selection."""

import random
from decimal import Decimal

import pytest

from tricheck.oracle.scoring.payout import (
    compute_dual_pool,
    distribute,
    draw_jackpot_winner,
    jackpot_eligible_ids,
    opinion_pool_weights,
    payout_shares,
    prediction_pool_weights,
    split_pools,
)

CROWD = Decimal("56.0")


class TestSplitPools:
    """Tests for split_pools."""

    def test_reference_stake(self):
        """$5 total: 10% fee, then 70/30 with 20% of the prediction side as jackpot."""
        pools = split_pools(5_000_000)
        assert pools.protocol_fee == 500_000
        assert pools.distributable_pool == 4_500_000
        assert pools.opinion_pool == 3_150_000
        assert pools.prediction_pool == 1_350_000
        assert pools.jackpot_pool == 270_000
        assert pools.proportional_prediction_pool == 1_080_000

    def test_conserves_total(self):
        """Fee plus every pool adds back up to the total, even with flooring."""
        pools = split_pools(1_234_567)
        assert (
            pools.protocol_fee
            + pools.opinion_pool
            + pools.jackpot_pool
            + pools.proportional_prediction_pool
        ) == 1_234_567

    def test_zero_stake(self):
        pools = split_pools(0)
        assert pools.distributable_pool == 0
        assert pools.jackpot_pool == 0


class TestDistribute:
    """Tests for distribute."""

    def test_pro_rata_floors(self):
        """Shares are floored and never exceed the pool."""
        shares = distribute({"a": 1, "b": 1, "c": 1}, 100)
        assert shares == {"a": 33, "b": 33, "c": 33}

    def test_zero_weights_split_equally(self):
        """All-zero weights fall back to equal shares."""
        assert distribute({"a": 0, "b": 0}, 101) == {"a": 50, "b": 50}

    def test_empty(self):
        assert distribute({}, 1_000) == {}


class TestPoolWeights:
    """Tests for opinion and prediction pool weights."""

    def test_negative_net_backing_earns_nothing(self, make_opinion):
        ops = [
            make_opinion("a", backing_total=100, slashing_total=300),
            make_opinion("b", backing_total=400),
        ]
        assert opinion_pool_weights(ops) == {"a": 0, "b": 400}

    def test_inverse_distance(self, reference_opinions):
        """floor(1e6 / (distance + 1)) for distances 14/6/1."""
        weights = prediction_pool_weights(reference_opinions, CROWD)
        assert weights == {"a": 66_666, "b": 142_857, "c": 500_000}


class TestComputeDualPool:
    """Tests for compute_dual_pool."""

    def test_reference_payouts(self, reference_opinions):
        pools = split_pools(5_000_000)
        op_pay, pr_pay, total_net, total_weight = compute_dual_pool(reference_opinions, CROWD, pools)

        assert op_pay == {"a": 630_000, "b": 1_260_000, "c": 1_260_000}
        assert pr_pay == {"a": 101_475, "b": 217_449, "c": 761_074}
        assert total_net == 5_000_000
        assert total_weight == 709_523

    def test_conservation_bounds(self, make_opinion):
        """Each pool pays at most its amount, short by fewer than n units."""
        rng = random.Random(11)
        ops = [
            make_opinion(
                f"op{i}",
                amount=rng.randint(1, 5_000_000),
                opinion_score=rng.randint(0, 100),
                market_prediction=rng.randint(0, 100),
                backing_total=rng.randint(0, 9_000_000),
                slashing_total=rng.randint(0, 2_000_000),
            )
            for i in range(25)
        ]
        pools = split_pools(77_777_777)
        op_pay, pr_pay, _, _ = compute_dual_pool(ops, Decimal("47.3"), pools)

        n = len(ops)
        assert pools.opinion_pool - n < sum(op_pay.values()) <= pools.opinion_pool
        assert (
            pools.proportional_prediction_pool - n
            < sum(pr_pay.values())
            <= pools.proportional_prediction_pool
        )

    def test_all_slashed_falls_back_to_equal_opinion_shares(self, make_opinion):
        ops = [
            make_opinion("a", backing_total=10, slashing_total=50),
            make_opinion("b", backing_total=10, slashing_total=90),
        ]
        pools = split_pools(1_000_000)
        op_pay, _, total_net, _ = compute_dual_pool(ops, Decimal("50"), pools)
        assert op_pay == {"a": pools.opinion_pool // 2, "b": pools.opinion_pool // 2}
        assert total_net == 0


class TestJackpot:
    """Tests for jackpot eligibility and the draw."""

    def test_reference_eligible(self, reference_opinions):
        """ceil(3 × 20%) = 1, the closest predictor."""
        assert jackpot_eligible_ids(reference_opinions, CROWD) == ["c"]

    def test_top_fifth_rounded_up(self, make_opinion):
        ops = [make_opinion(f"op{i}", market_prediction=i * 10) for i in range(11)]
        eligible = jackpot_eligible_ids(ops, Decimal("50"))
        # ceil(11 × 0.2) = 3, nearest to 50 first
        assert eligible[0] == "op5"
        assert set(eligible) == {"op4", "op5", "op6"}

    def test_ties_keep_input_order(self, make_opinion):
        ops = [
            make_opinion("x", market_prediction=40),
            make_opinion("y", market_prediction=60),
        ]
        assert jackpot_eligible_ids(ops, Decimal("50")) == ["x"]

    def test_empty(self):
        assert jackpot_eligible_ids([], Decimal("50")) == []
        assert draw_jackpot_winner([]) is None

    def test_seeded_draw_is_reproducible(self):
        ids = ["a", "b", "c", "d"]
        first = draw_jackpot_winner(ids, random.Random(3))
        second = draw_jackpot_winner(ids, random.Random(3))
        assert first == second
        assert first in ids

    def test_draw_uses_rng(self):
        class Fixed(random.Random):
            def randrange(self, *args, **kwargs):
                return 2

        assert draw_jackpot_winner(["a", "b", "c"], Fixed()) == "c"


class TestPayoutShares:
    """Tests for payout_shares."""

    def test_fractions(self):
        shares = payout_shares({"a": 1, "b": 3})
        assert shares == {"a": Decimal("0.250000"), "b": Decimal("0.750000")}

    def test_zero_total(self):
        assert payout_shares({"a": 0}) == {"a": Decimal("0")}

    @pytest.mark.parametrize("amount", [1, 7, 999_999])
    def test_single_payout_is_everything(self, amount):
        assert payout_shares({"a": amount}) == {"a": Decimal("1.000000")}
