"""Tests for opinion and stake validation."""

import pytest

from tricheck.oracle.scoring.types import Opinion, ValidationError
from tricheck.oracle.scoring.validation import (
    parse_opinion,
    validate_opinion_set,
    validate_total_stake,
)


def _raw(**overrides):
    raw = {
        "id": "op-1",
        "staker": "StakerABCDEFGHIJ",
        "amount": 1_000_000,
        "opinion_text": "Likely yes.",
        "opinion_score": 65,
        "market_prediction": 70,
        "backing_total": 1_000_000,
        "slashing_total": 0,
    }
    raw.update(overrides)
    return raw


class TestParseOpinion:
    """Tests for parse_opinion."""

    def test_valid_mapping(self):
        op = parse_opinion(_raw())
        assert isinstance(op, Opinion)
        assert op.net_backing == 1_000_000

    def test_passes_opinion_through(self, make_opinion):
        op = make_opinion("a")
        assert parse_opinion(op) is op

    def test_unknown_fields_ignored(self):
        assert parse_opinion(_raw(extra="x")).id == "op-1"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("opinion_score", 101),
            ("market_prediction", -1),
            ("amount", -5),
            ("backing_total", -1),
            ("id", ""),
        ],
    )
    def test_out_of_bounds(self, field, value):
        with pytest.raises(ValidationError, match="op-1|invalid opinion"):
            parse_opinion(_raw(**{field: value}))

    def test_missing_staker(self):
        raw = _raw()
        del raw["staker"]
        with pytest.raises(ValidationError):
            parse_opinion(raw)


class TestValidateOpinionSet:
    """Tests for validate_opinion_set."""

    def test_keeps_order(self):
        ops = validate_opinion_set([_raw(id="z"), _raw(id="a")])
        assert [op.id for op in ops] == ["z", "a"]

    def test_duplicate_ids(self):
        with pytest.raises(ValidationError, match="duplicate"):
            validate_opinion_set([_raw(id="x"), _raw(id="x")])

    def test_empty_is_fine(self):
        assert validate_opinion_set([]) == []


class TestValidateTotalStake:
    """Tests for validate_total_stake."""

    def test_accepts_zero(self):
        assert validate_total_stake(0) == 0

    @pytest.mark.parametrize("bad", [-1, 1.5, "100", True, None])
    def test_rejects(self, bad):
        with pytest.raises(ValidationError):
            validate_total_stake(bad)
