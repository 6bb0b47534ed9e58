"""
tests/test_numeric.py — Unit tests for void_engine/numeric.py

Covers odds parsing, implied probability, flow/momentum/direction labelling,
normalisation and the strict argmax.
"""

import math

import pytest

from void_engine.numeric import (
    DIR_DOWN,
    DIR_FLAT,
    DIR_UP,
    argmax_outcome,
    clamp,
    direction,
    implied_or_zero,
    implied_probability,
    is_valid,
    momentum,
    net_flow,
    normalize,
    parse_odds,
    uniform,
)


# ---------------------------------------------------------------------------
# parse_odds
# ---------------------------------------------------------------------------
class TestParseOdds:
    def test_plain_string(self):
        assert parse_odds("2.10") == pytest.approx(2.10)

    def test_comma_decimal_separator(self):
        assert parse_odds("1,95") == pytest.approx(1.95)

    def test_whitespace_trimmed(self):
        assert parse_odds("  3.4 ") == pytest.approx(3.4)

    def test_numbers_pass_through(self):
        assert parse_odds(2) == 2.0
        assert parse_odds(1.5) == 1.5

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "1.2.3", True, float("inf"), "nan"])
    def test_bad_input_is_nan(self, raw):
        assert math.isnan(parse_odds(raw))

    def test_never_raises_on_odd_objects(self):
        assert math.isnan(parse_odds(object()))


class TestClamp:
    def test_inside(self):
        assert clamp(0.5, 0.0, 1.0) == 0.5

    def test_bounds(self):
        assert clamp(-1.0, 0.0, 1.0) == 0.0
        assert clamp(2.0, 0.0, 1.0) == 1.0


# ---------------------------------------------------------------------------
# implied probability
# ---------------------------------------------------------------------------
class TestImpliedProbability:
    def test_inverse_of_odds(self):
        assert implied_probability(4.0) == pytest.approx(0.25)

    def test_zero_and_negative_are_nan(self):
        assert math.isnan(implied_probability(0.0))
        assert math.isnan(implied_probability(-2.0))

    def test_or_zero_variant(self):
        assert implied_or_zero(float("nan")) == 0.0
        assert implied_or_zero(2.0) == pytest.approx(0.5)


# ---------------------------------------------------------------------------
# flow / momentum / direction
# ---------------------------------------------------------------------------
class TestMovement:
    def test_net_flow_positive_when_shortening(self):
        assert net_flow(2.10, 1.95) == pytest.approx(0.15)

    def test_net_flow_nan_when_side_missing(self):
        assert math.isnan(net_flow(2.10, float("nan")))

    def test_momentum_is_absolute(self):
        assert momentum(1.90, 2.10) == pytest.approx(0.20)
        assert math.isnan(momentum(float("nan"), 2.0))

    def test_direction_labels(self):
        assert direction(1.90, 1.70) == DIR_DOWN
        assert direction(1.90, 2.10) == DIR_UP
        assert direction(1.90, 1.90) == DIR_FLAT

    def test_direction_flat_when_undefined(self):
        assert direction(float("nan"), 1.70) == DIR_FLAT
        assert direction(1.70, float("nan")) == DIR_FLAT

    def test_is_valid(self):
        assert is_valid(1.0)
        assert not is_valid(float("nan"))
        assert not is_valid(None)


# ---------------------------------------------------------------------------
# normalize / argmax
# ---------------------------------------------------------------------------
class TestNormalize:
    def test_sums_to_one(self):
        p = normalize({"home": 0.6, "draw": 0.3, "away": 0.3})
        assert sum(p.values()) == pytest.approx(1.0)

    def test_all_zero_is_uniform(self):
        assert normalize({"home": 0.0, "draw": 0.0, "away": 0.0}) == uniform()

    def test_nan_counts_as_zero(self):
        p = normalize({"home": float("nan"), "draw": 1.0, "away": 1.0})
        assert p["home"] == 0.0
        assert p["draw"] == pytest.approx(0.5)

    def test_floor_applied(self):
        p = normalize({"home": 0.0, "draw": 1.0, "away": 1.0}, floor=1e-6)
        assert p["home"] > 0.0


class TestArgmax:
    def test_strict_winner(self):
        assert argmax_outcome({"home": 0.2, "draw": 0.5, "away": 0.3}) == "draw"

    def test_tie_is_none(self):
        assert argmax_outcome({"home": 0.4, "draw": 0.2, "away": 0.4}) is None

    def test_uniform_is_none(self):
        assert argmax_outcome(uniform()) is None
