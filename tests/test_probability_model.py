"""
tests/test_probability_model.py — Unit tests for void_engine/probability_model.py

All simulation tests pass an explicit seed for reproducibility.
"""

import random

import pytest

from void_engine.config import EngineConfig
from void_engine.numeric import OUTCOMES
from void_engine.payload import OddsQuote
from void_engine.probability_model import (
    ProbabilityModel,
    blend,
    clamp_sim_count,
    estimate_tpo,
    goal_rates,
    market_probability,
    poisson_sample,
    simulate,
)

NAN = float("nan")


# ---------------------------------------------------------------------------
# TPO
# ---------------------------------------------------------------------------
class TestTpo:
    def test_overround_detected(self):
        t = estimate_tpo(OddsQuote(1.95, 3.60, 3.80))
        assert t.implied_sum > 1.02
        assert t.overround == pytest.approx(t.implied_sum - 1.0)
        assert t.margin_used == pytest.approx(t.overround)

    def test_sums_to_one(self):
        t = estimate_tpo(OddsQuote(1.95, 3.60, 3.80))
        assert sum(t.probabilities.values()) == pytest.approx(1.0)

    def test_preserves_ranking(self):
        t = estimate_tpo(OddsQuote(1.95, 3.60, 3.80))
        assert t.probabilities["home"] > t.probabilities["draw"] > t.probabilities["away"]

    def test_default_margin_without_overround(self):
        t = estimate_tpo(OddsQuote(2.2, 4.4, 4.4))
        assert t.overround < 0
        assert t.margin_used == 0.06

    def test_missing_outcome_floored(self):
        t = estimate_tpo(OddsQuote(1.5, NAN, 3.0))
        assert t.probabilities["draw"] > 0
        assert t.probabilities["draw"] < 1e-5

    def test_all_missing_uniform(self):
        t = estimate_tpo(OddsQuote())
        assert not t.usable
        for k in OUTCOMES:
            assert t.probabilities[k] == pytest.approx(1 / 3)

    def test_market_probability(self):
        m = market_probability(OddsQuote(2.0, 4.0, 4.0))
        assert m == {"home": 0.5, "draw": 0.25, "away": 0.25}


# ---------------------------------------------------------------------------
# Poisson sampling
# ---------------------------------------------------------------------------
class TestPoissonSample:
    def test_lambda_zero_always_zero(self):
        rng = random.Random(1)
        assert all(poisson_sample(0.0, rng) == 0 for _ in range(500))

    def test_non_negative(self):
        rng = random.Random(2)
        assert all(poisson_sample(1.3, rng) >= 0 for _ in range(500))

    def test_mean_close_to_lambda(self):
        rng = random.Random(3)
        draws = [poisson_sample(1.5, rng) for _ in range(5000)]
        assert sum(draws) / len(draws) == pytest.approx(1.5, abs=0.1)


class TestGoalRates:
    def test_even_match(self):
        h, a = goal_rates({"home": 0.35, "draw": 0.30, "away": 0.35})
        assert h == pytest.approx(1.15)
        assert a == pytest.approx(1.15)

    def test_favourite_scores_more(self):
        h, a = goal_rates({"home": 0.6, "draw": 0.25, "away": 0.15})
        assert h > 1.15 > a

    def test_floor(self):
        h, a = goal_rates({"home": 0.999, "draw": 0.0005, "away": 0.0005})
        assert a == 0.15

    def test_config_scale(self):
        h, _ = goal_rates({"home": 0.6, "draw": 0.25, "away": 0.15}, EngineConfig(strength_scale=0.0))
        assert h == pytest.approx(1.15)


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------
class TestSimulate:
    def test_sim_count_clamped(self):
        assert clamp_sim_count(1) == 100
        assert clamp_sim_count(5000) == 2000
        assert simulate(1.0, 1.0, n_sims=10, seed=1).n_sims == 100

    def test_tallies_add_up(self):
        r = simulate(1.4, 1.0, n_sims=500, seed=7)
        assert sum(r.tallies.values()) == 500
        assert sum(r.probabilities.values()) == pytest.approx(1.0)

    def test_seed_reproducible(self):
        assert simulate(1.3, 0.9, 800, seed=11).tallies == simulate(1.3, 0.9, 800, seed=11).tallies

    def test_zero_rates_all_draws(self):
        r = simulate(0.0, 0.0, 200, seed=5)
        assert r.tallies == {"home": 0, "draw": 200, "away": 0}

    def test_stronger_side_wins_more(self):
        r = simulate(2.0, 0.5, 2000, seed=9)
        assert r.probabilities["home"] > r.probabilities["away"]


class TestBlend:
    def test_weights(self):
        sim = {"home": 1.0, "draw": 0.0, "away": 0.0}
        tpo = {"home": 0.0, "draw": 1.0, "away": 0.0}
        mkt = {"home": 0.0, "draw": 0.0, "away": 1.0}
        b = blend(sim, tpo, mkt)
        assert b["home"] == pytest.approx(0.6)
        assert b["draw"] == pytest.approx(0.2)
        assert b["away"] == pytest.approx(0.2)


# ---------------------------------------------------------------------------
# ProbabilityModel
# ---------------------------------------------------------------------------
class TestProbabilityModel:
    @pytest.mark.parametrize("quote", [
        OddsQuote(1.95, 3.60, 3.80),
        OddsQuote(1.10, 9.0, 21.0),
        OddsQuote(NAN, 3.2, NAN),
        OddsQuote(-1.0, 0.0, NAN),
        OddsQuote(),
    ])
    def test_true_probability_sums_to_one(self, quote):
        est = ProbabilityModel(EngineConfig(sim_seed=3)).estimate(quote)
        assert sum(est.true_probability.values()) == pytest.approx(1.0, abs=1e-6)

    def test_all_missing_uniform(self):
        est = ProbabilityModel().estimate(OddsQuote())
        for k in OUTCOMES:
            assert est.true_probability[k] == pytest.approx(1 / 3, abs=1e-6)
            assert est.market_probability[k] == pytest.approx(1 / 3, abs=1e-6)

    def test_favourite_stays_favourite(self):
        est = ProbabilityModel(EngineConfig(sim_seed=1)).estimate(OddsQuote(1.95, 3.60, 3.80))
        p = est.true_probability
        assert p["home"] > p["away"]
        assert p["home"] > p["draw"]

    def test_seed_argument_overrides_config(self):
        model = ProbabilityModel(EngineConfig(sim_seed=1))
        a = model.estimate(OddsQuote(2.5, 3.2, 2.9), seed=99)
        b = model.estimate(OddsQuote(2.5, 3.2, 2.9), seed=99)
        assert a.true_probability == b.true_probability
