"""
void_engine/probability_model.py — True-price origin + Poisson match simulation

Three views of the same match, blended into one "true probability":

  TPO (true price origin)
      Implied probabilities from the current 1X2 odds, de-margined:
          margin = overround if the book shows one, else TPO_DEFAULT_MARGIN
          p_i    = max(implied_i / (1 + margin), 1e-6), renormalised

  Simulation
      strength = ln(p_home / p_away) from TPO
      home_rate = max(MIN_GOAL_RATE, BASE_GOAL_RATE + strength * STRENGTH_SCALE)
      away_rate = max(MIN_GOAL_RATE, BASE_GOAL_RATE - strength * STRENGTH_SCALE)
      N trials of independent Poisson goals per side -> win/draw/loss frequencies

  Market
      Raw implied probabilities, normalised.

Blend (weights from EngineConfig, defaults 0.6 / 0.2 / 0.2):
      true = normalise(w_sim * sim + w_tpo * tpo + w_market * market)

With no usable "now" odds every view is {1/3, 1/3, 1/3}.

Usage:
    from void_engine.probability_model import ProbabilityModel
    model = ProbabilityModel(EngineConfig(sim_seed=7))
    result = model.estimate(payload.now1)
    result.true_probability["home"]

DO NOT seed the global `random` module here; every simulation owns its RNG.
"""

import math
import random
from dataclasses import dataclass, field
from typing import Optional

from void_engine.config import (
    SIM_COUNT_MAX,
    SIM_COUNT_MIN,
    EngineConfig,
)
from void_engine.numeric import (
    OUTCOMES,
    clamp,
    implied_or_zero,
    normalize,
    uniform,
)
from void_engine.payload import OddsQuote

TPO_FLOOR: float = 1e-6
STRENGTH_FLOOR: float = 1e-6
STRENGTH_EPS: float = 1e-9


@dataclass
class TpoEstimate:
    probabilities: dict[str, float]
    overround: float            # sum(implied) - 1, 0.0 when nothing usable
    margin_used: float
    implied_sum: float
    usable: bool                # False -> uniform fallback

    def as_dict(self) -> dict:
        return {
            "probabilities": dict(self.probabilities),
            "overround": self.overround,
            "margin_used": self.margin_used,
            "implied_sum": self.implied_sum,
            "usable": self.usable,
        }


@dataclass
class SimulationResult:
    probabilities: dict[str, float]
    home_rate: float
    away_rate: float
    n_sims: int
    tallies: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "probabilities": dict(self.probabilities),
            "home_rate": self.home_rate,
            "away_rate": self.away_rate,
            "n_sims": self.n_sims,
            "tallies": dict(self.tallies),
        }


@dataclass
class ProbabilityEstimate:
    true_probability: dict[str, float]
    market_probability: dict[str, float]
    tpo: TpoEstimate
    simulation: SimulationResult

    def as_dict(self) -> dict:
        return {
            "true_probability": dict(self.true_probability),
            "market_probability": dict(self.market_probability),
            "tpo": self.tpo.as_dict(),
            "simulation": self.simulation.as_dict(),
        }


# ---------------------------------------------------------------------------
# TPO
# ---------------------------------------------------------------------------
def market_probability(now1: OddsQuote) -> dict[str, float]:
    """Raw implied probabilities scaled to 1 (uniform when nothing usable)."""
    return normalize({k: implied_or_zero(now1.get(k)) for k in OUTCOMES})


def estimate_tpo(now1: OddsQuote, default_margin: float = 0.06) -> TpoEstimate:
    """
    De-margined probability estimate from current odds.

    >>> t = estimate_tpo(OddsQuote(2.0, 4.0, 4.0))
    >>> round(t.probabilities["home"], 6), t.margin_used
    (0.5, 0.06)
    >>> estimate_tpo(OddsQuote()).usable
    False
    """
    implied = {k: implied_or_zero(now1.get(k)) for k in OUTCOMES}
    total = sum(implied.values())
    if total <= 0:
        return TpoEstimate(uniform(), 0.0, default_margin, 0.0, usable=False)

    overround = total - 1.0
    margin = overround if overround > 0 else default_margin
    scaled = {k: max(TPO_FLOOR, implied[k] / (1.0 + margin)) for k in OUTCOMES}
    return TpoEstimate(
        probabilities=normalize(scaled),
        overround=overround,
        margin_used=margin,
        implied_sum=total,
        usable=True,
    )


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------
def poisson_sample(lam: float, rng: random.Random) -> int:
    """
    Knuth's multiplicative sampler: multiply uniforms until the product
    drops to exp(-lam) or below.

    lam <= 0 always returns 0.
    """
    if lam <= 0:
        return 0
    limit = math.exp(-lam)
    k = 0
    p = 1.0
    while True:
        k += 1
        p *= rng.random()
        if p <= limit:
            return k - 1


def goal_rates(tpo: dict[str, float], config: Optional[EngineConfig] = None) -> tuple[float, float]:
    """
    Expected goals per side from the TPO home/away log-strength.

    >>> h, a = goal_rates({"home": 0.4, "draw": 0.2, "away": 0.4})
    >>> round(h, 6), round(a, 6)
    (1.15, 1.15)
    """
    config = config or EngineConfig()
    ph = max(STRENGTH_FLOOR, tpo.get("home", 0.0))
    pa = max(STRENGTH_FLOOR, tpo.get("away", 0.0))
    strength = math.log(ph / pa + STRENGTH_EPS)
    home = max(config.min_goal_rate, config.base_goal_rate + strength * config.strength_scale)
    away = max(config.min_goal_rate, config.base_goal_rate - strength * config.strength_scale)
    return home, away


def clamp_sim_count(n: int) -> int:
    """
    >>> clamp_sim_count(5), clamp_sim_count(800), clamp_sim_count(10**6)
    (100, 800, 2000)
    """
    return int(clamp(int(n), SIM_COUNT_MIN, SIM_COUNT_MAX))


def simulate(
    home_rate: float,
    away_rate: float,
    n_sims: int = 800,
    seed: Optional[int] = None,
) -> SimulationResult:
    """
    Run n_sims independent trials and tally home win / draw / away win.

    Args:
        home_rate: Poisson mean goals for the home side.
        away_rate: Poisson mean goals for the away side.
        n_sims:    Trial count, silently clamped to [SIM_COUNT_MIN, SIM_COUNT_MAX].
        seed:      RNG seed for reproducible runs.
    """
    n = clamp_sim_count(n_sims)
    rng = random.Random(seed)
    tallies = {k: 0 for k in OUTCOMES}
    for _ in range(n):
        gh = poisson_sample(home_rate, rng)
        ga = poisson_sample(away_rate, rng)
        if gh > ga:
            tallies["home"] += 1
        elif gh < ga:
            tallies["away"] += 1
        else:
            tallies["draw"] += 1
    return SimulationResult(
        probabilities={k: tallies[k] / n for k in OUTCOMES},
        home_rate=home_rate,
        away_rate=away_rate,
        n_sims=n,
        tallies=tallies,
    )


def blend(
    sim: dict[str, float],
    tpo: dict[str, float],
    market: dict[str, float],
    config: Optional[EngineConfig] = None,
) -> dict[str, float]:
    """Weighted sim/TPO/market combination, renormalised."""
    config = config or EngineConfig()
    mixed = {
        k: sim[k] * config.blend_sim + tpo[k] * config.blend_tpo + market[k] * config.blend_market
        for k in OUTCOMES
    }
    return normalize(mixed)


class ProbabilityModel:
    """Stateless. Holds only the configuration."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def estimate(self, now1: OddsQuote, seed: Optional[int] = None) -> ProbabilityEstimate:
        cfg = self.config
        seed = cfg.sim_seed if seed is None else seed
        tpo = estimate_tpo(now1, cfg.tpo_default_margin)
        market = market_probability(now1)

        if not tpo.usable:
            n = clamp_sim_count(cfg.sim_count)
            sim = SimulationResult(uniform(), cfg.base_goal_rate, cfg.base_goal_rate, n, {})
            return ProbabilityEstimate(uniform(), uniform(), tpo, sim)

        home_rate, away_rate = goal_rates(tpo.probabilities, cfg)
        sim = simulate(home_rate, away_rate, cfg.sim_count, seed)
        true_p = blend(sim.probabilities, tpo.probabilities, market, cfg)
        return ProbabilityEstimate(true_p, market, tpo, sim)
