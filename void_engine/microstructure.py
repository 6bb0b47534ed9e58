"""
void_engine/microstructure.py — Market microstructure + Smart-Money Classifier
===============================================================================
Reads how prices moved between open and now, across the 1X2 market and every
Asian-Handicap line, and classifies the move as informed or public money.

Inputs per analysis:
  - price pressure ("juice"): total absolute odds movement over all handicap
    sides plus 1X2 home/away, weighted by time to kickoff
  - stacking: share of handicap lines moving in the same directional bucket
  - sync: share of handicap side directions that match the 1X2 side direction
  - divergence: |handicap movement - 1X2 movement| (see divergence.py)

Score (clamped 0..1):
    0.5 * min(pressure_norm, 1) + 0.3 * stacking + 0.4 * sync
    - 0.4 * min(divergence / 0.3, 1)

Verdict:
    score >= 0.70        smart_money
    0.45 <= score < 0.70 mixed_public
    score < 0.45         public_or_trap

Flags:
    sharp = pressure_norm > 0.2 and stacking > 0.4
    trap  = pressure_norm > 0.2 and stacking < 0.25

Every classification appends a `smart_moves` audit event.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from void_engine.config import (
    DAY_WEIGHT,
    DAY_WEIGHT_HOURS,
    DEFAULT_HOURS_TO_KICKOFF,
    EARLY_WEIGHT,
    LATE_WEIGHT,
    LATE_WEIGHT_HOURS,
    MODE_PRE_MATCH,
    PRESSURE_NORM_MAX,
    EngineConfig,
)
from void_engine.numeric import (
    DIR_DOWN,
    DIR_UP,
    OUTCOMES,
    SIDES,
    clamp,
    direction,
    implied_or_zero,
    is_valid,
    momentum,
    net_flow,
)
from void_engine.payload import HandicapLine, MatchPayload, OddsQuote
from void_engine.record_store import AuditTrail, RecordStore

logger = logging.getLogger(__name__)

SMART_MOVES_COLLECTION: str = "smart_moves"

SMART_MONEY: str = "smart_money"
MIXED_PUBLIC: str = "mixed_public"
PUBLIC_OR_TRAP: str = "public_or_trap"

FLOW_SHARP_AVG_REL: float = 0.08
FAKE_MOVE_HANDICAP_MIN: float = 0.02
FAKE_MOVE_1X2_MAX: float = 0.02
LEADER_THRESHOLD: float = 0.55


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------
@dataclass
class MarketMetrics:
    """Per-outcome and aggregate movement derived once per analysis."""
    flow_1x2: dict[str, float]          # open - now per outcome (NaN if undefined)
    momentum_1x2: dict[str, float]      # |open - now| per outcome
    direction_1x2: dict[str, str]
    total_1x2_momentum: float
    total_handicap_momentum: float
    market_momentum: float
    rebound_sensitivity: float
    directional_bias: float             # home flow - away flow (0 if undefined)

    def as_dict(self) -> dict:
        return {
            "flow_1x2": dict(self.flow_1x2),
            "momentum_1x2": dict(self.momentum_1x2),
            "direction_1x2": dict(self.direction_1x2),
            "total_1x2_momentum": self.total_1x2_momentum,
            "total_handicap_momentum": self.total_handicap_momentum,
            "market_momentum": self.market_momentum,
            "rebound_sensitivity": self.rebound_sensitivity,
            "directional_bias": self.directional_bias,
        }


@dataclass
class PricePressure:
    raw: float
    time_weight: float
    normalized: float
    hours_to_kickoff: float
    stacking: float
    is_sharp: bool
    is_trap: bool

    def as_dict(self) -> dict:
        return {
            "raw": self.raw,
            "time_weight": self.time_weight,
            "normalized": self.normalized,
            "hours_to_kickoff": self.hours_to_kickoff,
            "stacking": self.stacking,
            "is_sharp": self.is_sharp,
            "is_trap": self.is_trap,
        }


@dataclass
class SmartMoneyVerdict:
    score: float
    verdict: str
    is_sharp: bool
    is_trap: bool
    components: dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "score": self.score,
            "verdict": self.verdict,
            "is_sharp": self.is_sharp,
            "is_trap": self.is_trap,
            "components": dict(self.components),
        }


@dataclass
class FlowProfile:
    avg_relative_move: float
    is_sharp_flow: bool
    fake_move: bool
    flow_1x2_change: float
    handicap_move_total: float

    def as_dict(self) -> dict:
        return {
            "avg_relative_move": self.avg_relative_move,
            "is_sharp_flow": self.is_sharp_flow,
            "fake_move": self.fake_move,
            "flow_1x2_change": self.flow_1x2_change,
            "handicap_move_total": self.handicap_move_total,
        }


# ---------------------------------------------------------------------------
# Movement metrics
# ---------------------------------------------------------------------------
def rebound_from_pair(open_odds: float, now_odds: float) -> float:
    """
    Rebound sensitivity of one open/now price pair.

    Small relative moves are the most likely to bounce back, so they get
    the highest sensitivity.

    >>> rebound_from_pair(2.0, 2.0)
    0.04
    >>> rebound_from_pair(2.0, 1.9)
    0.02
    >>> rebound_from_pair(2.0, 1.5)
    0.015
    >>> rebound_from_pair(0.0, 1.5)
    0.02
    """
    if not is_valid(open_odds) or not is_valid(now_odds) or open_odds <= 0 or now_odds <= 0:
        return 0.02
    delta = abs(now_odds - open_odds)
    if delta <= 1e-6:
        return 0.04
    strength = delta / open_odds
    if strength < 0.02:
        return 0.04
    if strength < 0.05:
        return 0.03
    if strength < 0.12:
        return 0.02
    return 0.015


def rebound_sensitivity(pairs: Sequence[tuple[float, float]], floor: Optional[float] = None) -> float:
    """Mean rebound sensitivity over valid pairs (0.025 when none), floored."""
    values = [
        rebound_from_pair(o, n) for o, n in pairs
        if is_valid(o) and is_valid(n) and o > 0 and n > 0
    ]
    value = sum(values) / len(values) if values else 0.025
    if floor is not None:
        value = max(value, floor)
    return value


def derive_market_metrics(payload: MatchPayload, config: Optional[EngineConfig] = None) -> MarketMetrics:
    """Per-outcome 1X2 flows plus aggregate momentum for one payload."""
    config = config or EngineConfig()
    open1, now1 = payload.open1, payload.now1

    flow = {k: net_flow(open1.get(k), now1.get(k)) for k in OUTCOMES}
    mom = {k: momentum(open1.get(k), now1.get(k)) for k in OUTCOMES}
    dirs = {k: direction(open1.get(k), now1.get(k)) for k in OUTCOMES}
    total_1x2 = sum(v for v in mom.values() if is_valid(v))
    total_ah = sum(line.total_momentum() for line in payload.handicap_lines)

    pairs: list[tuple[float, float]] = []
    for line in payload.handicap_lines:
        pairs.append((line.open_home, line.now_home))
        pairs.append((line.open_away, line.now_away))
    floor = config.rebound_sens_min if payload.mode == MODE_PRE_MATCH else None

    home_flow = flow["home"] if is_valid(flow["home"]) else 0.0
    away_flow = flow["away"] if is_valid(flow["away"]) else 0.0

    return MarketMetrics(
        flow_1x2=flow,
        momentum_1x2=mom,
        direction_1x2=dirs,
        total_1x2_momentum=total_1x2,
        total_handicap_momentum=total_ah,
        market_momentum=total_1x2 + total_ah,
        rebound_sensitivity=rebound_sensitivity(pairs, floor),
        directional_bias=home_flow - away_flow,
    )


def raw_price_pressure(lines: Sequence[HandicapLine], open1: OddsQuote, now1: OddsQuote) -> float:
    """Total absolute movement over every handicap side and 1X2 home/away."""
    pressure = sum(line.total_momentum() for line in lines)
    for side in SIDES:
        m = momentum(open1.get(side), now1.get(side))
        if is_valid(m):
            pressure += m
    return pressure


def time_weight(kickoff_ts: Optional[float], now_ts: Optional[float] = None) -> tuple[float, float]:
    """
    (weight, hours_to_kickoff). Movement close to kickoff counts more.

    >>> time_weight(None)
    (0.9, 48.0)
    >>> time_weight(3600.0, now_ts=0.0)
    (1.5, 1.0)
    >>> time_weight(3600.0 * 10, now_ts=0.0)
    (1.1, 10.0)
    """
    if kickoff_ts is None:
        hours = DEFAULT_HOURS_TO_KICKOFF
    else:
        now_ts = time.time() if now_ts is None else now_ts
        hours = max(0.0, kickoff_ts - now_ts) / 3600.0
    if hours <= LATE_WEIGHT_HOURS:
        return LATE_WEIGHT, hours
    if hours <= DAY_WEIGHT_HOURS:
        return DAY_WEIGHT, hours
    return EARLY_WEIGHT, hours


def stacking_factor(lines: Sequence[HandicapLine]) -> float:
    """
    Share of handicap lines moving in the same directional bucket.

    A line counts toward the home bucket when either side's price fell
    relative to open, toward the away bucket when either side's price rose.
    The larger bucket over the line count is the stacking factor.
    """
    if not lines:
        return 0.0
    stack_home = 0
    stack_away = 0
    for line in lines:
        h_rel = _relative_move(line.open_home, line.now_home)
        a_rel = _relative_move(line.open_away, line.now_away)
        if h_rel < 0 or a_rel < 0:
            stack_home += 1
        if h_rel > 0 or a_rel > 0:
            stack_away += 1
    return clamp(max(stack_home, stack_away) / len(lines), 0.0, 1.0)


def _relative_move(open_odds: float, now_odds: float) -> float:
    if not is_valid(open_odds) or not is_valid(now_odds) or open_odds <= 0:
        return 0.0
    return (now_odds - open_odds) / open_odds


def sync_ratio(lines: Sequence[HandicapLine], open1: OddsQuote, now1: OddsQuote) -> float:
    """
    Fraction of handicap side directions agreeing with the 1X2 side direction.

    Two checks per line (home, away). 0.0 with no lines.
    """
    if not lines:
        return 0.0
    x2_home = direction(open1.home, now1.home)
    x2_away = direction(open1.away, now1.away)
    agree = 0
    for line in lines:
        if line.direction_home == x2_home:
            agree += 1
        if line.direction_away == x2_away:
            agree += 1
    return agree / (len(lines) * 2)


def measure_pressure(
    lines: Sequence[HandicapLine],
    open1: OddsQuote,
    now1: OddsQuote,
    kickoff_ts: Optional[float] = None,
    config: Optional[EngineConfig] = None,
    now_ts: Optional[float] = None,
) -> PricePressure:
    """Time-weighted price pressure, stacking, and the sharp/trap flags."""
    config = config or EngineConfig()
    raw = raw_price_pressure(lines, open1, now1)
    weight, hours = time_weight(kickoff_ts, now_ts)
    normalized = clamp(raw * weight, 0.0, PRESSURE_NORM_MAX)
    stack = stacking_factor(lines)
    elevated = normalized > config.pressure_flag_threshold
    return PricePressure(
        raw=raw,
        time_weight=weight,
        normalized=normalized,
        hours_to_kickoff=hours,
        stacking=stack,
        is_sharp=elevated and stack > config.stack_high_threshold,
        is_trap=elevated and stack < config.stack_low_threshold,
    )


def flow_profile(lines: Sequence[HandicapLine], open1: OddsQuote, now1: OddsQuote) -> FlowProfile:
    """
    Real-vs-fake flow check.

    Sharp flow: average relative move over 1X2 home/away and all handicap
    sides above 8%. Fake move: handicap prices moved while 1X2 stood still.
    """
    pairs = [(open1.home, now1.home), (open1.away, now1.away)]
    for line in lines:
        pairs.append((line.open_home, line.now_home))
        pairs.append((line.open_away, line.now_away))
    rel = [abs(_relative_move(o, n)) for o, n in pairs if is_valid(o) and is_valid(n) and o > 0]
    avg_rel = sum(rel) / len(rel) if rel else 0.0

    flow_change = sum(
        m for m in (momentum(open1.home, now1.home), momentum(open1.away, now1.away)) if is_valid(m)
    )
    ah_total = sum(line.total_momentum() for line in lines)
    return FlowProfile(
        avg_relative_move=avg_rel,
        is_sharp_flow=avg_rel > FLOW_SHARP_AVG_REL,
        fake_move=ah_total > FAKE_MOVE_HANDICAP_MIN and flow_change < FAKE_MOVE_1X2_MAX,
        flow_1x2_change=flow_change,
        handicap_move_total=ah_total,
    )


def cross_market_role(now1: OddsQuote, lines: Sequence[HandicapLine]) -> dict:
    """
    Whether the handicap market looks like it is leading the 1X2 price.

    Lines shortening on home or drifting on away count as aligned. A tight
    1X2 book (low overround) adds to the leader score.
    """
    overround = sum(implied_or_zero(now1.get(k)) for k in OUTCOMES) - 1.0
    aligned = sum(
        1 for line in lines
        if line.direction_home == DIR_DOWN or line.direction_away == DIR_UP
    )
    share = aligned / len(lines) if lines else 0.0
    score = clamp(share * 0.6 + max(0.0, 0.06 - overround) * 4.0, 0.0, 1.0)
    return {
        "leader_score": score,
        "role": "leader" if score > LEADER_THRESHOLD else "follower",
        "overround": overround,
        "aligned_lines": aligned,
        "total_lines": len(lines),
    }


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------
class SmartMoneyClassifier:
    """Weighted score over pressure, stacking, sync and divergence."""

    def __init__(self, store: Optional[RecordStore], config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    def score(self, pressure_norm: float, stacking: float, sync: float, divergence: float) -> float:
        cfg = self.config
        s = 0.0
        s += clamp(pressure_norm, 0.0, 1.0) * cfg.smc_weight_juice
        s += clamp(stacking, 0.0, 1.0) * cfg.smc_weight_stack
        s += clamp(sync, 0.0, 1.0) * cfg.smc_weight_sync
        s -= clamp(divergence / cfg.smc_divergence_scale, 0.0, 1.0) * cfg.smc_weight_divergence
        return clamp(s, 0.0, 1.0)

    def verdict_for(self, score: float) -> str:
        if score >= self.config.smc_smart_threshold:
            return SMART_MONEY
        if score >= self.config.smc_mixed_threshold:
            return MIXED_PUBLIC
        return PUBLIC_OR_TRAP

    def classify(
        self,
        pressure: PricePressure,
        sync: float,
        divergence: float,
        match_key: str = "",
        audit: Optional[AuditTrail] = None,
    ) -> SmartMoneyVerdict:
        """Score and label one market move; appends a `smart_moves` event."""
        score = self.score(pressure.normalized, pressure.stacking, sync, divergence)
        result = SmartMoneyVerdict(
            score=score,
            verdict=self.verdict_for(score),
            is_sharp=pressure.is_sharp,
            is_trap=pressure.is_trap,
            components={
                "pressure": pressure.normalized,
                "stacking": pressure.stacking,
                "sync": sync,
                "divergence": divergence,
            },
        )
        logger.debug("Smart-money %s score=%.3f %s", match_key[:12], score, result.verdict)
        audit = audit or AuditTrail(self.store)
        audit.record(SMART_MOVES_COLLECTION, {
            "match_key": match_key,
            "type": result.verdict,
            "score": score,
            "details": result.components,
        })
        return result
