"""
void_engine/alerts.py — Contradiction alert, market sentiment, trap level
==========================================================================
Second-order reads built on top of the microstructure and equilibrium
results. Nothing here touches odds directly except the handicap directions.

Contradiction alert (severity, clamped 0..1; fires at >= 0.35):
    +0.25  1X2 home shortened while the handicap home side drifted   -> away
    +0.25  1X2 away shortened while the handicap away side drifted   -> home
    +0.30  smart-money score >= 0.6 and |equilibrium shift| > 0.04   -> shift side
    +0.20  handicap lines in conflict with each other
    +0.20  sharp and trap flags both set
    Fired alerts append a `ck_alerts` audit event.

Sentiment:
    flow = |home 1X2 flow| + |away 1X2 flow|
    panic  flow > 0.25 and more than one handicap side moved > 0.03
    herd   flow > 0.08 and at least one side moved (not panic)
    smoke  a handicap side moved but flow < 0.02

Trap level 0..5:
    +1 handicap conflict, +1 trap flag, +2 contradiction, +1 panic

Void strength 0..1:
    0.40 * min(|market - true| / 0.5, 1) + 0.25 * trap_level / 5
    + 0.20 * min(avg_relative_move / 0.25, 1) + 0.15 * smart_money_score
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from void_engine.config import EngineConfig
from void_engine.numeric import DIR_DOWN, DIR_UP, OUTCOMES, clamp, direction, is_valid
from void_engine.payload import HandicapLine, OddsQuote
from void_engine.record_store import AuditTrail, RecordStore

logger = logging.getLogger(__name__)

CK_ALERTS_COLLECTION: str = "ck_alerts"

SIDE_MOVE_MIN: float = 0.03
PANIC_FLOW: float = 0.25
HERD_FLOW: float = 0.08
SMOKE_FLOW_MAX: float = 0.02
CONTRADICTION_SMC_MIN: float = 0.6
CONTRADICTION_SHIFT_MIN: float = 0.04
TRAP_LEVEL_MAX: int = 5


@dataclass
class ContradictionAlert:
    alert: bool
    severity: float
    direction: Optional[str]
    reasons: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "alert": self.alert,
            "severity": self.severity,
            "direction": self.direction,
            "reasons": list(self.reasons),
        }


@dataclass
class Sentiment:
    panic: bool
    herd: bool
    smoke: bool
    flow: float
    handicap_moves: int

    def as_dict(self) -> dict:
        return {
            "panic": self.panic,
            "herd": self.herd,
            "smoke": self.smoke,
            "flow": self.flow,
            "handicap_moves": self.handicap_moves,
        }


def _direction_score(label: str) -> int:
    if label == DIR_UP:
        return 1
    if label == DIR_DOWN:
        return -1
    return 0


class ContradictionDetector:
    """Flags markets telling two different stories at once."""

    def __init__(self, store: Optional[RecordStore], config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    def evaluate(
        self,
        open1: OddsQuote,
        now1: OddsQuote,
        lines: Sequence[HandicapLine],
        smart_money_score: float,
        equilibrium_shift: float,
        conflict: int,
        is_sharp: bool,
        is_trap: bool,
        match_key: str = "",
        audit: Optional[AuditTrail] = None,
    ) -> ContradictionAlert:
        severity = 0.0
        side: Optional[str] = None
        reasons: list[str] = []

        ah_home = sum(_direction_score(line.direction_home) for line in lines)
        ah_away = sum(_direction_score(line.direction_away) for line in lines)

        if direction(open1.home, now1.home) == DIR_DOWN and ah_home > 0:
            severity += 0.25
            side = "away"
            reasons.append("1x2_home_in_handicap_home_out")
        if direction(open1.away, now1.away) == DIR_DOWN and ah_away > 0:
            severity += 0.25
            side = "home"
            reasons.append("1x2_away_in_handicap_away_out")
        if smart_money_score >= CONTRADICTION_SMC_MIN and abs(equilibrium_shift) > CONTRADICTION_SHIFT_MIN:
            severity += 0.3
            side = "home" if equilibrium_shift > 0 else "away"
            reasons.append("smart_money_vs_equilibrium")
        if conflict > 0:
            severity += 0.2
            reasons.append("handicap_conflict")
        if is_sharp and is_trap:
            severity += 0.2
            reasons.append("sharp_and_trap")

        severity = clamp(severity, 0.0, 1.0)
        fired = severity >= self.config.contradiction_severity_min
        result = ContradictionAlert(fired, severity, side if fired else None, reasons)
        if fired:
            logger.debug("Contradiction %s severity=%.2f %s", match_key[:12], severity, reasons)
            audit = audit or AuditTrail(self.store)
            audit.record(CK_ALERTS_COLLECTION, {"match_key": match_key, **result.as_dict()})
        return result


def market_sentiment(flow_1x2: dict[str, float], lines: Sequence[HandicapLine]) -> Sentiment:
    """
    >>> s = market_sentiment({"home": 0.0, "draw": 0.0, "away": 0.0}, [])
    >>> s.panic, s.herd, s.smoke
    (False, False, False)
    """
    home = flow_1x2.get("home", 0.0)
    away = flow_1x2.get("away", 0.0)
    flow = (abs(home) if is_valid(home) else 0.0) + (abs(away) if is_valid(away) else 0.0)
    moves = 0
    for line in lines:
        for m in (line.momentum_home, line.momentum_away):
            if is_valid(m) and m > SIDE_MOVE_MIN:
                moves += 1
    panic = flow > PANIC_FLOW and moves > 1
    herd = flow > HERD_FLOW and moves >= 1 and not panic
    smoke = moves > 0 and flow < SMOKE_FLOW_MAX
    return Sentiment(panic, herd, smoke, flow, moves)


def trap_level(conflict: int, is_trap: bool, contradiction: bool, panic: bool) -> int:
    """
    >>> trap_level(0, False, False, False)
    0
    >>> trap_level(3, True, True, True)
    5
    """
    level = 0
    if conflict > 0:
        level += 1
    if is_trap:
        level += 1
    if contradiction:
        level += 2
    if panic:
        level += 1
    return min(level, TRAP_LEVEL_MAX)


def market_vs_true(market: dict[str, float], true_p: dict[str, float]) -> float:
    """Sum of absolute per-outcome gaps between market and true probability."""
    return sum(abs(market[k] - true_p[k]) for k in OUTCOMES)


def void_strength(
    market_true_gap: float,
    level: int,
    avg_relative_move: float,
    smart_money_score: float,
) -> float:
    """
    >>> void_strength(0.0, 0, 0.0, 0.0)
    0.0
    >>> round(void_strength(1.0, 5, 1.0, 1.0), 6)
    1.0
    """
    s = 0.0
    s += clamp(market_true_gap / 0.5, 0.0, 1.0) * 0.4
    s += (level / TRAP_LEVEL_MAX) * 0.25
    s += clamp(avg_relative_move / 0.25, 0.0, 1.0) * 0.2
    s += clamp(smart_money_score, 0.0, 1.0) * 0.15
    return clamp(s, 0.0, 1.0)


def confidence_score(strength: float, market_momentum: float, smart_money_score: float, divergence: float) -> float:
    """
    0-100, one decimal.

    >>> confidence_score(0.0, 0.0, 0.0, 0.0)
    40.0
    """
    c = 40.0
    c += strength * 40.0
    c += min(1.0, market_momentum / 0.3) * 8.0
    c += smart_money_score * 10.0
    c -= divergence * 8.0
    return round(clamp(c, 0.0, 100.0), 1)
