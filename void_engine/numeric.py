"""
void_engine/numeric.py — Numeric utilities
============================================
Odds parsing and the small arithmetic helpers every engine module shares.

NaN is the "no signal" value throughout the pipeline: unparseable or missing
odds become NaN here and are excluded (or counted as zero) downstream.
Nothing in this module raises on bad input.

Outcome keys are always "home", "draw", "away", in that order.

DO NOT add I/O or storage calls to this file.
"""

import math
from typing import Optional

NAN: float = float("nan")

OUTCOMES: tuple[str, str, str] = ("home", "draw", "away")
SIDES: tuple[str, str] = ("home", "away")

DIR_DOWN: str = "down"
DIR_UP: str = "up"
DIR_FLAT: str = "flat"


def parse_odds(raw) -> float:
    """
    Parse a decimal odds value from user input.

    Trims whitespace, accepts a comma as decimal separator, and drops inner
    spaces. Returns NaN for None, empty strings, and anything non-numeric.

    >>> parse_odds(" 1,95 ")
    1.95
    >>> parse_odds("2.10")
    2.1
    >>> parse_odds(3)
    3.0
    >>> math.isnan(parse_odds(""))
    True
    >>> math.isnan(parse_odds("abc"))
    True
    >>> math.isnan(parse_odds(None))
    True
    """
    if raw is None or isinstance(raw, bool):
        return NAN
    if isinstance(raw, (int, float)):
        value = float(raw)
        return value if math.isfinite(value) else NAN
    s = str(raw).strip()
    if not s:
        return NAN
    s = s.replace(",", ".").replace(" ", "")
    try:
        value = float(s)
    except ValueError:
        return NAN
    return value if math.isfinite(value) else NAN


def is_valid(v: Optional[float]) -> bool:
    """True when v is a real, finite number."""
    return v is not None and not math.isnan(v)


def clamp(v: float, lo: float, hi: float) -> float:
    """
    >>> clamp(1.4, 0.0, 1.0)
    1.0
    >>> clamp(-0.2, 0.0, 1.0)
    0.0
    """
    return max(lo, min(hi, v))


def implied_probability(odds: float) -> float:
    """
    Decimal odds to raw (vig-inclusive) implied probability.

    >>> implied_probability(2.0)
    0.5
    >>> math.isnan(implied_probability(0.0))
    True
    >>> math.isnan(implied_probability(float("nan")))
    True
    """
    if not is_valid(odds) or odds <= 0:
        return NAN
    return 1.0 / odds


def implied_or_zero(odds: float) -> float:
    """Implied probability with 0.0 as the no-signal value, for summing."""
    p = implied_probability(odds)
    return 0.0 if math.isnan(p) else p


def net_flow(open_odds: float, now_odds: float) -> float:
    """
    open - now. Positive means the price shortened (money came in).

    >>> round(net_flow(2.10, 1.95), 2)
    0.15
    >>> math.isnan(net_flow(float("nan"), 1.95))
    True
    """
    if not is_valid(open_odds) or not is_valid(now_odds):
        return NAN
    return open_odds - now_odds


def momentum(open_odds: float, now_odds: float) -> float:
    """Absolute open-to-now move, NaN when either side is missing."""
    n = net_flow(open_odds, now_odds)
    return NAN if math.isnan(n) else abs(n)


def direction(open_odds: float, now_odds: float) -> str:
    """
    Directional label of a price move, strict comparison.

    >>> direction(1.90, 1.70)
    'down'
    >>> direction(1.90, 2.10)
    'up'
    >>> direction(1.90, 1.90)
    'flat'
    >>> direction(float("nan"), 1.90)
    'flat'
    """
    if not is_valid(open_odds) or not is_valid(now_odds):
        return DIR_FLAT
    if now_odds < open_odds:
        return DIR_DOWN
    if now_odds > open_odds:
        return DIR_UP
    return DIR_FLAT


def nan_to_zero(v: float) -> float:
    return 0.0 if not is_valid(v) else v


def normalize(probs: dict[str, float], floor: float = 0.0) -> dict[str, float]:
    """
    Scale a {home, draw, away} vector to sum to 1.

    Entries are floored at `floor` first. Returns equal thirds when the
    total is not positive.

    >>> normalize({"home": 2.0, "draw": 1.0, "away": 1.0})["home"]
    0.5
    >>> normalize({"home": 0.0, "draw": 0.0, "away": 0.0})["draw"] == 1 / 3
    True
    """
    floored = {k: max(floor, nan_to_zero(probs.get(k, 0.0))) for k in OUTCOMES}
    total = sum(floored.values())
    if total <= 0:
        return uniform()
    return {k: floored[k] / total for k in OUTCOMES}


def uniform() -> dict[str, float]:
    """Neutral {1/3, 1/3, 1/3} distribution."""
    return {k: 1.0 / 3.0 for k in OUTCOMES}


def argmax_outcome(probs: dict[str, float]) -> Optional[str]:
    """
    The outcome that strictly beats both others, else None.

    >>> argmax_outcome({"home": 0.5, "draw": 0.2, "away": 0.3})
    'home'
    >>> argmax_outcome({"home": 0.4, "draw": 0.2, "away": 0.4}) is None
    True
    """
    for k in OUTCOMES:
        others = [probs[o] for o in OUTCOMES if o != k]
        if all(probs[k] > v for v in others):
            return k
    return None
