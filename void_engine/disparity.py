"""
void_engine/disparity.py — Disparity Engine
=============================================
Compares open- vs now-normalised 1X2 implied probabilities.

For each outcome:
    delta = now_normalised - open_normalised
    positive => the market backs that outcome more than at open

Magnitude is the sum of |delta| over the three outcomes (0..2).
The label comes from the outcome with the largest |delta|:
    "<outcome>_more_backed"  delta >  threshold
    "<outcome>_less_backed"  delta < -threshold
    "neutral"                otherwise

Missing odds contribute zero implied probability; a side whose implied
probabilities sum to zero stays all-zero (no normalisation).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from void_engine.config import EngineConfig
from void_engine.numeric import OUTCOMES, implied_or_zero
from void_engine.payload import OddsQuote
from void_engine.record_store import AuditTrail, RecordStore

logger = logging.getLogger(__name__)

DISPARITY_COLLECTION: str = "disparity_stats"
LABEL_NEUTRAL: str = "neutral"


@dataclass
class DisparityResult:
    magnitude: float
    details: dict[str, float]               # per-outcome delta
    label: str
    open_normalized: dict[str, float] = field(default_factory=dict)
    now_normalized: dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "magnitude": self.magnitude,
            "details": dict(self.details),
            "label": self.label,
            "open_normalized": dict(self.open_normalized),
            "now_normalized": dict(self.now_normalized),
        }


def normalized_implied(quote: OddsQuote) -> dict[str, float]:
    """
    Implied probabilities scaled to sum to 1 (all zero if nothing usable).

    >>> p = normalized_implied(OddsQuote(2.0, 4.0, 4.0))
    >>> p["home"]
    0.5
    """
    implied = {k: implied_or_zero(quote.get(k)) for k in OUTCOMES}
    total = sum(implied.values())
    if total > 0:
        return {k: implied[k] / total for k in OUTCOMES}
    return implied


def compute_disparity(open1: OddsQuote, now1: OddsQuote, threshold: float = 0.03) -> DisparityResult:
    """
    Pure disparity computation, no side effects.

    >>> r = compute_disparity(OddsQuote(2.0, 3.5, 3.5), OddsQuote(2.0, 3.5, 3.5))
    >>> r.magnitude, r.label
    (0.0, 'neutral')
    """
    io = normalized_implied(open1)
    inow = normalized_implied(now1)

    details: dict[str, float] = {}
    max_delta = 0.0
    max_key: Optional[str] = None
    for k in OUTCOMES:
        d = inow[k] - io[k]
        details[k] = d
        if abs(d) > abs(max_delta):
            max_delta = d
            max_key = k

    label = LABEL_NEUTRAL
    if max_key is not None:
        if max_delta > threshold:
            label = f"{max_key}_more_backed"
        elif max_delta < -threshold:
            label = f"{max_key}_less_backed"

    magnitude = sum(abs(v) for v in details.values())
    return DisparityResult(
        magnitude=magnitude,
        details=details,
        label=label,
        open_normalized=io,
        now_normalized=inow,
    )


class DisparityEngine:
    """Disparity computation plus its `disparity_stats` audit record."""

    def __init__(self, store: Optional[RecordStore], config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    def analyze(self, open1: OddsQuote, now1: OddsQuote, match_key: str = "",
                league: str = "generic", audit: Optional[AuditTrail] = None) -> DisparityResult:
        result = compute_disparity(open1, now1, self.config.disparity_label_threshold)
        audit = audit or AuditTrail(self.store)
        audit.record(DISPARITY_COLLECTION, {
            "match_key": match_key,
            "league": league,
            "open": open1.as_dict(),
            "now": now1.as_dict(),
            "disparity": result.magnitude,
            "label": result.label,
        })
        return result
