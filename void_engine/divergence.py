"""
void_engine/divergence.py — Divergence Detector

Two questions about whether the markets agree with each other:

  1. Magnitude: |sum of handicap movement - sum of 1X2 movement|.
     Both sums are absolute open-to-now moves with missing prices excluded.
     A large gap means one market is moving without the other.

  2. Conflicts: for every pair of handicap lines, one conflict when the two
     lines disagree on the home direction or on the away direction.
     conflict > 0 -> "multi_price_conflict", else "aligned".

Pure functions; nothing here persists.
"""

from dataclasses import dataclass
from itertools import combinations
from typing import Sequence

from void_engine.numeric import OUTCOMES, is_valid, momentum
from void_engine.payload import HandicapLine, OddsQuote

PATTERN_ALIGNED: str = "aligned"
PATTERN_CONFLICT: str = "multi_price_conflict"


@dataclass
class DivergenceReport:
    score: float
    handicap_momentum: float
    market_1x2_momentum: float
    conflict: int
    pattern: str
    split_lines: int            # lines whose home and away sides disagree

    def as_dict(self) -> dict:
        return {
            "score": self.score,
            "handicap_momentum": self.handicap_momentum,
            "market_1x2_momentum": self.market_1x2_momentum,
            "conflict": self.conflict,
            "pattern": self.pattern,
            "split_lines": self.split_lines,
        }


def pair_conflicts(lines: Sequence[HandicapLine]) -> int:
    """
    Number of line pairs with differing directional labels.

    >>> a = HandicapLine.derive("-0.25", 1.9, 1.9, 1.7, 2.1)
    >>> b = HandicapLine.derive("-0.5", 2.0, 1.8, 1.8, 2.0)
    >>> c = HandicapLine.derive("0", 1.6, 2.3, 1.7, 2.2)
    >>> pair_conflicts([a, b]), pair_conflicts([a, b, c])
    (0, 2)
    """
    conflicts = 0
    for a, b in combinations(lines, 2):
        if a.direction_home != b.direction_home or a.direction_away != b.direction_away:
            conflicts += 1
    return conflicts


def split_lines(lines: Sequence[HandicapLine]) -> int:
    """Lines whose home and away prices moved under different labels."""
    return sum(1 for line in lines if line.direction_home != line.direction_away)


def detect_divergence(lines: Sequence[HandicapLine], open1: OddsQuote, now1: OddsQuote) -> DivergenceReport:
    """
    >>> r = detect_divergence([], OddsQuote(2.0, 3.4, 3.6), OddsQuote(2.0, 3.4, 3.6))
    >>> r.score, r.conflict, r.pattern
    (0.0, 0, 'aligned')
    """
    ah_total = sum(line.total_momentum() for line in lines)
    x2_total = 0.0
    for k in OUTCOMES:
        m = momentum(open1.get(k), now1.get(k))
        if is_valid(m):
            x2_total += m
    conflict = pair_conflicts(lines)
    return DivergenceReport(
        score=abs(ah_total - x2_total),
        handicap_momentum=ah_total,
        market_1x2_momentum=x2_total,
        conflict=conflict,
        pattern=PATTERN_CONFLICT if conflict > 0 else PATTERN_ALIGNED,
        split_lines=split_lines(lines),
    )
