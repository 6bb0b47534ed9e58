"""
tests/test_divergence.py — Unit tests for void_engine/divergence.py
"""

import pytest

from void_engine.divergence import (
    PATTERN_ALIGNED,
    PATTERN_CONFLICT,
    detect_divergence,
    pair_conflicts,
    split_lines,
)
from void_engine.payload import HandicapLine, OddsQuote

NAN = float("nan")
OPEN1 = OddsQuote(2.10, 3.40, 3.10)


def _line(oh, oa, nh, na, label="0") -> HandicapLine:
    return HandicapLine.derive(label, oh, oa, nh, na)


class TestConflicts:
    def test_identical_directions_aligned(self):
        lines = [
            _line(1.90, 1.90, 1.70, 2.10, "-0.25"),
            _line(2.05, 1.75, 1.85, 1.95, "-0.5"),
            _line(1.75, 2.05, 1.60, 2.30, "0"),
        ]
        r = detect_divergence(lines, OPEN1, OPEN1)
        assert r.conflict == 0
        assert r.pattern == PATTERN_ALIGNED

    def test_single_line_never_conflicts(self):
        assert pair_conflicts([_line(1.9, 1.9, 2.1, 1.7)]) == 0

    def test_every_disagreeing_pair_counted(self):
        down = _line(1.9, 1.9, 1.7, 2.1)
        up = _line(1.9, 1.9, 2.1, 1.7)
        assert pair_conflicts([down, up, up]) == 2

    def test_one_side_difference_is_conflict(self):
        a = _line(1.9, 1.9, 1.7, 2.1)
        b = _line(1.9, 1.9, 1.7, 1.9)
        r = detect_divergence([a, b], OPEN1, OPEN1)
        assert r.conflict == 1
        assert r.pattern == PATTERN_CONFLICT

    def test_split_lines(self):
        assert split_lines([_line(1.9, 1.9, 1.7, 2.1), _line(1.9, 1.9, 1.9, 1.9)]) == 1


class TestScore:
    def test_no_movement_zero(self):
        r = detect_divergence([], OPEN1, OPEN1)
        assert r.score == 0.0

    def test_handicap_only_movement(self):
        r = detect_divergence([_line(1.9, 1.9, 1.7, 2.1)], OPEN1, OPEN1)
        assert r.score == pytest.approx(0.40)
        assert r.handicap_momentum == pytest.approx(0.40)
        assert r.market_1x2_momentum == 0.0

    def test_1x2_includes_draw(self):
        r = detect_divergence([], OddsQuote(2.0, 3.0, 4.0), OddsQuote(2.0, 3.5, 4.0))
        assert r.score == pytest.approx(0.5)

    def test_matching_movement_cancels(self):
        r = detect_divergence(
            [_line(1.9, 1.9, 1.8, 2.0)],
            OddsQuote(2.0, 3.4, 3.5),
            OddsQuote(1.9, 3.4, 3.6),
        )
        assert r.score == pytest.approx(0.0, abs=1e-12)

    def test_nan_excluded(self):
        r = detect_divergence([_line(NAN, 1.9, 1.7, 2.1)], OddsQuote(NAN, 3.4, 3.1), OddsQuote(1.9, 3.4, 3.1))
        assert r.score == pytest.approx(0.2)
