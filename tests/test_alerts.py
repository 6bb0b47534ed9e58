"""
tests/test_alerts.py — Unit tests for void_engine/alerts.py
"""

import pytest

from void_engine.alerts import (
    CK_ALERTS_COLLECTION,
    ContradictionDetector,
    confidence_score,
    market_sentiment,
    market_vs_true,
    trap_level,
    void_strength,
)
from void_engine.payload import HandicapLine, OddsQuote
from void_engine.record_store import RecordStore

OPEN1 = OddsQuote(2.10, 3.40, 3.10)
HOME_IN = OddsQuote(1.95, 3.40, 3.40)


def _line(oh, oa, nh, na) -> HandicapLine:
    return HandicapLine.derive("0", oh, oa, nh, na)


def _evaluate(detector, open1=OPEN1, now1=HOME_IN, lines=(), smc=0.0, shift=0.0,
              conflict=0, sharp=False, trap=False, **kw):
    return detector.evaluate(open1, now1, list(lines), smc, shift, conflict, sharp, trap, **kw)


# ---------------------------------------------------------------------------
# contradiction
# ---------------------------------------------------------------------------
class TestContradiction:
    def test_quiet_market_no_alert(self):
        r = _evaluate(ContradictionDetector(None), now1=OPEN1)
        assert not r.alert
        assert r.severity == 0.0
        assert r.direction is None

    def test_home_in_handicap_out_alone_below_threshold(self):
        r = _evaluate(ContradictionDetector(None), lines=[_line(1.9, 1.9, 2.1, 1.7)])
        assert r.severity == pytest.approx(0.25)
        assert not r.alert

    def test_home_contradiction_with_conflict_fires_away(self):
        r = _evaluate(ContradictionDetector(None), lines=[_line(1.9, 1.9, 2.1, 1.7)], conflict=1)
        assert r.severity == pytest.approx(0.45)
        assert r.alert
        assert r.direction == "away"

    def test_smart_money_vs_equilibrium(self):
        r = _evaluate(ContradictionDetector(None), now1=OPEN1, smc=0.8, shift=0.06, conflict=1)
        assert r.severity == pytest.approx(0.5)
        assert r.direction == "home"

    def test_negative_shift_points_away(self):
        r = _evaluate(ContradictionDetector(None), now1=OPEN1, smc=0.8, shift=-0.06, conflict=1)
        assert r.direction == "away"

    def test_small_shift_ignored(self):
        r = _evaluate(ContradictionDetector(None), now1=OPEN1, smc=0.9, shift=0.02)
        assert r.severity == 0.0

    def test_away_mirror_points_home(self):
        r = _evaluate(
            ContradictionDetector(None),
            now1=OddsQuote(2.30, 3.40, 2.80),
            lines=[_line(1.9, 1.9, 1.7, 2.1)],
            conflict=1,
        )
        assert "1x2_away_in_handicap_away_out" in r.reasons
        assert r.direction == "home"

    def test_severity_clamped(self):
        r = _evaluate(
            ContradictionDetector(None),
            now1=OddsQuote(1.95, 3.40, 2.80),
            lines=[_line(1.9, 1.9, 2.1, 2.1)],
            smc=1.0, shift=0.2, conflict=3, sharp=True, trap=True,
        )
        assert len(r.reasons) == 5
        assert r.severity == 1.0

    def test_fired_alert_audited(self, tmp_path):
        store = RecordStore(str(tmp_path / "a.db"))
        _evaluate(ContradictionDetector(store), lines=[_line(1.9, 1.9, 2.1, 1.7)], conflict=1, match_key="m")
        rows = store.query(CK_ALERTS_COLLECTION)
        assert len(rows) == 1
        assert rows[0]["match_key"] == "m"

    def test_quiet_alert_not_audited(self, tmp_path):
        store = RecordStore(str(tmp_path / "a.db"))
        _evaluate(ContradictionDetector(store), now1=OPEN1)
        assert store.count(CK_ALERTS_COLLECTION) == 0


# ---------------------------------------------------------------------------
# sentiment
# ---------------------------------------------------------------------------
class TestSentiment:
    def test_panic(self):
        s = market_sentiment({"home": 0.2, "away": -0.1}, [_line(1.9, 1.9, 1.7, 2.1)])
        assert s.panic and not s.herd
        assert s.handicap_moves == 2

    def test_herd(self):
        s = market_sentiment({"home": 0.1, "away": 0.0}, [_line(1.9, 1.9, 1.8, 1.9)])
        assert s.herd and not s.panic

    def test_smoke(self):
        s = market_sentiment({"home": 0.0, "away": 0.01}, [_line(1.9, 1.9, 1.8, 1.9)])
        assert s.smoke

    def test_nan_flow_is_zero(self):
        s = market_sentiment({"home": float("nan"), "away": float("nan")}, [])
        assert s.flow == 0.0


# ---------------------------------------------------------------------------
# trap level / void strength / confidence
# ---------------------------------------------------------------------------
class TestTrapLevel:
    @pytest.mark.parametrize("args,expected", [
        ((0, False, False, False), 0),
        ((2, False, False, False), 1),
        ((0, True, False, False), 1),
        ((0, False, True, False), 2),
        ((0, False, False, True), 1),
        ((1, True, True, True), 5),
    ])
    def test_levels(self, args, expected):
        assert trap_level(*args) == expected


class TestVoidStrength:
    def test_components(self):
        assert void_strength(0.25, 0, 0.0, 0.0) == pytest.approx(0.2)
        assert void_strength(0.0, 5, 0.0, 0.0) == pytest.approx(0.25)
        assert void_strength(0.0, 0, 0.125, 0.0) == pytest.approx(0.1)
        assert void_strength(0.0, 0, 0.0, 1.0) == pytest.approx(0.15)

    def test_market_vs_true(self):
        assert market_vs_true(
            {"home": 0.5, "draw": 0.3, "away": 0.2},
            {"home": 0.4, "draw": 0.3, "away": 0.3},
        ) == pytest.approx(0.2)


class TestConfidence:
    def test_baseline(self):
        assert confidence_score(0.0, 0.0, 0.0, 0.0) == 40.0

    def test_full(self):
        assert confidence_score(1.0, 1.0, 1.0, 0.0) == 98.0

    def test_divergence_penalty(self):
        assert confidence_score(0.0, 0.0, 0.0, 1.0) == 32.0

    def test_clamped_and_rounded(self):
        assert confidence_score(0.0, 0.0, 0.0, 10.0) == 0.0
        assert confidence_score(0.123, 0.0, 0.0, 0.0) == 44.9
