"""
tests/test_microstructure.py — Unit tests for void_engine/microstructure.py

Tests cover:
- rebound sensitivity buckets and pre-match floor
- market metrics (flows, momentum, directional bias)
- raw price pressure, time weighting, stacking, sync ratio
- sharp / trap flags
- Smart-Money Classifier score, thresholds and audit record
- flow profile and cross-market role
"""

import pytest

from void_engine.config import EngineConfig
from void_engine.microstructure import (
    MIXED_PUBLIC,
    PUBLIC_OR_TRAP,
    SMART_MONEY,
    SMART_MOVES_COLLECTION,
    PricePressure,
    SmartMoneyClassifier,
    cross_market_role,
    derive_market_metrics,
    flow_profile,
    measure_pressure,
    raw_price_pressure,
    rebound_from_pair,
    rebound_sensitivity,
    stacking_factor,
    sync_ratio,
    time_weight,
)
from void_engine.payload import HandicapLine, OddsQuote, parse_payload
from void_engine.record_store import RecordStore

NAN = float("nan")
OPEN1 = OddsQuote(2.10, 3.40, 3.10)
NOW1_HOME = OddsQuote(1.95, 3.50, 3.40)


def _line(oh, oa, nh, na, label="-0.25") -> HandicapLine:
    return HandicapLine.derive(label, oh, oa, nh, na)


def _pressure(normalized=0.0, stacking=0.0, sharp=False, trap=False) -> PricePressure:
    return PricePressure(
        raw=normalized, time_weight=1.0, normalized=normalized,
        hours_to_kickoff=48.0, stacking=stacking, is_sharp=sharp, is_trap=trap,
    )


# ---------------------------------------------------------------------------
# rebound
# ---------------------------------------------------------------------------
class TestRebound:
    @pytest.mark.parametrize("open_odds,now_odds,expected", [
        (2.0, 2.0, 0.04),       # unchanged
        (2.0, 1.98, 0.04),      # 1%
        (2.0, 1.93, 0.03),      # 3.5%
        (2.0, 1.85, 0.02),      # 7.5%
        (2.0, 1.50, 0.015),     # 25%
        (NAN, 1.50, 0.02),
        (0.0, 1.50, 0.02),
    ])
    def test_pair_buckets(self, open_odds, now_odds, expected):
        assert rebound_from_pair(open_odds, now_odds) == expected

    def test_mean_over_pairs(self):
        assert rebound_sensitivity([(2.0, 2.0), (2.0, 1.5)]) == pytest.approx(0.0275)

    def test_no_pairs_default(self):
        assert rebound_sensitivity([]) == 0.025

    def test_floor(self):
        assert rebound_sensitivity([(2.0, 1.5)], floor=0.03) == 0.03


# ---------------------------------------------------------------------------
# metrics
# ---------------------------------------------------------------------------
class TestMarketMetrics:
    def test_flows_and_bias(self):
        p = parse_payload({
            "open1": {"home": 2.10, "draw": 3.40, "away": 3.10},
            "now1": {"home": 1.95, "draw": 3.40, "away": 3.40},
        })
        m = derive_market_metrics(p)
        assert m.flow_1x2["home"] == pytest.approx(0.15)
        assert m.flow_1x2["away"] == pytest.approx(-0.30)
        assert m.directional_bias == pytest.approx(0.45)
        assert m.total_1x2_momentum == pytest.approx(0.45)
        assert m.total_handicap_momentum == 0.0
        assert m.market_momentum == pytest.approx(0.45)

    def test_missing_odds_excluded(self):
        p = parse_payload({"open1": {"home": "x"}, "now1": {"home": 1.9}})
        m = derive_market_metrics(p)
        assert m.total_1x2_momentum == 0.0
        assert m.directional_bias == 0.0

    def test_prematch_rebound_floor(self):
        p = parse_payload({"handicap_lines": [
            {"open_home": 2.0, "open_away": 2.0, "now_home": 1.5, "now_away": 2.6},
        ]})
        assert derive_market_metrics(p).rebound_sensitivity == 0.03

    def test_live_mode_no_floor(self):
        p = parse_payload({"mode": "live", "handicap_lines": [
            {"open_home": 2.0, "open_away": 2.0, "now_home": 1.5, "now_away": 2.6},
        ]})
        assert derive_market_metrics(p).rebound_sensitivity == 0.015


# ---------------------------------------------------------------------------
# pressure / time / stacking / sync
# ---------------------------------------------------------------------------
class TestPressure:
    def test_raw_pressure_sums_lines_and_sides(self):
        lines = [_line(1.90, 1.90, 1.70, 2.10)]
        raw = raw_price_pressure(lines, OPEN1, NOW1_HOME)
        assert raw == pytest.approx(0.40 + 0.15 + 0.30)

    def test_raw_pressure_ignores_draw(self):
        raw = raw_price_pressure([], OddsQuote(2.0, 3.0, 4.0), OddsQuote(2.0, 5.0, 4.0))
        assert raw == 0.0

    @pytest.mark.parametrize("hours,weight", [(1, 1.5), (2, 1.5), (12, 1.1), (24, 1.1), (30, 0.9)])
    def test_time_weight(self, hours, weight):
        assert time_weight(hours * 3600.0, now_ts=0.0)[0] == weight

    def test_past_kickoff_is_late(self):
        assert time_weight(0.0, now_ts=1000.0) == (1.5, 0.0)

    def test_no_kickoff_is_48h(self):
        assert time_weight(None) == (0.9, 48.0)

    def test_normalized_clamped(self):
        lines = [_line(1.0, 1.0, 30.0, 30.0)]
        p = measure_pressure(lines, OddsQuote(), OddsQuote())
        assert p.normalized == 10.0

    def test_sharp_flag(self):
        lines = [_line(1.90, 1.90, 1.70, 2.10), _line(2.00, 1.80, 1.80, 2.00, "-0.5")]
        p = measure_pressure(lines, OPEN1, NOW1_HOME)
        assert p.stacking == 1.0
        assert p.is_sharp and not p.is_trap

    def test_trap_flag_without_lines(self):
        p = measure_pressure([], OPEN1, NOW1_HOME)
        assert p.stacking == 0.0
        assert p.normalized > 0.2
        assert p.is_trap and not p.is_sharp

    def test_no_movement_no_flags(self):
        p = measure_pressure([], OPEN1, OPEN1)
        assert p.normalized == 0.0
        assert not p.is_trap and not p.is_sharp


class TestStacking:
    def test_no_lines(self):
        assert stacking_factor([]) == 0.0

    def test_flat_lines_zero(self):
        assert stacking_factor([_line(1.9, 1.9, 1.9, 1.9)]) == 0.0

    def test_partial(self):
        lines = [
            _line(1.9, 1.9, 1.7, 1.9),      # home bucket only
            _line(1.9, 1.9, 2.0, 1.9),      # away bucket only
            _line(1.9, 1.9, 1.9, 1.9),      # neither
            _line(1.9, 1.9, 1.8, 1.9),      # home bucket only
        ]
        assert stacking_factor(lines) == 0.5


class TestSync:
    def test_full_sync(self):
        lines = [_line(1.90, 1.90, 1.70, 2.10)]
        assert sync_ratio(lines, OPEN1, NOW1_HOME) == 1.0

    def test_opposite_sync(self):
        lines = [_line(1.90, 1.90, 2.10, 1.70)]
        assert sync_ratio(lines, OPEN1, NOW1_HOME) == 0.0

    def test_half_sync(self):
        lines = [_line(1.90, 1.90, 1.70, 1.90)]
        assert sync_ratio(lines, OPEN1, NOW1_HOME) == 0.5

    def test_no_lines(self):
        assert sync_ratio([], OPEN1, NOW1_HOME) == 0.0


# ---------------------------------------------------------------------------
# classifier
# ---------------------------------------------------------------------------
class TestClassifier:
    def test_zero_inputs(self):
        c = SmartMoneyClassifier(None)
        assert c.score(0.0, 0.0, 0.0, 0.0) == 0.0

    def test_full_inputs_clamped(self):
        c = SmartMoneyClassifier(None)
        assert c.score(5.0, 1.0, 1.0, 0.0) == 1.0

    def test_weights(self):
        c = SmartMoneyClassifier(None)
        assert c.score(0.5, 0.5, 0.5, 0.15) == pytest.approx(0.25 + 0.15 + 0.2 - 0.2)

    def test_divergence_penalty_saturates(self):
        c = SmartMoneyClassifier(None)
        assert c.score(1.0, 1.0, 1.0, 0.3) == c.score(1.0, 1.0, 1.0, 3.0)

    @pytest.mark.parametrize("score,verdict", [
        (0.70, SMART_MONEY), (0.95, SMART_MONEY),
        (0.45, MIXED_PUBLIC), (0.69, MIXED_PUBLIC),
        (0.44, PUBLIC_OR_TRAP), (0.0, PUBLIC_OR_TRAP),
    ])
    def test_thresholds(self, score, verdict):
        assert SmartMoneyClassifier(None).verdict_for(score) == verdict

    def test_custom_thresholds(self):
        c = SmartMoneyClassifier(None, EngineConfig(smc_smart_threshold=0.5))
        assert c.verdict_for(0.55) == SMART_MONEY

    def test_classify_sync_contributes_full_weight(self):
        c = SmartMoneyClassifier(None)
        v = c.classify(_pressure(), sync=1.0, divergence=0.0)
        assert v.score == pytest.approx(0.4)
        assert v.components["sync"] == 1.0

    def test_classify_carries_flags(self):
        v = SmartMoneyClassifier(None).classify(_pressure(0.5, 0.1, trap=True), 0.0, 0.0)
        assert v.is_trap and not v.is_sharp

    def test_audit_record(self, tmp_path):
        store = RecordStore(str(tmp_path / "m.db"))
        SmartMoneyClassifier(store).classify(_pressure(1.0, 1.0), 1.0, 0.0, match_key="mk")
        rows = store.query(SMART_MOVES_COLLECTION)
        assert rows[0]["match_key"] == "mk"
        assert rows[0]["type"] == SMART_MONEY
        assert rows[0]["score"] == 1.0


# ---------------------------------------------------------------------------
# flow profile / cross-market
# ---------------------------------------------------------------------------
class TestFlowProfile:
    def test_sharp_flow(self):
        lines = [_line(1.90, 1.90, 1.70, 2.10)]
        f = flow_profile(lines, OPEN1, NOW1_HOME)
        assert f.is_sharp_flow
        assert not f.fake_move

    def test_fake_move(self):
        lines = [_line(1.90, 1.90, 1.80, 2.00)]
        f = flow_profile(lines, OPEN1, OPEN1)
        assert f.fake_move
        assert f.flow_1x2_change == 0.0

    def test_nothing_moved(self):
        f = flow_profile([], OPEN1, OPEN1)
        assert f.avg_relative_move == 0.0
        assert not f.is_sharp_flow and not f.fake_move


class TestCrossMarketRole:
    def test_leader(self):
        lines = [_line(1.90, 1.90, 1.70, 2.10)]
        r = cross_market_role(OddsQuote(2.0, 4.0, 4.0), lines)
        assert r["leader_score"] == pytest.approx(0.6 + 0.24)
        assert r["role"] == "leader"

    def test_follower_without_lines(self):
        r = cross_market_role(NOW1_HOME, [])
        assert r["role"] == "follower"
        assert r["total_lines"] == 0
