"""
void_engine/orchestrator.py — Match Orchestrator
==================================================
The single analysis entry point. One pass, no exposed intermediate states:

    parse payload
      -> derive per-line / per-outcome movement
      -> disparity, divergence, price pressure, smart-money classifier
      -> TPO + simulation + blend, equilibrium, closing projection
      -> contradiction, sentiment, trap level, void strength
      -> label, recommendation, predicted winner, confidence
      -> persist EWMA signals + `match_cases` audit record
      -> AnalysisResult

Missing or unparseable odds never abort the analysis; they are "no signal".
A payload with no usable "now" odds gets the uniform distribution and the
`no_market` label. Only a structurally broken payload raises InvalidPayload.

Storage failures are logged, listed in AnalysisResult.persistence_errors,
and never cost the caller the computed result.

Outcome learning:
    resolve_outcome(match_key, "home") stamps the match case, learns the
    case's signature into Pattern Memory, then runs autotune.

Usage:
    from void_engine.orchestrator import MatchOrchestrator
    engine = MatchOrchestrator.from_config(EngineConfig.from_env())
    result = engine.analyze(payload_dict)
    result.label, result.recommendation, result.true_probability
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from void_engine.alerts import (
    ContradictionDetector,
    confidence_score,
    market_sentiment,
    market_vs_true,
    trap_level,
    void_strength,
)
from void_engine.config import AUTOTUNE_KEY, EngineConfig
from void_engine.disparity import DisparityEngine
from void_engine.divergence import detect_divergence
from void_engine.microstructure import (
    MIXED_PUBLIC,
    PUBLIC_OR_TRAP,
    SMART_MONEY,
    SmartMoneyClassifier,
    cross_market_role,
    derive_market_metrics,
    flow_profile,
    measure_pressure,
    sync_ratio,
)
from void_engine.numeric import OUTCOMES, argmax_outcome
from void_engine.pattern_memory import PatternMemory
from void_engine.payload import MatchPayload, parse_payload
from void_engine.probability_model import ProbabilityModel
from void_engine.projector import MarketEquilibrium, project_closing
from void_engine.record_store import AuditTrail, PersistenceFailure, RecordStore
from void_engine.signal_store import AdaptiveSignal, SignalStore

logger = logging.getLogger(__name__)

MATCH_CASES_COLLECTION: str = "match_cases"
OUTCOMES_COLLECTION: str = "outcomes"
AUTOTUNE_TOP_PATTERNS: int = 20
AUTOTUNE_RAISE_ABOVE: float = 0.55
AUTOTUNE_LOWER_BELOW: float = 0.48

# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------
LABEL_NO_MARKET: str = "no_market"
LABEL_CONTRADICTION: str = "contradiction"
LABEL_TRAP: str = "trap"
LABEL_SMART_HOME: str = "smart_money_home"
LABEL_SMART_AWAY: str = "smart_money_away"
LABEL_SMART_POSSIBLE: str = "smart_money_possible"
LABEL_UNCLEAR: str = "unclear"

REC_WAIT: str = "wait"
REC_AVOID: str = "avoid"
REC_FOLLOW: str = "follow_small_stake"
REC_WATCH: str = "watch"

WINNER_UNCLEAR: str = "unclear"


@dataclass
class AnalysisResult:
    """Transient output of one analyze() call."""
    match_key: str
    match: str
    league: str
    kickoff_time: Optional[str]
    mode: str
    label: str
    recommendation: str
    predicted_winner: str
    confidence: float
    true_probability: dict[str, float]
    market_probability: dict[str, float]
    projected_probability: dict[str, float]
    tpo: dict[str, float]
    smart_money: dict
    disparity: dict
    divergence: dict
    pressure: dict
    metrics: dict
    equilibrium: dict
    contradiction: dict
    sentiment: dict
    cross_market: dict
    flow: dict
    simulation: dict
    trap_level: int
    void_strength: float
    insight: dict = field(default_factory=dict)
    signature: dict = field(default_factory=dict)
    persistence_errors: list[str] = field(default_factory=list)
    created_at: str = ""

    def as_dict(self) -> dict:
        return {
            "match_key": self.match_key,
            "match": self.match,
            "league": self.league,
            "kickoff_time": self.kickoff_time,
            "mode": self.mode,
            "label": self.label,
            "recommendation": self.recommendation,
            "predicted_winner": self.predicted_winner,
            "confidence": self.confidence,
            "true_probability": dict(self.true_probability),
            "market_probability": dict(self.market_probability),
            "projected_probability": dict(self.projected_probability),
            "tpo": dict(self.tpo),
            "smart_money": self.smart_money,
            "disparity": self.disparity,
            "divergence": self.divergence,
            "pressure": self.pressure,
            "metrics": self.metrics,
            "equilibrium": self.equilibrium,
            "contradiction": self.contradiction,
            "sentiment": self.sentiment,
            "cross_market": self.cross_market,
            "flow": self.flow,
            "simulation": self.simulation,
            "trap_level": self.trap_level,
            "void_strength": self.void_strength,
            "insight": dict(self.insight),
            "signature": dict(self.signature),
            "persistence_errors": list(self.persistence_errors),
            "created_at": self.created_at,
        }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_match_key(payload: MatchPayload, stamp: Optional[str] = None) -> str:
    """SHA-256 of home|away|kickoff|analysis timestamp."""
    stamp = stamp or _now_iso()
    raw = f"{payload.home_team}|{payload.away_team}|{payload.kickoff_time or ''}|{stamp}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def final_label(
    has_market: bool,
    contradiction: bool,
    verdict: str,
    divergence: float,
    is_trap: bool,
    bias: float,
    config: Optional[EngineConfig] = None,
) -> tuple[str, str]:
    """
    (label, recommendation). First matching rule wins.

    >>> final_label(False, False, SMART_MONEY, 0.0, False, 1.0)
    ('no_market', 'wait')
    >>> final_label(True, False, SMART_MONEY, 0.0, False, 0.2)
    ('smart_money_home', 'follow_small_stake')
    >>> final_label(True, False, PUBLIC_OR_TRAP, 0.0, False, 0.0)
    ('unclear', 'wait')
    """
    config = config or EngineConfig()
    if not has_market:
        return LABEL_NO_MARKET, REC_WAIT
    if contradiction:
        return LABEL_CONTRADICTION, REC_AVOID
    if verdict == PUBLIC_OR_TRAP and (divergence > config.trap_divergence_threshold or is_trap):
        return LABEL_TRAP, REC_AVOID
    if verdict == SMART_MONEY and bias > 0:
        return LABEL_SMART_HOME, REC_FOLLOW
    if verdict == SMART_MONEY and bias < 0:
        return LABEL_SMART_AWAY, REC_FOLLOW
    if verdict == MIXED_PUBLIC:
        return LABEL_SMART_POSSIBLE, REC_WATCH
    return LABEL_UNCLEAR, REC_WAIT


class MatchOrchestrator:
    """
    Wires every engine component around one RecordStore handle.

    store=None runs the whole pipeline statelessly: signals use their
    fallbacks, pattern lookups find nothing, nothing is audited.
    """

    def __init__(self, store: Optional[RecordStore], config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()
        self.signals = SignalStore(store, self.config)
        self.patterns = PatternMemory(store)
        self.disparity = DisparityEngine(store, self.config)
        self.classifier = SmartMoneyClassifier(store, self.config)
        self.model = ProbabilityModel(self.config)
        self.equilibrium = MarketEquilibrium(self.signals, self.config)
        self.contradictions = ContradictionDetector(store, self.config)

    @classmethod
    def from_config(cls, config: Optional[EngineConfig] = None) -> "MatchOrchestrator":
        """Orchestrator on the SQLite file named by config.db_path."""
        config = config or EngineConfig()
        store = RecordStore(config.db_path)
        store.init()
        return cls(store, config)

    # -----------------------------------------------------------------------
    # Analysis
    # -----------------------------------------------------------------------

    def analyze(self, payload, now_ts: Optional[float] = None) -> AnalysisResult:
        """
        Analyze one match snapshot.

        Args:
            payload: MatchPayload, a raw mapping, or JSON text.
            now_ts:  Clock override (epoch seconds) for time-to-kickoff.

        Raises:
            InvalidPayload: payload is not a well-formed structured object.
        """
        if not isinstance(payload, MatchPayload):
            payload = parse_payload(payload)
        cfg = self.config
        created_at = _now_iso()
        match_key = make_match_key(payload, created_at)
        audit = AuditTrail(self.store)
        lines = payload.handicap_lines
        open1, now1 = payload.open1, payload.now1
        has_market = now1.has_any()

        metrics = derive_market_metrics(payload, cfg)
        disparity = self.disparity.analyze(open1, now1, match_key, payload.league, audit=audit)
        divergence = detect_divergence(lines, open1, now1)
        pressure = measure_pressure(
            lines, open1, now1, payload.kickoff_ts, cfg,
            now_ts=time.time() if now_ts is None else now_ts,
        )
        sync = sync_ratio(lines, open1, now1)
        smc = self.classifier.classify(pressure, sync, divergence.score, match_key, audit=audit)

        prob = self.model.estimate(now1)
        tpo = prob.tpo.probabilities
        market = prob.market_probability
        eq = self.equilibrium.evaluate(market, tpo, match_key, audit=audit, use_history=prob.tpo.usable)
        projected = project_closing(market, tpo, pressure.is_sharp, pressure.is_trap, cfg)

        contradiction = self.contradictions.evaluate(
            open1, now1, lines,
            smart_money_score=smc.score,
            equilibrium_shift=eq.max_shift,
            conflict=divergence.conflict,
            is_sharp=pressure.is_sharp,
            is_trap=pressure.is_trap,
            match_key=match_key,
            audit=audit,
        )
        sentiment = market_sentiment(metrics.flow_1x2, lines)
        flow = flow_profile(lines, open1, now1)
        role = cross_market_role(now1, lines)

        level = trap_level(divergence.conflict, pressure.is_trap, contradiction.alert, sentiment.panic)
        strength = void_strength(
            market_vs_true(market, prob.true_probability),
            level,
            flow.avg_relative_move,
            smc.score,
        )
        confidence = confidence_score(strength, metrics.market_momentum, smc.score, divergence.score)

        label, recommendation = final_label(
            has_market,
            contradiction.alert,
            smc.verdict,
            divergence.score,
            pressure.is_trap,
            metrics.directional_bias,
            cfg,
        )
        winner = argmax_outcome(prob.true_probability) if has_market else None

        signature = {
            "smart_money": smc.verdict,
            "smart_money_score": round(smc.score, 1),
            "equilibrium_shift": round(eq.max_shift, 2),
            "disparity": disparity.label,
            "divergence": divergence.pattern,
            "sharp": pressure.is_sharp,
            "trap": pressure.is_trap,
            "panic": sentiment.panic,
            "contradiction": contradiction.alert,
            "trap_level": level,
            "label": label,
        }
        try:
            insight = self.patterns.insight(signature)
        except PersistenceFailure as exc:
            logger.warning("Pattern lookup failed: %s", exc)
            audit.errors.append(f"pattern_memory: {exc}")
            insight = {}

        result = AnalysisResult(
            match_key=match_key,
            match=payload.match_label,
            league=payload.league,
            kickoff_time=payload.kickoff_time,
            mode=payload.mode,
            label=label,
            recommendation=recommendation,
            predicted_winner=winner or WINNER_UNCLEAR,
            confidence=confidence,
            true_probability=prob.true_probability,
            market_probability=market,
            projected_probability=projected,
            tpo=tpo,
            smart_money=smc.as_dict(),
            disparity=disparity.as_dict(),
            divergence=divergence.as_dict(),
            pressure=pressure.as_dict(),
            metrics=metrics.as_dict(),
            equilibrium=eq.as_dict(),
            contradiction=contradiction.as_dict(),
            sentiment=sentiment.as_dict(),
            cross_market=role,
            flow=flow.as_dict(),
            simulation=prob.simulation.as_dict(),
            trap_level=level,
            void_strength=strength,
            insight=insight,
            signature=signature,
            created_at=created_at,
        )

        self._persist_signals(result, metrics.directional_bias, sync, prob.tpo.usable, audit)
        audit.record(MATCH_CASES_COLLECTION, {
            "match_key": match_key,
            "kickoff_time": payload.kickoff_time,
            "league": payload.league,
            "match": payload.match_label,
            "payload_snapshot": payload.raw,
            "analysis_snapshot": result.as_dict(),
            "signature": signature,
            "predicted_winner": result.predicted_winner,
            "outcome": None,
        })
        result.persistence_errors = list(audit.errors)

        logger.debug(
            "Analyzed %s: label=%s smc=%.2f void=%.2f conf=%.1f",
            payload.match_label, label, smc.score, strength, confidence,
        )
        return result

    def _persist_signals(
        self,
        result: AnalysisResult,
        bias: float,
        sync: float,
        tpo_usable: bool,
        audit: AuditTrail,
    ) -> None:
        samples: list[tuple[str, float, Optional[float]]] = [
            ("net_flow", bias, None),
            ("void_score", result.void_strength, None),
            ("smart_money", result.smart_money["score"], None),
            ("sync_score", sync, None),
        ]
        if tpo_usable:
            samples.extend((f"tpo_{k}", result.tpo[k], result.tpo[k]) for k in OUTCOMES)
        for key, value, fallback in samples:
            try:
                self.signals.update(key, value, fallback=fallback)
            except PersistenceFailure as exc:
                logger.warning("Signal %s not persisted: %s", key, exc)
                audit.errors.append(f"ewma_store/{key}: {exc}")

    # -----------------------------------------------------------------------
    # Outcome learning
    # -----------------------------------------------------------------------

    def resolve_outcome(self, match_key: str, outcome: str) -> Optional[dict]:
        """
        Record the real result of an analyzed match and learn from it.

        Returns None when there is no store or no such match case.

        Raises:
            ValueError: outcome is not one of home / draw / away.
            PersistenceFailure: the case could not be read or stamped.
        """
        if outcome not in OUTCOMES:
            raise ValueError(f"outcome must be one of {OUTCOMES}, got {outcome!r}")
        if self.store is None:
            logger.warning("Outcome for %s not recorded: no record store", match_key[:12])
            return None

        cases = self.store.query(MATCH_CASES_COLLECTION, {"match_key": match_key}, limit=1)
        if not cases:
            logger.warning("No match case for key %s", match_key[:12])
            return None
        case = cases[0]
        predicted = case.get("predicted_winner") or WINNER_UNCLEAR
        win = predicted == outcome
        resolved_at = _now_iso()

        self.store.update_event(MATCH_CASES_COLLECTION, case["id"], {
            "outcome": outcome,
            "resolved_at": resolved_at,
        })
        self.store.append(OUTCOMES_COLLECTION, {
            "match_key": match_key,
            "outcome": outcome,
            "predicted_winner": predicted,
            "win": win,
        })
        self.patterns.learn(
            case.get("signature") or {},
            win,
            {"match_key": match_key, "league": case.get("league"), "outcome": outcome},
        )
        logger.info("Resolved %s: predicted=%s outcome=%s win=%s", match_key[:12], predicted, outcome, win)

        return {
            "match_key": match_key,
            "outcome": outcome,
            "predicted_winner": predicted,
            "win": win,
            "resolved_at": resolved_at,
            "autotune": self.autotune_check(),
        }

    def autotune_check(self) -> dict:
        """
        Nudge the smart_money smoothing factor from pattern win rates.

        Needs at least autotune_min_cases recorded outcomes. Averages the win
        rate of the most-seen patterns: above 0.55 raises smoothing by one
        step, below 0.48 lowers it.
        """
        cfg = self.config
        if not cfg.autotune_enabled or self.store is None:
            return {"applied": False, "reason": "disabled"}
        n = self.store.count(OUTCOMES_COLLECTION)
        if n < cfg.autotune_min_cases:
            return {"applied": False, "reason": "insufficient_outcomes", "outcomes": n}

        top = self.patterns.top_patterns(AUTOTUNE_TOP_PATTERNS)
        if not top:
            return {"applied": False, "reason": "no_patterns", "outcomes": n}
        avg = sum(p.win_rate for p in top) / len(top)

        current = self.signals.get(AUTOTUNE_KEY).smoothing
        if avg > AUTOTUNE_RAISE_ABOVE:
            target = current + cfg.autotune_step
        elif avg < AUTOTUNE_LOWER_BELOW:
            target = current - cfg.autotune_step
        else:
            return {"applied": False, "reason": "within_band", "avg_win_rate": avg, "outcomes": n}

        sig = self.signals.set_smoothing(AUTOTUNE_KEY, target, reason=f"avg_win_rate={avg:.3f}")
        logger.info("Autotune applied: %s smoothing %.3f -> %.3f", AUTOTUNE_KEY, current, sig.smoothing)
        return {
            "applied": True,
            "param": AUTOTUNE_KEY,
            "old": current,
            "new": sig.smoothing,
            "avg_win_rate": avg,
            "outcomes": n,
        }

    # -----------------------------------------------------------------------
    # Listings
    # -----------------------------------------------------------------------

    def list_signals(self) -> list[AdaptiveSignal]:
        return self.signals.list_signals()

    def signal_samples(self, key: str, limit: int = 200) -> list[dict]:
        return self.signals.samples(key, limit)

    def recent_match_cases(self, limit: int = 100) -> list[dict]:
        """Newest match cases first. Empty without a store."""
        if self.store is None:
            return []
        return self.store.query(MATCH_CASES_COLLECTION, limit=limit)
