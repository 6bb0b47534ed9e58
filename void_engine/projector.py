"""
void_engine/projector.py — Closing-Edge Projector + Market Equilibrium
========================================================================
Where is the price heading by kickoff?

Projection (per outcome, then renormalised):
    projected = clamp(market + (tpo - market) * fraction, 0.0001, 0.9999)

    fraction = PROJECT_SHARP_FRACTION (0.5)   sharp money -> continuation
             = PROJECT_DRIFT_FRACTION (0.15)  default drift toward TPO
             = PROJECT_TRAP_FRACTION (-0.35)  trap flag -> mean reversion (overrides sharp)

Equilibrium:
    Long-run price level for this kind of match, from the EWMA history of
    TPO (signals tpo_home / tpo_draw / tpo_away, each falling back to the
    current TPO value on first use; not read at all without a usable TPO):
        eq    = normalise(clamp(0.6 * hist + 0.4 * tpo, 1e-6, 0.9999))
        shift = market - eq
    |largest shift| > 0.03 -> "shifted", else "aligned".
    Appends an `equilibrium_stats` audit event.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from void_engine.config import EQUILIBRIUM_HIST_WEIGHT, EngineConfig
from void_engine.numeric import OUTCOMES, clamp, normalize
from void_engine.record_store import AuditTrail, PersistenceFailure
from void_engine.signal_store import SignalStore

logger = logging.getLogger(__name__)

EQUILIBRIUM_COLLECTION: str = "equilibrium_stats"
PROJECT_MIN: float = 0.0001
PROJECT_MAX: float = 0.9999
EQUILIBRIUM_MIN: float = 1e-6
EQUILIBRIUM_MAX: float = 0.9999

LABEL_SHIFTED: str = "shifted"
LABEL_ALIGNED: str = "aligned"


@dataclass
class EquilibriumResult:
    equilibrium: dict[str, float]
    shift: dict[str, float]
    max_shift: float
    label: str
    history: dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "equilibrium": dict(self.equilibrium),
            "shift": dict(self.shift),
            "max_shift": self.max_shift,
            "label": self.label,
            "history": dict(self.history),
        }


def projection_fraction(is_sharp: bool, is_trap: bool, config: Optional[EngineConfig] = None) -> float:
    """
    Trap overrides sharp.

    >>> projection_fraction(True, False)
    0.5
    >>> projection_fraction(False, True)
    -0.35
    """
    config = config or EngineConfig()
    if is_trap:
        return config.project_trap_fraction
    return config.project_sharp_fraction if is_sharp else config.project_drift_fraction


def project_closing(
    market: dict[str, float],
    tpo: dict[str, float],
    is_sharp: bool,
    is_trap: bool,
    config: Optional[EngineConfig] = None,
) -> dict[str, float]:
    """Projected closing distribution, summing to 1."""
    frac = projection_fraction(is_sharp, is_trap, config)
    moved = {
        k: clamp(market[k] + (tpo[k] - market[k]) * frac, PROJECT_MIN, PROJECT_MAX)
        for k in OUTCOMES
    }
    return normalize(moved)


def largest_shift(shift: dict[str, float]) -> float:
    """Signed shift with the largest magnitude (first wins on ties)."""
    best = 0.0
    for k in OUTCOMES:
        if abs(shift[k]) > abs(best):
            best = shift[k]
    return best


class MarketEquilibrium:
    """Blends the EWMA TPO history with the current TPO."""

    def __init__(self, signals: SignalStore, config: Optional[EngineConfig] = None):
        self.signals = signals
        self.config = config or EngineConfig()

    def evaluate(
        self,
        market: dict[str, float],
        tpo: dict[str, float],
        match_key: str = "",
        audit: Optional[AuditTrail] = None,
        use_history: bool = True,
    ) -> EquilibriumResult:
        """
        use_history=False treats the current TPO as the history and leaves
        the tpo_* signals untouched (no market: the TPO is a placeholder).
        """
        audit = audit or AuditTrail(self.signals.store)
        if not use_history:
            history = dict(tpo)
        else:
            try:
                history = {k: self.signals.get(f"tpo_{k}", fallback=tpo[k]).value for k in OUTCOMES}
            except PersistenceFailure as exc:
                logger.warning("TPO history unavailable, using current TPO: %s", exc)
                audit.errors.append(f"ewma_store: {exc}")
                history = dict(tpo)
        w = EQUILIBRIUM_HIST_WEIGHT
        raw = {
            k: clamp(history[k] * w + tpo[k] * (1.0 - w), EQUILIBRIUM_MIN, EQUILIBRIUM_MAX)
            for k in OUTCOMES
        }
        eq = normalize(raw)
        shift = {k: market[k] - eq[k] for k in OUTCOMES}
        max_shift = largest_shift(shift)
        label = LABEL_SHIFTED if abs(max_shift) > self.config.equilibrium_shift_threshold else LABEL_ALIGNED

        audit.record(EQUILIBRIUM_COLLECTION, {
            "match_key": match_key,
            "equilibrium": eq,
            "market": market,
            "shift": shift,
            "max_shift": max_shift,
            "label": label,
        })
        return EquilibriumResult(eq, shift, max_shift, label, history)
