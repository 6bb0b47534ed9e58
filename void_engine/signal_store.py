"""
void_engine/signal_store.py — Adaptive Signal Store (EWMA)
============================================================
Smoothed per-signal state that carries across analyses.

Update rule:
    new_value = smoothing * sample + (1 - smoothing) * old_value

Each signal's smoothing factor is fixed the first time the signal is created,
from EngineConfig.ewma_smoothing_by_key (falling back to the global default).
Only autotune may change it afterwards, via set_smoothing().

Every update() also appends a `samples` event: the raw sample history is an
audit trail for retraining and is never read back by the analysis itself.

Without a store (store=None) the signals are stateless: get() returns the
fallback and update() returns the one-step EWMA of the fallback.

Usage:
    signals = SignalStore(store, config)
    sig = signals.get("tpo_home", fallback=0.45)   # {"key", "value", "smoothing"}
    signals.update("net_flow", 0.12)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from void_engine.config import EngineConfig
from void_engine.numeric import clamp, is_valid
from void_engine.record_store import RecordStore

logger = logging.getLogger(__name__)

EWMA_COLLECTION: str = "ewma_store"
SAMPLES_COLLECTION: str = "samples"
AUTOTUNE_COLLECTION: str = "autotune_log"

SMOOTHING_MIN: float = 0.01
SMOOTHING_MAX: float = 0.3


@dataclass
class AdaptiveSignal:
    key: str
    value: float
    smoothing: float
    updated_at: str = ""

    def as_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "smoothing": self.smoothing,
            "updated_at": self.updated_at,
        }


def ewma(old_value: float, sample: float, smoothing: float) -> float:
    """
    One EWMA step.

    >>> ewma(0.0, 1.0, 0.25)
    0.25
    >>> ewma(0.5, 0.5, 0.1)
    0.5
    """
    return smoothing * sample + (1.0 - smoothing) * old_value


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SignalStore:
    """EWMA signals persisted in the record store's `ewma_store` collection."""

    def __init__(self, store: Optional[RecordStore], config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    def _initial(self, key: str, fallback: float, default_smoothing: Optional[float]) -> dict:
        if key in self.config.ewma_smoothing_by_key or default_smoothing is None:
            smoothing = self.config.smoothing_for(key)
        else:
            smoothing = float(default_smoothing)
        if not 0.0 < smoothing <= 1.0:
            logger.warning("Smoothing %.4f for %s out of (0, 1]; using default", smoothing, key)
            smoothing = self.config.ewma_default_smoothing
        return {"value": float(fallback), "smoothing": smoothing, "updated_at": _now_iso()}

    def get(
        self,
        key: str,
        fallback: float = 0.0,
        default_smoothing: Optional[float] = None,
    ) -> AdaptiveSignal:
        """
        Return the stored signal, creating it from `fallback` on first access.

        Args:
            key:               Signal name, e.g. "net_flow".
            fallback:          Initial value if the signal does not exist yet.
            default_smoothing: Smoothing for a new key that has no entry in
                               the per-key table. Ignored for existing keys.
        """
        if self.store is None:
            rec = self._initial(key, fallback, default_smoothing)
            return AdaptiveSignal(key, rec["value"], rec["smoothing"], rec["updated_at"])

        rec = self.store.get(EWMA_COLLECTION, key)
        if rec is None:
            def _create_if_missing(current: Optional[dict]) -> dict:
                return current if current is not None else self._initial(key, fallback, default_smoothing)

            rec = self.store.update(EWMA_COLLECTION, key, _create_if_missing)
        return AdaptiveSignal(key, float(rec["value"]), float(rec["smoothing"]), rec.get("updated_at", ""))

    def update(self, key: str, sample: float, fallback: Optional[float] = None) -> AdaptiveSignal:
        """
        Fold one sample into a signal and append it to the sample history.

        The read, the EWMA step, the write and the sample append happen in
        one transaction. A missing signal starts from `fallback` (0.0 when
        not given), exactly as if get() had created it.

        Non-finite samples are skipped: the current signal is returned as is.
        """
        if not is_valid(sample):
            logger.debug("Skipping non-finite sample for %s", key)
            return self.get(key, fallback if fallback is not None else 0.0)
        sample = float(sample)
        start = 0.0 if fallback is None else float(fallback)

        if self.store is None:
            rec = self._initial(key, start, None)
            new_value = ewma(rec["value"], sample, rec["smoothing"])
            return AdaptiveSignal(key, new_value, rec["smoothing"], rec["updated_at"])

        def _step(current: Optional[dict]) -> dict:
            base = current if current is not None else self._initial(key, start, None)
            smoothing = float(base["smoothing"])
            return {
                "value": ewma(float(base["value"]), sample, smoothing),
                "smoothing": smoothing,
                "updated_at": _now_iso(),
            }

        def _sample_event(new: dict) -> list[tuple[str, dict]]:
            return [(SAMPLES_COLLECTION, {"key": key, "sample": sample})]

        rec = self.store.update(EWMA_COLLECTION, key, _step, events=_sample_event)
        return AdaptiveSignal(key, rec["value"], rec["smoothing"], rec["updated_at"])

    def set_smoothing(self, key: str, smoothing: float, reason: str = "") -> AdaptiveSignal:
        """
        Change a signal's smoothing factor. Autotune only.

        Clamped to [SMOOTHING_MIN, SMOOTHING_MAX]; the change is written to
        autotune_log in the same transaction.
        """
        new_smoothing = clamp(float(smoothing), SMOOTHING_MIN, SMOOTHING_MAX)
        if self.store is None:
            return AdaptiveSignal(key, 0.0, new_smoothing)

        old = {}

        def _retune(current: Optional[dict]) -> dict:
            base = current if current is not None else self._initial(key, 0.0, None)
            old["smoothing"] = float(base["smoothing"])
            return {**base, "smoothing": new_smoothing, "updated_at": _now_iso()}

        def _log(new: dict) -> list[tuple[str, dict]]:
            return [(AUTOTUNE_COLLECTION, {
                "param": key,
                "old": old.get("smoothing"),
                "new": new_smoothing,
                "reason": reason,
            })]

        rec = self.store.update(EWMA_COLLECTION, key, _retune, events=_log)
        logger.info("Smoothing for %s: %.3f -> %.3f (%s)", key, old.get("smoothing", 0.0), new_smoothing, reason)
        return AdaptiveSignal(key, float(rec["value"]), float(rec["smoothing"]), rec["updated_at"])

    def list_signals(self) -> list[AdaptiveSignal]:
        """Every stored signal, sorted by key. Empty without a store."""
        if self.store is None:
            return []
        return [
            AdaptiveSignal(r["key"], float(r["value"]), float(r["smoothing"]), r.get("updated_at", ""))
            for r in self.store.list_keys(EWMA_COLLECTION)
        ]

    def samples(self, key: str, limit: int = 200) -> list[dict]:
        """Raw sample history for one signal, newest first."""
        if self.store is None:
            return []
        return self.store.query(SAMPLES_COLLECTION, {"key": key}, limit=limit)
