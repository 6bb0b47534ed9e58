"""
void_engine/pattern_memory.py — Pattern Memory
================================================
Win/loss statistics keyed by a canonical match signature. This is the only
component that learns from resolved outcomes.

Signature contract:
  A signature is a mapping of feature name -> scalar. It is encoded as JSON
  with sorted keys, compact separators and floats rounded to
  SIGNATURE_FLOAT_DP places, then hashed with SHA-256. Two signatures with
  the same features hash identically regardless of insertion order.

Win rate is a running mean:
    new_rate = (old_rate * old_count + outcome) / new_count

Records are created on first learn(), updated thereafter, never deleted.
lookup() never creates.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from void_engine.numeric import clamp
from void_engine.record_store import RecordStore

logger = logging.getLogger(__name__)

PATTERN_COLLECTION: str = "pattern_memory"
SIGNATURE_FLOAT_DP: int = 4


@dataclass
class PatternRecord:
    signature_hash: str
    occurrence_count: int
    win_rate: float
    last_seen: str
    metadata: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "signature_hash": self.signature_hash,
            "occurrence_count": self.occurrence_count,
            "win_rate": self.win_rate,
            "last_seen": self.last_seen,
            "metadata": dict(self.metadata),
        }


def _canonical(value):
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        rounded = round(value, SIGNATURE_FLOAT_DP)
        return 0.0 if rounded == 0 else rounded
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def signature_hash(features: dict) -> str:
    """
    Canonical SHA-256 hash of a feature mapping.

    >>> signature_hash({"a": 1, "b": 0.5}) == signature_hash({"b": 0.5, "a": 1})
    True
    >>> signature_hash({"a": 0.123449}) == signature_hash({"a": 0.12345})
    False
    >>> len(signature_hash({}))
    64
    """
    encoded = json.dumps(_canonical(features), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_record(sig: str, data: dict) -> PatternRecord:
    return PatternRecord(
        signature_hash=sig,
        occurrence_count=int(data["occurrence_count"]),
        win_rate=float(data["win_rate"]),
        last_seen=data.get("last_seen", ""),
        metadata=data.get("metadata") or {},
    )


class PatternMemory:
    """Signature -> PatternRecord, persisted in the `pattern_memory` collection."""

    def __init__(self, store: Optional[RecordStore]):
        self.store = store

    def lookup(self, features: dict) -> Optional[PatternRecord]:
        """Stored record for a signature, or None. Never creates."""
        if self.store is None:
            return None
        sig = signature_hash(features)
        data = self.store.get(PATTERN_COLLECTION, sig)
        return _to_record(sig, data) if data else None

    def learn(self, features: dict, outcome_win: bool, metadata: Optional[dict] = None) -> bool:
        """
        Record one resolved outcome for a signature.

        Returns False only when there is no store to learn into.
        """
        if self.store is None:
            logger.warning("Pattern learn skipped: no record store")
            return False
        sig = signature_hash(features)
        outcome = 1.0 if outcome_win else 0.0
        meta = dict(metadata or {})

        def _step(current: Optional[dict]) -> dict:
            if current is None:
                return {
                    "occurrence_count": 1,
                    "win_rate": outcome,
                    "last_seen": _now_iso(),
                    "metadata": meta,
                    "features": features,
                }
            old_count = int(current["occurrence_count"])
            new_count = old_count + 1
            return {
                "occurrence_count": new_count,
                "win_rate": (float(current["win_rate"]) * old_count + outcome) / new_count,
                "last_seen": _now_iso(),
                "metadata": meta,
                "features": current.get("features", features),
            }

        rec = self.store.update(PATTERN_COLLECTION, sig, _step)
        logger.debug("Pattern %s: n=%d wr=%.3f", sig[:12], rec["occurrence_count"], rec["win_rate"])
        return True

    def top_patterns(self, limit: int = 20) -> list[PatternRecord]:
        """Most frequently seen patterns, highest count first."""
        if self.store is None:
            return []
        records = [_to_record(r["key"], r) for r in self.store.list_keys(PATTERN_COLLECTION)]
        records.sort(key=lambda r: r.occurrence_count, reverse=True)
        return records[:limit]

    def insight(self, features: dict) -> dict:
        """
        Expected win rate for a signature.

        Uses the stored win rate when the pattern has been seen before;
        otherwise a heuristic from the smart-money score, the equilibrium
        shift and the panic flag in `features`.
        """
        sig = signature_hash(features)
        rec = self.lookup(features)
        if rec is not None:
            return {
                "from_pattern": True,
                "win_rate": rec.win_rate,
                "count": rec.occurrence_count,
                "signature": sig,
            }
        score = 0.0
        score += float(features.get("smart_money_score") or 0.0) * 0.6
        shift = float(features.get("equilibrium_shift") or 0.0)
        score += clamp(abs(shift) * 1.2, 0.0, 0.3)
        if features.get("panic"):
            score -= 0.2
        return {
            "from_pattern": False,
            "win_rate": clamp(0.5 + score * 0.5, 0.0, 1.0),
            "count": 0,
            "signature": sig,
        }
