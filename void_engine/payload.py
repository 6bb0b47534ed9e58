"""
void_engine/payload.py — Typed match records + payload validation
===================================================================
The analysis boundary. Raw JSON-like input is validated and converted into
typed records exactly once, here; engine modules never re-check raw maps.

Accepted payload (all odds may be strings, numbers, or missing):
    {
      "home_team": "Arsenal", "away_team": "Chelsea", "league": "EPL",
      "kickoff_time": "2026-10-18 19:30",          # optional
      "open1": {"home": "2.10", "draw": "3.40", "away": "3.10"},
      "now1":  {"home": "1.95", "draw": "3.60", "away": "3.80"},
      "handicap_lines": [
          {"label": "-0.25", "open_home": 1.90, "open_away": 1.90,
           "now_home": 1.70, "now_away": 2.10}
      ],
      "mode": "pre_match",
      "context": {}
    }

Legacy aliases "home"/"away" (team names), "kickoff" and "ah" (handicap
lines) are accepted too.

InvalidPayload is raised only for structural problems (not a mapping, wrong
container types). Bad numbers become NaN.
"""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from void_engine.config import DEFAULT_MODE
from void_engine.numeric import (
    NAN,
    OUTCOMES,
    direction,
    is_valid,
    momentum,
    nan_to_zero,
    net_flow,
    parse_odds,
)


class InvalidPayload(ValueError):
    """The payload is not a well-formed structured object."""


@dataclass(frozen=True)
class OddsQuote:
    """1X2 decimal odds. NaN = missing."""
    home: float = NAN
    draw: float = NAN
    away: float = NAN

    def get(self, outcome: str) -> float:
        return getattr(self, outcome)

    def as_dict(self) -> dict[str, float]:
        return {k: self.get(k) for k in OUTCOMES}

    def has_any(self) -> bool:
        """True when at least one outcome has positive odds."""
        return any(is_valid(v) and v > 0 for v in self.as_dict().values())

    @classmethod
    def from_raw(cls, raw: Optional[dict]) -> "OddsQuote":
        raw = raw or {}
        return cls(*(parse_odds(raw.get(k)) for k in OUTCOMES))


@dataclass(frozen=True)
class HandicapLine:
    """One Asian-Handicap market with its open/now prices and derived moves."""
    label: str
    open_home: float
    open_away: float
    now_home: float
    now_away: float
    net_home: float          # open - now, 0.0 when undefined
    net_away: float
    momentum_home: float     # |open - now|, NaN when undefined
    momentum_away: float
    direction_home: str
    direction_away: str

    @classmethod
    def derive(cls, label: str, open_home: float, open_away: float,
               now_home: float, now_away: float) -> "HandicapLine":
        return cls(
            label=label,
            open_home=open_home,
            open_away=open_away,
            now_home=now_home,
            now_away=now_away,
            net_home=nan_to_zero(net_flow(open_home, now_home)),
            net_away=nan_to_zero(net_flow(open_away, now_away)),
            momentum_home=momentum(open_home, now_home),
            momentum_away=momentum(open_away, now_away),
            direction_home=direction(open_home, now_home),
            direction_away=direction(open_away, now_away),
        )

    def total_momentum(self) -> float:
        """Sum of defined side momenta."""
        return sum(m for m in (self.momentum_home, self.momentum_away) if is_valid(m))

    def as_dict(self) -> dict:
        return {
            "label": self.label,
            "open_home": self.open_home,
            "open_away": self.open_away,
            "now_home": self.now_home,
            "now_away": self.now_away,
            "net_home": self.net_home,
            "net_away": self.net_away,
            "momentum_home": self.momentum_home,
            "momentum_away": self.momentum_away,
            "direction_home": self.direction_home,
            "direction_away": self.direction_away,
        }


@dataclass(frozen=True)
class MatchPayload:
    home_team: str
    away_team: str
    league: str
    open1: OddsQuote
    now1: OddsQuote
    handicap_lines: tuple[HandicapLine, ...] = ()
    kickoff_time: Optional[str] = None
    kickoff_ts: Optional[float] = None
    mode: str = DEFAULT_MODE
    context: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict, compare=False)

    @property
    def match_label(self) -> str:
        return f"{self.home_team} vs {self.away_team}"


def parse_kickoff(value) -> Optional[float]:
    """
    Kickoff to a UTC epoch timestamp. Naive datetimes are taken as UTC.

    >>> parse_kickoff("2026-01-01 00:00")
    1767225600.0
    >>> parse_kickoff(1767225600)
    1767225600.0
    >>> parse_kickoff("soon") is None
    True
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) and value > 0 else None
    s = str(value).strip()
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _require_mapping(value, name: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidPayload(f"{name} must be an object, got {type(value).__name__}")
    return value


def parse_payload(raw) -> MatchPayload:
    """
    Validate a raw payload (mapping or JSON text) into a MatchPayload.

    Raises:
        InvalidPayload: raw is not a mapping, or a nested container has the
            wrong type. Numeric problems never raise.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidPayload(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise InvalidPayload(f"payload must be an object, got {type(raw).__name__}")

    open1 = OddsQuote.from_raw(_require_mapping(raw.get("open1"), "open1"))
    now1 = OddsQuote.from_raw(_require_mapping(raw.get("now1"), "now1"))

    raw_lines = raw.get("handicap_lines", raw.get("ah")) or []
    if not isinstance(raw_lines, (list, tuple)):
        raise InvalidPayload("handicap_lines must be a list")

    lines = []
    for i, r in enumerate(raw_lines):
        if not isinstance(r, dict):
            raise InvalidPayload(f"handicap_lines[{i}] must be an object")
        label = str(r.get("label") or r.get("line") or f"AH{i + 1}")
        lines.append(HandicapLine.derive(
            label,
            parse_odds(r.get("open_home")),
            parse_odds(r.get("open_away")),
            parse_odds(r.get("now_home")),
            parse_odds(r.get("now_away")),
        ))

    kickoff_time = raw.get("kickoff_time", raw.get("kickoff"))
    kickoff_ts = parse_kickoff(kickoff_time)
    if kickoff_ts is None:
        kickoff_ts = parse_kickoff(raw.get("kickoff_ts"))

    context = raw.get("context") or {}
    if not isinstance(context, dict):
        raise InvalidPayload("context must be an object")

    return MatchPayload(
        home_team=str(raw.get("home_team") or raw.get("home") or "Home"),
        away_team=str(raw.get("away_team") or raw.get("away") or "Away"),
        league=str(raw.get("league") or "generic"),
        open1=open1,
        now1=now1,
        handicap_lines=tuple(lines),
        kickoff_time=str(kickoff_time) if kickoff_time not in (None, "") else None,
        kickoff_ts=kickoff_ts,
        mode=str(raw.get("mode") or DEFAULT_MODE),
        context=dict(context),
        raw=dict(raw),
    )
