"""
pages/03_match_cases.py — Match case log + outcome resolution

Recent analyses, newest first. Resolving a case with the real result feeds
Pattern Memory and may trigger an autotune step.
"""

import sys
from pathlib import Path

import streamlit as st

ROOT = Path(__file__).parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from void_engine.config import EngineConfig
from void_engine.numeric import OUTCOMES
from void_engine.orchestrator import MatchOrchestrator
from void_engine.record_store import PersistenceFailure

st.title("Match Cases")

config = st.session_state.get("engine_config") or EngineConfig.from_env()
engine = MatchOrchestrator.from_config(config)

limit = st.slider("Show", min_value=10, max_value=500, value=100, step=10)
cases = engine.recent_match_cases(limit)

if not cases:
    st.caption("No match cases recorded yet.")
    st.stop()

rows = []
for case in cases:
    snap = case.get("analysis_snapshot") or {}
    rows.append({
        "ts": case.get("ts"),
        "match": case.get("match"),
        "league": case.get("league"),
        "label": snap.get("label"),
        "predicted": case.get("predicted_winner"),
        "confidence": snap.get("confidence"),
        "outcome": case.get("outcome") or "",
        "match_key": case.get("match_key"),
    })
st.dataframe(rows, use_container_width=True, hide_index=True)

st.subheader("Resolve outcome")
open_cases = [c for c in cases if not c.get("outcome")]
if not open_cases:
    st.caption("Every listed case is resolved.")
    st.stop()

choice = st.selectbox(
    "Match",
    open_cases,
    format_func=lambda c: f"{c.get('match')} · {c.get('ts', '')[:16]} · {c.get('match_key', '')[:10]}",
)
outcome = st.radio("Result", OUTCOMES, horizontal=True)

if st.button("Record result", type="primary"):
    try:
        res = engine.resolve_outcome(choice["match_key"], outcome)
    except PersistenceFailure as exc:
        st.error(f"Could not record result: {exc}")
        st.stop()
    if res is None:
        st.warning("Match case not found.")
    else:
        verdict = "WIN" if res["win"] else "LOSS"
        st.success(f"{verdict}: predicted {res['predicted_winner']}, result {res['outcome']}")
        if res["autotune"].get("applied"):
            st.info(f"Autotune: smart_money smoothing {res['autotune']['old']:.3f} → {res['autotune']['new']:.3f}")
