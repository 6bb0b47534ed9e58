"""
pages/01_analyze.py — Match analysis

Paste or type a pre-match snapshot (1X2 open/now, Asian-Handicap lines),
run the engine, and read the verdict:
- label + recommendation + confidence
- market vs true vs projected closing probability (grouped bars)
- smart-money components, divergence, alerts

Design: dark terminal aesthetic, amber accent, no narrative.
"""

import json
import sys
from pathlib import Path

import plotly.graph_objects as go
import streamlit as st

ROOT = Path(__file__).parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from void_engine.config import EngineConfig
from void_engine.numeric import OUTCOMES
from void_engine.orchestrator import AnalysisResult, MatchOrchestrator
from void_engine.payload import InvalidPayload

PLOTLY_BASE = dict(
    paper_bgcolor="#0e1117",
    plot_bgcolor="#13161d",
    font=dict(color="#d1d5db", size=11, family="monospace"),
    margin=dict(l=45, r=20, t=35, b=40),
    xaxis=dict(gridcolor="#2d3139", linecolor="#2d3139"),
    yaxis=dict(gridcolor="#2d3139", linecolor="#2d3139"),
    hoverlabel=dict(bgcolor="#1a1d23", bordercolor="#2d3139", font_color="#f3f4f6"),
)

LABEL_COLORS = {
    "smart_money_home": "#22c55e",
    "smart_money_away": "#22c55e",
    "smart_money_possible": "#f59e0b",
    "trap": "#ef4444",
    "contradiction": "#ef4444",
    "no_market": "#6b7280",
    "unclear": "#6b7280",
}

EXAMPLE_PAYLOAD = {
    "home_team": "Arsenal",
    "away_team": "Chelsea",
    "league": "EPL",
    "kickoff_time": "",
    "open1": {"home": "2.10", "draw": "3.40", "away": "3.10"},
    "now1": {"home": "1.95", "draw": "3.50", "away": "3.40"},
    "handicap_lines": [
        {"label": "-0.25", "open_home": "1.90", "open_away": "1.90",
         "now_home": "1.70", "now_away": "2.10"},
    ],
    "mode": "pre_match",
}


def _engine() -> MatchOrchestrator:
    config = st.session_state.get("engine_config") or EngineConfig.from_env()
    return MatchOrchestrator.from_config(config)


def _probability_chart(result: AnalysisResult) -> go.Figure:
    labels = [k.upper() for k in OUTCOMES]
    fig = go.Figure()
    series = [
        ("Market", result.market_probability, "#6b7280"),
        ("True", result.true_probability, "#f59e0b"),
        ("Projected close", result.projected_probability, "#3b82f6"),
    ]
    for name, probs, color in series:
        fig.add_trace(go.Bar(
            x=labels,
            y=[probs[k] for k in OUTCOMES],
            name=name,
            marker_color=color,
            text=[f"{probs[k]:.1%}" for k in OUTCOMES],
            textposition="outside",
        ))
    fig.update_layout(**PLOTLY_BASE, barmode="group", height=320,
                      yaxis_tickformat=".0%", legend=dict(orientation="h", y=1.12))
    return fig


def _verdict_card(result: AnalysisResult) -> None:
    color = LABEL_COLORS.get(result.label, "#6b7280")
    st.html(
        f"""
        <div style="
            background:#1a1d23; border:1px solid #2d3139;
            border-left:4px solid {color};
            border-radius:6px; padding:14px 16px; margin-bottom:12px;
        ">
            <div style="font-size:0.65rem; color:#6b7280; letter-spacing:0.1em;">
                {result.match.upper()} · {result.league}
            </div>
            <div style="font-size:1.4rem; font-weight:700; color:{color}; margin:4px 0;">
                {result.label.replace('_', ' ').upper()}
            </div>
            <div style="font-size:0.75rem; color:#d1d5db;">
                {result.recommendation.replace('_', ' ')} · winner: {result.predicted_winner}
            </div>
        </div>
        """
    )


# ---------------------------------------------------------------------------
# Page
# ---------------------------------------------------------------------------
st.title("Analyze")

raw_text = st.text_area(
    "Match payload (JSON)",
    value=json.dumps(EXAMPLE_PAYLOAD, indent=2),
    height=320,
)

if st.button("Run analysis", type="primary"):
    try:
        result = _engine().analyze(raw_text)
    except InvalidPayload as exc:
        st.error(f"Invalid payload: {exc}")
        st.stop()
    st.session_state["last_result"] = result

result = st.session_state.get("last_result")
if result is None:
    st.caption("Run an analysis to see the verdict.")
    st.stop()

_verdict_card(result)

c1, c2, c3, c4 = st.columns(4)
c1.metric("Confidence", f"{result.confidence:.1f}")
c2.metric("Smart money", f"{result.smart_money['score']:.2f}", result.smart_money["verdict"])
c3.metric("Void strength", f"{result.void_strength:.2f}")
c4.metric("Trap level", f"{result.trap_level} / 5")

st.plotly_chart(_probability_chart(result), use_container_width=True)

left, right = st.columns(2)
with left:
    st.subheader("Microstructure")
    st.json({
        "pressure": result.pressure,
        "components": result.smart_money["components"],
        "divergence": result.divergence,
        "disparity": {"magnitude": result.disparity["magnitude"], "label": result.disparity["label"]},
    })
with right:
    st.subheader("Alerts")
    st.json({
        "contradiction": result.contradiction,
        "sentiment": result.sentiment,
        "equilibrium": {"label": result.equilibrium["label"], "max_shift": result.equilibrium["max_shift"]},
        "cross_market": result.cross_market,
        "insight": result.insight,
    })

if result.persistence_errors:
    st.warning("Result computed, but some records were not saved: " + "; ".join(result.persistence_errors))

st.caption(f"match key {result.match_key}")
