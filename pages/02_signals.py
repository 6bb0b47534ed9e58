"""
pages/02_signals.py — Adaptive signals

Read-only view of the EWMA signal store: current value and smoothing per
signal, plus the raw sample history of one signal against its smoothed line.
"""

import sys
from pathlib import Path

import plotly.graph_objects as go
import streamlit as st

ROOT = Path(__file__).parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from void_engine.config import EngineConfig
from void_engine.orchestrator import MatchOrchestrator
from void_engine.signal_store import ewma

PLOTLY_BASE = dict(
    paper_bgcolor="#0e1117",
    plot_bgcolor="#13161d",
    font=dict(color="#d1d5db", size=11, family="monospace"),
    margin=dict(l=45, r=20, t=35, b=40),
    xaxis=dict(gridcolor="#2d3139", linecolor="#2d3139"),
    yaxis=dict(gridcolor="#2d3139", linecolor="#2d3139"),
    hoverlabel=dict(bgcolor="#1a1d23", bordercolor="#2d3139", font_color="#f3f4f6"),
)


def _sample_chart(samples: list[dict], smoothing: float) -> go.Figure:
    ordered = list(reversed(samples))
    ts = [s["ts"] for s in ordered]
    values = [s["sample"] for s in ordered]
    smoothed = []
    level = values[0] if values else 0.0
    for v in values:
        level = ewma(level, v, smoothing)
        smoothed.append(level)

    fig = go.Figure()
    fig.add_trace(go.Scatter(x=ts, y=values, mode="markers", name="sample",
                             marker=dict(color="#6b7280", size=5)))
    fig.add_trace(go.Scatter(x=ts, y=smoothed, mode="lines", name=f"EWMA α={smoothing:.2f}",
                             line=dict(color="#f59e0b", width=2)))
    fig.update_layout(**PLOTLY_BASE, height=340, legend=dict(orientation="h", y=1.12))
    return fig


st.title("Signals")

config = st.session_state.get("engine_config") or EngineConfig.from_env()
engine = MatchOrchestrator.from_config(config)
signals = engine.list_signals()

if not signals:
    st.caption("No signals yet. Run an analysis first.")
    st.stop()

st.dataframe(
    [s.as_dict() for s in signals],
    use_container_width=True,
    hide_index=True,
)

keys = [s.key for s in signals]
key = st.selectbox("Sample history", keys)
limit = st.slider("Samples", min_value=20, max_value=1000, value=200, step=20)
smoothing = next(s.smoothing for s in signals if s.key == key)
samples = engine.signal_samples(key, limit)

if samples:
    st.plotly_chart(_sample_chart(samples, smoothing), use_container_width=True)
else:
    st.caption("No samples recorded for this signal.")
