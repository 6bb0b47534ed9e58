"""
app.py — VOID Engine Streamlit Entry Point

Multi-page navigation via st.navigation() (Streamlit 1.36+).
Engine and scheduler initialized once per process via st.session_state guard.

Design principles:
- Dark terminal aesthetic: #0e1117 bg, amber accent (#f59e0b)
- st.html() for custom cards (style tags are sandboxed in st.markdown)
- Pages talk to MatchOrchestrator only, never to the record store directly

Run: streamlit run app.py
"""

import logging
import sys
from pathlib import Path

import streamlit as st

# ---------------------------------------------------------------------------
# Path setup, so 'from void_engine.xxx import' works regardless of cwd
# ---------------------------------------------------------------------------
ROOT = Path(__file__).parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from void_engine.config import EngineConfig  # noqa: E402

# ---------------------------------------------------------------------------
# Logging setup, written to logs/error.log
# ---------------------------------------------------------------------------
LOG_DIR = ROOT / "logs"
LOG_DIR.mkdir(exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    handlers=[
        logging.FileHandler(LOG_DIR / "error.log"),
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Page config, must be the first Streamlit call
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="VOID Engine",
    page_icon="◎",
    layout="wide",
    initial_sidebar_state="expanded",
    menu_items={
        "Get Help": None,
        "Report a bug": None,
        "About": "VOID Engine: pre-match market microstructure analysis",
    },
)


def _init_engine() -> None:
    """Load config from VOID_* env vars and create the schema once per session."""
    if st.session_state.get("engine_config") is not None:
        return
    config = EngineConfig.from_env()
    st.session_state["engine_config"] = config
    try:
        from void_engine.orchestrator import MatchOrchestrator
        engine = MatchOrchestrator.from_config(config)
        st.session_state["engine_status"] = engine.store.status()
    except Exception as exc:  # noqa: BLE001
        logger.error("Engine init failed: %s", exc)
        st.session_state["engine_status"] = f"store unavailable: {exc}"


def _init_scheduler() -> None:
    """
    Start the autotune scheduler exactly once per process.
    The session_state flag survives reruns but not process restarts.
    """
    if st.session_state.get("scheduler_started"):
        return

    try:
        from void_engine.scheduler import start_scheduler
        start_scheduler(st.session_state["engine_config"])
        st.session_state["scheduler_started"] = True
        logger.info("Scheduler initialized from app.py")
    except Exception as exc:  # noqa: BLE001
        logger.error("Scheduler init failed: %s", exc)
        st.session_state["scheduler_started"] = False
        st.session_state["scheduler_error"] = str(exc)


_init_engine()
_init_scheduler()

st.markdown(
    "<style>"
    '[data-testid="stSidebar"] { background-color: #13161d; }'
    ".block-container { padding-top: 1rem; }"
    "footer { visibility: hidden; }"
    "</style>",
    unsafe_allow_html=True,
)

_STATE_COLORS = {"LIVE": "#22c55e", "ERROR": "#ef4444", "IDLE": "#6b7280"}


def _scheduler_card(state: str, rows: list[str]) -> str:
    """Small bordered card: colored state pill plus grey detail rows."""
    color = _STATE_COLORS[state]
    body = "".join(f"<div>{r}</div>" for r in rows)
    return (
        f'<div style="border:1px solid #2d3139; border-radius:6px; padding:8px 10px; '
        f'background:#1a1d23; margin:8px 0 12px 0;">'
        f'<span style="color:{color}; font-size:0.65rem; font-weight:600; '
        f'letter-spacing:0.1em;">● {state}</span>'
        f'<div style="color:#6b7280; font-size:0.65rem; line-height:1.6; margin-top:4px;">{body}</div>'
        f"</div>"
    )


# ---------------------------------------------------------------------------
# Sidebar: engine + scheduler status
# ---------------------------------------------------------------------------
with st.sidebar:
    st.html(
        '<div style="border-bottom:1px solid #2d3139; padding-bottom:6px;">'
        '<b style="color:#f59e0b; font-size:1.1rem;">◎ VOID</b>'
        '<span style="color:#6b7280; font-size:0.65rem; margin-left:6px;">ENGINE</span>'
        "</div>"
    )

    from void_engine.scheduler import get_status, trigger_autotune_now

    status = get_status()
    if status["running"]:
        state = "LIVE"
    elif st.session_state.get("scheduler_error"):
        state = "ERROR"
    else:
        state = "IDLE"
    last_run = status["last_run_time"]
    rows = [
        "Autotune: hourly",
        "Last: " + (last_run.strftime("%H:%M:%S UTC") if last_run else "never"),
    ]
    if status["run_error_count"]:
        rows.append(f'<span style="color:#ef4444;">{status["run_error_count"]} errors</span>')
    st.html(_scheduler_card(state, rows))

    if st.button("↺  Autotune Now", use_container_width=True, type="secondary"):
        with st.spinner("Checking pattern win rates..."):
            result = trigger_autotune_now(st.session_state["engine_config"])
        if result.get("applied"):
            st.success(f"smart_money smoothing {result['old']:.3f} → {result['new']:.3f}")
        else:
            st.info(f"No change ({result.get('reason', 'error')})")

    st.caption(st.session_state.get("engine_status", ""))

# ---------------------------------------------------------------------------
# Multi-page navigation
# ---------------------------------------------------------------------------
pg = st.navigation([
    st.Page("pages/01_analyze.py", title="Analyze", icon="🎯", default=True),
    st.Page("pages/02_signals.py", title="Signals", icon="📈"),
    st.Page("pages/03_match_cases.py", title="Match Cases", icon="📋"),
])
pg.run()
