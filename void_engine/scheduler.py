"""
void_engine/scheduler.py — APScheduler in-process maintenance

Runs the Pattern Memory autotune check every hour against the engine's
SQLite store. Designed for Streamlit: guarded against re-initialization on
every rerun.

Usage in app.py:
    from void_engine.scheduler import start_scheduler, get_status
    if "scheduler_started" not in st.session_state:
        start_scheduler(config)
        st.session_state["scheduler_started"] = True
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler

from void_engine.config import EngineConfig
from void_engine.orchestrator import MatchOrchestrator

logger = logging.getLogger(__name__)

AUTOTUNE_INTERVAL_MINUTES: int = 60
MAX_RECENT_ERRORS: int = 10

# ---------------------------------------------------------------------------
# Module-level state, kept across Streamlit reruns in the same process
# ---------------------------------------------------------------------------
_scheduler: Optional[BackgroundScheduler] = None
_config: Optional[EngineConfig] = None
_last_run_time: Optional[datetime] = None
_last_run_result: dict = {}
_run_error_count: int = 0
_run_errors: list = []


def _autotune_job(config: Optional[EngineConfig] = None) -> None:
    """
    Called by APScheduler every interval.
    Errors are logged and counted, never re-raised.
    """
    global _last_run_time, _last_run_result, _run_error_count

    effective = config or _config or EngineConfig()
    try:
        result = MatchOrchestrator.from_config(effective).autotune_check()
        _last_run_time = datetime.now(timezone.utc)
        _last_run_result = result
        logger.info("Autotune run: %s", result)
    except Exception as exc:  # noqa: BLE001
        _run_error_count += 1
        _run_errors.append(f"{datetime.now(timezone.utc).isoformat()} {exc}")
        if len(_run_errors) > MAX_RECENT_ERRORS:
            _run_errors.pop(0)
        logger.error("Autotune error #%d: %s", _run_error_count, exc)


def _on_job_event(event) -> None:
    if event.exception:
        logger.error("Job %s raised: %s", event.job_id, event.exception)
    else:
        logger.debug("Job %s executed OK", event.job_id)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def start_scheduler(
    config: Optional[EngineConfig] = None,
    interval_minutes: int = AUTOTUNE_INTERVAL_MINUTES,
) -> None:
    """
    Start the background scheduler. Returns immediately if already running.

    Args:
        config:           Engine configuration (db path, autotune settings).
        interval_minutes: Minutes between autotune checks.
    """
    global _scheduler, _config

    if _scheduler is not None and _scheduler.running:
        logger.debug("Scheduler already running, skipping re-init")
        return

    _config = config or EngineConfig()

    _scheduler = BackgroundScheduler(
        job_defaults={"misfire_grace_time": 300},
        timezone="UTC",
    )
    _scheduler.add_listener(_on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
    _scheduler.add_job(
        _autotune_job,
        trigger="interval",
        minutes=interval_minutes,
        id="autotune",
        replace_existing=True,
        kwargs={"config": _config},
    )
    _scheduler.start()
    logger.info("Scheduler started (autotune every %dm)", interval_minutes)


def stop_scheduler() -> None:
    """Shut the scheduler down. Safe to call when not running."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None


def trigger_autotune_now(config: Optional[EngineConfig] = None) -> dict:
    """Run the autotune job immediately. Returns its result."""
    _autotune_job(config)
    return dict(_last_run_result)


def get_status() -> dict:
    """
    Scheduler observability state for the UI status bar.

    Returns:
        {
            "running": bool,
            "last_run_time": datetime | None,
            "last_run_result": dict,
            "run_error_count": int,
            "recent_errors": [str],
        }
    """
    return {
        "running": is_running(),
        "last_run_time": _last_run_time,
        "last_run_result": dict(_last_run_result),
        "run_error_count": _run_error_count,
        "recent_errors": list(_run_errors),
    }


def is_running() -> bool:
    return _scheduler is not None and _scheduler.running


def reset_state() -> None:
    """
    Reset all module-level state.
    Test helper; not called from production code.
    """
    global _scheduler, _config, _last_run_time, _last_run_result
    global _run_error_count, _run_errors

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)

    _scheduler = None
    _config = None
    _last_run_time = None
    _last_run_result = {}
    _run_error_count = 0
    _run_errors = []
