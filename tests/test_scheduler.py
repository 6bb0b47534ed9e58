"""
tests/test_scheduler.py — Unit tests for void_engine/scheduler.py

APScheduler is mocked; autotune jobs run directly against tmp_path stores.
Tests use reset_state() to guarantee isolation between test cases.
"""

from datetime import datetime
from unittest.mock import patch

import pytest

from void_engine.config import EngineConfig
from void_engine.scheduler import (
    get_status,
    is_running,
    reset_state,
    start_scheduler,
    stop_scheduler,
    trigger_autotune_now,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def isolate():
    """Reset all module-level state before/after every test."""
    reset_state()
    yield
    reset_state()


@pytest.fixture()
def config(tmp_path):
    return EngineConfig(db_path=str(tmp_path / "sched.db"))


# ---------------------------------------------------------------------------
# start_scheduler / stop_scheduler
# ---------------------------------------------------------------------------
class TestStartScheduler:
    def test_starts_successfully(self, config):
        with patch("void_engine.scheduler.BackgroundScheduler") as MockSched:
            instance = MockSched.return_value
            instance.running = True
            start_scheduler(config)
            instance.start.assert_called_once()
            assert is_running()

    def test_idempotent_when_already_running(self, config):
        with patch("void_engine.scheduler.BackgroundScheduler") as MockSched:
            MockSched.return_value.running = True
            start_scheduler(config)
            start_scheduler(config)
            assert MockSched.call_count == 1

    def test_adds_autotune_job(self, config):
        with patch("void_engine.scheduler.BackgroundScheduler") as MockSched:
            instance = MockSched.return_value
            instance.running = True
            start_scheduler(config, interval_minutes=15)
            call = instance.add_job.call_args
            assert call.kwargs["id"] == "autotune"
            assert call.kwargs["minutes"] == 15
            assert call.kwargs["kwargs"] == {"config": config}

    def test_stop(self, config):
        with patch("void_engine.scheduler.BackgroundScheduler") as MockSched:
            instance = MockSched.return_value
            instance.running = True
            start_scheduler(config)
            stop_scheduler()
            instance.shutdown.assert_called_once_with(wait=False)
            assert not is_running()

    def test_stop_when_not_running(self):
        stop_scheduler()
        assert not is_running()


# ---------------------------------------------------------------------------
# autotune job
# ---------------------------------------------------------------------------
class TestAutotuneJob:
    def test_run_records_result(self, config):
        result = trigger_autotune_now(config)
        assert result["applied"] is False
        assert result["reason"] == "insufficient_outcomes"
        status = get_status()
        assert isinstance(status["last_run_time"], datetime)
        assert status["last_run_result"] == result
        assert status["run_error_count"] == 0

    def test_disabled_autotune(self, tmp_path):
        cfg = EngineConfig(db_path=str(tmp_path / "s.db"), autotune_enabled=False)
        assert trigger_autotune_now(cfg)["reason"] == "disabled"

    def test_error_counted_not_raised(self, config):
        with patch("void_engine.scheduler.MatchOrchestrator") as MockOrch:
            MockOrch.from_config.side_effect = RuntimeError("db gone")
            trigger_autotune_now(config)
            trigger_autotune_now(config)
        status = get_status()
        assert status["run_error_count"] == 2
        assert len(status["recent_errors"]) == 2
        assert "db gone" in status["recent_errors"][0]
        assert status["last_run_time"] is None

    def test_recent_errors_capped(self, config):
        with patch("void_engine.scheduler.MatchOrchestrator") as MockOrch:
            MockOrch.from_config.side_effect = RuntimeError("x")
            for _ in range(15):
                trigger_autotune_now(config)
        status = get_status()
        assert status["run_error_count"] == 15
        assert len(status["recent_errors"]) == 10


class TestGetStatus:
    def test_initial_state(self):
        status = get_status()
        assert status == {
            "running": False,
            "last_run_time": None,
            "last_run_result": {},
            "run_error_count": 0,
            "recent_errors": [],
        }
