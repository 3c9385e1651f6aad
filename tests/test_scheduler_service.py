"""Tests for the interval scheduler."""

import json
import os
import threading
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from core.summary import RunSummary
from web.services.operation_runner import OperationRunner
from web.services.scheduler_service import DEFAULT_RUN_INTERVAL_SECONDS, SchedulerService


def _write_settings(temp_dir, data):
    path = os.path.join(temp_dir, "completarr_settings.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    return path


@pytest.fixture
def runner():
    runner = MagicMock()
    runner.read_run_status.return_value = {"status": "idle", "finishedAt": "2024-06-01T12:00:00Z"}
    return runner


@pytest.fixture
def scheduler(settings_file, runner):
    service = SchedulerService(settings_file, runner=runner)
    yield service
    service.stop()


# ============================================================================
# Schedule setup
# ============================================================================

class TestSchedule:
    def test_start_schedules_from_settings(self, scheduler, runner):
        scheduler.start()

        assert scheduler.interval_seconds == 3600
        next_run = scheduler.get_next_run()
        assert isinstance(next_run, datetime)
        runner.set_next_run_provider.assert_called_once_with(scheduler.get_next_run)
        runner.coordinator.set_next_run.assert_called_with(next_run)

    def test_zero_interval_disables(self, temp_dir, runner):
        service = SchedulerService(_write_settings(temp_dir, {"run_interval_seconds": 0}), runner=runner)
        service.start()
        try:
            assert service.get_next_run() is None
            assert service.get_status()["enabled"] is False
            runner.coordinator.set_next_run.assert_called_with(None)
        finally:
            service.stop()

    def test_invalid_interval_uses_default(self, temp_dir, runner):
        service = SchedulerService(_write_settings(temp_dir, {"run_interval_seconds": "hourly"}), runner=runner)
        service._load_interval()
        assert service.interval_seconds == DEFAULT_RUN_INTERVAL_SECONDS

    def test_missing_settings_uses_default(self, temp_dir, runner):
        service = SchedulerService(os.path.join(temp_dir, "missing.json"), runner=runner)
        service._load_interval()
        assert service.interval_seconds == DEFAULT_RUN_INTERVAL_SECONDS

    def test_status(self, scheduler):
        scheduler.start()
        status = scheduler.get_status()
        assert status["enabled"] is True
        assert status["running"] is True
        assert status["interval_seconds"] == 3600
        assert status["last_run"] == "2024-06-01T12:00:00Z"
        assert status["skipped_runs"] == 0

    def test_stop_clears_next_run_provider(self, scheduler, runner):
        scheduler.start()
        scheduler.stop()
        runner.set_next_run_provider.assert_called_with(None)
        assert scheduler.get_next_run() is None


# ============================================================================
# Scheduled trigger
# ============================================================================

class TestScheduledJob:
    def test_triggers_scheduled_run(self, scheduler, runner):
        runner.start_operation.return_value = True
        scheduler._run_scheduled_job()
        runner.start_operation.assert_called_once_with(trigger="scheduled")
        assert scheduler.skipped_runs == 0

    def test_skipped_when_run_in_progress(self, scheduler, runner):
        runner.start_operation.return_value = False
        scheduler._run_scheduled_job()
        scheduler._run_scheduled_job()
        assert scheduler.skipped_runs == 2

    def test_skipped_while_manual_run_holds_lock(self, temp_dir, settings_file):
        started, release = threading.Event(), threading.Event()

        app = MagicMock()

        def blocking_reconcile():
            started.set()
            release.wait(5)
            return {"radarr": RunSummary()}

        app.reconcile.side_effect = blocking_reconcile
        data = os.path.join(temp_dir, "data")
        runner = OperationRunner(settings_file, os.path.join(data, "run_status.json"),
                                 os.path.join(data, "run.lock"), app_factory=lambda *args: app)
        service = SchedulerService(settings_file, runner=runner)

        assert runner.start_operation() is True
        assert started.wait(5)
        try:
            service._run_scheduled_job()
            assert service.skipped_runs == 1
        finally:
            release.set()
            runner.wait(5)

        assert app.reconcile.call_count == 1
