"""Scheduler service - triggers CompleteARR passes on a timer"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from web.config import SETTINGS_FILE

logger = logging.getLogger(__name__)

DEFAULT_RUN_INTERVAL_SECONDS = 3600


class SchedulerService:
    """Service for running passes every run_interval_seconds"""

    JOB_ID = "completarr_scheduled_run"

    def __init__(self, settings_file: Path = SETTINGS_FILE, runner=None):
        self._scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance at a time
                'misfire_grace_time': 60 * 60,  # 1 hour grace time for missed jobs
            }
        )
        self._settings_file = Path(settings_file)
        self._runner = runner
        self._interval_seconds = DEFAULT_RUN_INTERVAL_SECONDS
        self._skipped_runs = 0
        self._started = False

    @property
    def runner(self):
        if self._runner is None:
            from web.services.operation_runner import get_operation_runner
            self._runner = get_operation_runner()
        return self._runner

    @property
    def interval_seconds(self) -> int:
        return self._interval_seconds

    @property
    def skipped_runs(self) -> int:
        """Scheduled triggers that found another run holding the lock."""
        return self._skipped_runs

    def start(self):
        """Start the scheduler"""
        if self._started:
            return

        self._scheduler.start()
        self._started = True

        self._load_interval()
        self.runner.set_next_run_provider(self.get_next_run)
        self._apply_schedule()

        logger.info("Scheduler service started")

    def stop(self):
        """Stop the scheduler"""
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            self.runner.set_next_run_provider(None)
            logger.info("Scheduler service stopped")

    def _load_interval(self):
        """Load run_interval_seconds from the settings file"""
        interval = DEFAULT_RUN_INTERVAL_SECONDS
        try:
            if self._settings_file.exists():
                with open(self._settings_file, 'r', encoding='utf-8') as f:
                    settings = json.load(f)
                interval = settings.get("run_interval_seconds", DEFAULT_RUN_INTERVAL_SECONDS)
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to load schedule from settings: {e}")

        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval < 0:
            logger.error(f"Invalid run_interval_seconds: {interval!r}, using {DEFAULT_RUN_INTERVAL_SECONDS}")
            interval = DEFAULT_RUN_INTERVAL_SECONDS
        self._interval_seconds = int(interval)

    def _run_scheduled_job(self):
        """Execute the scheduled pass"""
        logger.info("Starting scheduled CompleteARR run")
        if not self.runner.start_operation(trigger="scheduled"):
            self._skipped_runs += 1
            logger.info("Scheduled run skipped - a run is already in progress")

    def _apply_schedule(self):
        """Apply the current interval"""
        # Remove existing job if any
        if self._scheduler.get_job(self.JOB_ID):
            self._scheduler.remove_job(self.JOB_ID)

        if self._interval_seconds <= 0:
            logger.info("Schedule disabled (run_interval_seconds is 0)")
            self.runner.coordinator.set_next_run(None)
            return

        self._scheduler.add_job(
            self._run_scheduled_job,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id=self.JOB_ID,
            name="CompleteARR Scheduled Run",
            replace_existing=True,
        )

        next_run = self.get_next_run()
        self.runner.coordinator.set_next_run(next_run)
        logger.info(f"Schedule enabled: every {self._interval_seconds}s")
        if next_run:
            logger.info(f"Next scheduled run: {next_run.strftime('%Y-%m-%d %H:%M:%S')}")

    def get_next_run(self) -> Optional[datetime]:
        """Next time the timer will fire, if scheduled"""
        if not self._started:
            return None
        job = self._scheduler.get_job(self.JOB_ID)
        if job is None:
            return None
        return job.next_run_time

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status"""
        next_run = self.get_next_run()
        run_status = self.runner.read_run_status()

        return {
            "enabled": self._interval_seconds > 0,
            "running": self._started,
            "interval_seconds": self._interval_seconds,
            "next_run": next_run.isoformat() if next_run else None,
            "last_run": run_status.get("finishedAt"),
            "skipped_runs": self._skipped_runs,
        }


# Singleton instance
_scheduler_service: Optional[SchedulerService] = None
_scheduler_service_lock = threading.Lock()


def get_scheduler_service() -> SchedulerService:
    """Get or create the scheduler service singleton"""
    global _scheduler_service
    if _scheduler_service is None:
        with _scheduler_service_lock:
            if _scheduler_service is None:
                _scheduler_service = SchedulerService()
    return _scheduler_service
