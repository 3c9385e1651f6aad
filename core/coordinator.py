"""
Run coordination for CompleteARR.

Guarantees at most one reconciliation pass runs at a time (across threads
and processes sharing the data folder), persists the run status record,
and repairs state left behind by a run that died without cleaning up.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from core.errors import LockConflict
from core.models import format_api_datetime, parse_api_datetime, utc_now
from core.system_utils import RunLock

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_UNKNOWN = "unknown"


@dataclass
class RunStatus:
    """Persisted run status record."""
    status: str = STATUS_UNKNOWN
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    next_run: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "startedAt": format_api_datetime(self.started_at),
            "finishedAt": format_api_datetime(self.finished_at),
            "nextRun": format_api_datetime(self.next_run),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunStatus":
        return cls(
            status=data.get("status") or STATUS_UNKNOWN,
            started_at=parse_api_datetime(data.get("startedAt")),
            finished_at=parse_api_datetime(data.get("finishedAt")),
            next_run=parse_api_datetime(data.get("nextRun")),
        )


class RunCoordinator:
    """Owns the run lock, the status file and the stop flag."""

    def __init__(self, status_file: Union[str, Path], lock_file: Union[str, Path],
                 clock: Callable[[], datetime] = utc_now):
        self.status_file = Path(status_file)
        self.lock = RunLock(str(lock_file))
        self.clock = clock
        self._status_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._started_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------------

    def try_acquire(self) -> bool:
        """Take the run lock without blocking, healing a stale one first."""
        if self.lock.acquire():
            return True
        if not self.lock.break_lock():
            return False
        acquired = self.lock.acquire()
        if acquired:
            self._heal("lock file has no live owner")
        return acquired

    def release(self) -> None:
        self.lock.release()

    def _conflict_message(self, message: str) -> str:
        pid = self.lock.holder_pid()
        return f"{message} (pid {pid})" if pid else message

    @property
    def is_running(self) -> bool:
        """True while this process holds the run lock."""
        return self.lock.locked

    # ------------------------------------------------------------------
    # Stop flag
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Ask the current pass to stop after the item it is working on."""
        self._stop_event.set()

    def should_stop(self) -> bool:
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Status record
    # ------------------------------------------------------------------

    def write_status(self, status: RunStatus) -> None:
        """Atomic save: write to temp file then replace."""
        with self._status_lock:
            self.status_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.status_file.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(status.to_dict(), f, indent=2)
                os.replace(tmp_path, str(self.status_file))
            except Exception:
                # Clean up temp file on failure
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise

    def _load_status(self) -> RunStatus:
        try:
            with open(self.status_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return RunStatus()
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Could not read run status {self.status_file}: {e}")
            return RunStatus()
        if not isinstance(data, dict):
            return RunStatus()
        return RunStatus.from_dict(data)

    def read_status(self) -> RunStatus:
        """Read the status record, repairing it if the run that wrote it is gone."""
        status = self._load_status()

        if self.lock.break_lock():
            return self._heal("lock file has no live owner", status)
        if status.status == STATUS_RUNNING and not self.lock.exists():
            return self._heal("status is running but no run holds the lock", status)
        return status

    def _heal(self, reason: str, status: Optional[RunStatus] = None) -> RunStatus:
        if status is None:
            status = self._load_status()
        logging.warning(f"Stale run state detected ({reason}); resetting to idle")
        healed = RunStatus(
            status=STATUS_IDLE,
            started_at=status.started_at,
            finished_at=self.clock(),
            next_run=status.next_run,
        )
        self.write_status(healed)
        return healed

    def force_reset(self) -> RunStatus:
        """Clear the lock and status record left by a stuck run.

        Raises:
            LockConflict: If a live run holds the lock.
        """
        if self.is_running:
            raise LockConflict("Cannot reset while a run is in progress")
        if not self.lock.break_lock(force=True) and self.lock.exists():
            raise LockConflict(self._conflict_message("Cannot reset while a run is in progress"))
        status = self._load_status()
        reset = RunStatus(
            status=STATUS_IDLE,
            started_at=status.started_at,
            finished_at=self.clock(),
            next_run=status.next_run,
        )
        self.write_status(reset)
        logging.info("Run status reset to idle")
        return reset

    def set_next_run(self, next_run: Optional[datetime]) -> None:
        """Record when the scheduler will next trigger a pass."""
        status = self._load_status()
        status.next_run = next_run
        if status.status == STATUS_UNKNOWN:
            status.status = STATUS_IDLE
        self.write_status(status)

    # ------------------------------------------------------------------
    # Run wrapper
    # ------------------------------------------------------------------

    def run(self, pass_fn: Callable[[], Any],
            next_run: Union[None, datetime, Callable[[], Optional[datetime]]] = None) -> Any:
        """Run one pass under the lock, keeping the status record current.

        Args:
            pass_fn: The pass to execute. It should poll should_stop()
                between items.
            next_run: Next scheduled run, or a callable returning it once the
                pass has finished.

        Raises:
            LockConflict: If another run holds the lock.
        """
        self.begin()
        try:
            return pass_fn()
        finally:
            self.finish(next_run)

    def begin(self) -> RunStatus:
        """Take the lock and mark the run as started.

        Raises:
            LockConflict: If another run holds the lock.
        """
        if not self.try_acquire():
            raise LockConflict(self._conflict_message("A run is already in progress"))

        previous = self._load_status()
        self._started_at = self.clock()
        status = RunStatus(
            status=STATUS_RUNNING,
            started_at=self._started_at,
            finished_at=previous.finished_at,
            next_run=previous.next_run,
        )
        try:
            self.write_status(status)
        except OSError:
            self.release()
            raise
        return status

    def finish(self, next_run: Union[None, datetime, Callable[[], Optional[datetime]]] = None) -> RunStatus:
        """Mark the run as finished and release the lock, even if the status write fails."""
        upcoming = next_run() if callable(next_run) else next_run
        status = RunStatus(
            status=STATUS_IDLE,
            started_at=self._started_at,
            finished_at=self.clock(),
            next_run=upcoming,
        )
        try:
            self.write_status(status)
        finally:
            self.release()
            self._stop_event.clear()
        return status
