"""Operation runner service - runs CompleteARR passes on a background thread"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from core.coordinator import RunCoordinator
from core.errors import LockConflict
from web.config import SETTINGS_FILE, STATUS_FILE, RUN_LOCK_FILE

LOG_LINE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class OperationState(str, Enum):
    """Lifecycle of the runner's most recent pass"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class OperationResult:
    """What a pass started by this process did"""
    state: OperationState
    trigger: str = "manual"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0
    dry_run: bool = False
    stopped: bool = False
    error_message: Optional[str] = None
    summaries: Dict[str, Dict[str, int]] = field(default_factory=dict)
    log_messages: List[str] = field(default_factory=list)

    def finished_message(self) -> str:
        if self.state == OperationState.FAILED:
            return f"Failed: {self.error_message}"
        prefix = "Dry run" if self.dry_run else "Pass"
        verb = "stopped" if self.stopped else "completed"
        return f"{prefix} {verb} in {self.duration_seconds:.0f}s"


class WebLogHandler(logging.Handler):
    """Forwards formatted records of the running pass to the runner"""

    def __init__(self, sink: Callable[[str], None]):
        super().__init__()
        self.sink = sink
        self.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt='%H:%M:%S'))

    def emit(self, record):
        try:
            self.sink(self.format(record))
        except Exception:
            self.handleError(record)


def _default_app_factory(config_file: str, dry_run: bool, verbose: bool):
    # Deferred so the web app can start without loading the pass machinery
    from core.app import CompleteArrApp
    return CompleteArrApp(config_file, dry_run=dry_run, verbose=verbose)


class OperationRunner:
    """Runs reconciliation passes for the web service.

    Manual and scheduled triggers both come through start_operation(); the
    run coordinator's lock decides which one wins, including against a
    command-line run in another process.
    """

    MAX_LOG_LINES = 500

    def __init__(self, settings_file: Path = SETTINGS_FILE, status_file: Path = STATUS_FILE,
                 lock_file: Path = RUN_LOCK_FILE, app_factory: Optional[Callable] = None):
        self.settings_file = Path(settings_file)
        self.app_factory = app_factory or _default_app_factory
        self.coordinator = RunCoordinator(status_file, lock_file)

        self._guard = threading.Lock()
        self._state = OperationState.IDLE
        self._result: Optional[OperationResult] = None
        self._worker: Optional[threading.Thread] = None
        self._lines: List[str] = []
        self._stopping = False
        self._active_app = None
        self._next_run_provider: Optional[Callable[[], Optional[datetime]]] = None

    @property
    def state(self) -> OperationState:
        with self._guard:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state == OperationState.RUNNING

    @property
    def stop_requested(self) -> bool:
        with self._guard:
            return self._stopping

    @property
    def current_result(self) -> Optional[OperationResult]:
        """Result of the running pass, or of the last one"""
        with self._guard:
            return self._result

    @property
    def log_messages(self) -> List[str]:
        with self._guard:
            return list(self._lines)

    def set_next_run_provider(self, provider: Optional[Callable[[], Optional[datetime]]]) -> None:
        """Let the scheduler tell finished runs when the next one is due."""
        self._next_run_provider = provider

    def _capture(self, line: str) -> None:
        with self._guard:
            self._lines.append(line)
            if len(self._lines) > self.MAX_LOG_LINES:
                del self._lines[:-self.MAX_LOG_LINES]

    def start_operation(self, dry_run: bool = False, verbose: bool = False,
                        trigger: str = "manual", wait: bool = False) -> bool:
        """
        Start a pass on a background thread.

        The run lock is taken here, in the caller's thread, so a conflict is
        known before this returns.

        Args:
            dry_run: Log decisions without changing anything in Sonarr/Radarr
            verbose: Capture DEBUG lines as well
            trigger: "manual" or "scheduled", recorded in the result
            wait: Block until the pass finishes

        Returns:
            True if the pass started, False if another run holds the lock
        """
        with self._guard:
            if self._state == OperationState.RUNNING:
                return False

            try:
                self.coordinator.begin()
            except LockConflict as e:
                logging.info(f"Run blocked ({trigger}) - {e}")
                return False

            self._state = OperationState.RUNNING
            self._lines = []
            self._stopping = False
            self._active_app = None
            self._result = OperationResult(
                state=OperationState.RUNNING,
                trigger=trigger,
                started_at=datetime.now(),
                dry_run=dry_run,
            )

        self._worker = threading.Thread(
            target=self._run_operation,
            args=(dry_run, verbose),
            name="completarr-pass",
            daemon=True,
        )
        self._worker.start()

        if wait:
            self._worker.join()

        return True

    def stop_operation(self) -> bool:
        """
        Ask the running pass to stop once its current item is done.

        Returns:
            False if nothing is running
        """
        with self._guard:
            if self._state != OperationState.RUNNING:
                return False
            self._stopping = True
            app = self._active_app

        # Outside the guard: _capture takes it too
        self._capture("Stop requested - stopping after current item...")
        self.coordinator.request_stop()
        if app is not None:
            app.request_stop()
        return True

    def wait(self, timeout: Optional[float] = None) -> None:
        """Join the background thread, if there is one."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def _run_operation(self, dry_run: bool, verbose: bool = False):
        """Body of the background thread; owns finishing the coordinator run"""
        started = time.time()
        error_message = None
        summaries: Dict[str, Dict[str, int]] = {}
        app = None

        capture = WebLogHandler(self._capture)
        capture.setLevel(logging.DEBUG if verbose else logging.INFO)
        root_logger = logging.getLogger()
        root_logger.addHandler(capture)

        try:
            self._capture(f"Starting CompleteARR pass{' (dry_run)' if dry_run else ''}...")

            app = self.app_factory(str(self.settings_file), dry_run, verbose)
            with self._guard:
                self._active_app = app
                stop_early = self._stopping
            if stop_early:
                app.request_stop()

            app.setup_logging(console=False)
            app.load()
            results = app.reconcile() or {}
            summaries = {kind: summary.as_dict() for kind, summary in results.items()}

            self._capture("Pass stopped by user" if self.stop_requested else "Pass completed successfully")

        except Exception as e:
            error_message = str(e)
            self._capture(f"ERROR: {error_message}")
            logging.exception("Pass failed")

        finally:
            with self._guard:
                self._active_app = None

            try:
                self.coordinator.finish(self._next_run_provider)
            except OSError as e:
                logging.error(f"Could not record run status: {e}")
                error_message = error_message or str(e)

            if app is not None:
                app.close()
            root_logger.removeHandler(capture)

            with self._guard:
                result = self._result
                result.completed_at = datetime.now()
                result.duration_seconds = time.time() - started
                result.summaries = summaries
                result.stopped = self._stopping
                result.log_messages = list(self._lines)
                result.error_message = error_message
                result.state = OperationState.FAILED if error_message else OperationState.COMPLETED
                self._state = result.state

    def read_run_status(self) -> Dict[str, Any]:
        """Persisted run status, repaired if a dead run left it stale."""
        return self.coordinator.read_status().to_dict()

    def force_reset(self) -> Dict[str, Any]:
        """Clear a stuck status record and lock.

        Raises:
            LockConflict: If this process is running a pass.
        """
        if self.is_running:
            raise LockConflict("Cannot reset while a run is in progress")
        return self.coordinator.force_reset().to_dict()

    def get_status_dict(self) -> dict:
        """In-process runner state for the operations status endpoint"""
        result = self.current_result
        if result is None:
            return {
                "state": OperationState.IDLE.value,
                "is_running": False,
                "message": "No passes run yet",
            }

        running = result.state == OperationState.RUNNING
        status = {
            "state": result.state.value,
            "is_running": running,
            "trigger": result.trigger,
            "dry_run": result.dry_run,
            "stopped": result.stopped,
            "started_at": result.started_at.isoformat() if result.started_at else None,
            "completed_at": result.completed_at.isoformat() if result.completed_at else None,
            "duration_seconds": round(result.duration_seconds, 1),
            "summaries": result.summaries,
            "error_message": result.error_message,
        }

        if running:
            status["recent_logs"] = self.log_messages[-5:]
            status["message"] = "Stopping..." if self.stop_requested else "Running..."
        else:
            status["message"] = result.finished_message()
        return status


_operation_runner: Optional[OperationRunner] = None


def get_operation_runner() -> OperationRunner:
    """Shared runner for routes and the scheduler"""
    global _operation_runner
    if _operation_runner is None:
        _operation_runner = OperationRunner()
    return _operation_runner
