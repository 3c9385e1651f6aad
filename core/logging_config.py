"""
Logging configuration for CompleteARR.
Sets up per-run log files, console output, the SUMMARY level and webhook notifications.
"""

import json
import logging
import os
import threading
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

import requests

# Serializes console writes from the pass thread, the scheduler and request handlers
_console_lock = threading.RLock()

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
LOG_FILE_PREFIX = "completarr_log_"
MAX_LOG_BYTES = 20 * 1024 * 1024


class ThreadSafeStreamHandler(logging.StreamHandler):
    """Console handler whose writes never interleave across threads."""

    def emit(self, record):
        with _console_lock:
            super().emit(record)


# End-of-pass report level, above WARNING so it survives quiet log levels
SUMMARY = logging.WARNING + 1
logging.addLevelName(SUMMARY, 'SUMMARY')

LEVEL_MAPPING = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "summary": SUMMARY,
}


def _console_print(message: str) -> None:
    # Logging from inside a handler would recurse into it
    with _console_lock:
        print(message)


class WebhookHandler(logging.Handler):
    """Posts records to a Discord-style webhook ({"content": ...})."""

    def __init__(self, webhook_url: str, timeout: float = 10):
        super().__init__()
        self.webhook_url = webhook_url
        self.timeout = timeout

    def emit(self, record):
        if record.levelno == SUMMARY:
            content = "CompleteARR Summary:\n" + record.getMessage()
        else:
            content = f"[{record.levelname}] {record.getMessage()}"
        self.send_webhook_message(content)

    def send_webhook_message(self, content: str) -> None:
        try:
            response = requests.post(
                self.webhook_url,
                data=json.dumps({"content": content}),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            _console_print(f"Webhook notification failed: {e}")
            return
        if response.status_code not in (200, 204):
            _console_print(f"Webhook notification rejected with HTTP {response.status_code}")


class LoggingManager:
    """Owns the handlers one CompleteARR run attaches to the root logger."""

    def __init__(self, logs_folder: str, log_level: str = "", max_log_files: int = 24):
        self.logs_folder = Path(logs_folder)
        self.log_level = log_level
        self.max_log_files = max_log_files
        self.logger = logging.getLogger()
        self.log_file: Optional[Path] = None
        self._handlers: List[logging.Handler] = []

    def setup_logging(self, console: bool = True) -> None:
        """Create the run's log file (and console output), then prune old files."""
        self._ensure_logs_folder()
        self._add_file_handler()
        if console:
            self._add_handler(ThreadSafeStreamHandler())
        self._point_latest_link()
        self._apply_level()
        self._clean_old_log_files()
        for noisy in ("urllib3", "urllib3.connectionpool", "requests"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    def _ensure_logs_folder(self) -> None:
        try:
            self.logs_folder.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            raise PermissionError(f"Logs folder {self.logs_folder} is not writable")

    def _add_handler(self, handler: logging.Handler) -> None:
        if handler.formatter is None:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(handler)
        self._handlers.append(handler)

    def _add_file_handler(self) -> None:
        stamp = datetime.now().strftime("%Y%m%d_%H%M")
        self.log_file = self.logs_folder / f"{LOG_FILE_PREFIX}{stamp}.log"
        self._add_handler(RotatingFileHandler(
            self.log_file,
            maxBytes=MAX_LOG_BYTES,
            backupCount=self.max_log_files,
        ))

    def _point_latest_link(self) -> None:
        latest = self.logs_folder / f"{LOG_FILE_PREFIX}latest.log"
        try:
            if latest.is_symlink() or latest.exists():
                latest.unlink()
            latest.symlink_to(self.log_file.name)
        except OSError as e:
            logging.debug(f"Could not update latest log symlink: {e}")

    def _apply_level(self) -> None:
        name = (self.log_level or "info").lower()
        level = LEVEL_MAPPING.get(name)
        if level is None or name == "summary":
            logging.warning(f"Unknown log_level '{name}', falling back to info")
            level = logging.INFO
        self.logger.setLevel(level)

    def set_level(self, log_level: str) -> None:
        """Change the level once configuration has been loaded."""
        self.log_level = log_level
        self._apply_level()

    def _clean_old_log_files(self) -> None:
        """Delete the oldest run logs beyond max_log_files."""
        files = [f for f in self.logs_folder.glob(f"{LOG_FILE_PREFIX}*.log") if not f.is_symlink()]
        files.sort(key=lambda f: f.stat().st_mtime)
        excess = len(files) - self.max_log_files
        for old in files[:max(excess, 0)]:
            os.remove(old)

    def setup_notification_handlers(self, logging_config) -> None:
        """Attach the webhook handler when a webhook_url is configured."""
        if not logging_config.webhook_url:
            return
        handler = WebhookHandler(logging_config.webhook_url)
        level_name = (logging_config.webhook_level or "summary").lower()
        if level_name not in LEVEL_MAPPING:
            logging.warning(f"Unknown webhook_level '{level_name}', falling back to summary")
            level_name = "summary"
        handler.setLevel(LEVEL_MAPPING[level_name])
        self._add_handler(handler)

    def log_summary(self, lines: List[str]) -> None:
        """Log the end-of-pass summary at SUMMARY level."""
        if not lines:
            return
        message = lines[0] if len(lines) == 1 else '\n  ' + '\n  '.join(lines)
        self.logger.log(SUMMARY, message)

    def shutdown(self) -> None:
        """Detach and close this manager's handlers.

        The web process runs many passes; handlers must not pile up on the
        root logger between them.
        """
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers = []
