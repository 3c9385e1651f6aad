"""
System utilities for CompleteARR.
Handles the run lock and path comparisons between *arr paths and local paths.
"""

import os
import atexit
import fcntl
import logging
import time
from typing import Iterable, Optional

from core.models import normalize_path

FRESH_LOCK_ATTEMPTS = 5
FRESH_LOCK_RETRY_SECONDS = 0.01


class RunLock:
    """
    Exclusive marker preventing overlapping reconciliation passes.

    The lock file is created with O_CREAT|O_EXCL so exactly one caller can
    create it, and an flock is held on it for as long as the run lives.
    A lock file with a PID written whose flock can be taken by someone else
    has no live owner (the process died without cleaning up) and is stale.
    """

    def __init__(self, lock_file: str):
        self.lock_file = str(lock_file)
        self.lock_fd = None
        self.locked = False
        self._atexit_registered = False

    def acquire(self) -> bool:
        """
        Acquire the lock without blocking.

        Returns:
            True if the lock was acquired, False if it already exists.
        """
        directory = os.path.dirname(self.lock_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False

        self.lock_fd = os.fdopen(fd, 'w')
        created = os.fstat(fd)
        if not self._lock_fresh_file(created):
            # Another caller kept our fresh file locked, or a forced reset removed it
            self.lock_fd.close()
            self.lock_fd = None
            if self._path_is(created):
                os.remove(self.lock_file)
            return False

        # Write PID for debugging
        self.lock_fd.write(str(os.getpid()))
        self.lock_fd.flush()
        self.locked = True

        # Register cleanup on exit
        if not self._atexit_registered:
            atexit.register(self.release)
            self._atexit_registered = True

        return True

    def _lock_fresh_file(self, created: os.stat_result) -> bool:
        # A stale-lock check holds the flock only for a moment
        for _ in range(FRESH_LOCK_ATTEMPTS):
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                time.sleep(FRESH_LOCK_RETRY_SECONDS)
                continue
            if self._path_is(created):
                return True
            fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
            return False
        return False

    def _path_is(self, stat: os.stat_result) -> bool:
        """Check the lock path still names the file `stat` describes."""
        try:
            current = os.stat(self.lock_file)
        except FileNotFoundError:
            return False
        return (current.st_ino, current.st_dev) == (stat.st_ino, stat.st_dev)

    def release(self) -> None:
        """Release the lock and remove the marker."""
        if not self.locked:
            return

        try:
            if self.lock_fd:
                # Remove while still holding the flock, and only our own file
                if self._path_is(os.fstat(self.lock_fd.fileno())):
                    os.remove(self.lock_file)
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                self.lock_fd.close()
                self.lock_fd = None
        except OSError as e:
            logging.warning(f"Could not fully release run lock {self.lock_file}: {e}")
        finally:
            self.locked = False

    def exists(self) -> bool:
        """Check whether any run currently claims the lock."""
        return os.path.exists(self.lock_file)

    def holder_pid(self) -> Optional[int]:
        """PID recorded in the lock file, if readable."""
        try:
            with open(self.lock_file, 'r') as f:
                content = f.read().strip()
            return int(content) if content else None
        except (OSError, ValueError):
            return None

    def break_lock(self, force: bool = False) -> bool:
        """
        Remove a lock file that no live run holds.

        The file is checked and removed under an flock on the opened handle,
        and only while the path still names that same file, so a lock that
        another caller has just taken is never deleted. Without `force`, a
        file with no PID written yet belongs to an acquisition in progress
        and is left alone.

        Returns:
            True if a file was removed.
        """
        if self.locked:
            return False

        try:
            candidate = open(self.lock_file, 'r')
        except FileNotFoundError:
            return False

        with candidate:
            try:
                fcntl.flock(candidate, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                # Held by a live owner
                return False
            try:
                if not force and not candidate.read().strip():
                    return False
                if not self._path_is(os.fstat(candidate.fileno())):
                    # Replaced by a fresh lock since we opened it
                    return False
                os.remove(self.lock_file)
                return True
            finally:
                fcntl.flock(candidate, fcntl.LOCK_UN)


def path_is_under(path: str, root: str) -> bool:
    """Check whether `path` is `root` itself or lies beneath it.

    Compares whole path components, so '/library/4Kids' is not under
    '/library/4K'.
    """
    if not path or not root:
        return False
    path = normalize_path(path)
    root = normalize_path(root)
    if path == root:
        return True
    prefix = root if root.endswith(("/", "\\")) else root + "/"
    return path.startswith(prefix) or path.startswith(root + "\\")


def join_root(root: str, name: str) -> str:
    """Build '<root>/<name>' without doubling separators."""
    return normalize_path(root) + "/" + name.strip("/\\")


def item_folder_name(path: str) -> str:
    """Last path component of an item's folder."""
    return os.path.basename(normalize_path(path).replace("\\", "/"))


def translate_remote_path(path: str, mappings: Iterable) -> str:
    """Translate a path as Sonarr/Radarr see it into the local path.

    The first mapping whose remote prefix matches wins. Returns the original
    path if nothing matches.
    """
    for mapping in mappings:
        remote = getattr(mapping, 'remote', '') or ''
        local = getattr(mapping, 'local', '') or ''
        if not remote or not local:
            continue
        if path_is_under(path, remote):
            remainder = normalize_path(path)[len(normalize_path(remote)):]
            return normalize_path(local) + remainder
    return path
