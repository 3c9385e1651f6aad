"""
Error taxonomy for CompleteARR.

Only ConfigurationError is allowed to unwind a whole reconciliation pass.
Everything that can go wrong with a single item is reported through the
per-item result types in core.models instead.
"""

from typing import List, Optional


class CompleteArrError(Exception):
    """Base class for all CompleteARR errors."""


class ConfigurationError(CompleteArrError):
    """Settings are missing, malformed, or reference unknown profiles.

    Carries every violation found so they can be reported together.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Configuration validation errors: " + "; ".join(self.errors))


class ExternalCallError(CompleteArrError):
    """A Sonarr/Radarr API call failed (transport error, timeout or HTTP error)."""

    def __init__(self, context: str, message: str, status_code: Optional[int] = None):
        self.context = context
        self.status_code = status_code
        detail = f"{context}: {message}"
        if status_code is not None:
            detail = f"{context}: HTTP {status_code} - {message}"
        super().__init__(detail)


class LockConflict(CompleteArrError):
    """Another reconciliation pass already holds the run lock."""

    def __init__(self, message: str = "A run is already in progress"):
        super().__init__(message)
