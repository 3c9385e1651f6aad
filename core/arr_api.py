"""
Sonarr/Radarr API integration for CompleteARR.
Handles authenticated v3 API calls, pacing, and error reporting.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from core.errors import ExternalCallError

API_PREFIX = "/api/v3"

# Resource name per library kind
RESOURCES = {
    "sonarr": "series",
    "radarr": "movie",
}


def _log_api_error(label: str, context: str, error: Exception, status_code: Optional[int] = None) -> None:
    """Log API errors with specific guidance for common HTTP status codes."""
    if status_code == 401:
        logging.error(f"[{label} API] Authentication failed ({context}): {error}")
        logging.error(f"[{label} API] The API key is invalid. Find it under Settings -> General.")
    elif status_code == 429:
        logging.warning(f"[{label} API] Rate limited ({context}): {error}")
        logging.warning(f"[{label} API] Consider increasing api_min_interval_seconds")
    elif status_code == 404:
        logging.warning(f"[{label} API] Resource not found ({context}): {error}")
    elif status_code is not None and status_code >= 500:
        logging.error(f"[{label} API] Server error ({context}): {error}")
    else:
        logging.error(f"[{label} API] Error ({context}): {error}")


def build_api_path(path: str) -> str:
    """Prefix a relative path with the versioned API root unless it already has one."""
    path = "/" + path.lstrip("/")
    if path.startswith("/api/"):
        return path
    return API_PREFIX + path


class ArrClient:
    """Client for one Sonarr or Radarr instance.

    Every call is spaced at least `min_interval` seconds after the previous
    one (across threads) and bounded by `timeout`.
    """

    def __init__(self, base_url: str, api_key: str, kind: str = "sonarr",
                 timeout: float = 30, min_interval: float = 0.25,
                 session: Optional[requests.Session] = None):
        if kind not in RESOURCES:
            raise ValueError(f"Unknown library kind: {kind}")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.kind = kind
        self.label = kind.upper()
        self.resource = RESOURCES[kind]
        self.timeout = timeout
        self.min_interval = min_interval
        self.session = session or requests.Session()
        self.session.headers.update({"X-Api-Key": api_key})
        self._api_lock = threading.Lock()
        self._last_call = 0.0

    def _throttle(self) -> None:
        """Block until the minimum spacing since the previous call has elapsed."""
        with self._api_lock:
            if self.min_interval > 0 and self._last_call:
                wait = self.min_interval - (time.monotonic() - self._last_call)
                if wait > 0:
                    time.sleep(wait)
            self._last_call = time.monotonic()

    def _request(self, method: str, path: str, context: str,
                 params: Optional[Dict[str, Any]] = None, json_body: Any = None) -> Any:
        url = self.base_url + build_api_path(path)
        self._throttle()
        logging.debug(f"[{self.label} API] {method} {url} params={params}")

        try:
            response = self.session.request(
                method, url, params=params, json=json_body, timeout=self.timeout
            )
        except requests.Timeout as e:
            _log_api_error(self.label, context, e)
            raise ExternalCallError(context, f"timed out after {self.timeout}s")
        except requests.RequestException as e:
            _log_api_error(self.label, context, e)
            raise ExternalCallError(context, str(e))

        if response.status_code >= 400:
            message = (response.text or response.reason or "").strip()[:300]
            _log_api_error(self.label, context, Exception(message), response.status_code)
            raise ExternalCallError(context, message, response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def get_system_status(self) -> Dict[str, Any]:
        """Fetch system status (used as a connectivity check)."""
        return self._request("GET", "system/status", "get system status") or {}

    def get_quality_profiles(self) -> List[Dict[str, Any]]:
        """Fetch all quality profiles."""
        return self._request("GET", "qualityprofile", "get quality profiles") or []

    def get_items(self) -> List[Dict[str, Any]]:
        """Fetch every series (Sonarr) or movie (Radarr)."""
        return self._request("GET", self.resource, f"get {self.resource} list") or []

    def get_item(self, item_id: int) -> Dict[str, Any]:
        """Fetch a single series or movie."""
        return self._request("GET", f"{self.resource}/{item_id}", f"get {self.resource} {item_id}") or {}

    def get_episodes(self, series_id: int) -> List[Dict[str, Any]]:
        """Fetch every episode of a series."""
        if self.kind != "sonarr":
            raise ValueError("Episodes are only available from Sonarr")
        return self._request(
            "GET", "episode", f"get episodes for series {series_id}",
            params={"seriesId": series_id},
        ) or []

    def update_item(self, resource: Dict[str, Any], move_files: bool) -> Dict[str, Any]:
        """PUT a series/movie resource back, optionally asking the app to move its files."""
        item_id = resource["id"]
        return self._request(
            "PUT", f"{self.resource}/{item_id}", f"update {self.resource} {item_id}",
            params={"moveFiles": "true" if move_files else "false"},
            json_body=resource,
        ) or {}

    def set_episodes_monitored(self, episode_ids: List[int], monitored: bool) -> None:
        """Set the monitored flag on a batch of episodes."""
        if not episode_ids:
            return
        self._request(
            "PUT", "episode/monitor", f"set monitored={monitored} on {len(episode_ids)} episode(s)",
            json_body={"episodeIds": list(episode_ids), "monitored": monitored},
        )

    def resolve_profile_ids(self, names: List[str]) -> Dict[str, int]:
        """Map quality profile names to ids. Unknown names are left out."""
        profiles = self.get_quality_profiles()
        by_name = {p.get("name"): p.get("id") for p in profiles}
        return {name: by_name[name] for name in names if name in by_name}
