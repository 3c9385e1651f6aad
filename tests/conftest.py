"""Shared test fixtures for CompleteARR test suite."""

import copy
import json
import os
import shutil
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import ExternalCallError


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Fake Sonarr/Radarr
# ============================================================================

class FakeArrClient:
    """In-memory stand-in for ArrClient.

    Moves issued with move_files=True only take effect when `apply_moves`
    is set; updates with move_files=False (reverts) always apply.
    """

    def __init__(self, kind: str = "sonarr", items: Optional[List[dict]] = None,
                 episodes: Optional[Dict[int, List[dict]]] = None,
                 profiles: Optional[List[dict]] = None, apply_moves: bool = True):
        self.kind = kind
        self.label = kind.upper()
        self.items = {item["id"]: copy.deepcopy(item) for item in (items or [])}
        self.episodes = copy.deepcopy(episodes or {})
        self.profiles = profiles or []
        self.apply_moves = apply_moves
        self.updates: List[tuple] = []
        self.monitor_calls: List[tuple] = []
        self.get_item_calls = 0
        self.failing_items = set()  # get_episodes/update_item raise for these ids
        self.fail_get_item = False

    def get_system_status(self):
        return {"version": "4.0.0"}

    def get_quality_profiles(self):
        return list(self.profiles)

    def resolve_profile_ids(self, names):
        by_name = {p["name"]: p["id"] for p in self.profiles}
        return {name: by_name[name] for name in names if name in by_name}

    def get_items(self):
        return [copy.deepcopy(item) for item in self.items.values()]

    def get_item(self, item_id):
        self.get_item_calls += 1
        if self.fail_get_item:
            raise ExternalCallError(f"get item {item_id}", "connection refused")
        return copy.deepcopy(self.items[item_id])

    def get_episodes(self, series_id):
        if series_id in self.failing_items:
            raise ExternalCallError(f"get episodes for series {series_id}", "server error", 500)
        return copy.deepcopy(self.episodes.get(series_id, []))

    def update_item(self, resource, move_files):
        item_id = resource["id"]
        if item_id in self.failing_items:
            raise ExternalCallError(f"update item {item_id}", "server error", 500)
        self.updates.append((copy.deepcopy(resource), move_files))
        if self.apply_moves or not move_files:
            self.items[item_id] = copy.deepcopy(resource)
        return copy.deepcopy(resource)

    def set_episodes_monitored(self, episode_ids, monitored):
        self.monitor_calls.append((list(episode_ids), monitored))
        for episode_list in self.episodes.values():
            for episode in episode_list:
                if episode["id"] in episode_ids:
                    episode["monitored"] = monitored

    @property
    def move_requests(self):
        return [resource for resource, move_files in self.updates if move_files]

    @property
    def reverts(self):
        return [resource for resource, move_files in self.updates if not move_files]


class RecordingSleeper:
    """Sleeper that records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def make_episode(episode_id, season, number, aired_days_ago=None, has_file=True,
                 monitored=True, has_aired=None, now=NOW):
    """Build an episode dict the way Sonarr returns it."""
    data = {
        "id": episode_id,
        "seasonNumber": season,
        "episodeNumber": number,
        "hasFile": has_file,
        "monitored": monitored,
    }
    if aired_days_ago is not None:
        aired = now - timedelta(days=aired_days_ago)
        data["airDateUtc"] = aired.strftime("%Y-%m-%dT%H:%M:%SZ")
    if has_aired is not None:
        data["hasAired"] = has_aired
    return data


# ============================================================================
# Filesystem fixtures
# ============================================================================

@pytest.fixture
def temp_dir():
    """Provide a temporary directory, cleaned up after test."""
    d = tempfile.mkdtemp(prefix="completarr_test_")
    yield d
    shutil.rmtree(d, ignore_errors=True)


# ============================================================================
# Time fixtures
# ============================================================================

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def sleeper():
    return RecordingSleeper()


# ============================================================================
# Config fixtures
# ============================================================================

PROFILES = [
    {"id": 1, "name": "HD-Incomplete"},
    {"id": 2, "name": "HD-Complete"},
    {"id": 3, "name": "Tier4K"},
    {"id": 4, "name": "Tier1080"},
]


@pytest.fixture
def profiles():
    return list(PROFILES)


@pytest.fixture
def sonarr_settings():
    """Provide a valid Sonarr section."""
    return {
        "url": "http://sonarr:8989",
        "api_key": "sonarr-key",
        "behavior": {
            "grace_days": 15,
            "post_move_wait_seconds": 0,
            "move_verification": {
                "enabled": True,
                "mode": "remote",
                "retries": 2,
                "delay_seconds": 5,
                "backoff_seconds": 2,
            },
        },
        "sets": [{
            "name": "TV",
            "incomplete_profile": "HD-Incomplete",
            "incomplete_root": "/tv/incomplete",
            "complete_profile": "HD-Complete",
            "complete_root": "/tv/complete",
        }],
    }


@pytest.fixture
def radarr_settings():
    """Provide a valid Radarr section."""
    return {
        "url": "http://radarr:7878",
        "api_key": "radarr-key",
        "behavior": {
            "move_verification": {"enabled": True, "retries": 1, "delay_seconds": 1, "backoff_seconds": 1},
        },
        "profile_root_mappings": {
            "Tier4K": "/library/4K",
            "Tier1080": "/library/1080",
        },
    }


@pytest.fixture
def settings_data(sonarr_settings, radarr_settings):
    """Provide a complete valid settings dict."""
    return {
        "run_interval_seconds": 3600,
        "log_level": "info",
        "api_min_interval_seconds": 0,
        "sonarr": sonarr_settings,
        "radarr": radarr_settings,
    }


@pytest.fixture
def settings_file(temp_dir, settings_data):
    """Write settings_data to a completarr_settings.json in temp_dir."""
    path = os.path.join(temp_dir, "completarr_settings.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings_data, f)
    return path
