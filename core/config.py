"""
Configuration management for CompleteARR.
Handles loading, validation, and management of application settings.

Settings live in a single JSON file with one section per library
("sonarr", "radarr"). Every violation found during validation is collected
and reported together in one ConfigurationError.
"""

import json
import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field

from core.errors import ConfigurationError
from core.models import PlacementSet

# Get the directory where config.py is located
_SCRIPT_DIR = Path(os.path.dirname(os.path.abspath(__file__)))

# Project root detection: if we're in core/, go up one level
if _SCRIPT_DIR.name == 'core':
    _PROJECT_ROOT = _SCRIPT_DIR.parent
else:
    _PROJECT_ROOT = _SCRIPT_DIR

VERIFY_MODES = ("remote", "filesystem", "both")
# Older settings files name the remote mode after the app
VERIFY_MODE_ALIASES = {"sonarr": "remote", "radarr": "remote"}

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


@dataclass
class PathMapping:
    """Translate a path as Sonarr/Radarr report it to the path this process sees.

    Only used by filesystem move verification.
    """
    remote: str = ""
    local: str = ""


@dataclass
class MoveVerificationConfig:
    """How a move is confirmed after it has been issued."""
    enabled: bool = True
    mode: str = "remote"  # "remote", "filesystem" or "both"
    retries: int = 3
    delay_seconds: float = 5
    backoff_seconds: float = 2
    reattempt_move: bool = True
    revert_on_failure: bool = True
    path_mappings: List[PathMapping] = field(default_factory=list)


@dataclass
class BehaviorConfig:
    """Per-library behavior switches."""
    dry_run: bool = False
    grace_days: float = 15
    treat_unknown_air_date_as_old: bool = False
    preflight_seconds: float = 0
    post_move_wait_seconds: float = 2
    monitor_non_specials: bool = True
    unmonitor_specials_when_incomplete: bool = True
    monitor_specials_when_complete: bool = True
    specials_do_not_block_completion: bool = True
    move_verification: MoveVerificationConfig = field(default_factory=MoveVerificationConfig)


@dataclass
class ConnectionConfig:
    """Where to reach a Sonarr/Radarr instance."""
    url: str = ""
    api_key: str = ""


@dataclass
class SonarrConfig:
    """Episodic library settings."""
    enabled: bool = False
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    behavior: BehaviorConfig = field(default_factory=BehaviorConfig)
    sets: List[PlacementSet] = field(default_factory=list)


@dataclass
class RadarrConfig:
    """Singular library settings."""
    enabled: bool = False
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    behavior: BehaviorConfig = field(default_factory=lambda: BehaviorConfig(post_move_wait_seconds=0))
    profile_root_mappings: Dict[str, str] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Configuration for logging and notifications."""
    log_level: str = "info"
    max_log_files: int = 24
    webhook_url: str = ""
    webhook_level: str = "summary"


@dataclass
class PathConfig:
    """Configuration for file paths and directories."""
    script_folder: str = str(_PROJECT_ROOT)
    logs_folder: str = str(_PROJECT_ROOT / "logs")
    data_folder: str = str(_PROJECT_ROOT / "data")


@dataclass
class RunConfig:
    """Scheduling and API pacing."""
    run_interval_seconds: int = 3600
    api_timeout_seconds: float = 30
    api_min_interval_seconds: float = 0.25


class _Reader:
    """Typed accessors over one settings section that record violations instead of raising."""

    def __init__(self, data: Dict[str, Any], prefix: str, errors: List[str]):
        self.data = data if isinstance(data, dict) else {}
        self.prefix = prefix
        self.errors = errors
        if data is not None and not isinstance(data, dict):
            errors.append(f"'{prefix}' expected object, got {type(data).__name__}")

    def _name(self, key: str) -> str:
        return f"{self.prefix}.{key}" if self.prefix else key

    def section(self, key: str) -> "_Reader":
        return _Reader(self.data.get(key, {}), self._name(key), self.errors)

    def string(self, key: str, default: str = "", required: bool = False) -> str:
        value = self.data.get(key, default)
        if value is None:
            value = default
        if not isinstance(value, str):
            self.errors.append(f"'{self._name(key)}' expected str, got {type(value).__name__}")
            return default
        if required and not value.strip():
            self.errors.append(f"'{self._name(key)}' cannot be empty")
        return value.strip()

    def boolean(self, key: str, default: bool) -> bool:
        value = self.data.get(key, default)
        if not isinstance(value, bool):
            self.errors.append(f"'{self._name(key)}' expected bool, got {type(value).__name__}")
            return default
        return value

    def number(self, key: str, default: float, integer: bool = False):
        value = self.data.get(key, default)
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            expected = "int" if integer else "number"
            self.errors.append(f"'{self._name(key)}' expected {expected}, got {type(value).__name__}")
            return default
        if integer and not float(value).is_integer():
            self.errors.append(f"'{self._name(key)}' expected int, got {value}")
            return default
        if value < 0:
            self.errors.append(f"'{self._name(key)}' must be non-negative, got {value}")
            return default
        return int(value) if integer else value


class ConfigManager:
    """Manages application configuration loading and validation."""

    def __init__(self, config_file: str):
        self.config_file = Path(config_file)
        self.settings_data: Dict[str, Any] = {}
        self.paths = PathConfig()
        self.logging = LoggingConfig()
        self.run = RunConfig()
        self.sonarr = SonarrConfig()
        self.radarr = RadarrConfig()
        self.debug = False

        config_dir = self.config_file.parent
        self.paths.logs_folder = str(config_dir / "logs")
        self.paths.data_folder = str(config_dir / "data")

    def load_config(self) -> None:
        """Load configuration from file and validate."""
        logging.debug(f"Loading configuration from: {self.config_file}")

        if not self.config_file.exists():
            logging.error(f"Settings file not found: {self.config_file}")
            raise ConfigurationError([f"Settings file not found: {self.config_file}"])

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            logging.debug("Configuration file loaded successfully")
        except json.JSONDecodeError as e:
            logging.error(f"Invalid JSON in settings file: {type(e).__name__}: {e}")
            raise ConfigurationError([f"Invalid JSON in settings file: {e}"])

        self.load_dict(data)

    def load_dict(self, data: Dict[str, Any]) -> None:
        """Populate and validate all sections from an already-parsed settings dict."""
        if not isinstance(data, dict):
            raise ConfigurationError([f"Settings root expected object, got {type(data).__name__}"])
        self.settings_data = data

        errors: List[str] = []
        root = _Reader(data, "", errors)

        self._load_general_config(root)
        self._load_logging_config(root)
        self._load_sonarr_config(root)
        self._load_radarr_config(root)

        if not self.sonarr.enabled and not self.radarr.enabled:
            errors.append("No library configured: add a 'sonarr' and/or 'radarr' section")

        if errors:
            error = ConfigurationError(errors)
            logging.error(str(error))
            raise error

        logging.debug("Configuration loaded and validated successfully")

    def _load_general_config(self, root: _Reader) -> None:
        """Load scheduling and API pacing settings."""
        self.run.run_interval_seconds = root.number('run_interval_seconds', 3600, integer=True)
        self.run.api_timeout_seconds = root.number('api_timeout_seconds', 30)
        self.run.api_min_interval_seconds = root.number('api_min_interval_seconds', 0.25)
        self.debug = root.boolean('debug', False)

    def _load_logging_config(self, root: _Reader) -> None:
        """Load logging-related configuration."""
        level = root.string('log_level', 'info').lower()
        if level not in LOG_LEVELS:
            root.errors.append(f"'log_level' must be one of {', '.join(LOG_LEVELS)}, got '{level}'")
            level = 'info'
        self.logging.log_level = level
        self.logging.max_log_files = root.number('max_log_files', 24, integer=True)
        self.logging.webhook_url = root.string('webhook_url', '')
        self.logging.webhook_level = root.string('webhook_level', 'summary').lower()

    def _load_sonarr_config(self, root: _Reader) -> None:
        """Load the episodic library section."""
        if 'sonarr' not in root.data:
            self.sonarr = SonarrConfig(enabled=False)
            return

        section = root.section('sonarr')
        enabled = section.boolean('enabled', True)
        self.sonarr = SonarrConfig(
            enabled=enabled,
            connection=self._load_connection(section, enabled),
            behavior=self._load_behavior(section.section('behavior'), post_move_default=2),
        )

        raw_sets = section.data.get('sets', [])
        if not isinstance(raw_sets, list):
            section.errors.append(f"'sonarr.sets' expected list, got {type(raw_sets).__name__}")
            raw_sets = []
        if self.sonarr.enabled and not raw_sets:
            section.errors.append("'sonarr.sets' must contain at least one set")

        for index, raw_set in enumerate(raw_sets):
            entry = _Reader(raw_set, f"sonarr.sets[{index}]", section.errors)
            placement_set = PlacementSet(
                name=entry.string('name', f"Set {index + 1}") or f"Set {index + 1}",
                incomplete_profile=entry.string('incomplete_profile', required=True),
                incomplete_root=entry.string('incomplete_root', required=True),
                complete_profile=entry.string('complete_profile', required=True),
                complete_root=entry.string('complete_root', required=True),
            )
            # Current state is read from the profile, so the two must differ
            if placement_set.incomplete_profile and \
                    placement_set.incomplete_profile == placement_set.complete_profile:
                section.errors.append(
                    f"'sonarr.sets[{index}]' incomplete_profile and complete_profile must differ, "
                    f"both are '{placement_set.complete_profile}'"
                )
            self.sonarr.sets.append(placement_set)

    def _load_radarr_config(self, root: _Reader) -> None:
        """Load the singular library section."""
        if 'radarr' not in root.data:
            self.radarr = RadarrConfig(enabled=False)
            return

        section = root.section('radarr')
        enabled = section.boolean('enabled', True)
        self.radarr = RadarrConfig(
            enabled=enabled,
            connection=self._load_connection(section, enabled),
            behavior=self._load_behavior(section.section('behavior'), post_move_default=0),
        )

        mappings = section.data.get('profile_root_mappings', {})
        if not isinstance(mappings, dict):
            section.errors.append(
                f"'radarr.profile_root_mappings' expected object, got {type(mappings).__name__}"
            )
            mappings = {}
        if self.radarr.enabled and not mappings:
            section.errors.append("'radarr.profile_root_mappings' must contain at least one mapping")

        for profile, root_folder in mappings.items():
            if not isinstance(root_folder, str) or not root_folder.strip():
                section.errors.append(
                    f"'radarr.profile_root_mappings.{profile}' must be a non-empty root folder path"
                )
                continue
            self.radarr.profile_root_mappings[profile] = root_folder.strip()

    def _load_connection(self, section: _Reader, required: bool) -> ConnectionConfig:
        """Load url/api_key; both are required for an enabled library."""
        return ConnectionConfig(
            url=section.string('url', required=required).rstrip('/'),
            api_key=section.string('api_key', required=required),
        )

    def _load_behavior(self, section: _Reader, post_move_default: float) -> BehaviorConfig:
        """Load a behavior block, applying documented defaults."""
        behavior = BehaviorConfig(
            dry_run=section.boolean('dry_run', False),
            grace_days=section.number('grace_days', 15),
            treat_unknown_air_date_as_old=section.boolean('treat_unknown_air_date_as_old', False),
            preflight_seconds=section.number('preflight_seconds', 0),
            post_move_wait_seconds=section.number('post_move_wait_seconds', post_move_default),
            monitor_non_specials=section.boolean('monitor_non_specials', True),
            unmonitor_specials_when_incomplete=section.boolean('unmonitor_specials_when_incomplete', True),
            monitor_specials_when_complete=section.boolean('monitor_specials_when_complete', True),
            specials_do_not_block_completion=section.boolean('specials_do_not_block_completion', True),
        )
        behavior.move_verification = self._load_move_verification(section.section('move_verification'))
        return behavior

    def _load_move_verification(self, section: _Reader) -> MoveVerificationConfig:
        """Load the move verification block."""
        mode = section.string('mode', 'remote').lower()
        mode = VERIFY_MODE_ALIASES.get(mode, mode)
        if mode not in VERIFY_MODES:
            section.errors.append(
                f"'{section.prefix}.mode' must be one of {', '.join(VERIFY_MODES)}, got '{mode}'"
            )
            mode = 'remote'

        mappings = []
        raw_mappings = section.data.get('path_mappings', [])
        if not isinstance(raw_mappings, list):
            section.errors.append(f"'{section.prefix}.path_mappings' expected list")
            raw_mappings = []
        for index, raw in enumerate(raw_mappings):
            entry = _Reader(raw, f"{section.prefix}.path_mappings[{index}]", section.errors)
            mappings.append(PathMapping(
                remote=entry.string('remote', required=True),
                local=entry.string('local', required=True),
            ))

        return MoveVerificationConfig(
            enabled=section.boolean('enabled', True),
            mode=mode,
            retries=section.number('retries', 3, integer=True),
            delay_seconds=section.number('delay_seconds', 5),
            backoff_seconds=section.number('backoff_seconds', 2),
            reattempt_move=section.boolean('reattempt_move', True),
            revert_on_failure=section.boolean('revert_on_failure', True),
            path_mappings=mappings,
        )

    def get_data_folder(self) -> Path:
        """Get the path for the data folder (status and lock files)."""
        return Path(self.paths.data_folder)

    def get_status_file(self) -> Path:
        """Get the path for the persisted run status."""
        return self.get_data_folder() / "run_status.json"

    def get_lock_file(self) -> Path:
        """Get the path for the run lock file."""
        return self.get_data_folder() / "run.lock"

    def ensure_data_folder(self) -> None:
        """Ensure the data folder exists."""
        data_folder = self.get_data_folder()
        if not data_folder.exists():
            data_folder.mkdir(parents=True, exist_ok=True)
            logging.debug(f"Created data folder: {data_folder}")
