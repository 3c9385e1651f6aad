"""Web service configuration"""

import os
from pathlib import Path

# Paths
WEB_DIR = Path(__file__).parent

# Project root (parent of web/)
PROJECT_ROOT = WEB_DIR.parent

# Config directory - COMPLETARR_CONFIG_DIR if set, /config in Docker, project root otherwise
# Docker containers have /.dockerenv or /run/.containerenv
IS_DOCKER = os.path.exists("/.dockerenv") or os.path.exists("/run/.containerenv")
_ENV_CONFIG_DIR = os.environ.get("COMPLETARR_CONFIG_DIR")
if _ENV_CONFIG_DIR:
    CONFIG_DIR = Path(_ENV_CONFIG_DIR)
else:
    CONFIG_DIR = Path("/config") if IS_DOCKER else PROJECT_ROOT

SETTINGS_FILE = CONFIG_DIR / "completarr_settings.json"
LOGS_DIR = CONFIG_DIR / "logs"
DATA_DIR = CONFIG_DIR / "data"
STATUS_FILE = DATA_DIR / "run_status.json"
RUN_LOCK_FILE = DATA_DIR / "run.lock"

# Server defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5055

# Docker image tag - reported by the health endpoint when not "latest"
IMAGE_TAG = os.environ.get("IMAGE_TAG", "latest")
