"""CompleteARR Web Service - FastAPI Application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from core import __version__
from web.config import CONFIG_DIR, SETTINGS_FILE
from web.routers import api, operations
from web.services import get_operation_runner, get_scheduler_service


def _suppress_noisy_loggers():
    """Suppress debug spam from third-party libraries"""
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown"""
    # Startup
    _suppress_noisy_loggers()
    print("CompleteARR web service starting...")
    print(f"Config directory: {CONFIG_DIR}")
    if not SETTINGS_FILE.exists():
        print(f"WARNING: settings file not found: {SETTINGS_FILE}")

    # Repair a status record left behind by a process that died mid-run
    get_operation_runner().read_run_status()

    scheduler = get_scheduler_service()
    scheduler.start()

    yield

    # Shutdown
    print("CompleteARR web service shutting down...")
    scheduler.stop()
    runner = get_operation_runner()
    if runner.is_running:
        runner.stop_operation()
        runner.wait(timeout=30)


# Create FastAPI app
app = FastAPI(
    title="CompleteARR",
    description="Keeps Sonarr and Radarr items in the root folder their completeness and quality profile call for",
    version=__version__,
    lifespan=lifespan
)

# Include routers
app.include_router(operations.router, prefix="/operations", tags=["operations"])
app.include_router(api.router, prefix="/api", tags=["api"])
