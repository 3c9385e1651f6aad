"""API routes for monitoring and automation"""

from fastapi import APIRouter

from core import __version__
from web.config import IMAGE_TAG, LOGS_DIR
from web.models.operations import RunStatusModel
from web.services import get_operation_runner, get_scheduler_service
from web.services.stats_service import collect_weekly_stats

router = APIRouter()


# =============================================================================
# Docker API Endpoints
# =============================================================================

@router.get("/health")
async def health_check():
    """
    Health check endpoint for Docker container monitoring.

    Used by Docker HEALTHCHECK and external monitoring tools.
    """
    return {
        "status": "ok",
        "version": __version__,
        "image_tag": IMAGE_TAG,
    }


@router.get("/status", response_model=RunStatusModel)
def run_status():
    """
    Persisted run status.

    A record left "running" by a process that died is reset to idle here
    before it is returned.
    """
    return get_operation_runner().read_run_status()


@router.get("/schedule")
def schedule_status():
    """Scheduler status: interval, next run and last finished run."""
    return get_scheduler_service().get_status()


@router.get("/stats/weekly")
def weekly_stats():
    """Per-library pass summaries from the last week's run logs, newest first."""
    return collect_weekly_stats(LOGS_DIR)
