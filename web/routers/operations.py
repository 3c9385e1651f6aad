"""Operation routes - run, stop and reset reconciliation passes"""

from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from core.errors import LockConflict
from web.models.operations import OperationResponseModel, RunRequestModel
from web.services import get_operation_runner

router = APIRouter()


def _respond(success: bool, message: str, status: dict, status_code: int) -> JSONResponse:
    body = OperationResponseModel(success=success, message=message, status=status)
    return JSONResponse(body.model_dump(), status_code=status_code)


@router.post("/run")
def run_operation(request: Optional[RunRequestModel] = None):
    """Trigger a reconciliation pass"""
    request = request or RunRequestModel()
    runner = get_operation_runner()

    success = runner.start_operation(dry_run=request.dry_run, verbose=request.verbose)
    if not success:
        return _respond(False, "A run is already in progress", runner.get_status_dict(), 409)

    mode = "Dry run" if request.dry_run else "Run"
    return _respond(True, f"{mode} started", runner.get_status_dict(), 202)


@router.post("/stop")
def stop_operation():
    """Stop the current pass after the item in progress"""
    runner = get_operation_runner()

    if not runner.stop_operation():
        return _respond(False, "No run is currently in progress", runner.get_status_dict(), 409)
    return _respond(True, "Stop requested - run will stop after the current item", runner.get_status_dict(), 200)


@router.post("/reset")
def reset_operation():
    """Force-reset a stuck run status record and lock"""
    runner = get_operation_runner()

    try:
        status = runner.force_reset()
    except LockConflict as e:
        return _respond(False, str(e), runner.get_status_dict(), 409)
    return _respond(True, "Run status reset", status, 200)


@router.get("/status")
def get_status():
    """Get current operation status"""
    return JSONResponse(get_operation_runner().get_status_dict())
