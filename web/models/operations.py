"""Pydantic models for operations"""

from typing import Optional, Dict, Any
from pydantic import BaseModel


class RunRequestModel(BaseModel):
    """Request to start a reconciliation pass"""
    dry_run: bool = False
    verbose: bool = False


class RunStatusModel(BaseModel):
    """Persisted run status record"""
    status: str = "unknown"
    startedAt: Optional[str] = None
    finishedAt: Optional[str] = None
    nextRun: Optional[str] = None


class OperationResponseModel(BaseModel):
    """Response to run/stop/reset requests"""
    success: bool
    message: str
    status: Dict[str, Any] = {}
