"""Business logic services"""

from web.services.operation_runner import OperationRunner, OperationState, get_operation_runner
from web.services.scheduler_service import SchedulerService, get_scheduler_service

__all__ = [
    "OperationRunner",
    "OperationState",
    "get_operation_runner",
    "SchedulerService",
    "get_scheduler_service",
]
