"""Long-running operation domain package."""

from .materialize import unpack_result
from .models import GetOperationRequest, OperationPayload, OperationState, Status
from .operation import DEFAULT_AWAIT_TIMEOUT_SECONDS, LongRunningOperation, wait_for_operation

__all__ = [
    "DEFAULT_AWAIT_TIMEOUT_SECONDS",
    "GetOperationRequest",
    "LongRunningOperation",
    "OperationPayload",
    "OperationState",
    "Status",
    "unpack_result",
    "wait_for_operation",
]
