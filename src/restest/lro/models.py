"""Wire models for remote operations."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from restest.messages import AnyMessage


class OperationState(str, Enum):
    UNINITIATED = "uninitiated"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (OperationState.SUCCEEDED, OperationState.FAILED)


class Status(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: int = 0
    message: str = ""
    details: list[dict[str, Any]] = Field(default_factory=list)


class OperationPayload(BaseModel):
    """Operation as reported by the trigger and get endpoints."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    done: bool = False
    error: Status | None = None
    response: AnyMessage | None = None
    metadata: AnyMessage | None = None


class GetOperationRequest(BaseModel):
    name: str
