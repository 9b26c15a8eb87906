"""Deterministic error model for operation polling and transport."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ErrorCode(IntEnum):
    UNKNOWN = 1
    TRANSPORT = 2
    REMOTE = 3
    TYPE_MISMATCH = 4
    DECODE = 5
    TIMEOUT = 6
    CANCELLED = 7
    CONFIG = 8


@dataclass
class RestestError(Exception):
    message: str
    code: ErrorCode = ErrorCode.UNKNOWN
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.detail()} Hint: {self.hint}"
        return self.detail()

    def detail(self) -> str:
        return self.message

    @property
    def kind(self) -> str:
        return self.code.name.lower()


@dataclass
class TransportError(RestestError):
    """Network or HTTP status failure while talking to the remote side."""

    code: ErrorCode = ErrorCode.TRANSPORT
    status_code: int | None = None
    body: str = ""

    def detail(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (status: {self.status_code}, response: {self.body})"


@dataclass
class RemoteOperationError(RestestError):
    """Error embedded by the remote side in a finished operation."""

    code: ErrorCode = ErrorCode.REMOTE
    remote_code: int = 0

    def detail(self) -> str:
        return f"code: {self.remote_code}, message: {self.message}"


@dataclass
class TypeMismatchError(RestestError):
    code: ErrorCode = ErrorCode.TYPE_MISMATCH
    expected: str = ""
    actual: str = ""


@dataclass
class DecodeError(RestestError):
    code: ErrorCode = ErrorCode.DECODE


@dataclass
class OperationTimeoutError(RestestError):
    """Polling deadline passed while the operation was still running."""

    code: ErrorCode = ErrorCode.TIMEOUT
    attempts: int = 0


@dataclass
class RetryTimeoutError(OperationTimeoutError):
    pass


@dataclass
class OperationCancelledError(RestestError):
    code: ErrorCode = ErrorCode.CANCELLED


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, RestestError):
        return user_facing_error(exc.detail(), hint=exc.hint)
    return user_facing_error(str(exc) or type(exc).__name__)


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
