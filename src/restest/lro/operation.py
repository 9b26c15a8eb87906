"""Long-running operation lifecycle: trigger, poll, materialize, snapshot."""

from __future__ import annotations

import json
import logging as py_logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from restest.envelope import Envelope, ModelCodec
from restest.errors import (
    DecodeError,
    OperationCancelledError,
    OperationTimeoutError,
    RemoteOperationError,
    RestestError,
    RetryTimeoutError,
    TransportError,
    TypeMismatchError,
)
from restest.lro.materialize import unpack_result
from restest.lro.models import GetOperationRequest, OperationPayload, OperationState, Status
from restest.messages import Message, MessageRegistry
from restest.retry import DEFAULT_POLICY, RecoverableError, RetryPolicy, run_with_retry

Req = TypeVar("Req", bound=Message)
Resp = TypeVar("Resp", bound=Message)

DEFAULT_AWAIT_TIMEOUT_SECONDS = 600.0

RawPayload = OperationPayload | Mapping[str, Any]
TriggerCall = Callable[[Req], RawPayload]
GetCall = Callable[[GetOperationRequest], RawPayload]

logger = py_logging.getLogger(__name__)


def _coerce_payload(raw: object) -> OperationPayload:
    if isinstance(raw, OperationPayload):
        return raw
    try:
        return OperationPayload.model_validate(raw)
    except ValidationError as exc:
        raise DecodeError("Operation payload could not be parsed.", hint=str(exc)) from exc


def _remote_error(status: Status) -> RemoteOperationError:
    return RemoteOperationError(status.message, remote_code=status.code)


def _error_to_dict(error: RestestError | None) -> dict[str, object] | None:
    if error is None:
        return None
    code: int | None = None
    if isinstance(error, RemoteOperationError):
        code = error.remote_code
    elif isinstance(error, TransportError):
        code = error.status_code
    return {"kind": error.kind, "code": code, "message": error.message, "hint": error.hint}


def _error_from_dict(raw: object) -> RestestError | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise DecodeError("Operation snapshot error must be an object or null.")
    kind = str(raw.get("kind", "unknown"))
    message = str(raw.get("message", ""))
    hint = str(raw.get("hint") or "")
    code = raw.get("code")
    if kind == "remote":
        return RemoteOperationError(message, hint=hint, remote_code=code if isinstance(code, int) else 0)
    if kind == "transport":
        return TransportError(message, hint=hint, status_code=code if isinstance(code, int) else None)
    if kind == "type_mismatch":
        return TypeMismatchError(message, hint=hint)
    if kind == "decode":
        return DecodeError(message, hint=hint)
    return RestestError(message, hint=hint)


class LongRunningOperation(Generic[Req, Resp]):
    """Drives one remote operation from trigger to a terminal outcome.

    Not thread-safe: one caller advances an operation at a time. Poll several
    operations by giving each its own ``await_completion`` driver.
    """

    def __init__(
        self,
        trigger: TriggerCall[Req],
        get: GetCall,
        request: Req,
        response_type: type[Resp],
        *,
        registry: MessageRegistry | None = None,
    ) -> None:
        self._trigger = trigger
        self._get = get
        self._request = request
        self._request_codec: ModelCodec[Req] = ModelCodec(type(request))
        self._response_type = response_type
        self._response_codec: ModelCodec[Resp] = ModelCodec(response_type)
        self._registry = registry
        self._name = ""
        self._done = False
        self._error: RestestError | None = None
        self._response: Resp | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def done(self) -> bool:
        return self._done or self._error is not None

    @property
    def error(self) -> RestestError | None:
        return self._error

    @property
    def request(self) -> Req:
        return self._request

    @property
    def response(self) -> Resp | None:
        return self._response

    @property
    def state(self) -> OperationState:
        if self._error is not None:
            return OperationState.FAILED
        if self._done:
            return OperationState.SUCCEEDED
        if self._name:
            return OperationState.IN_PROGRESS
        return OperationState.UNINITIATED

    def _fail(self, error: RestestError) -> RestestError:
        self._error = error
        logger.error("Operation failed name=%s kind=%s: %s", self._name or "<untriggered>", error.kind, error)
        return error

    def _call_remote(self) -> OperationPayload:
        try:
            if not self._name:
                logger.debug("Triggering operation request=%s", type(self._request).__name__)
                raw = self._trigger(self._request)
            else:
                logger.debug("Polling operation name=%s", self._name)
                raw = self._get(GetOperationRequest(name=self._name))
        except OperationCancelledError:
            raise
        except RestestError as exc:
            raise self._fail(exc)
        except Exception as exc:
            raise self._fail(TransportError(f"Operation call failed: {exc}")) from exc
        try:
            return _coerce_payload(raw)
        except DecodeError as exc:
            raise self._fail(exc)

    def _adopt_name(self, payload: OperationPayload) -> None:
        if not self._name:
            if not payload.name and not payload.done:
                raise self._fail(DecodeError("Running operation was reported without a name."))
            self._name = payload.name
            logger.debug("Operation started name=%s", self._name)
        elif payload.name and payload.name != self._name:
            logger.warning("Ignoring operation name change current=%s reported=%s", self._name, payload.name)

    def advance(self, cancel_event: threading.Event | None = None) -> bool:
        """Make at most one remote call and report whether the operation is terminal.

        Returns ``False`` while the remote side is still working and ``True`` once
        a response is available. A terminal failure is recorded on the
        operation and raised, now and on every later call. Cancellation raises
        ``OperationCancelledError`` and leaves the operation as it was.
        """
        if self._error is not None:
            raise self._error
        if self._done:
            return True
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(
                f"Operation {self._name or '<untriggered>'} cancelled before the remote call.",
            )

        payload = self._call_remote()
        self._adopt_name(payload)
        if not payload.done:
            return False

        if payload.error is not None:
            self._done = True
            raise self._fail(_remote_error(payload.error))
        if payload.response is None:
            self._done = True
            raise self._fail(DecodeError(f"Operation {self._name} finished without a response."))
        try:
            response = unpack_result(payload.response, self._response_type, self._registry)
        except (TypeMismatchError, DecodeError) as exc:
            self._done = True
            raise self._fail(exc)

        self._response = response
        self._done = True
        logger.debug("Operation completed name=%s response=%s", self._name, type(response).__name__)
        return True

    def await_completion(
        self,
        timeout: float | None = None,
        *,
        policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        cancel_event: threading.Event | None = None,
    ) -> Resp:
        """Poll until terminal and return the response.

        Raises the recorded terminal error on failure, or ``OperationTimeoutError``
        when ``timeout`` passes first. A timeout leaves the operation untouched,
        so calling again resumes polling.
        """

        def attempt() -> None:
            if not self.advance(cancel_event):
                raise RecoverableError(f"operation {self._name} still in progress")

        limit = DEFAULT_AWAIT_TIMEOUT_SECONDS if timeout is None else timeout
        try:
            run_with_retry(attempt, timeout=limit, policy=policy, sleep=sleep, clock=clock, cancel_event=cancel_event)
        except RetryTimeoutError as exc:
            raise OperationTimeoutError(
                f"Timed out while waiting for operation {self._name or '<untriggered>'}.",
                hint="The operation is still running; call await_completion again to resume.",
                attempts=exc.attempts,
            ) from exc

        if self._response is None:
            raise DecodeError(f"Operation {self._name} finished without a response.")
        return self._response

    def to_dict(self) -> dict[str, object]:
        request = Envelope.wrap(self._request, self._request_codec)
        response = Envelope.wrap(self._response, self._response_codec)
        return {
            "name": self._name,
            "done": self.done,
            "error": _error_to_dict(self._error),
            "request": request.to_dict() if request is not None else None,
            "response": response.to_dict() if response is not None else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=True, separators=(",", ":"))

    @classmethod
    def from_dict(
        cls,
        raw: object,
        *,
        trigger: TriggerCall[Req],
        get: GetCall,
        request_type: type[Req],
        response_type: type[Resp],
        registry: MessageRegistry | None = None,
    ) -> LongRunningOperation[Req, Resp]:
        if not isinstance(raw, dict):
            raise DecodeError("Operation snapshot must be a JSON object.")
        name = raw.get("name", "")
        done = raw.get("done", False)
        if not isinstance(name, str) or not isinstance(done, bool):
            raise DecodeError("Operation snapshot has invalid name or done fields.")
        if raw.get("request") is None:
            raise DecodeError("Operation snapshot is missing its request.")

        request = Envelope.from_dict(raw["request"], ModelCodec(request_type)).message
        operation = cls(trigger, get, request, response_type, registry=registry)
        operation._name = name
        operation._error = _error_from_dict(raw.get("error"))
        if raw.get("response") is not None:
            operation._response = Envelope.from_dict(raw["response"], operation._response_codec).message
        operation._done = done and operation._error is None
        if operation._done and operation._response is None:
            raise DecodeError("Completed operation snapshot has neither response nor error.")
        if operation._error is not None and operation._response is not None:
            raise DecodeError("Operation snapshot has both response and error.")
        if not done and operation._response is not None:
            raise DecodeError("Running operation snapshot carries a response.")
        return operation

    @classmethod
    def from_json(
        cls,
        data: str | bytes,
        *,
        trigger: TriggerCall[Req],
        get: GetCall,
        request_type: type[Req],
        response_type: type[Resp],
        registry: MessageRegistry | None = None,
    ) -> LongRunningOperation[Req, Resp]:
        try:
            raw = json.loads(data)
        except json.JSONDecodeError as exc:
            raise DecodeError("Operation snapshot is not valid JSON.", hint=str(exc)) from exc
        return cls.from_dict(
            raw,
            trigger=trigger,
            get=get,
            request_type=request_type,
            response_type=response_type,
            registry=registry,
        )

    def __repr__(self) -> str:
        return f"LongRunningOperation(name={self._name!r}, state={self.state.value})"


def wait_for_operation(
    name: str,
    get: GetCall,
    response_type: type[Resp],
    *,
    timeout: float = DEFAULT_AWAIT_TIMEOUT_SECONDS,
    registry: MessageRegistry | None = None,
    policy: RetryPolicy = DEFAULT_POLICY,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    cancel_event: threading.Event | None = None,
) -> Resp:
    """Poll an already running operation by name and return its result.

    Unlike ``LongRunningOperation.advance`` this treats transport failures as
    transient and keeps polling until ``timeout``.
    """

    def attempt() -> OperationPayload:
        try:
            payload = _coerce_payload(get(GetOperationRequest(name=name)))
        except TransportError as exc:
            raise RecoverableError(str(exc)) from exc
        if not payload.done:
            raise RecoverableError(f"operation {name} not done yet")
        return payload

    try:
        payload = run_with_retry(attempt, timeout=timeout, policy=policy, sleep=sleep, clock=clock, cancel_event=cancel_event)
    except RetryTimeoutError as exc:
        raise OperationTimeoutError(
            f"Timed out while waiting for operation {name}.",
            hint=exc.hint,
            attempts=exc.attempts,
        ) from exc

    if payload.error is not None:
        raise _remote_error(payload.error)
    if payload.response is None:
        raise DecodeError(f"Operation {name} finished without a response.")
    return unpack_result(payload.response, response_type, registry)
