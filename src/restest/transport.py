"""HTTP transport adapter used by trigger/get implementations."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from restest.errors import DecodeError, OperationCancelledError, TransportError
from restest.lro.models import GetOperationRequest, OperationPayload
from restest.messages import Message

B = TypeVar("B", bound=BaseModel)

DEFAULT_TIMEOUT_SECONDS = 30.0
JSON_CONTENT_TYPE = "application/json"

logger = py_logging.getLogger(__name__)


def merge_headers(
    primary: Mapping[str, str] | None,
    add_on: Mapping[str, str] | None,
) -> dict[str, str] | None:
    """Join two header maps; keys already in ``primary`` win regardless of case."""
    if primary is None and add_on is None:
        return None
    result = dict(primary or {})
    existing = {key.lower() for key in result}
    for key, value in (add_on or {}).items():
        if key.lower() in existing:
            continue
        result[key] = value
    return result


class HttpTransport:
    """Explicitly owned HTTP client; connection pooling lives as long as this object."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        base_url: str = "",
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})

    def __enter__(self) -> HttpTransport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def resolve_url(self, url: str) -> str:
        if not self.base_url or url.startswith(("http://", "https://")):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"
    @contextmanager
    def stream(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[tuple[int, httpx.Response]]:
        """Yield the status and an unread response; the caller consumes the body."""
        target = self.resolve_url(url)
        _raise_if_cancelled(cancel_event, method, target)
        merged = merge_headers(headers, self.headers) or {}
        logger.debug("HTTP %s %s", method, target)
        try:
            with self._client.stream(method, target, content=body, headers=merged) as response:
                # 1xx and 2xx are success; everything from 300 up is a failure
                if response.status_code >= 300:
                    payload = _read_body(response, cancel_event, method, target).decode("utf-8", errors="replace")
                    logger.debug("HTTP %s %s failed status=%s", method, target, response.status_code)
                    raise TransportError(
                        f"{method} {target} failed",
                        status_code=response.status_code,
                        body=payload,
                    )
                yield response.status_code, response
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {target} failed: {exc}", hint="Check connectivity to the service.") from exc

    def request(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> tuple[int, bytes]:
        with self.stream(method, url, body=body, headers=headers, cancel_event=cancel_event) as (status, response):
            return status, _read_body(response, cancel_event, method, self.resolve_url(url))

    def send_message(
        self,
        method: str,
        url: str,
        request: BaseModel | None,
        response_type: type[B] | None,
        *,
        headers: Mapping[str, str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> tuple[int, B | None]:
        """Exchange JSON-encoded schema messages.

        ``request=None`` sends no body; ``response_type=None`` ignores the
        response body.
        """
        body: bytes | None = None
        if request is not None:
            body = request.model_dump_json(by_alias=True).encode("utf-8")
            headers = merge_headers(headers, {"Content-Type": JSON_CONTENT_TYPE})

        status, content = self.request(method, url, body=body, headers=headers, cancel_event=cancel_event)
        if response_type is None:
            return status, None
        try:
            return status, response_type.model_validate_json(content)
        except ValidationError as exc:
            raise DecodeError(f"Response from {url} is not a valid {response_type.__name__}.", hint=str(exc)) from exc


def _raise_if_cancelled(cancel_event: threading.Event | None, method: str, target: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(f"{method} {target} cancelled.")


def _read_body(
    response: httpx.Response,
    cancel_event: threading.Event | None,
    method: str,
    target: str,
) -> bytes:
    chunks: list[bytes] = []
    for chunk in response.iter_bytes():
        # leaving the stream context closes the connection mid-body
        _raise_if_cancelled(cancel_event, method, target)
        chunks.append(chunk)
    _raise_if_cancelled(cancel_event, method, target)
    return b"".join(chunks)


class HttpOperationsClient:
    """Trigger/get callables for ``LongRunningOperation`` backed by HTTP.

    ``cancel_event`` is handed to every HTTP call so that setting it aborts a
    call in flight; pass the same event to ``await_completion``.
    """

    def __init__(
        self,
        transport: HttpTransport,
        *,
        trigger_path: str,
        operations_path: str = "operations",
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.transport = transport
        self.trigger_path = trigger_path
        self.operations_path = operations_path.strip("/")
        self.cancel_event = cancel_event

    def _exchange(self, method: str, url: str, request: Message | None) -> OperationPayload:
        _, payload = self.transport.send_message(method, url, request, OperationPayload, cancel_event=self.cancel_event)
        if payload is None:
            raise DecodeError(f"{method} {url} returned no operation payload.")
        return payload

    def trigger(self, request: Message) -> OperationPayload:
        return self._exchange("POST", self.trigger_path, request)

    def get(self, request: GetOperationRequest) -> OperationPayload:
        name = quote(request.name, safe="/")
        url = f"{self.operations_path}/{name}" if self.operations_path else name
        return self._exchange("GET", url, None)
