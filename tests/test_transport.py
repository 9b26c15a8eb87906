from __future__ import annotations

import io
import json
import threading

import httpx
import pytest

from restest.echo import EchoRequest, EchoResponse, echo, run_workflow
from restest.errors import DecodeError, OperationCancelledError, TransportError
from restest.lro import GetOperationRequest
from restest.transport import HttpOperationsClient, HttpTransport, merge_headers


def _transport(handler, **kwargs) -> HttpTransport:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpTransport(client, base_url="http://localhost:8081", **kwargs)


def test_merge_headers_prefers_primary_case_insensitively() -> None:
    merged = merge_headers({"content-type": "text/plain"}, {"Content-Type": "application/json", "X-Trace": "1"})

    assert merged == {"content-type": "text/plain", "X-Trace": "1"}


def test_merge_headers_handles_missing_maps() -> None:
    assert merge_headers(None, None) is None
    assert merge_headers(None, {"A": "1"}) == {"A": "1"}
    assert merge_headers({"A": "1"}, None) == {"A": "1"}


def test_send_message_posts_json_and_decodes_response() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = json.loads(request.content)
        return httpx.Response(200, json={"msg": body["msg"].upper(), "ignored": True})

    transport = _transport(handler, headers={"Authorization": "Bearer t"})
    status, response = transport.send_message("POST", "/api/service/echo", EchoRequest(msg="hi"), EchoResponse)

    assert status == 200
    assert response == EchoResponse(msg="HI")
    assert str(seen[0].url) == "http://localhost:8081/api/service/echo"
    assert seen[0].headers["content-type"] == "application/json"
    assert seen[0].headers["authorization"] == "Bearer t"


def test_caller_content_type_is_kept() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    transport = _transport(handler)
    status, response = transport.send_message(
        "PUT", "/items", EchoRequest(msg="x"), None, headers={"content-type": "application/merge-patch+json"}
    )

    assert status == 204
    assert response is None
    assert seen[0].headers["content-type"] == "application/merge-patch+json"


def test_status_above_299_raises_with_body() -> None:
    transport = _transport(lambda request: httpx.Response(404, text="no such operation"))

    with pytest.raises(TransportError) as exc:
        transport.request("GET", "/operations/missing")

    assert exc.value.status_code == 404
    assert exc.value.body == "no such operation"


def test_network_failure_becomes_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as exc:
        _transport(handler).request("GET", "/operations/op-1")

    assert exc.value.status_code is None
    assert isinstance(exc.value.__cause__, httpx.ConnectError)


def test_stream_leaves_body_to_caller() -> None:
    transport = _transport(lambda request: httpx.Response(200, content=b"chunk-1chunk-2"))

    with transport.stream("GET", "/download") as (status, response):
        data = b"".join(response.iter_bytes())

    assert status == 200
    assert data == b"chunk-1chunk-2"


def test_invalid_response_body_is_decode_error() -> None:
    transport = _transport(lambda request: httpx.Response(200, text="not json"))

    with pytest.raises(DecodeError):
        transport.send_message("GET", "/echo", None, EchoResponse)


def test_owned_client_is_closed_but_injected_client_is_not() -> None:
    injected = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    with HttpTransport(injected):
        pass
    assert injected.is_closed is False

    owned = HttpTransport()
    owned.close()
    assert owned._client.is_closed is True


def test_absolute_urls_bypass_base_url() -> None:
    transport = HttpTransport(base_url="http://localhost:8081/")

    assert transport.resolve_url("https://other.example/x") == "https://other.example/x"
    assert transport.resolve_url("operations/op-1") == "http://localhost:8081/operations/op-1"
    transport.close()


def test_operations_client_routes_trigger_and_get() -> None:
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.method == "POST":
            return httpx.Response(200, json={"name": "operations/op-1", "done": False})
        return httpx.Response(200, json={"name": "operations/op-1", "done": False, "metadata": None})

    client = HttpOperationsClient(_transport(handler), trigger_path="/api/echo:start", operations_path="/v1")

    assert client.trigger(EchoRequest(msg="ping")).name == "operations/op-1"
    assert client.get(GetOperationRequest(name="operations/op-1")).done is False
    assert seen == [("POST", "/api/echo:start"), ("GET", "/v1/operations/op-1")]


def test_echo_round_trip() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"msg": json.loads(request.content)["msg"]})

    assert echo(_transport(handler), "/api/service/echo", "Hello World") == EchoResponse(msg="Hello World")


def test_cancelled_request_is_never_sent() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"msg": "pong"})

    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelledError):
        _transport(handler).send_message("POST", "/echo", EchoRequest(msg="ping"), EchoResponse, cancel_event=cancel)

    assert seen == []


def test_cancel_while_reading_body_aborts_request() -> None:
    cancel = threading.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        cancel.set()
        return httpx.Response(200, content=b"partial")

    with pytest.raises(OperationCancelledError):
        _transport(handler).request("GET", "/download", cancel_event=cancel)


def test_echo_workflow_logs_the_exchange(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("RESTEST_BASE_URL", raising=False)
    monkeypatch.delenv("RESTEST_TOKEN", raising=False)
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"msg": json.loads(request.content)["msg"]})

    stream = io.StringIO()
    response = run_workflow(
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        config_path=tmp_path / "missing.toml",
        stream=stream,
    )

    assert response == EchoResponse(msg="Hello World")
    assert seen == ["http://localhost:8081/api/service/echo"]
    output = stream.getvalue()
    assert "http://localhost:8081/api/service/echo" in output
    assert '--> {\n "msg": "Hello World"\n}' in output


def test_echo_workflow_follows_configured_logging(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("RESTEST_BASE_URL", raising=False)
    log_file = tmp_path / "logs" / "echo.log"
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        f'base_url = "http://echo.internal:9000"\nlog_level = "warn"\nlog_file = "{log_file.as_posix()}"\n',
        encoding="utf-8",
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"msg": "hi"})

    stream = io.StringIO()
    run_workflow("hi", client=httpx.Client(transport=httpx.MockTransport(handler)), config_path=config_path, stream=stream)

    assert stream.getvalue() == ""
    assert "http://echo.internal:9000/api/service/echo" in log_file.read_text(encoding="utf-8")
