"""Echo service schema and a single round trip over HTTP."""

from __future__ import annotations

import logging as py_logging
from pathlib import Path
from typing import ClassVar, TextIO

import httpx

from restest.config import load_config
from restest.logging import configure_logging
from restest.messages import Message, pretty_format, register_message
from restest.transport import HttpTransport

DEFAULT_SERVICE_HOST = "http://localhost:8081"
ECHO_PATH = "/api/service/echo"

logger = py_logging.getLogger(__name__)


@register_message
class EchoRequest(Message):
    type_name: ClassVar[str] = "echo.EchoRequest"

    msg: str = ""


@register_message
class EchoResponse(Message):
    type_name: ClassVar[str] = "echo.EchoResponse"

    msg: str = ""


def echo(transport: HttpTransport, url: str, msg: str) -> EchoResponse:
    request = EchoRequest(msg=msg)
    _, response = transport.send_message("POST", url, request, EchoResponse)
    logger.info("%s\n--> %s\n<-- %s", transport.resolve_url(url), pretty_format(request), pretty_format(response))
    return response


def run_workflow(
    msg: str = "Hello World",
    *,
    client: httpx.Client | None = None,
    config_path: str | Path | None = None,
    stream: TextIO | None = None,
) -> EchoResponse:
    """Send one echo request to the configured service, logging the exchange."""
    config = load_config(config_path)
    configure_logging(config.log_level, stream, log_file=config.log_file or None)
    if not config.base_url:
        config.base_url = DEFAULT_SERVICE_HOST
    with config.build_transport(client) as transport:
        return echo(transport, ECHO_PATH, msg)


if __name__ == "__main__":
    run_workflow()
