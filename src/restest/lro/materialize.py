"""Decode type-tagged operation results into the expected message type."""

from __future__ import annotations

from typing import TypeVar

from pydantic import ValidationError

from restest.errors import DecodeError, TypeMismatchError
from restest.messages import AnyMessage, Message, MessageRegistry, default_registry, type_name_from_url

Resp = TypeVar("Resp", bound=Message)


def unpack_result(
    payload: AnyMessage,
    expected: type[Resp],
    registry: MessageRegistry | None = None,
) -> Resp:
    types = registry or default_registry
    tag = type_name_from_url(payload.type_url)
    if not tag:
        raise DecodeError("Operation result carries no type tag.", hint="Expected an '@type' field.")
    resolved = types.resolve(payload.type_url)
    if resolved is None and tag in (expected.full_name(), expected.__name__):
        resolved = expected
    if resolved is None:
        raise TypeMismatchError(
            f"Unexpected response message of different type received: {tag}.",
            hint=f"Known types: {', '.join(types.names()) or 'none'}",
            expected=expected.full_name(),
            actual=tag,
        )
    if not issubclass(resolved, expected):
        raise TypeMismatchError(
            f"Unexpected response message of different type received: {resolved.full_name()}.",
            expected=expected.full_name(),
            actual=resolved.full_name(),
        )
    try:
        value = resolved.model_validate(payload.fields)
    except ValidationError as exc:
        raise DecodeError(f"Malformed {resolved.full_name()} payload.", hint=str(exc)) from exc
    if not isinstance(value, expected):
        raise TypeMismatchError(
            f"Decoded value is not a {expected.full_name()}.",
            expected=expected.full_name(),
            actual=type(value).__name__,
        )
    return value
