"""Typed envelopes that carry schema messages through generic JSON documents."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from restest.errors import DecodeError, TypeMismatchError

M = TypeVar("M", bound=BaseModel)


class MessageCodec(Protocol[M]):
    message_type: type[M]

    def encode(self, message: M) -> dict[str, Any]: ...

    def decode(self, data: dict[str, Any]) -> object: ...

    def is_present(self, message: M | None) -> bool: ...


class ModelCodec(Generic[M]):
    """Codec backed by the pydantic schema of ``message_type``."""

    def __init__(self, message_type: type[M]) -> None:
        self.message_type = message_type

    def encode(self, message: M) -> dict[str, Any]:
        return message.model_dump(mode="json", by_alias=True)

    def decode(self, data: dict[str, Any]) -> object:
        return self.message_type.model_validate(data)

    def is_present(self, message: M | None) -> bool:
        return message is not None

    def __repr__(self) -> str:
        return f"ModelCodec({self.message_type.__name__})"


class Envelope(Generic[M]):
    """Owns one message and the codec that knows how to (de)serialize it."""

    __slots__ = ("message", "codec")

    def __init__(self, message: M, codec: MessageCodec[M]) -> None:
        self.message = message
        self.codec = codec

    @classmethod
    def wrap(cls, message: M | None, codec: MessageCodec[M] | None = None) -> Envelope[M] | None:
        if message is None:
            return None
        resolved = codec or ModelCodec(type(message))
        if not resolved.is_present(message):
            return None
        return cls(message, resolved)

    def to_dict(self) -> dict[str, Any]:
        return self.codec.encode(self.message)

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Any, codec: MessageCodec[M]) -> Envelope[M]:
        name = codec.message_type.__name__
        if not isinstance(data, dict):
            raise DecodeError(f"Expected a JSON object for {name}, got {type(data).__name__}.")
        try:
            decoded = codec.decode(data)
        except ValidationError as exc:
            raise DecodeError(f"Invalid {name} document.", hint=str(exc)) from exc
        if not isinstance(decoded, codec.message_type):
            raise TypeMismatchError(
                f"Unexpected message type during decode of {name}: {type(decoded).__name__}.",
                expected=name,
                actual=type(decoded).__name__,
            )
        return cls(decoded, codec)

    @classmethod
    def from_json(cls, data: bytes | str, codec: MessageCodec[M]) -> Envelope[M]:
        try:
            loaded = json.loads(data)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Malformed JSON for {codec.message_type.__name__}.", hint=str(exc)) from exc
        return cls.from_dict(loaded, codec)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Envelope):
            return NotImplemented
        return type(self.message) is type(other.message) and self.message == other.message

    def __hash__(self) -> int:
        return hash((type(self.message), self.to_json()))

    def __repr__(self) -> str:
        return f"Envelope({self.message!r})"


def wrap_all(messages: Iterable[M | None] | None, codec: MessageCodec[M] | None = None) -> list[Envelope[M] | None] | None:
    if messages is None:
        return None
    return [Envelope.wrap(message, codec) for message in messages]
