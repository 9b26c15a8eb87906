"""Schema-aware message base, type-tag registry and opaque payloads."""

from __future__ import annotations

import json
from typing import Any, ClassVar, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

TYPE_URL_PREFIX = "type.restest.dev/"
TYPE_TAG_FIELD = "@type"

M = TypeVar("M", bound="Message")


class Message(BaseModel):
    """Base class for request/response schemas exchanged with the remote side."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type_name: ClassVar[str] = ""

    @classmethod
    def full_name(cls) -> str:
        return cls.type_name or cls.__name__

    @classmethod
    def type_url(cls) -> str:
        return f"{TYPE_URL_PREFIX}{cls.full_name()}"


def type_name_from_url(type_url: str) -> str:
    return type_url.rsplit("/", 1)[-1].strip()


class MessageRegistry:
    def __init__(self) -> None:
        self._types: dict[str, type[Message]] = {}

    def register(self, message_type: type[M]) -> type[M]:
        name = message_type.full_name()
        existing = self._types.get(name)
        if existing is not None and existing is not message_type:
            raise ValueError(f"Message type already registered: {name}")
        self._types[name] = message_type
        return message_type

    def resolve(self, type_url: str) -> type[Message] | None:
        name = type_name_from_url(type_url)
        found = self._types.get(name)
        if found is not None:
            return found
        # bare class names resolve only when exactly one schema carries them
        matches = [message_type for message_type in self._types.values() if message_type.__name__ == name]
        if len(matches) == 1:
            return matches[0]
        return None

    def names(self) -> list[str]:
        return sorted(self._types)

    def __contains__(self, type_url: object) -> bool:
        return isinstance(type_url, str) and self.resolve(type_url) is not None


default_registry = MessageRegistry()


def register_message(message_type: type[M]) -> type[M]:
    return default_registry.register(message_type)


class AnyMessage(BaseModel):
    """Type-tagged opaque payload, JSON form ``{"@type": url, ...fields}``."""

    model_config = ConfigDict(populate_by_name=True)

    type_url: str = Field(alias=TYPE_TAG_FIELD)
    fields: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _split_type_tag(cls, value: Any) -> Any:
        if not isinstance(value, dict) or "fields" in value:
            return value
        payload = dict(value)
        type_url = payload.pop(TYPE_TAG_FIELD, payload.pop("type_url", None))
        return {"type_url": type_url, "fields": payload}

    @model_serializer(mode="plain")
    def _join_type_tag(self) -> dict[str, Any]:
        return {TYPE_TAG_FIELD: self.type_url, **self.fields}

    @property
    def type_name(self) -> str:
        return type_name_from_url(self.type_url)


def pack(message: Message) -> AnyMessage:
    return AnyMessage(type_url=type(message).type_url(), fields=message.model_dump(mode="json", by_alias=True))


def pretty_format(message: BaseModel) -> str:
    return json.dumps(message.model_dump(mode="json", by_alias=True), indent=1)
