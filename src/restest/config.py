"""Client configuration loaded from TOML with environment overrides."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from restest.logging import LOG_LEVELS
from restest.lro.operation import DEFAULT_AWAIT_TIMEOUT_SECONDS
from restest.retry import RetryPolicy
from restest.transport import DEFAULT_TIMEOUT_SECONDS, HttpTransport

DEFAULT_CONFIG_PATH = Path("~/.config/restest/config.toml").expanduser()
BASE_URL_ENV = "RESTEST_BASE_URL"
TOKEN_ENV = "RESTEST_TOKEN"

_VALID_SCHEMES = ("http://", "https://")


class ClientConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    base_url: str = ""
    token: str = ""
    request_timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    await_timeout_seconds: float = Field(default=DEFAULT_AWAIT_TIMEOUT_SECONDS, gt=0)
    initial_backoff_seconds: float = Field(default=0.05, gt=0)
    max_backoff_seconds: float = Field(default=1.0, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)
    log_level: str = "INFO"
    log_file: str = ""

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, value: str) -> str:
        if value and not value.startswith(_VALID_SCHEMES):
            raise ValueError(f"Invalid base URL: {value}")
        return value.rstrip("/")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_backoff_seconds=self.initial_backoff_seconds,
            max_backoff_seconds=max(self.initial_backoff_seconds, self.max_backoff_seconds),
        )

    def request_headers(self) -> dict[str, str]:
        headers = dict(self.headers)
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def build_transport(self, client: httpx.Client | None = None) -> HttpTransport:
        return HttpTransport(
            client,
            base_url=self.base_url,
            headers=self.request_headers(),
            timeout=self.request_timeout_seconds,
        )


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _positive_float(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value <= 0:
        return None
    return float(value)


def _normalize_headers(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {
        key.strip(): item
        for key, item in value.items()
        if isinstance(key, str) and key.strip() and isinstance(item, str)
    }


def _sanitize(raw: dict[str, object]) -> ClientConfig:
    cfg = ClientConfig()

    base_url = raw.get("base_url", cfg.base_url)
    if isinstance(base_url, str) and (not base_url or base_url.startswith(_VALID_SCHEMES)):
        cfg.base_url = base_url
    env_base_url = os.getenv(BASE_URL_ENV, "").strip()
    if env_base_url.startswith(_VALID_SCHEMES):
        cfg.base_url = env_base_url

    token = raw.get("token", cfg.token)
    if isinstance(token, str):
        cfg.token = token.strip()
    env_token = os.getenv(TOKEN_ENV, "").strip()
    if env_token:
        cfg.token = env_token

    for field_name in (
        "request_timeout_seconds",
        "await_timeout_seconds",
        "initial_backoff_seconds",
        "max_backoff_seconds",
    ):
        value = _positive_float(raw.get(field_name))
        if value is not None:
            setattr(cfg, field_name, value)

    cfg.headers = _normalize_headers(raw.get("headers", {}))

    log_level = raw.get("log_level")
    if isinstance(log_level, str) and log_level.strip().upper() in LOG_LEVELS:
        cfg.log_level = log_level.strip().upper()
    log_file = raw.get("log_file")
    if isinstance(log_file, str):
        cfg.log_file = log_file.strip()
    return cfg


def load_config(path: str | Path | None = None) -> ClientConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    return _sanitize(raw)
