import os
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class ConfigError(ValueError):
    """Startup configuration is missing or invalid."""


ENV_NAMES = {
    "primary": "RPCs",
    "fallback": "FALLBACK_RPCs",
    "port": "PORT",
    "ttl_minutes": "ERROR_TIME_TO_LIVE_MINUTES",
    "slack_webhook_url": "SLACK_WEBHOOK_URL",
    "host": "HOST",
    "upstream_timeout": "UPSTREAM_TIMEOUT_SECONDS",
    "cache_size": "EXCLUSION_CACHE_SIZE",
    "log_level": "LOG_LEVEL",
}


def split_urls(raw: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


def _check_http_url(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"{value!r} is not an http(s) URL")
    return value


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: Tuple[str, ...]
    fallback: Tuple[str, ...]
    port: int = Field(ge=1, le=65535)
    ttl_minutes: float = Field(gt=0)
    slack_webhook_url: str
    host: str = "0.0.0.0"
    upstream_timeout: float = Field(default=30.0, gt=0)
    cache_size: int = Field(default=10, ge=1)
    log_level: str = "INFO"

    @field_validator("primary", "fallback", mode="before")
    @classmethod
    def _parse_urls(cls, value):
        if isinstance(value, str):
            value = split_urls(value)
        if not value:
            raise ValueError("at least one endpoint is required")
        return tuple(_check_http_url(url) for url in value)

    @field_validator("slack_webhook_url")
    @classmethod
    def _check_webhook(cls, value: str) -> str:
        return _check_http_url(value.strip())

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in LOG_LEVELS:
            raise ValueError(f"{value!r} is not one of " + ", ".join(LOG_LEVELS))
        return value

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_minutes * 60


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    env_file: str = ".env",
) -> Settings:
    """
    Build Settings from a ``.env`` file and the process environment.

    The ``.env`` file is only consulted when ``ENV`` is not ``production``;
    process environment values take precedence over it.
    """
    if environ is None:
        environ = os.environ

    values: Dict[str, str] = {}

    if environ.get("ENV") != "production" and env_file and os.path.exists(env_file):
        for name, value in dotenv_values(dotenv_path=env_file).items():
            if value is not None:
                values[name] = value

    for name in ENV_NAMES.values():
        value = environ.get(name)
        if value:
            values[name] = value

    fields = {
        field: values[name] for field, name in ENV_NAMES.items() if values.get(name)
    }

    try:
        return Settings(**fields)
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            field = str(err["loc"][0]) if err["loc"] else ""
            problems.append(f"{ENV_NAMES.get(field, field)}: {err['msg']}")
        raise ConfigError("invalid configuration: " + "; ".join(problems)) from exc
