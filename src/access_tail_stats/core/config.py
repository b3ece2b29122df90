"""Service configuration loaded from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .hosts import DEFAULT_MAX_HOST_LABELS
from .store import DEFAULT_REDIS_URL
from .time_window import parse_iso_dt

# field name -> environment variable
ENV_VARS: dict[str, str] = {
    "log_file": "TAIL_LOG_FILE",
    "start_time": "TAIL_START_TIME",
    "tail_off": "TAIL_OFF",
    "print_entries": "TAIL_PRINT_ENTRIES",
    "allowed_hosts": "TAIL_ALLOWED_HOSTS",
    "max_host_labels": "TAIL_MAX_HOST_LABELS",
    "redis_url": "REDIS_URL",
}


class ConfigError(ValueError):
    """Invalid environment configuration."""


def default_log_file() -> Path:
    return Path.cwd() / "tmp" / "access.log"


class TailConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    log_file: Path = Field(default_factory=default_log_file)
    start_time: datetime | None = Field(
        default=None, description="Replay entries with timestamp >= this before tailing."
    )
    tail_off: bool = Field(default=False, description="Stop after the replay pass.")
    print_entries: bool = Field(default=False, description="Echo every processed record.")
    allowed_hosts: frozenset[str] | None = Field(
        default=None, description="Exact hostnames to track; others count as unknown."
    )
    max_host_labels: int = Field(default=DEFAULT_MAX_HOST_LABELS, ge=1)
    redis_url: str = DEFAULT_REDIS_URL

    @field_validator("start_time", mode="before")
    @classmethod
    def _parse_start_time(cls, v: object) -> object:
        if isinstance(v, str):
            return parse_iso_dt(v)
        return v

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _split_hosts(cls, v: object) -> object:
        if isinstance(v, str):
            hosts = [h.strip().lower() for h in v.split(",")]
            return frozenset(h for h in hosts if h) or None
        return v


def load_config(environ: Mapping[str, str] | None = None) -> TailConfig:
    """Build a TailConfig from environment variables (empty means unset)."""
    env = os.environ if environ is None else environ
    raw = {
        name: env[var]
        for name, var in ENV_VARS.items()
        if env.get(var, "").strip() != ""
    }
    try:
        return TailConfig(**raw)
    except ValidationError as exc:
        err = exc.errors()[0]
        name = str(err["loc"][0]) if err.get("loc") else ""
        var = ENV_VARS.get(name, name)
        value = raw.get(name)
        raise ConfigError(f'Invalid {var} value: "{value}" ({err["msg"]})') from exc
