from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Union

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import CurrencyCode, SubscriptionStatus


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, "") or default
    return [s for s in re.split(r"[,\s]+", raw.strip()) if s]


def _default_config_from_env() -> dict:
    """
    Env-only config so most callers only need `.env`; a YAML file remains an optional override.
    """
    return {
        "reporting": {
            "target_currency": os.getenv("TARGET_CURRENCY", "CNY"),
            "pivot_currency": os.getenv("PIVOT_CURRENCY", "CNY"),
            "included_statuses": _env_list("INCLUDED_STATUSES", "active"),
            "months_window": os.getenv("MONTHS_WINDOW", "4"),
            "quarters_window": os.getenv("QUARTERS_WINDOW", "4"),
            "years_window": os.getenv("YEARS_WINDOW", "3"),
        },
        "grouping": {
            "stale_after_years": os.getenv("STALE_AFTER_YEARS", "10"),
        },
        "cache": {
            "ttl_seconds": os.getenv("SNAPSHOT_CACHE_TTL_SECONDS", "300"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", ""),
        },
    }


class ReportingConfig(BaseModel):
    target_currency: CurrencyCode = "CNY"
    # Reference currency for cross rates when a table has no direct pair.
    pivot_currency: CurrencyCode = "CNY"
    included_statuses: list[SubscriptionStatus] = Field(default_factory=lambda: [SubscriptionStatus.ACTIVE])
    months_window: int = Field(default=4, ge=1)
    quarters_window: int = Field(default=4, ge=1)
    years_window: int = Field(default=3, ge=1)

    @field_validator("included_statuses")
    @classmethod
    def _non_empty(cls, v: list[SubscriptionStatus]) -> list[SubscriptionStatus]:
        if not v:
            raise ValueError("reporting.included_statuses must name at least one status")
        return v


class GroupingConfig(BaseModel):
    stale_after_years: int = Field(default=10, ge=1)


class CacheConfig(BaseModel):
    ttl_seconds: float = Field(default=300.0, ge=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = ""


class AppConfig(BaseModel):
    reporting: ReportingConfig = ReportingConfig()
    grouping: GroupingConfig = GroupingConfig()
    cache: CacheConfig = CacheConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
