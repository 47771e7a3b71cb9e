"""Settings for the collections report, validated with pydantic.

Every value can come from a flat environment name (``DB_URL``) or a nested
one (``DB__URL``); the nested name wins when both are set. A local ``.env``
file supplies defaults underneath the process environment.
"""

from __future__ import annotations

import os
import re
from collections import ChainMap
from collections.abc import Mapping
from pathlib import Path
from threading import Lock
from typing import Annotated, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _text(value: object) -> str:
    return "" if value is None else str(value).strip()


def _flag(default: bool):
    def parse(value: object) -> bool:
        if isinstance(value, bool):
            return value
        text = _text(value).lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        return default

    return parse


def _level(value: object) -> str:
    text = _text(value).upper()
    return text if text in _LEVELS else "INFO"


def _lower(default: str):
    def parse(value: object) -> str:
        return _text(value).lower() or default

    return parse


def _optional_text(value: object) -> str | None:
    return _text(value) or None


def _table_name(value: object) -> str | None:
    text = _text(value)
    if not text:
        return None
    if not _IDENTIFIER_RE.match(text):
        raise ValueError(f"not a plain SQL identifier: {text!r}")
    return text


def _threshold_ms(value: object) -> float:
    try:
        return max(0.0, float(_text(value)))
    except ValueError:
        return 1000.0


TableName = Annotated[str | None, BeforeValidator(_table_name)]
OptionalText = Annotated[str | None, BeforeValidator(_optional_text)]


class DatabaseConfig(BaseModel):
    """PostgreSQL source connection settings."""

    model_config = ConfigDict(frozen=True)

    url: str | None = Field(default=None, description="Postgres connection URL")
    pool_maxconn: int = Field(default=4, ge=1, le=100)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class DuckDBSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database: str = Field(default=":memory:")
    threads: int = Field(default=4, ge=1, le=256)


class SourceConfig(BaseModel):
    """Where the four input relations live in the source database."""

    model_config = ConfigDict(frozen=True)

    preset: Annotated[Literal["canonical", "legacy_es"], BeforeValidator(_lower("canonical"))] = "canonical"
    debtors_table: TableName = None
    debts_table: TableName = None
    efforts_table: TableName = None
    payments_table: TableName = None


class ReportConfig(BaseModel):
    """Batch job (runner/CLI) defaults."""

    model_config = ConfigDict(frozen=True)

    engine: Annotated[Literal["memory", "duckdb", "postgres"], BeforeValidator(_lower("duckdb"))] = "duckdb"
    data_dir: Annotated[str, BeforeValidator(_text)] = "data"
    out_dir: OptionalText = None
    export_dir: Annotated[str, BeforeValidator(_text)] = "report_data"
    export_limit: int = Field(default=1000, ge=1)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: Annotated[str, BeforeValidator(_level)] = "INFO"
    json_logs: Annotated[bool, BeforeValidator(_flag(False))] = False
    override_root_handlers: Annotated[bool, BeforeValidator(_flag(False))] = False


class DbMetricsConfig(BaseModel):
    """DB query instrumentation settings. Unparseable values fall back to defaults."""

    model_config = ConfigDict(frozen=True)

    metrics_enabled: Annotated[bool, BeforeValidator(_flag(True))] = True
    slow_query_threshold_ms: Annotated[float, BeforeValidator(_threshold_ms)] = 1000.0


class Settings(BaseModel):
    """Top-level settings model."""

    model_config = ConfigDict(frozen=True)

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    duckdb: DuckDBSettings = Field(default_factory=DuckDBSettings)
    source: SourceConfig = Field(default_factory=SourceConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    db_metrics: DbMetricsConfig = Field(default_factory=DbMetricsConfig)

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Build settings from `.env` then environment variables (process env wins)."""
        layered = ChainMap(dict(os.environ if env is None else env), read_dotenv(Path(env_file)))
        return cls.model_validate(_payload_from_env(layered))


# section -> field -> env names, most specific first
ENV_KEYS: dict[str, dict[str, tuple[str, ...]]] = {
    "db": {
        "url": ("DB__URL", "DB_URL"),
        "pool_maxconn": ("DB__POOL_MAXCONN", "DB_POOL_MAXCONN"),
        "connect_timeout": ("DB__CONNECT_TIMEOUT", "DB_CONNECT_TIMEOUT"),
    },
    "duckdb": {
        "database": ("DUCKDB__DATABASE", "DUCKDB_DATABASE"),
        "threads": ("DUCKDB__THREADS", "DUCKDB_THREADS"),
    },
    "source": {
        "preset": ("SOURCE__PRESET", "SOURCE_PRESET"),
        "debtors_table": ("SOURCE__DEBTORS_TABLE", "DEBTORS_TABLE"),
        "debts_table": ("SOURCE__DEBTS_TABLE", "DEBTS_TABLE"),
        "efforts_table": ("SOURCE__EFFORTS_TABLE", "EFFORTS_TABLE"),
        "payments_table": ("SOURCE__PAYMENTS_TABLE", "PAYMENTS_TABLE"),
    },
    "report": {
        "engine": ("REPORT__ENGINE", "REPORT_ENGINE"),
        "data_dir": ("REPORT__DATA_DIR", "DATA_DIR"),
        "out_dir": ("REPORT__OUT_DIR", "OUT_DIR"),
        "export_dir": ("REPORT__EXPORT_DIR", "EXPORT_DIR"),
        "export_limit": ("REPORT__EXPORT_LIMIT", "EXPORT_LIMIT"),
    },
    "logging": {
        "level": ("LOGGING__LEVEL", "COLLWATCH_LOG_LEVEL"),
        "json_logs": ("LOGGING__JSON_LOGS", "COLLWATCH_LOG_JSON"),
        "override_root_handlers": ("LOGGING__OVERRIDE_ROOT_HANDLERS", "COLLWATCH_LOG_OVERRIDE"),
    },
    "db_metrics": {
        "metrics_enabled": ("DB_METRICS__ENABLED", "DB_QUERY_METRICS_ENABLED"),
        "slow_query_threshold_ms": ("DB_METRICS__SLOW_QUERY_THRESHOLD_MS", "DB_SLOW_QUERY_THRESHOLD_MS"),
    },
}


def read_dotenv(path: Path) -> dict[str, str]:
    """
    Read KEY=VALUE pairs from a local `.env` file.

    Comments, blank lines and lines without '=' are skipped; one level of
    matching single or double quotes is stripped from values.
    """
    if not path.is_file():
        return {}

    values: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.strip().partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        value = value.strip()
        if value[:1] in {"'", '"'} and len(value) >= 2 and value[-1] == value[0]:
            value = value[1:-1]
        values[key] = value
    return values


def _lookup(env: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = str(env.get(name) or "").strip()
        if value:
            return value
    return None


def _payload_from_env(env: Mapping[str, str]) -> dict[str, dict[str, str]]:
    payload: dict[str, dict[str, str]] = {}
    for section, fields in ENV_KEYS.items():
        found = {name: _lookup(env, keys) for name, keys in fields.items()}
        payload[section] = {name: value for name, value in found.items() if value is not None}
    return payload


_SETTINGS_LOCK = Lock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Return the process-wide settings, rebuilding them from env on first use or reload."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        if reload or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings.from_env()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "ENV_KEYS",
    "DatabaseConfig",
    "DbMetricsConfig",
    "DuckDBSettings",
    "LoggingSettings",
    "ReportConfig",
    "Settings",
    "SourceConfig",
    "clear_settings_cache",
    "get_settings",
    "read_dotenv",
    "ValidationError",
]
