"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files

_ALLOWED_EXECUTOR_KINDS = {"process", "thread"}

DEFAULT_SELECTED_CODES: tuple[str, ...] = (
    "1", "6", "18", "23", "25", "26", "27", "28", "30", "33", "34",
    "46", "48", "50", "58", "59", "65", "67", "71", "75", "82", "97",
)
DEFAULT_OFFENDER_CODES: tuple[str, ...] = (
    "46", "25", "26", "27", "28", "18", "30", "6", "23", "33", "50",
)
DEFAULT_SELECTED_UNITS: tuple[str, ...] = (
    "BLU", "BNU", "CCA", "CHA", "CRC", "JCA", "LGE", "RDS", "PLC", "TBR",
)


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_csv_list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """
    Read a comma-separated list, keeping order and dropping blanks.
    """

    raw_value = _get_optional_str_env(name)
    if raw_value is None:
        return default
    items = tuple(item.strip() for item in raw_value.split(",") if item.strip())
    return items or default


@dataclass(frozen=True)
class IngestionSettings:
    """
    Runtime settings for streaming file ingestion.
    """

    batch_size: int = 10_000
    sample_size: int = 100
    executor_kind: str = "process"
    cancel_poll_seconds: float = 0.05


@dataclass(frozen=True)
class LookupSettings:
    """
    Locations of the static deadline table and driver directory.
    """

    deadline_table_path: str | None = None
    driver_directory_path: str | None = None


@dataclass(frozen=True)
class MetricsSettings:
    """
    Default code selections applied when a request does not provide one.
    """

    default_codes: tuple[str, ...] = DEFAULT_SELECTED_CODES
    offender_codes: tuple[str, ...] = DEFAULT_OFFENDER_CODES
    default_units: tuple[str, ...] = DEFAULT_SELECTED_UNITS


@lru_cache(maxsize=1)
def get_ingestion_settings() -> IngestionSettings:
    """
    Return cached ingestion settings loaded from environment variables.
    """

    executor_kind = _get_str_env("AGGREGATION_EXECUTOR", "process").lower()
    if executor_kind not in _ALLOWED_EXECUTOR_KINDS:
        raise RuntimeError(
            f"AGGREGATION_EXECUTOR '{executor_kind}' is not valid. "
            f"Allowed values: {sorted(_ALLOWED_EXECUTOR_KINDS)}."
        )

    return IngestionSettings(
        batch_size=max(1, _get_int_env("INGESTION_BATCH_SIZE", 10_000)),
        sample_size=max(0, _get_int_env("INGESTION_SAMPLE_SIZE", 100)),
        executor_kind=executor_kind,
        cancel_poll_seconds=max(0.001, _get_float_env("INGESTION_CANCEL_POLL_SECONDS", 0.05)),
    )


@lru_cache(maxsize=1)
def get_lookup_settings() -> LookupSettings:
    return LookupSettings(
        deadline_table_path=_get_optional_str_env("DEADLINE_TABLE_PATH"),
        driver_directory_path=_get_optional_str_env("DRIVER_DIRECTORY_PATH"),
    )


@lru_cache(maxsize=1)
def get_metrics_settings() -> MetricsSettings:
    return MetricsSettings(
        default_codes=_get_csv_list_env("METRICS_DEFAULT_CODES", DEFAULT_SELECTED_CODES),
        offender_codes=_get_csv_list_env("METRICS_OFFENDER_CODES", DEFAULT_OFFENDER_CODES),
        default_units=_get_csv_list_env("METRICS_DEFAULT_UNITS", DEFAULT_SELECTED_UNITS),
    )
