"""
app/services/lookups.py

Static lookup tables consumed by the metrics layer: expected delivery
days per (city, unit) and driver names per (plate, unit).

Both tables are optional CSV files. A missing path yields an empty table,
which makes every lookup miss: lateness then excludes every row and driver
rankings use the not-found sentinel.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Mapping, Protocol

import pandas as pd

from app.config import get_lookup_settings
from app.mappers.column_resolver import normalize_label

logger = logging.getLogger(__name__)

DRIVER_NOT_FOUND = "Motorista não encontrado"

_DEADLINE_COLUMNS = {
    "city": ("cidade", "city"),
    "unit": ("unidade", "unit"),
    "days": ("prazo", "dias", "days"),
}
_DRIVER_COLUMNS = {
    "plate": ("placa", "plate"),
    "unit": ("unidade", "unit"),
    "driver": ("motorista", "driver", "nome"),
}


class DeadlineLookup(Protocol):
    def deadline_for(self, city: str, unit: str) -> int | None:
        ...


class DriverLookup(Protocol):
    def driver_name(self, plate: str, unit: str) -> str:
        ...


def _lookup_key(*parts: str) -> tuple[str, ...]:
    return tuple(normalize_label(part) for part in parts)


def _pick_columns(frame: pd.DataFrame, wanted: Mapping[str, tuple[str, ...]], source: str) -> dict[str, str]:
    normalized = {normalize_label(str(column)): str(column) for column in frame.columns}
    picked: dict[str, str] = {}
    for field_name, aliases in wanted.items():
        for alias in aliases:
            if alias in normalized:
                picked[field_name] = normalized[alias]
                break
        else:
            raise ValueError(f"Lookup table {source!r} is missing a column for {field_name!r}.")
    return picked


class DeadlineTable:
    """
    In-memory (city, unit) -> expected business days table.
    """

    def __init__(self, entries: Mapping[tuple[str, str], int] | None = None) -> None:
        self._entries: dict[tuple[str, ...], int] = {
            _lookup_key(city, unit): int(days)
            for (city, unit), days in (entries or {}).items()
        }

    def __len__(self) -> int:
        return len(self._entries)

    def deadline_for(self, city: str, unit: str) -> int | None:
        if not city or not unit:
            return None
        return self._entries.get(_lookup_key(city, unit))

    @classmethod
    def from_csv(cls, path: str) -> DeadlineTable:
        frame = pd.read_csv(path, sep=None, engine="python", dtype=str).fillna("")
        columns = _pick_columns(frame, _DEADLINE_COLUMNS, path)
        entries: dict[tuple[str, str], int] = {}
        for record in frame.to_dict(orient="records"):
            raw_days = str(record[columns["days"]]).strip()
            try:
                days = int(float(raw_days))
            except ValueError:
                logger.warning("Skipping deadline entry with invalid days=%r path=%s", raw_days, path)
                continue
            entries[(record[columns["city"]], record[columns["unit"]])] = days
        logger.info("Loaded %d deadline entries from %s", len(entries), path)
        return cls(entries)


class DriverDirectory:
    """
    In-memory (plate, unit) -> driver name directory.
    """

    def __init__(self, entries: Mapping[tuple[str, str], str] | None = None) -> None:
        self._entries: dict[tuple[str, ...], str] = {
            _lookup_key(plate, unit): name
            for (plate, unit), name in (entries or {}).items()
        }

    def __len__(self) -> int:
        return len(self._entries)

    def driver_name(self, plate: str, unit: str) -> str:
        return self._entries.get(_lookup_key(plate or "", unit or ""), DRIVER_NOT_FOUND)

    @classmethod
    def from_csv(cls, path: str) -> DriverDirectory:
        frame = pd.read_csv(path, sep=None, engine="python", dtype=str).fillna("")
        columns = _pick_columns(frame, _DRIVER_COLUMNS, path)
        entries = {
            (record[columns["plate"]], record[columns["unit"]]): record[columns["driver"]].strip()
            for record in frame.to_dict(orient="records")
            if record[columns["driver"]].strip()
        }
        logger.info("Loaded %d driver entries from %s", len(entries), path)
        return cls(entries)


@lru_cache(maxsize=1)
def get_deadline_lookup() -> DeadlineTable:
    path = get_lookup_settings().deadline_table_path
    if path is None:
        logger.info("DEADLINE_TABLE_PATH not set; lateness metrics will be empty")
        return DeadlineTable()
    return DeadlineTable.from_csv(path)


@lru_cache(maxsize=1)
def get_driver_lookup() -> DriverDirectory:
    path = get_lookup_settings().driver_directory_path
    if path is None:
        return DriverDirectory()
    return DriverDirectory.from_csv(path)
