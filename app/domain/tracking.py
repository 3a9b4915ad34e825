"""
app/domain/tracking.py

Domain models shared by tracking file ingestion and metrics.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

Row = Mapping[str, Any]

FILE_TYPE_CSV = "csv"
FILE_TYPE_XLSX = "xlsx"
FILE_TYPE_SSWWEB = "sswweb"
SUPPORTED_FILE_TYPES: tuple[str, ...] = (FILE_TYPE_CSV, FILE_TYPE_XLSX, FILE_TYPE_SSWWEB)

TARGET_COLUMN_NAME = "Codigo da Ultima Ocorrencia"
TARGET_COLUMN_POSITION = 32


def cell_text(value: Any) -> str:
    """
    Render a raw cell as stripped text; empty, None and NaN become "".

    Spreadsheet numbers such as ``59.0`` are rendered as ``"59"`` so codes
    read from xlsx and csv files compare equal.
    """

    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def row_value(row: Row, key: str | None) -> str:
    if key is None:
        return ""
    return cell_text(row.get(key))


@dataclass(frozen=True)
class DatasetMeta:
    """
    Summary attached to an ingested dataset.
    """

    file_name: str
    file_type: str
    column_name: str
    row_count: int
    frequency_map: dict[str, int]
    uf_list: list[str]
    uf_to_units: dict[str, list[str]]
    city_by_code: dict[str, dict[str, int]]
    resolved_columns: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "file_type": self.file_type,
            "column_name": self.column_name,
            "row_count": self.row_count,
            "frequency_map": dict(self.frequency_map),
            "uf_list": list(self.uf_list),
            "uf_to_units": {uf: list(units) for uf, units in self.uf_to_units.items()},
            "city_by_code": {code: dict(cities) for code, cities in self.city_by_code.items()},
            "resolved_columns": dict(self.resolved_columns),
        }


@dataclass(frozen=True)
class ProcessedDataset:
    """
    Result of one ingestion run: bounded sample, full row list and summary.
    """

    sample: Sequence[Row]
    full: Sequence[Row]
    meta: DatasetMeta

    @property
    def row_count(self) -> int:
        return len(self.full)
