"""
metrics/filters.py

Filter selection applied before every metric.

Filters are AND-combined and applied in a fixed order: UF, then unit set,
then (when the metric asks for it) code set. Filtering always returns a
new list; the dataset rows are never modified.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from app.domain.tracking import Row, row_value
from app.mappers.column_resolver import ResolvedColumns

ALL = "all"
_ALL_ALIASES = {"all", "todas", "todos", "*", ""}


def _is_all(value: str | None) -> bool:
    return value is None or value.strip().lower() in _ALL_ALIASES


@dataclass(frozen=True)
class FilterSelection:
    """
    UF, unit and code selection; ``None`` for units/codes means no restriction.
    """

    uf: str = ALL
    units: frozenset[str] | None = None
    codes: frozenset[str] | None = None

    @classmethod
    def build(
        cls,
        *,
        uf: str | None = None,
        units: Iterable[str] | None = None,
        codes: Iterable[str] | None = None,
    ) -> FilterSelection:
        unit_set: frozenset[str] | None = None
        if units is not None:
            cleaned = [unit.strip() for unit in units if unit and unit.strip()]
            if cleaned and not any(_is_all(unit) for unit in cleaned):
                unit_set = frozenset(cleaned)

        code_set: frozenset[str] | None = None
        if codes is not None:
            code_set = frozenset(code.strip() for code in codes if code and code.strip())

        return cls(
            uf=ALL if _is_all(uf) else uf.strip(),
            units=unit_set,
            codes=code_set,
        )

    @property
    def all_ufs(self) -> bool:
        return self.uf == ALL

    @property
    def all_units(self) -> bool:
        return self.units is None


def filter_rows(
    rows: Sequence[Row],
    columns: ResolvedColumns,
    selection: FilterSelection,
    *,
    by_codes: bool = False,
) -> list[Row]:
    """
    Rows matching the UF, unit and (optionally) code selection.

    A restriction on a column that could not be resolved matches nothing.
    """

    uf_key = columns.key("uf")
    unit_key = columns.key("unit")
    code_key = columns.key("occurrence_code")

    if not selection.all_ufs and uf_key is None:
        return []
    if not selection.all_units and unit_key is None:
        return []
    apply_codes = by_codes and selection.codes is not None
    if apply_codes and code_key is None:
        return []

    filtered: list[Row] = []
    for row in rows:
        if not selection.all_ufs and row_value(row, uf_key) != selection.uf:
            continue
        if selection.units is not None and row_value(row, unit_key) not in selection.units:
            continue
        if apply_codes and row_value(row, code_key) not in selection.codes:
            continue
        filtered.append(row)
    return filtered
