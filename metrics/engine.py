"""
metrics/engine.py

Metrics facade over one loaded dataset.

MetricsEngine binds the dataset rows, their resolved columns and the
static lookups once, and exposes every metric as a method taking the
current FilterSelection. Nothing here mutates the rows; each call builds
new derived structures, so the engine can be rebuilt or reused freely per
request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping, Sequence, TypeVar

from app.config import MetricsSettings, get_metrics_settings
from app.domain.tracking import Row, row_value
from app.mappers.column_resolver import (
    STRATEGY_PATTERN,
    ResolvedColumns,
    resolve_columns_from_rows,
)
from app.occurrence_codes import is_offense
from app.services.lookups import DeadlineLookup, DeadlineTable, DriverDirectory, DriverLookup
from metrics.codes import (
    CodeFrequency,
    code_frequency,
    default_code_selection,
    renormalize,
    status_indicators,
)
from metrics.drilldown import GroupedDrillRecord, drilldown, unit_by_city
from metrics.filters import FilterSelection, filter_rows
from metrics.lateness import assess_rows
from metrics.offenders import OffenderRanking, offender_ranking
from metrics.units import UnitMetric, health_level, unit_metrics
from metrics.vehicles import VehicleBreakdown, vehicle_breakdown

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class HeadlineIndicator:
    name: str
    count: int
    percentage: float
    level: str | None = None


@dataclass(frozen=True)
class CodeTable:
    """
    Code frequencies in scope plus the selection they were renormalized to.
    """

    frequencies: list[CodeFrequency]
    selected_codes: list[str]
    renormalized: list[CodeFrequency] = field(default_factory=list)
    indicators: dict[str, HeadlineIndicator] = field(default_factory=dict)


@dataclass(frozen=True)
class DatasetSummary:
    row_count: int
    rows_in_scope: int
    uf_list: list[str]
    units: list[str]
    default_codes: list[str]
    default_units: list[str]
    indicators: dict[str, HeadlineIndicator]
    failures: HeadlineIndicator
    late: HeadlineIndicator
    missing_columns: tuple[str, ...] = ()


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def columns_for_dataset(rows: Sequence[Row], meta: Mapping[str, Any] | None = None) -> ResolvedColumns:
    """
    Resolved columns for a stored dataset.

    The snapshot saved with the dataset wins; otherwise columns are resolved
    again from the first row. The occurrence-code field always follows the
    column the dataset was aggregated on.
    """

    meta = meta or {}
    stored = meta.get("resolved_columns")
    columns = ResolvedColumns.from_dict(stored) if stored else resolve_columns_from_rows(rows)

    column_name = meta.get("column_name")
    if column_name and columns.key("occurrence_code") != column_name and rows:
        keys = list(rows[0].keys())
        if column_name in keys:
            columns = columns.with_column(
                "occurrence_code", column_name, keys.index(column_name), STRATEGY_PATTERN
            )
    return columns


class MetricsEngine:
    """
    Computes tracking metrics for one dataset under a filter selection.
    """

    def __init__(
        self,
        rows: Sequence[Row],
        columns: ResolvedColumns,
        *,
        deadlines: DeadlineLookup | None = None,
        drivers: DriverLookup | None = None,
        settings: MetricsSettings | None = None,
        uf_to_units: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._rows = rows
        self._columns = columns
        self._deadlines = deadlines if deadlines is not None else DeadlineTable()
        self._drivers = drivers if drivers is not None else DriverDirectory()
        self._settings = settings or get_metrics_settings()
        self._uf_to_units = (
            {uf: sorted(units) for uf, units in uf_to_units.items()}
            if uf_to_units is not None
            else self._collect_uf_units()
        )
        if columns.missing():
            logger.debug("Metrics engine built with unresolved columns: %s", ", ".join(columns.missing()))

    @classmethod
    def from_dataset(
        cls,
        rows: Sequence[Row],
        meta: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> MetricsEngine:
        meta = meta or {}
        return cls(
            rows,
            columns_for_dataset(rows, meta),
            uf_to_units=meta.get("uf_to_units"),
            **kwargs,
        )

    @property
    def columns(self) -> ResolvedColumns:
        return self._columns

    @property
    def row_count(self) -> int:
        return len(self._rows)

    # ------------------------------------------------------------------
    # Scope helpers
    # ------------------------------------------------------------------

    def _collect_uf_units(self) -> dict[str, list[str]]:
        uf_key = self._columns.key("uf")
        unit_key = self._columns.key("unit")
        mapping: dict[str, set[str]] = {}
        if uf_key is None:
            return {}
        for row in self._rows:
            uf = row_value(row, uf_key)
            if not uf:
                continue
            units = mapping.setdefault(uf, set())
            unit = row_value(row, unit_key)
            if unit:
                units.add(unit)
        return {uf: sorted(units) for uf, units in mapping.items()}

    def uf_list(self) -> list[str]:
        return sorted(self._uf_to_units)

    def units_for(self, uf: str | None = None) -> list[str]:
        selection = FilterSelection.build(uf=uf)
        if selection.all_ufs:
            return sorted({unit for units in self._uf_to_units.values() for unit in units})
        return list(self._uf_to_units.get(selection.uf, []))

    def default_units(self, uf: str | None = None) -> list[str]:
        """
        Configured default units present under ``uf``; every unit when none is.
        """

        available = self.units_for(uf)
        present = [unit for unit in self._settings.default_units if unit in available]
        return present or available

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def codes(self, selection: FilterSelection) -> CodeTable:
        frequencies = code_frequency(self._rows, self._columns, selection)
        if selection.codes is not None:
            selected = [item.code for item in frequencies if item.code in selection.codes]
        else:
            selected = default_code_selection(frequencies, self._settings.default_codes)

        indicators = status_indicators(frequencies, selected)
        return CodeTable(
            frequencies=frequencies,
            selected_codes=selected,
            renormalized=renormalize(frequencies, selected),
            indicators={
                name: HeadlineIndicator(
                    name=name,
                    count=item.count,
                    percentage=item.percentage,
                    level=health_level(name, item.percentage),
                )
                for name, item in indicators.items()
            },
        )

    def summary(self, selection: FilterSelection) -> DatasetSummary:
        scoped = filter_rows(self._rows, self._columns, selection)
        table = self.codes(selection)
        code_key = self._columns.key("occurrence_code")

        codes_in_scope = [code for code in (row_value(row, code_key) for row in scoped) if code]
        failures = sum(1 for code in codes_in_scope if is_offense(code))

        late = 0
        assessed = 0
        for _, assessment in assess_rows(scoped, self._columns, self._deadlines):
            assessed += 1
            late += assessment.late
        late_percentage = _percent(late, assessed)

        return DatasetSummary(
            row_count=self.row_count,
            rows_in_scope=len(scoped),
            uf_list=self.uf_list(),
            units=self.units_for(selection.uf),
            default_codes=table.selected_codes,
            default_units=self.default_units(selection.uf),
            indicators=table.indicators,
            failures=HeadlineIndicator(
                name="failures",
                count=failures,
                percentage=_percent(failures, len(codes_in_scope)),
            ),
            late=HeadlineIndicator(
                name="late",
                count=late,
                percentage=late_percentage,
                level=health_level("late", late_percentage) if assessed else None,
            ),
            missing_columns=self._columns.missing(),
        )

    def vehicles(self, selection: FilterSelection) -> list[VehicleBreakdown]:
        return vehicle_breakdown(self._rows, self._columns, selection)

    def units(
        self,
        selection: FilterSelection,
        *,
        kind: str,
        code: str | None = None,
        occurred_today: bool | None = None,
        today: date | None = None,
    ) -> list[UnitMetric]:
        return unit_metrics(
            self._rows,
            self._columns,
            selection,
            kind=kind,
            code=code,
            deadlines=self._deadlines,
            occurred_today=occurred_today,
            today=today,
        )

    def offenders(self, selection: FilterSelection, *, use_offender_codes: bool = False) -> OffenderRanking:
        return offender_ranking(
            self._rows,
            self._columns,
            selection,
            self._drivers,
            offense_codes=self._settings.offender_codes if use_offender_codes else None,
        )

    def drilldown(
        self,
        selection: FilterSelection,
        *,
        view: str,
        code: str | None = None,
        sort_by: str = "dimension_b",
        descending: bool = False,
    ) -> list[GroupedDrillRecord]:
        return drilldown(
            self._rows,
            self._columns,
            selection,
            view=view,
            code=code,
            deadlines=self._deadlines,
            sort_by=sort_by,
            descending=descending,
        )

    def unit_by_city(self, selection: FilterSelection) -> dict[str, dict[str, str]]:
        return unit_by_city(filter_rows(self._rows, self._columns, selection), self._columns)


async def run_deferred(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Yield to the event loop once, then run ``fn`` inline.

    Lets pending I/O callbacks run before a long metric computation; it does
    not move the work off the event loop thread.
    """

    await asyncio.sleep(0)
    return fn(*args, **kwargs)
