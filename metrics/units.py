"""
metrics/units.py

Per-unit percentage metrics.

Each metric kind has its own denominator:

    code         rows of the unit whose code is in the selected code set
    projection   same denominator; numerator is delivered + in transit
    failures     rows of the unit with any code (optionally today / before today)
    no_movement  rows of the unit with any code; numerator is code 50
    late         rows of the unit that can be assessed for lateness
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Sequence

from app.domain.tracking import Row, row_value
from app.mappers.column_resolver import ResolvedColumns
from app.occurrence_codes import FAILURE_CODES, NO_MOVEMENT, PROJECTION_CODES
from app.parsing.dates import parse_flexible_date
from app.services.lookups import DeadlineLookup
from metrics.filters import FilterSelection, filter_rows
from metrics.lateness import assess_row, lateness_columns_available

KIND_CODE = "code"
KIND_PROJECTION = "projection"
KIND_FAILURES = "failures"
KIND_NO_MOVEMENT = "no_movement"
KIND_LATE = "late"
UNIT_METRIC_KINDS = (KIND_CODE, KIND_PROJECTION, KIND_FAILURES, KIND_NO_MOVEMENT, KIND_LATE)

LEVEL_GOOD = "good"
LEVEL_WARNING = "warning"
LEVEL_CRITICAL = "critical"

# (good threshold, warning threshold, higher_is_better)
_HEALTH_BANDS: dict[str, tuple[float, float, bool]] = {
    "projection": (97.0, 95.0, True),
    "delivered": (96.5, 94.0, True),
    "in_transit": (0.0, 5.0, False),
    "at_floor": (0.0, 1.0, False),
    "late": (2.0, 5.0, False),
}


@dataclass(frozen=True)
class UnitMetric:
    unit: str
    count: int
    total: int
    percentage: float
    level: str | None = None


def health_level(indicator: str, percentage: float) -> str | None:
    """
    Traffic-light level for a headline indicator, or None when it has no bands.
    """

    bands = _HEALTH_BANDS.get(indicator)
    if bands is None:
        return None
    good, warning, higher_is_better = bands
    if higher_is_better:
        if percentage >= good:
            return LEVEL_GOOD
        if percentage >= warning:
            return LEVEL_WARNING
        return LEVEL_CRITICAL
    if percentage <= good:
        return LEVEL_GOOD
    if percentage <= warning:
        return LEVEL_WARNING
    return LEVEL_CRITICAL


def _indicator_for(kind: str, code: str | None) -> str | None:
    if kind == KIND_PROJECTION:
        return "projection"
    if kind == KIND_LATE:
        return "late"
    if kind == KIND_CODE:
        return {"1": "delivered", "59": "in_transit", "82": "at_floor"}.get(code or "")
    return None


def units_in_scope(rows: Sequence[Row], columns: ResolvedColumns, selection: FilterSelection) -> list[str]:
    unit_key = columns.key("unit")
    if unit_key is None:
        return []
    if selection.units is not None:
        return sorted(selection.units)
    scoped = filter_rows(rows, columns, selection)
    return sorted({unit for unit in (row_value(row, unit_key) for row in scoped) if unit})


def _date_matcher(occurred_today: bool | None, today: date) -> Callable[[str], bool]:
    def matches(raw: str) -> bool:
        if occurred_today is None:
            return True
        if not raw:
            return False
        parsed = parse_flexible_date(raw)
        same_day = parsed is not None and parsed.date() == today
        return same_day if occurred_today else not same_day

    return matches


def unit_metrics(
    rows: Sequence[Row],
    columns: ResolvedColumns,
    selection: FilterSelection,
    *,
    kind: str,
    code: str | None = None,
    deadlines: DeadlineLookup | None = None,
    occurred_today: bool | None = None,
    today: date | None = None,
) -> list[UnitMetric]:
    """
    Count and percentage of a metric per unit, highest percentage first.

    ``code`` is required for the ``code`` kind. ``deadlines`` is required for
    ``late``. ``occurred_today`` narrows ``failures`` to rows whose last
    occurrence happened today (True) or before today (False). Units with an
    empty denominator are left out.
    """

    if kind not in UNIT_METRIC_KINDS:
        raise ValueError(f"Unknown unit metric kind: {kind!r}")
    if kind == KIND_CODE and not code:
        raise ValueError("A code is required for the 'code' unit metric.")

    unit_key = columns.key("unit")
    code_key = columns.key("occurrence_code")
    if unit_key is None:
        return []
    if kind == KIND_LATE:
        if deadlines is None or not lateness_columns_available(columns):
            return []
    elif code_key is None:
        return []
    if kind == KIND_FAILURES and occurred_today is not None and columns.key("last_occurrence_date") is None:
        return []

    # Unit membership is applied per unit below; only UF narrows the scope here.
    scoped = filter_rows(rows, columns, FilterSelection(uf=selection.uf))
    by_unit: dict[str, list[Row]] = {}
    for row in scoped:
        by_unit.setdefault(row_value(row, unit_key), []).append(row)

    selected_codes = selection.codes
    date_matches = _date_matcher(occurred_today, today or date.today())
    date_key = columns.key("last_occurrence_date")
    indicator = _indicator_for(kind, code)

    results: list[UnitMetric] = []
    for unit in units_in_scope(rows, columns, selection):
        unit_rows = by_unit.get(unit, [])
        count = 0
        total = 0

        if kind == KIND_LATE and deadlines is not None:
            for row in unit_rows:
                assessment = assess_row(row, columns, deadlines)
                if assessment is None:
                    continue
                total += 1
                count += assessment.late
        else:
            for row in unit_rows:
                row_code = row_value(row, code_key)
                if not row_code:
                    continue
                if kind in (KIND_CODE, KIND_PROJECTION):
                    if selected_codes is not None and row_code not in selected_codes:
                        continue
                    total += 1
                    targets = (code,) if kind == KIND_CODE else PROJECTION_CODES
                    count += row_code in targets
                elif kind == KIND_FAILURES:
                    if not date_matches(row_value(row, date_key)):
                        continue
                    total += 1
                    count += row_code in FAILURE_CODES
                else:
                    total += 1
                    count += row_code == NO_MOVEMENT

        if total == 0:
            continue
        percentage = count / total * 100
        results.append(
            UnitMetric(
                unit=unit,
                count=count,
                total=total,
                percentage=percentage,
                level=health_level(indicator, percentage) if indicator else None,
            )
        )

    return sorted(results, key=lambda metric: -metric.percentage)
