"""
metrics/drilldown.py

Grouped drill-down tables listing tracking ids behind a metric.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from app.domain.tracking import Row, row_value
from app.mappers.column_resolver import ResolvedColumns
from app.occurrence_codes import FAILURE_CODES, PROJECTION_CODES
from app.parsing.dates import parse_flexible_date
from app.services.lookups import DeadlineLookup
from metrics.filters import FilterSelection, filter_rows
from metrics.lateness import assess_rows, format_days

NOT_AVAILABLE = "N/A"

VIEW_CITY_DATE = "city_date"
VIEW_CODE_DATE = "code_date"
VIEW_LATE = "late"
DRILLDOWN_VIEWS = (VIEW_CITY_DATE, VIEW_CODE_DATE, VIEW_LATE)

SORT_DIMENSION_A = "dimension_a"
SORT_DIMENSION_B = "dimension_b"
SORT_QUANTITY = "quantity"
SORT_IDEAL_DEADLINE = "ideal_deadline"
SORT_FIELDS = (SORT_DIMENSION_A, SORT_DIMENSION_B, SORT_QUANTITY, SORT_IDEAL_DEADLINE)


@dataclass
class GroupedDrillRecord:
    dimension_a: str
    dimension_b: str
    quantity: int = 0
    tracking_ids: list[str] = field(default_factory=list)
    ideal_deadline: str | None = None
    has_weekend: bool = False


def _group(
    records: list[tuple[str, str, str]],
) -> dict[tuple[str, str], GroupedDrillRecord]:
    groups: dict[tuple[str, str], GroupedDrillRecord] = {}
    for dimension_a, dimension_b, tracking_id in records:
        group = groups.get((dimension_a, dimension_b))
        if group is None:
            group = GroupedDrillRecord(dimension_a=dimension_a, dimension_b=dimension_b)
            groups[(dimension_a, dimension_b)] = group
        group.quantity += 1
        group.tracking_ids.append(tracking_id)
    return groups


def _date_sort_key(value: str) -> tuple[int, datetime | str]:
    parsed = parse_flexible_date(value) if value != NOT_AVAILABLE else None
    if parsed is None:
        return (1, value)
    return (0, parsed)


def _ideal_sort_key(record: GroupedDrillRecord) -> str:
    return record.ideal_deadline or ""


def sort_records(
    records: list[GroupedDrillRecord],
    *,
    sort_by: str = SORT_DIMENSION_B,
    descending: bool = False,
) -> list[GroupedDrillRecord]:
    if sort_by not in SORT_FIELDS:
        raise ValueError(f"Unknown drill-down sort field: {sort_by!r}")
    if sort_by == SORT_QUANTITY:
        return sorted(records, key=lambda record: record.quantity, reverse=descending)
    if sort_by == SORT_IDEAL_DEADLINE:
        return sorted(records, key=_ideal_sort_key, reverse=descending)
    if sort_by == SORT_DIMENSION_A:
        return sorted(records, key=lambda record: record.dimension_a, reverse=descending)
    return sorted(records, key=lambda record: _date_sort_key(record.dimension_b), reverse=descending)


def drilldown(
    rows: Sequence[Row],
    columns: ResolvedColumns,
    selection: FilterSelection,
    *,
    view: str = VIEW_CITY_DATE,
    code: str | None = None,
    deadlines: DeadlineLookup | None = None,
    sort_by: str = SORT_DIMENSION_B,
    descending: bool = False,
) -> list[GroupedDrillRecord]:
    """
    Group rows in scope into drill-down records.

    ``city_date``  rows with ``code`` (or, without one, the selected codes,
                   or delivered + in transit when nothing is selected)
                   grouped by (city, last occurrence date)
    ``code_date``  failed deliveries grouped by (code, last occurrence date)
    ``late``       late shipments grouped by (calendar days to forecast, city),
                   carrying the expected window and a weekend flag
    """

    if view not in DRILLDOWN_VIEWS:
        raise ValueError(f"Unknown drill-down view: {view!r}")

    tracking_key = columns.key("tracking_id")
    city_key = columns.key("city")
    date_key = columns.key("last_occurrence_date")
    code_key = columns.key("occurrence_code")

    def text(row: Row, key: str | None) -> str:
        return row_value(row, key) or NOT_AVAILABLE

    scoped = filter_rows(rows, columns, selection)

    if view == VIEW_LATE:
        if deadlines is None:
            return []
        late_groups: dict[tuple[str, str], GroupedDrillRecord] = {}
        for row, assessment in assess_rows(scoped, columns, deadlines):
            if not assessment.late:
                continue
            bucket = format_days(assessment.calendar_days)
            group = late_groups.get((bucket, assessment.city))
            if group is None:
                group = GroupedDrillRecord(
                    dimension_a=bucket,
                    dimension_b=assessment.city,
                    ideal_deadline=format_days(assessment.expected_days),
                )
                late_groups[(bucket, assessment.city)] = group
            group.quantity += 1
            group.tracking_ids.append(text(row, tracking_key))
            group.has_weekend = group.has_weekend or assessment.has_weekend
        return sort_records(list(late_groups.values()), sort_by=sort_by, descending=descending)

    if code_key is None:
        return []

    if view == VIEW_CODE_DATE:
        records = [
            (row_code, text(row, date_key), text(row, tracking_key))
            for row in scoped
            if (row_code := row_value(row, code_key)) in FAILURE_CODES
        ]
    else:
        if code is not None:
            wanted = {code}
        elif selection.codes is not None:
            wanted = set(selection.codes)
        else:
            wanted = set(PROJECTION_CODES)
        records = [
            (text(row, city_key), text(row, date_key), text(row, tracking_key))
            for row in scoped
            if row_value(row, code_key) in wanted
        ]

    return sort_records(list(_group(records).values()), sort_by=sort_by, descending=descending)


def unit_by_city(rows: Sequence[Row], columns: ResolvedColumns) -> dict[str, dict[str, str]]:
    """
    code -> city -> unit, keeping the last unit seen for each pair.
    """

    code_key = columns.key("occurrence_code")
    city_key = columns.key("city")
    unit_key = columns.key("unit")
    if code_key is None or city_key is None or unit_key is None:
        return {}

    mapping: dict[str, dict[str, str]] = {}
    for row in rows:
        code = row_value(row, code_key)
        city = row_value(row, city_key)
        unit = row_value(row, unit_key)
        if code and city and unit:
            mapping.setdefault(code, {})[city] = unit
    return mapping
