"""
metrics/lateness.py

"Sem prazo" lateness classification.

A shipment is late when it reached its last manifest on or after the
forecast date, or when it reached it early but with fewer business days to
spare than the expected delivery window for its (city, unit). The second
branch flags an early arrival as late; that is the business rule in use.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Sequence

from app.domain.tracking import Row, row_value
from app.mappers.column_resolver import ResolvedColumns
from app.parsing.dates import difference_in_business_days, has_weekends_in_range, parse_flexible_date
from app.services.lookups import DeadlineLookup


@dataclass(frozen=True)
class LatenessAssessment:
    city: str
    unit: str
    forecast: datetime
    manifest: datetime
    expected_days: int
    business_delta: int
    late: bool

    @property
    def calendar_days(self) -> int:
        """Whole calendar days from manifest to forecast, rounded up."""
        return math.ceil((self.forecast - self.manifest).total_seconds() / 86400)

    @property
    def has_weekend(self) -> bool:
        return has_weekends_in_range(self.manifest, self.forecast)


def _is_late(business_delta: int, expected_days: int) -> bool:
    return business_delta <= 0 or abs(business_delta) < expected_days


def classify_lateness(forecast: datetime, manifest: datetime, expected_days: int) -> bool:
    return _is_late(difference_in_business_days(forecast, manifest), expected_days)


def format_days(days: int) -> str:
    if days == 0:
        return "Chegou Hoje"
    if days == 1:
        return "1 dia"
    return f"{days} dias"


def lateness_columns_available(columns: ResolvedColumns) -> bool:
    return all(
        columns.key(name) is not None
        for name in ("forecast_date", "last_manifest_date", "city", "unit")
    )


def assess_row(
    row: Row,
    columns: ResolvedColumns,
    deadlines: DeadlineLookup,
) -> LatenessAssessment | None:
    """
    Assess one row, or None when it cannot take part in the lateness metric.

    Rows are excluded when city or unit is empty, when either date does not
    parse, or when no expected window exists for (city, unit).
    """

    city = row_value(row, columns.key("city"))
    unit = row_value(row, columns.key("unit"))
    if not city or not unit:
        return None

    forecast = parse_flexible_date(row_value(row, columns.key("forecast_date")))
    manifest = parse_flexible_date(row_value(row, columns.key("last_manifest_date")))
    if forecast is None or manifest is None:
        return None

    expected_days = deadlines.deadline_for(city, unit)
    if expected_days is None:
        return None

    delta = difference_in_business_days(forecast, manifest)
    return LatenessAssessment(
        city=city,
        unit=unit,
        forecast=forecast,
        manifest=manifest,
        expected_days=expected_days,
        business_delta=delta,
        late=_is_late(delta, expected_days),
    )


def assess_rows(
    rows: Sequence[Row],
    columns: ResolvedColumns,
    deadlines: DeadlineLookup,
) -> Iterator[tuple[Row, LatenessAssessment]]:
    if not lateness_columns_available(columns):
        return
    for row in rows:
        assessment = assess_row(row, columns, deadlines)
        if assessment is not None:
            yield row, assessment
