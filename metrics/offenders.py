"""
metrics/offenders.py

Offender rankings: which codes, units and drivers account for failed
deliveries in the current filter scope.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Collection, Sequence

from app.domain.tracking import Row, row_value
from app.mappers.column_resolver import ResolvedColumns
from app.occurrence_codes import is_offense
from app.services.lookups import DriverLookup
from metrics.filters import FilterSelection, filter_rows


@dataclass(frozen=True)
class RankedCount:
    key: str
    count: int
    percentage: float


@dataclass(frozen=True)
class DriverOffense:
    driver: str
    plate: str
    unit: str
    count: int
    percentage: float


@dataclass(frozen=True)
class OffenderRanking:
    by_code: list[RankedCount] = field(default_factory=list)
    by_unit: list[RankedCount] = field(default_factory=list)
    by_driver: list[DriverOffense] = field(default_factory=list)
    total_failures: int = 0
    total_rows: int = 0

    @property
    def failure_percentage(self) -> float:
        return self.total_failures / self.total_rows * 100 if self.total_rows else 0.0

    @property
    def total_units(self) -> int:
        return len(self.by_unit)

    @property
    def total_drivers(self) -> int:
        return len(self.by_driver)


def _ranked(counter: Counter[str], total: int) -> list[RankedCount]:
    return [
        RankedCount(key=key, count=count, percentage=count / total * 100 if total else 0.0)
        for key, count in sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    ]


def offender_ranking(
    rows: Sequence[Row],
    columns: ResolvedColumns,
    selection: FilterSelection,
    drivers: DriverLookup,
    *,
    offense_codes: Collection[str] | None = None,
) -> OffenderRanking:
    """
    Rank failures by code, unit and (driver, plate).

    A failure is any row whose code is non-empty and neither delivered nor
    in transit; ``offense_codes`` narrows that further when given. A code
    selection replaces the failure rule: exactly the selected codes are
    ranked, while ``total_rows`` stays the UF and unit scope. Drivers
    are only ranked for rows carrying both plate and unit, and keep the unit
    of their first failure.
    """

    code_key = columns.key("occurrence_code")
    if code_key is None:
        return OffenderRanking()

    unit_key = columns.key("unit")
    plate_key = columns.key("plate")
    allowed = set(offense_codes) if offense_codes is not None else None

    scoped = filter_rows(rows, columns, selection)
    codes: Counter[str] = Counter()
    units: Counter[str] = Counter()
    driver_counts: Counter[tuple[str, str]] = Counter()
    driver_units: dict[tuple[str, str], str] = {}

    for row in scoped:
        code = row_value(row, code_key)
        if selection.codes is not None:
            if code not in selection.codes:
                continue
        elif not is_offense(code):
            continue
        if allowed is not None and code not in allowed:
            continue

        codes[code] += 1
        unit = row_value(row, unit_key)
        if unit:
            units[unit] += 1
        plate = row_value(row, plate_key)
        if plate and unit:
            driver_key = (drivers.driver_name(plate, unit), plate)
            driver_counts[driver_key] += 1
            driver_units.setdefault(driver_key, unit)

    total_failures = sum(codes.values())
    by_driver = [
        DriverOffense(
            driver=driver,
            plate=plate,
            unit=driver_units[(driver, plate)],
            count=count,
            percentage=count / total_failures * 100 if total_failures else 0.0,
        )
        for (driver, plate), count in sorted(
            driver_counts.items(), key=lambda item: (-item[1], item[0])
        )
    ]
    return OffenderRanking(
        by_code=_ranked(codes, total_failures),
        by_unit=_ranked(units, total_failures),
        by_driver=by_driver,
        total_failures=total_failures,
        total_rows=len(scoped),
    )
