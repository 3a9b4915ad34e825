"""
metrics/vehicles.py

Per-vehicle (placa) delivery performance with city drill-down.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from app.domain.tracking import Row, row_value
from app.mappers.column_resolver import ResolvedColumns
from app.occurrence_codes import IN_TRANSIT, is_delivered
from metrics.filters import FilterSelection, filter_rows

STATUS_DELIVERED = "delivered"
STATUS_IN_TRANSIT = "in_transit"
STATUS_FAILED = "failed"
VEHICLE_STATUSES = (STATUS_DELIVERED, STATUS_IN_TRANSIT, STATUS_FAILED)

UNKNOWN_CITY = "Não informada"


@dataclass
class CityBucket:
    count: int = 0
    tracking_ids: list[str] = field(default_factory=list)


@dataclass
class VehicleBreakdown:
    plate: str
    uf: str
    unit: str
    total: int = 0
    delivered: int = 0
    in_transit: int = 0
    failed: int = 0
    cities: dict[str, dict[str, CityBucket]] = field(
        default_factory=lambda: {status: {} for status in VEHICLE_STATUSES}
    )

    def _percent(self, part: int) -> float:
        return part / self.total * 100 if self.total else 0.0

    @property
    def delivered_percentage(self) -> float:
        return self._percent(self.delivered)

    @property
    def in_transit_percentage(self) -> float:
        return self._percent(self.in_transit)

    @property
    def failed_percentage(self) -> float:
        return self._percent(self.failed)


def classify_vehicle_status(code: str) -> str | None:
    if is_delivered(code):
        return STATUS_DELIVERED
    if code == IN_TRANSIT:
        return STATUS_IN_TRANSIT
    if code:
        return STATUS_FAILED
    return None


def vehicle_breakdown(
    rows: Sequence[Row],
    columns: ResolvedColumns,
    selection: FilterSelection,
) -> list[VehicleBreakdown]:
    """
    Delivered / in-transit / failed counts per plate, largest fleets first.

    Rows without a plate are skipped. A row without a code still counts
    towards its plate total but lands in no status bucket, so a plate's
    status percentages may sum to less than 100.
    """

    plate_key = columns.key("plate")
    code_key = columns.key("occurrence_code")
    tracking_key = columns.key("tracking_id")
    if plate_key is None or code_key is None or tracking_key is None:
        return []

    uf_key = columns.key("uf")
    unit_key = columns.key("unit")
    city_key = columns.key("city")

    vehicles: dict[str, VehicleBreakdown] = {}
    for row in filter_rows(rows, columns, selection):
        plate = row_value(row, plate_key)
        if not plate:
            continue

        vehicle = vehicles.get(plate)
        if vehicle is None:
            vehicle = VehicleBreakdown(
                plate=plate,
                uf=row_value(row, uf_key),
                unit=row_value(row, unit_key),
            )
            vehicles[plate] = vehicle
        vehicle.total += 1

        status = classify_vehicle_status(row_value(row, code_key))
        if status is None:
            continue
        setattr(vehicle, status, getattr(vehicle, status) + 1)

        city = row_value(row, city_key) or UNKNOWN_CITY
        bucket = vehicle.cities[status].setdefault(city, CityBucket())
        bucket.count += 1
        tracking_id = row_value(row, tracking_key)
        if tracking_id:
            bucket.tracking_ids.append(tracking_id)

    return sorted(vehicles.values(), key=lambda vehicle: -vehicle.total)
