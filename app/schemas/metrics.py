"""
app/schemas/metrics.py

Response schemas for per-upload metric endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CodeFrequencyResponse(BaseModel):
    code: str
    count: int = Field(..., ge=0)
    percentage: float


class IndicatorResponse(BaseModel):
    name: str
    count: int = Field(..., ge=0)
    percentage: float
    level: str | None = None


class CodeTableResponse(BaseModel):
    frequencies: list[CodeFrequencyResponse] = Field(default_factory=list)
    selected_codes: list[str] = Field(default_factory=list)
    renormalized: list[CodeFrequencyResponse] = Field(default_factory=list)
    indicators: dict[str, IndicatorResponse] = Field(default_factory=dict)


class SummaryResponse(BaseModel):
    row_count: int = Field(..., ge=0)
    rows_in_scope: int = Field(..., ge=0)
    uf_list: list[str] = Field(default_factory=list)
    units: list[str] = Field(default_factory=list)
    default_codes: list[str] = Field(default_factory=list)
    default_units: list[str] = Field(default_factory=list)
    indicators: dict[str, IndicatorResponse] = Field(default_factory=dict)
    failures: IndicatorResponse
    late: IndicatorResponse
    missing_columns: list[str] = Field(default_factory=list)


class CityBucketResponse(BaseModel):
    count: int = Field(..., ge=0)
    tracking_ids: list[str] = Field(default_factory=list)


class VehicleResponse(BaseModel):
    plate: str
    uf: str
    unit: str
    total: int = Field(..., ge=0)
    delivered: int = Field(..., ge=0)
    in_transit: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    delivered_percentage: float
    in_transit_percentage: float
    failed_percentage: float
    cities: dict[str, dict[str, CityBucketResponse]] = Field(default_factory=dict)


class VehicleListResponse(BaseModel):
    vehicles: list[VehicleResponse] = Field(default_factory=list)


class UnitMetricResponse(BaseModel):
    unit: str
    count: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    percentage: float
    level: str | None = None


class UnitMetricListResponse(BaseModel):
    kind: str
    code: str | None = None
    units: list[UnitMetricResponse] = Field(default_factory=list)


class RankedCountResponse(BaseModel):
    key: str
    count: int = Field(..., ge=0)
    percentage: float


class DriverOffenseResponse(BaseModel):
    driver: str
    plate: str
    unit: str
    count: int = Field(..., ge=0)
    percentage: float


class OffenderRankingResponse(BaseModel):
    by_code: list[RankedCountResponse] = Field(default_factory=list)
    by_unit: list[RankedCountResponse] = Field(default_factory=list)
    by_driver: list[DriverOffenseResponse] = Field(default_factory=list)
    total_failures: int = Field(..., ge=0)
    total_rows: int = Field(..., ge=0)
    failure_percentage: float
    total_units: int = Field(..., ge=0)
    total_drivers: int = Field(..., ge=0)


class DrillRecordResponse(BaseModel):
    dimension_a: str
    dimension_b: str
    quantity: int = Field(..., ge=0)
    tracking_ids: list[str] = Field(default_factory=list)
    ideal_deadline: str | None = None
    has_weekend: bool = False


class DrilldownResponse(BaseModel):
    view: str
    records: list[DrillRecordResponse] = Field(default_factory=list)
    unit_by_city: dict[str, str] = Field(default_factory=dict)
