"""
app/api/routers/metrics.py

Per-upload metric endpoints.

Every endpoint takes the same filter query parameters (``uf``, ``units``,
``codes``) and recomputes its metric from the stored rows on each call.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies import get_filter_selection
from app.schemas.metrics import (
    CityBucketResponse,
    CodeFrequencyResponse,
    CodeTableResponse,
    DrilldownResponse,
    DrillRecordResponse,
    DriverOffenseResponse,
    IndicatorResponse,
    OffenderRankingResponse,
    RankedCountResponse,
    SummaryResponse,
    UnitMetricListResponse,
    UnitMetricResponse,
    VehicleListResponse,
    VehicleResponse,
)
from app.services.dataset_service import UploadedDatasetService, get_dataset_service
from db.repositories.errors import DatasetDecompressionError, UploadNotFoundError
from metrics.codes import CodeFrequency
from metrics.drilldown import DRILLDOWN_VIEWS, SORT_DIMENSION_B, SORT_FIELDS, VIEW_CITY_DATE
from metrics.engine import HeadlineIndicator, MetricsEngine, run_deferred
from metrics.filters import FilterSelection
from metrics.units import UNIT_METRIC_KINDS

router = APIRouter(prefix="/uploads/{upload_id}/metrics", tags=["metrics"])


def get_upload_engine(
    upload_id: UUID,
    datasets: UploadedDatasetService = Depends(get_dataset_service),
) -> MetricsEngine:
    try:
        return datasets.engine_for(upload_id)
    except UploadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DatasetDecompressionError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


@router.get("/codes", response_model=CodeTableResponse)
async def get_codes(
    engine: MetricsEngine = Depends(get_upload_engine),
    selection: FilterSelection = Depends(get_filter_selection),
) -> CodeTableResponse:
    table = await run_deferred(engine.codes, selection)
    return CodeTableResponse(
        frequencies=_to_frequency_responses(table.frequencies),
        selected_codes=table.selected_codes,
        renormalized=_to_frequency_responses(table.renormalized),
        indicators={name: _to_indicator_response(item) for name, item in table.indicators.items()},
    )


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    engine: MetricsEngine = Depends(get_upload_engine),
    selection: FilterSelection = Depends(get_filter_selection),
) -> SummaryResponse:
    summary = await run_deferred(engine.summary, selection)
    return SummaryResponse(
        row_count=summary.row_count,
        rows_in_scope=summary.rows_in_scope,
        uf_list=summary.uf_list,
        units=summary.units,
        default_codes=summary.default_codes,
        default_units=summary.default_units,
        indicators={name: _to_indicator_response(item) for name, item in summary.indicators.items()},
        failures=_to_indicator_response(summary.failures),
        late=_to_indicator_response(summary.late),
        missing_columns=list(summary.missing_columns),
    )


@router.get("/vehicles", response_model=VehicleListResponse)
async def get_vehicles(
    engine: MetricsEngine = Depends(get_upload_engine),
    selection: FilterSelection = Depends(get_filter_selection),
) -> VehicleListResponse:
    vehicles = await run_deferred(engine.vehicles, selection)
    return VehicleListResponse(
        vehicles=[
            VehicleResponse(
                plate=vehicle.plate,
                uf=vehicle.uf,
                unit=vehicle.unit,
                total=vehicle.total,
                delivered=vehicle.delivered,
                in_transit=vehicle.in_transit,
                failed=vehicle.failed,
                delivered_percentage=vehicle.delivered_percentage,
                in_transit_percentage=vehicle.in_transit_percentage,
                failed_percentage=vehicle.failed_percentage,
                cities={
                    status_name: {
                        city: CityBucketResponse(count=bucket.count, tracking_ids=bucket.tracking_ids)
                        for city, bucket in buckets.items()
                    }
                    for status_name, buckets in vehicle.cities.items()
                },
            )
            for vehicle in vehicles
        ]
    )


@router.get("/units", response_model=UnitMetricListResponse)
async def get_unit_metrics(
    kind: str = Query(..., description=f"One of: {', '.join(UNIT_METRIC_KINDS)}"),
    code: str | None = Query(default=None, description="Occurrence code for the 'code' kind"),
    occurred_today: bool | None = Query(
        default=None,
        description="For 'failures': true keeps today's occurrences, false keeps earlier ones",
    ),
    today: date | None = Query(default=None, description="Reference day for 'occurred_today'"),
    engine: MetricsEngine = Depends(get_upload_engine),
    selection: FilterSelection = Depends(get_filter_selection),
) -> UnitMetricListResponse:
    try:
        units = await run_deferred(
            engine.units,
            selection,
            kind=kind,
            code=code,
            occurred_today=occurred_today,
            today=today,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return UnitMetricListResponse(
        kind=kind,
        code=code,
        units=[
            UnitMetricResponse(
                unit=item.unit,
                count=item.count,
                total=item.total,
                percentage=item.percentage,
                level=item.level,
            )
            for item in units
        ],
    )


@router.get("/offenders", response_model=OffenderRankingResponse)
async def get_offenders(
    offender_codes_only: bool = Query(default=False, description="Restrict failures to the configured offender codes"),
    engine: MetricsEngine = Depends(get_upload_engine),
    selection: FilterSelection = Depends(get_filter_selection),
) -> OffenderRankingResponse:
    ranking = await run_deferred(engine.offenders, selection, use_offender_codes=offender_codes_only)
    return OffenderRankingResponse(
        by_code=[RankedCountResponse(key=item.key, count=item.count, percentage=item.percentage) for item in ranking.by_code],
        by_unit=[RankedCountResponse(key=item.key, count=item.count, percentage=item.percentage) for item in ranking.by_unit],
        by_driver=[
            DriverOffenseResponse(
                driver=item.driver,
                plate=item.plate,
                unit=item.unit,
                count=item.count,
                percentage=item.percentage,
            )
            for item in ranking.by_driver
        ],
        total_failures=ranking.total_failures,
        total_rows=ranking.total_rows,
        failure_percentage=ranking.failure_percentage,
        total_units=ranking.total_units,
        total_drivers=ranking.total_drivers,
    )


@router.get("/drilldown", response_model=DrilldownResponse)
async def get_drilldown(
    view: str = Query(default=VIEW_CITY_DATE, description=f"One of: {', '.join(DRILLDOWN_VIEWS)}"),
    code: str | None = Query(default=None, description="Occurrence code for the city/date view"),
    sort_by: str = Query(default=SORT_DIMENSION_B, description=f"One of: {', '.join(SORT_FIELDS)}"),
    descending: bool = Query(default=False),
    engine: MetricsEngine = Depends(get_upload_engine),
    selection: FilterSelection = Depends(get_filter_selection),
) -> DrilldownResponse:
    try:
        records = await run_deferred(
            engine.drilldown,
            selection,
            view=view,
            code=code,
            sort_by=sort_by,
            descending=descending,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    unit_by_city: dict[str, str] = {}
    if code is not None:
        unit_by_city = engine.unit_by_city(selection).get(code, {})

    return DrilldownResponse(
        view=view,
        records=[
            DrillRecordResponse(
                dimension_a=record.dimension_a,
                dimension_b=record.dimension_b,
                quantity=record.quantity,
                tracking_ids=record.tracking_ids,
                ideal_deadline=record.ideal_deadline,
                has_weekend=record.has_weekend,
            )
            for record in records
        ],
        unit_by_city=unit_by_city,
    )


def _to_frequency_responses(frequencies: list[CodeFrequency]) -> list[CodeFrequencyResponse]:
    return [
        CodeFrequencyResponse(code=item.code, count=item.count, percentage=item.percentage)
        for item in frequencies
    ]


def _to_indicator_response(indicator: HeadlineIndicator) -> IndicatorResponse:
    return IndicatorResponse(
        name=indicator.name,
        count=indicator.count,
        percentage=indicator.percentage,
        level=indicator.level,
    )
