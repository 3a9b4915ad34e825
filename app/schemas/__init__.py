"""
app/schemas package marker.
"""

from app.schemas.ingestion_run import (
    IngestionRunAcceptedResponse,
    IngestionRunListResponse,
    IngestionRunStatusResponse,
)
from app.schemas.metrics import (
    CodeTableResponse,
    DrilldownResponse,
    OffenderRankingResponse,
    SummaryResponse,
    UnitMetricListResponse,
    VehicleListResponse,
)
from app.schemas.uploads import UploadDetailResponse, UploadListResponse, UploadSummaryResponse

__all__ = [
    "CodeTableResponse",
    "DrilldownResponse",
    "IngestionRunAcceptedResponse",
    "IngestionRunListResponse",
    "IngestionRunStatusResponse",
    "OffenderRankingResponse",
    "SummaryResponse",
    "UnitMetricListResponse",
    "UploadDetailResponse",
    "UploadListResponse",
    "UploadSummaryResponse",
    "VehicleListResponse",
]
