"""
app/api/routers/uploads.py

Stored tracking upload endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.config import get_ingestion_settings
from app.schemas.uploads import UploadDetailResponse, UploadListResponse, UploadSummaryResponse
from app.services.dataset_service import UploadedDatasetService, get_dataset_service
from db.models.uploaded_file import UploadedFile
from db.repositories.errors import DatasetDecompressionError, UploadNotFoundError, UploadPersistenceError

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.get("", response_model=UploadListResponse)
def list_uploads(
    limit: int = Query(default=50, ge=1, le=500, description="Max uploads returned, newest first"),
    datasets: UploadedDatasetService = Depends(get_dataset_service),
) -> UploadListResponse:
    records = datasets.repository.list_recent(limit=limit)
    return UploadListResponse(uploads=[_to_summary_response(record) for record in records])


@router.get("/{upload_id}", response_model=UploadDetailResponse)
def get_upload(
    upload_id: UUID,
    datasets: UploadedDatasetService = Depends(get_dataset_service),
) -> UploadDetailResponse:
    try:
        loaded = datasets.load(upload_id)
    except UploadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DatasetDecompressionError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    metadata = loaded.record.file_metadata or {}
    sample_size = get_ingestion_settings().sample_size
    return UploadDetailResponse(
        **_to_summary_response(loaded.record).model_dump(),
        frequency_map=metadata.get("frequency_map", {}),
        uf_list=metadata.get("uf_list", []),
        uf_to_units=metadata.get("uf_to_units", {}),
        city_by_code=metadata.get("city_by_code", {}),
        resolved_columns=metadata.get("resolved_columns", {}),
        sample=loaded.rows[:sample_size],
    )


@router.delete("/{upload_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_upload(
    upload_id: UUID,
    datasets: UploadedDatasetService = Depends(get_dataset_service),
) -> Response:
    try:
        datasets.delete(upload_id)
    except UploadNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except UploadPersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to delete uploaded dataset.",
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _to_summary_response(record: UploadedFile) -> UploadSummaryResponse:
    return UploadSummaryResponse(
        upload_id=record.id,
        file_name=record.file_name,
        file_type=record.file_type,
        column_name=record.column_name,
        row_count=record.row_count,
        created_at=record.created_at,
    )
