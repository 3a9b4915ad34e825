"""
app/api/routers/ingestions.py

Tracking file ingestion run endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, UploadFile, status

from app.api.dependencies import get_tracking_upload
from app.parsing.errors import IngestionInputError
from app.schemas.ingestion_run import (
    IngestionRunAcceptedResponse,
    IngestionRunListResponse,
    IngestionRunStatusResponse,
)
from app.services.ingestion_run_service import (
    FastAPIBackgroundTaskExecutor,
    IngestionRun,
    IngestionRunService,
    get_ingestion_run_service,
)

router = APIRouter(prefix="/ingestions", tags=["ingestions"])


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=IngestionRunAcceptedResponse,
)
def trigger_ingestion(
    background_tasks: BackgroundTasks,
    file: UploadFile = Depends(get_tracking_upload),
    replaces: UUID | None = Query(default=None, description="Upload to delete once the new file is stored"),
    run_service: IngestionRunService = Depends(get_ingestion_run_service),
) -> IngestionRunAcceptedResponse:
    """
    Accept a tracking file and ingest it in the background.
    """

    try:
        run = run_service.trigger_ingestion(
            executor=FastAPIBackgroundTaskExecutor(background_tasks),
            upload_file=file,
            replaces=replaces,
        )
    except IngestionInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.to_dict(),
        ) from exc
    finally:
        file.file.close()

    return IngestionRunAcceptedResponse(
        run_id=run.id,
        file_name=run.file_name,
        file_type=run.file_type,
        status=run.status,
        created_at=run.created_at,
    )


@router.get("", response_model=IngestionRunListResponse)
def list_ingestions(
    run_service: IngestionRunService = Depends(get_ingestion_run_service),
) -> IngestionRunListResponse:
    return IngestionRunListResponse(runs=[_to_status_response(run) for run in run_service.list_runs()])


@router.get("/{run_id}", response_model=IngestionRunStatusResponse)
def get_ingestion(
    run_id: UUID,
    run_service: IngestionRunService = Depends(get_ingestion_run_service),
) -> IngestionRunStatusResponse:
    run = run_service.get_run(run_id)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Ingestion run not found: {run_id}",
        )
    return _to_status_response(run)


@router.post("/{run_id}/cancel", response_model=IngestionRunStatusResponse)
def cancel_ingestion(
    run_id: UUID,
    run_service: IngestionRunService = Depends(get_ingestion_run_service),
) -> IngestionRunStatusResponse:
    run = run_service.cancel_run(run_id)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Ingestion run not found: {run_id}",
        )
    return _to_status_response(run)


def _to_status_response(run: IngestionRun) -> IngestionRunStatusResponse:
    return IngestionRunStatusResponse(
        run_id=run.id,
        file_name=run.file_name,
        file_type=run.file_type,
        status=run.status,
        progress=run.progress,
        message=run.message,
        upload_id=run.upload_id,
        row_count=run.row_count,
        error_title=run.error_title,
        error_message=run.error_message,
        created_at=run.created_at,
        updated_at=run.updated_at,
    )
