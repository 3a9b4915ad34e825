"""
app/schemas/ingestion_run.py

Schemas for ingestion run trigger, status and cancel endpoints.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class IngestionRunAcceptedResponse(BaseModel):
    run_id: UUID
    file_name: str
    file_type: str
    status: str
    created_at: datetime


class IngestionRunStatusResponse(BaseModel):
    run_id: UUID
    file_name: str
    file_type: str
    status: str
    progress: int = Field(..., ge=0, le=100)
    message: str = ""
    upload_id: UUID | None = None
    row_count: int | None = None
    error_title: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class IngestionRunListResponse(BaseModel):
    runs: list[IngestionRunStatusResponse] = Field(default_factory=list)
