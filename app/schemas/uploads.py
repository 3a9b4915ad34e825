"""
app/schemas/uploads.py

Response schemas for stored tracking uploads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class UploadSummaryResponse(BaseModel):
    upload_id: UUID
    file_name: str
    file_type: str
    column_name: str
    row_count: int = Field(..., ge=0)
    created_at: datetime | None = None


class UploadDetailResponse(UploadSummaryResponse):
    """
    Upload with its aggregated summary and the first rows of the file.
    """

    frequency_map: dict[str, int] = Field(default_factory=dict)
    uf_list: list[str] = Field(default_factory=list)
    uf_to_units: dict[str, list[str]] = Field(default_factory=dict)
    city_by_code: dict[str, dict[str, int]] = Field(default_factory=dict)
    resolved_columns: dict[str, Any] = Field(default_factory=dict)
    sample: list[dict[str, Any]] = Field(default_factory=list)


class UploadListResponse(BaseModel):
    uploads: list[UploadSummaryResponse] = Field(default_factory=list)
