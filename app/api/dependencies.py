"""
app/api/dependencies.py

Shared FastAPI dependencies for request validation and metric scoping.
"""

from __future__ import annotations

from fastapi import File, HTTPException, Query, UploadFile, status

from app.domain.tracking import SUPPORTED_FILE_TYPES
from metrics.filters import FilterSelection

TRACKING_EXTENSIONS = tuple(f".{file_type}" for file_type in SUPPORTED_FILE_TYPES)


def get_tracking_upload(file: UploadFile = File(...)) -> UploadFile:
    """
    Validate that the uploaded file is a CSV, XLSX or SSWWEB export by extension.
    """

    filename = (file.filename or "").strip().lower()
    if not filename.endswith(TRACKING_EXTENSIONS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "title": "Formato inválido",
                "message": "Por favor, selecione um arquivo CSV, XLSX ou SSWWEB.",
            },
        )

    return file


def _split_csv(values: list[str] | None) -> list[str] | None:
    if values is None:
        return None
    return [item.strip() for value in values for item in value.split(",") if item.strip()]


def get_filter_selection(
    uf: str | None = Query(default=None, description="UF to filter by; omit or 'all' for every UF"),
    units: list[str] | None = Query(default=None, description="Units to keep (repeat or comma-separate)"),
    codes: list[str] | None = Query(default=None, description="Occurrence codes to select (repeat or comma-separate)"),
) -> FilterSelection:
    return FilterSelection.build(uf=uf, units=_split_csv(units), codes=_split_csv(codes))
