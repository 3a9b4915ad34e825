"""
app/mappers package marker.
"""

from app.mappers.column_resolver import (
    COLUMN_POSITIONS,
    DEFAULT_FIELD_PATTERNS,
    ColumnResolver,
    ResolvedColumn,
    ResolvedColumns,
    resolve_columns,
    resolve_columns_from_rows,
)

__all__ = [
    "COLUMN_POSITIONS",
    "DEFAULT_FIELD_PATTERNS",
    "ColumnResolver",
    "ResolvedColumn",
    "ResolvedColumns",
    "resolve_columns",
    "resolve_columns_from_rows",
]
