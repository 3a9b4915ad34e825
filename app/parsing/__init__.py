"""
app/parsing package marker.
"""

from app.parsing.dates import (
    BusinessDayInfo,
    business_days_with_weekend_info,
    difference_in_business_days,
    has_weekends_in_range,
    parse_flexible_date,
)
from app.parsing.delimiter import PreprocessedText, detect_delimiter, preprocess_sswweb
from app.parsing.errors import (
    FileStructureError,
    IngestionInputError,
    ParseError,
    UnsupportedFileTypeError,
)

__all__ = [
    "BusinessDayInfo",
    "FileStructureError",
    "IngestionInputError",
    "ParseError",
    "PreprocessedText",
    "UnsupportedFileTypeError",
    "business_days_with_weekend_info",
    "detect_delimiter",
    "difference_in_business_days",
    "has_weekends_in_range",
    "parse_flexible_date",
    "preprocess_sswweb",
]
