"""
app/services package marker.
"""

from app.services.ingestion_service import (
    ProgressTracker,
    StreamingIngestor,
    detect_file_type,
    get_ingestion_service,
)
from app.services.lookups import (
    DeadlineTable,
    DriverDirectory,
    get_deadline_lookup,
    get_driver_lookup,
)

__all__ = [
    "DeadlineTable",
    "DriverDirectory",
    "ProgressTracker",
    "StreamingIngestor",
    "detect_file_type",
    "get_deadline_lookup",
    "get_driver_lookup",
    "get_ingestion_service",
]
