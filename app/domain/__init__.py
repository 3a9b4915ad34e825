"""
app/domain package marker.
"""

from app.domain.tracking import DatasetMeta, ProcessedDataset, Row, cell_text, row_value

__all__ = [
    "DatasetMeta",
    "ProcessedDataset",
    "Row",
    "cell_text",
    "row_value",
]
