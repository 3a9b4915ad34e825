"""
Repository layer exports.
"""

from db.repositories.compression import (
    DatasetDecompressionError,
    chunked_b64encode,
    compress_rows,
    decompress_rows,
)
from db.repositories.errors import UploadNotFoundError, UploadPersistenceError, UploadRepositoryError
from db.repositories.uploaded_file_repository import UploadedFileRepository, rows_from_record

__all__ = [
    "UploadedFileRepository",
    "rows_from_record",
    "chunked_b64encode",
    "compress_rows",
    "decompress_rows",
    "DatasetDecompressionError",
    "UploadNotFoundError",
    "UploadPersistenceError",
    "UploadRepositoryError",
]
