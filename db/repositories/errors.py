"""
Repository-layer exceptions for the uploads store.
"""

from __future__ import annotations

from db.repositories.compression import DatasetDecompressionError


class UploadRepositoryError(Exception):
    """Base exception for upload repository failures."""


class UploadNotFoundError(UploadRepositoryError):
    """Raised when an upload id does not exist."""


class UploadPersistenceError(UploadRepositoryError, RuntimeError):
    """Raised when an upload record cannot be written or deleted."""


__all__ = [
    "DatasetDecompressionError",
    "UploadNotFoundError",
    "UploadPersistenceError",
    "UploadRepositoryError",
]
