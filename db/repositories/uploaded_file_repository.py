"""
Repository for uploaded tracking files.

Row arrays are stored gzip+base64 compressed by default; records written
before compression existed hold the raw JSON array and are still readable.
"""

from __future__ import annotations

import logging
import uuid
from functools import lru_cache
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.domain.tracking import ProcessedDataset
from db.models.uploaded_file import UploadedFile
from db.repositories.compression import DatasetDecompressionError, compress_rows, decompress_rows
from db.repositories.errors import UploadNotFoundError, UploadPersistenceError

logger = logging.getLogger(__name__)

COMPRESSED_FLAG = "compressed"


def is_compressed(record: UploadedFile) -> bool:
    return bool((record.file_metadata or {}).get(COMPRESSED_FLAG))


def rows_from_record(record: UploadedFile) -> list[dict[str, Any]]:
    """
    Rebuild the original row array from either storage representation.
    """

    payload = record.raw_data
    if is_compressed(record):
        if not isinstance(payload, str):
            raise DatasetDecompressionError("Os dados compartilhados estão corrompidos.")
        return decompress_rows(payload)

    if isinstance(payload, list):
        return payload
    raise DatasetDecompressionError("Os dados compartilhados estão corrompidos.")


class UploadedFileRepository:
    """
    Persists, loads and deletes uploaded datasets.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        compress: bool = True,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory
        self._compress = compress

    def save_dataset(
        self,
        dataset: ProcessedDataset,
        *,
        replaces: uuid.UUID | None = None,
    ) -> UploadedFile:
        """
        Store one processed dataset, deleting ``replaces`` in the same transaction.
        """

        rows = [dict(row) for row in dataset.full]
        metadata = dataset.meta.to_dict()
        metadata[COMPRESSED_FLAG] = self._compress
        raw_data: Any = compress_rows(rows) if self._compress else rows

        record = UploadedFile(
            file_name=dataset.meta.file_name,
            file_type=dataset.meta.file_type,
            column_name=dataset.meta.column_name,
            row_count=dataset.row_count,
            file_metadata=metadata,
            raw_data=raw_data,
        )
        try:
            with self._session_factory() as session:
                with session.begin():
                    if replaces is not None:
                        previous = session.get(UploadedFile, replaces)
                        if previous is not None:
                            session.delete(previous)
                    session.add(record)
                    session.flush()
                    session.refresh(record)
        except SQLAlchemyError as exc:
            logger.exception("Failed to persist upload file=%r", dataset.meta.file_name)
            raise UploadPersistenceError("Failed to persist uploaded dataset.") from exc

        logger.info(
            "Upload stored id=%s file=%r rows=%d compressed=%s",
            record.id,
            record.file_name,
            record.row_count,
            self._compress,
        )
        return record

    def get(self, upload_id: uuid.UUID) -> UploadedFile:
        with self._session_factory() as session:
            record = session.get(UploadedFile, upload_id)
        if record is None:
            raise UploadNotFoundError(f"Upload not found: {upload_id}")
        return record

    def load_rows(self, upload_id: uuid.UUID) -> list[dict[str, Any]]:
        return rows_from_record(self.get(upload_id))

    def list_recent(self, *, limit: int = 50) -> list[UploadedFile]:
        stmt: Select[tuple[UploadedFile]] = (
            select(UploadedFile)
            .order_by(UploadedFile.created_at.desc())
            .limit(max(1, limit))
        )
        with self._session_factory() as session:
            return list(session.scalars(stmt).all())

    def delete(self, upload_id: uuid.UUID) -> None:
        try:
            with self._session_factory() as session:
                with session.begin():
                    record = session.get(UploadedFile, upload_id)
                    if record is None:
                        raise UploadNotFoundError(f"Upload not found: {upload_id}")
                    session.delete(record)
        except SQLAlchemyError as exc:
            logger.exception("Failed to delete upload id=%s", upload_id)
            raise UploadPersistenceError("Failed to delete uploaded dataset.") from exc
        logger.info("Upload deleted id=%s", upload_id)


@lru_cache(maxsize=1)
def get_uploaded_file_repository() -> UploadedFileRepository:
    return UploadedFileRepository()
