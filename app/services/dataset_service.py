"""
app/services/dataset_service.py

Loads stored uploads into memory and hands out metric engines for them.

Decompressing a large upload is the expensive step of every metric
request, so the most recently used datasets are kept in memory. Cached
rows are never modified; deleting an upload evicts it.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from app.config import MetricsSettings, get_metrics_settings
from app.services.lookups import DeadlineLookup, DriverLookup, get_deadline_lookup, get_driver_lookup
from db.models.uploaded_file import UploadedFile
from db.repositories.uploaded_file_repository import (
    UploadedFileRepository,
    get_uploaded_file_repository,
    rows_from_record,
)
from metrics.engine import MetricsEngine

logger = logging.getLogger(__name__)

DEFAULT_CACHED_DATASETS = 4


@dataclass(frozen=True)
class LoadedDataset:
    record: UploadedFile
    rows: list[dict[str, Any]]
    engine: MetricsEngine


class UploadedDatasetService:
    """
    Read access to stored uploads as in-memory datasets.
    """

    def __init__(
        self,
        *,
        repository: UploadedFileRepository | None = None,
        deadlines: DeadlineLookup | None = None,
        drivers: DriverLookup | None = None,
        settings: MetricsSettings | None = None,
        max_cached: int = DEFAULT_CACHED_DATASETS,
    ) -> None:
        self._repository = repository or get_uploaded_file_repository()
        self._deadlines = deadlines if deadlines is not None else get_deadline_lookup()
        self._drivers = drivers if drivers is not None else get_driver_lookup()
        self._settings = settings or get_metrics_settings()
        self._max_cached = max(0, max_cached)
        self._cache: OrderedDict[uuid.UUID, LoadedDataset] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def repository(self) -> UploadedFileRepository:
        return self._repository

    def load(self, upload_id: uuid.UUID) -> LoadedDataset:
        """
        Return the dataset for ``upload_id``.

        Raises UploadNotFoundError for unknown ids and DatasetDecompressionError
        when the stored rows cannot be decoded.
        """

        with self._lock:
            cached = self._cache.get(upload_id)
            if cached is not None:
                self._cache.move_to_end(upload_id)
                return cached

        record = self._repository.get(upload_id)
        rows = rows_from_record(record)
        engine = MetricsEngine.from_dataset(
            rows,
            record.file_metadata or {"column_name": record.column_name},
            deadlines=self._deadlines,
            drivers=self._drivers,
            settings=self._settings,
        )
        loaded = LoadedDataset(record=record, rows=rows, engine=engine)
        logger.info("Dataset loaded id=%s rows=%d", upload_id, len(rows))

        if self._max_cached:
            with self._lock:
                self._cache[upload_id] = loaded
                self._cache.move_to_end(upload_id)
                while len(self._cache) > self._max_cached:
                    self._cache.popitem(last=False)
        return loaded

    def engine_for(self, upload_id: uuid.UUID) -> MetricsEngine:
        return self.load(upload_id).engine

    def delete(self, upload_id: uuid.UUID) -> None:
        self.evict(upload_id)
        self._repository.delete(upload_id)

    def evict(self, upload_id: uuid.UUID) -> None:
        with self._lock:
            self._cache.pop(upload_id, None)


@lru_cache(maxsize=1)
def get_dataset_service() -> UploadedDatasetService:
    return UploadedDatasetService()
