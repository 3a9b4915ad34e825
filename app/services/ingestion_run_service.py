"""
app/services/ingestion_run_service.py

Background ingestion runs with progress tracking and cancellation.

Runs live in an in-process registry: a run is created when a file is
accepted, executed as a background task, and its status, progress and
outcome are polled by id. The registry map is the only shared mutable
state and is guarded by a lock; the rows being ingested are owned by the
run's own thread.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Protocol

from fastapi import BackgroundTasks, UploadFile

from aggregation.channel import CancellationToken
from app.parsing.errors import IngestionInputError
from app.services.dataset_service import get_dataset_service
from app.services.ingestion_service import (
    MESSAGE_CANCELLED,
    ProgressTracker,
    StreamingIngestor,
    detect_file_type,
    get_ingestion_service,
)
from db.repositories.errors import UploadPersistenceError
from db.repositories.uploaded_file_repository import UploadedFileRepository, get_uploaded_file_repository

logger = logging.getLogger(__name__)

MAX_TRACKED_RUNS = 200
UPLOAD_CHUNK_BYTES = 1024 * 1024

PERSISTENCE_ERROR_TITLE = "Erro ao salvar"
PERSISTENCE_ERROR_MESSAGE = "Não foi possível salvar o arquivo processado."
UNEXPECTED_ERROR_TITLE = "Erro inesperado"
UNEXPECTED_ERROR_MESSAGE = "Não foi possível processar o arquivo."


class IngestionRunStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {IngestionRunStatus.COMPLETED, IngestionRunStatus.CANCELLED, IngestionRunStatus.FAILED}
)


class IngestionTaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestionRun:
    id: uuid.UUID
    file_name: str
    file_type: str
    status: str = IngestionRunStatus.PENDING
    progress: int = 0
    message: str = ""
    upload_id: uuid.UUID | None = None
    row_count: int | None = None
    error_title: str | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    token: CancellationToken = field(default_factory=CancellationToken, repr=False, compare=False)

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES


class IngestionRunService:
    """
    Starts ingestion runs in the background and tracks them until they finish.
    """

    def __init__(
        self,
        *,
        ingestor: StreamingIngestor | None = None,
        repository: UploadedFileRepository | None = None,
        max_tracked_runs: int = MAX_TRACKED_RUNS,
        on_upload_replaced: Callable[[uuid.UUID], None] | None = None,
    ) -> None:
        self._ingestor = ingestor or get_ingestion_service()
        self._repository = repository or get_uploaded_file_repository()
        self._on_upload_replaced = on_upload_replaced
        self._max_tracked_runs = max(1, max_tracked_runs)
        self._runs: OrderedDict[uuid.UUID, IngestionRun] = OrderedDict()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def trigger_ingestion(
        self,
        *,
        executor: IngestionTaskExecutor,
        upload_file: UploadFile,
        replaces: uuid.UUID | None = None,
    ) -> IngestionRun:
        """
        Accept an upload and schedule its ingestion.

        Unsupported file types are rejected here, before anything is queued.
        """

        file_name = upload_file.filename or "upload.csv"
        file_type = detect_file_type(file_name)
        temp_file_path = self._persist_temp_upload(upload_file)

        run = IngestionRun(id=uuid.uuid4(), file_name=file_name, file_type=file_type)
        with self._lock:
            self._runs[run.id] = run
            self._prune_locked()

        try:
            executor.submit(self._run_ingestion, run.id, temp_file_path, replaces)
        except Exception:
            self._delete_file_quietly(temp_file_path)
            self._update(
                run.id,
                status=IngestionRunStatus.FAILED,
                error_title=UNEXPECTED_ERROR_TITLE,
                error_message="Falha ao agendar o processamento.",
            )
            raise

        logger.info("Ingestion run accepted id=%s file=%r type=%s", run.id, file_name, file_type)
        return self.get_run(run.id) or run

    def get_run(self, run_id: uuid.UUID) -> IngestionRun | None:
        with self._lock:
            run = self._runs.get(run_id)
            return replace(run) if run is not None else None

    def list_runs(self) -> list[IngestionRun]:
        with self._lock:
            return [replace(run) for run in reversed(self._runs.values())]

    def cancel_run(self, run_id: uuid.UUID) -> IngestionRun | None:
        """
        Request cancellation; calling it again, or on a finished run, changes nothing.
        """

        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                return None
            if not run.finished:
                run.token.cancel()
                if run.status == IngestionRunStatus.PENDING:
                    run.status = IngestionRunStatus.CANCELLED
                    run.progress = 0
                    run.message = MESSAGE_CANCELLED
                run.updated_at = _utcnow()
                logger.info("Ingestion run cancellation requested id=%s", run_id)
            return replace(run)

    # ------------------------------------------------------------------
    # Background task
    # ------------------------------------------------------------------

    def _run_ingestion(
        self,
        run_id: uuid.UUID,
        temp_file_path: str,
        replaces: uuid.UUID | None,
    ) -> None:
        try:
            with self._lock:
                run = self._runs.get(run_id)
                if run is None or run.finished:
                    return
                run.status = IngestionRunStatus.RUNNING
                run.updated_at = _utcnow()
                token = run.token
                file_name = run.file_name

            tracker = ProgressTracker(lambda percent, message: self._update(run_id, progress=percent, message=message))
            dataset = self._ingestor.ingest_path(
                temp_file_path,
                file_name=file_name,
                token=token,
                progress=tracker,
            )
            if dataset is None:
                self._update(run_id, status=IngestionRunStatus.CANCELLED, progress=0, message=MESSAGE_CANCELLED)
                return

            record = self._repository.save_dataset(dataset, replaces=replaces)
            if replaces is not None and self._on_upload_replaced is not None:
                self._on_upload_replaced(replaces)
            self._update(
                run_id,
                status=IngestionRunStatus.COMPLETED,
                upload_id=record.id,
                row_count=record.row_count,
            )
        except IngestionInputError as exc:
            logger.warning("Ingestion run rejected id=%s reason=%s", run_id, exc)
            self._fail(run_id, exc.title, str(exc))
        except UploadPersistenceError:
            logger.exception("Ingestion run could not be stored id=%s", run_id)
            self._fail(run_id, PERSISTENCE_ERROR_TITLE, PERSISTENCE_ERROR_MESSAGE)
        except Exception:
            logger.exception("Ingestion run failed id=%s", run_id)
            self._fail(run_id, UNEXPECTED_ERROR_TITLE, UNEXPECTED_ERROR_MESSAGE)
        finally:
            self._delete_file_quietly(temp_file_path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fail(self, run_id: uuid.UUID, title: str, message: str) -> None:
        self._update(
            run_id,
            status=IngestionRunStatus.FAILED,
            progress=0,
            error_title=title,
            error_message=message,
        )

    def _update(self, run_id: uuid.UUID, **changes: Any) -> None:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                return
            for name, value in changes.items():
                setattr(run, name, value)
            run.updated_at = _utcnow()

    def _prune_locked(self) -> None:
        overflow = len(self._runs) - self._max_tracked_runs
        if overflow <= 0:
            return
        for run_id in [run_id for run_id, run in self._runs.items() if run.finished][:overflow]:
            del self._runs[run_id]

    def _persist_temp_upload(self, upload_file: UploadFile) -> str:
        file_name = upload_file.filename or "upload.csv"
        _, ext = os.path.splitext(file_name)
        suffix = ext if ext else ".csv"
        upload_file.file.seek(0)

        with tempfile.NamedTemporaryFile(delete=False, prefix="ingestion_run_", suffix=suffix) as temp_file:
            while True:
                chunk = upload_file.file.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                temp_file.write(chunk)
            temp_path = temp_file.name

        upload_file.file.seek(0)
        return temp_path

    def _delete_file_quietly(self, file_path: str) -> None:
        try:
            os.remove(file_path)
        except OSError:
            return


@lru_cache(maxsize=1)
def get_ingestion_run_service() -> IngestionRunService:
    return IngestionRunService(on_upload_replaced=get_dataset_service().evict)
