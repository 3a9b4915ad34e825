"""
tests/test_ingestion_run_service.py

Background ingestion runs: lifecycle, failures, cancellation and pruning.
"""

from __future__ import annotations

import io
import os
import unittest
import uuid
from typing import Any, Callable

from fastapi import UploadFile
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from aggregation.channel import AggregationChannel
from app.domain.tracking import TARGET_COLUMN_NAME
from app.parsing.errors import UnsupportedFileTypeError
from app.services.ingestion_run_service import (
    PERSISTENCE_ERROR_TITLE,
    UNEXPECTED_ERROR_TITLE,
    IngestionRunService,
    IngestionRunStatus,
)
from app.services.ingestion_service import MESSAGE_CANCELLED, StreamingIngestor
from db.base import Base
from db.models.uploaded_file import UploadedFile
from db.repositories.errors import UploadPersistenceError
from db.repositories.uploaded_file_repository import UploadedFileRepository
from db.session import build_session_factory

CSV_PAYLOAD = (
    f"CTRC;{TARGET_COLUMN_NAME};UF de Entrega;Unidade Receptora\n"
    "A1;1;SC;BLU\n"
    "A2;26;SC;JCA\n"
    "A3;59;PR;CTB\n"
).encode("utf-8")


class InlineExecutor:
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        task(*args, **kwargs)


class DeferredExecutor:
    def __init__(self) -> None:
        self.tasks: list[tuple[Callable[..., None], tuple[Any, ...]]] = []

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self.tasks.append((task, args))

    def run_all(self) -> None:
        for task, args in self.tasks:
            task(*args)


class RecordingIngestor:
    """Stands in for the streaming ingestor and records what it was given."""

    def __init__(self, behaviour: Callable[..., Any]) -> None:
        self._behaviour = behaviour
        self.paths: list[str] = []

    def ingest_path(self, path: str, **kwargs: Any) -> Any:
        self.paths.append(path)
        return self._behaviour(path, **kwargs)


class FailingRepository:
    def save_dataset(self, dataset: Any, *, replaces: uuid.UUID | None = None) -> Any:
        raise UploadPersistenceError("database is gone")


def _upload(payload: bytes = CSV_PAYLOAD, file_name: str = "export.csv") -> UploadFile:
    return UploadFile(file=io.BytesIO(payload), filename=file_name)


class IngestionRunServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine, tables=[UploadedFile.__table__])
        self.repository = UploadedFileRepository(session_factory=build_session_factory(self.engine))
        self.ingestor = StreamingIngestor(
            batch_size=2,
            sample_size=10,
            channel_factory=lambda: AggregationChannel(executor_kind="thread", poll_interval=0.01),
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _service(self, **overrides: Any) -> IngestionRunService:
        options: dict[str, Any] = {"ingestor": self.ingestor, "repository": self.repository}
        options.update(overrides)
        return IngestionRunService(**options)

    def test_completed_run_stores_the_upload(self) -> None:
        service = self._service()

        run = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())

        self.assertEqual(run.status, IngestionRunStatus.COMPLETED)
        self.assertEqual(run.progress, 100)
        self.assertEqual(run.row_count, 3)
        self.assertEqual(run.file_type, "csv")
        stored = self.repository.get(run.upload_id)
        self.assertEqual(stored.file_metadata["frequency_map"], {"1": 1, "26": 1, "59": 1})

    def test_replaces_previous_upload(self) -> None:
        evicted: list[uuid.UUID] = []
        service = self._service(on_upload_replaced=evicted.append)
        first = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())

        second = service.trigger_ingestion(
            executor=InlineExecutor(),
            upload_file=_upload(),
            replaces=first.upload_id,
        )

        self.assertEqual(second.status, IngestionRunStatus.COMPLETED)
        self.assertEqual([record.id for record in self.repository.list_recent()], [second.upload_id])
        self.assertEqual(evicted, [first.upload_id])

    def test_input_error_fails_the_run(self) -> None:
        header = ";".join(f"Coluna {index}" for index in range(10))
        service = self._service()

        run = service.trigger_ingestion(
            executor=InlineExecutor(),
            upload_file=_upload(f"{header}\n{header}\n".encode("utf-8")),
        )

        self.assertEqual(run.status, IngestionRunStatus.FAILED)
        self.assertEqual(run.progress, 0)
        self.assertEqual(run.error_title, "Estrutura de arquivo inválida")
        self.assertEqual(
            run.error_message,
            "Arquivo tem apenas 10 colunas. É necessário ter pelo menos 33 colunas.",
        )

    def test_unsupported_type_is_rejected_before_queueing(self) -> None:
        service = self._service()
        executor = DeferredExecutor()

        with self.assertRaises(UnsupportedFileTypeError):
            service.trigger_ingestion(executor=executor, upload_file=_upload(file_name="report.pdf"))

        self.assertEqual(executor.tasks, [])
        self.assertEqual(service.list_runs(), [])

    def test_persistence_failure(self) -> None:
        service = self._service(repository=FailingRepository())

        run = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())

        self.assertEqual(run.status, IngestionRunStatus.FAILED)
        self.assertEqual(run.error_title, PERSISTENCE_ERROR_TITLE)

    def test_unexpected_failure_hides_details(self) -> None:
        def explode(path: str, **kwargs: Any) -> None:
            raise RuntimeError("disk on fire")

        ingestor = RecordingIngestor(explode)
        service = self._service(ingestor=ingestor)

        run = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())

        self.assertEqual(run.status, IngestionRunStatus.FAILED)
        self.assertEqual(run.error_title, UNEXPECTED_ERROR_TITLE)
        self.assertNotIn("disk on fire", run.error_message)
        self.assertFalse(os.path.exists(ingestor.paths[0]))

    def test_temp_upload_holds_the_file_and_is_removed(self) -> None:
        contents: list[bytes] = []

        def capture(path: str, **kwargs: Any) -> None:
            with open(path, "rb") as handle:
                contents.append(handle.read())
            kwargs["token"].cancel()
            return None

        ingestor = RecordingIngestor(capture)
        service = self._service(ingestor=ingestor)

        run = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())

        self.assertEqual(contents, [CSV_PAYLOAD])
        self.assertTrue(ingestor.paths[0].endswith(".csv"))
        self.assertFalse(os.path.exists(ingestor.paths[0]))
        self.assertEqual(run.status, IngestionRunStatus.CANCELLED)
        self.assertEqual((run.progress, run.message), (0, MESSAGE_CANCELLED))

    def test_cancel_pending_run_is_idempotent(self) -> None:
        ingestor = RecordingIngestor(lambda path, **kwargs: self.fail("cancelled run must not start"))
        service = self._service(ingestor=ingestor)
        executor = DeferredExecutor()

        run = service.trigger_ingestion(executor=executor, upload_file=_upload())
        self.assertEqual(run.status, IngestionRunStatus.PENDING)

        first = service.cancel_run(run.id)
        second = service.cancel_run(run.id)
        executor.run_all()

        self.assertEqual(first.status, IngestionRunStatus.CANCELLED)
        self.assertEqual(second.status, IngestionRunStatus.CANCELLED)
        self.assertEqual(service.get_run(run.id).status, IngestionRunStatus.CANCELLED)
        self.assertEqual(ingestor.paths, [])

    def test_cancel_finished_run_changes_nothing(self) -> None:
        service = self._service()
        run = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())

        self.assertEqual(service.cancel_run(run.id).status, IngestionRunStatus.COMPLETED)
        self.assertIsNone(service.cancel_run(uuid.uuid4()))

    def test_runs_are_returned_as_copies(self) -> None:
        service = self._service()
        run = service.trigger_ingestion(executor=DeferredExecutor(), upload_file=_upload())

        run.status = "tampered"

        self.assertEqual(service.get_run(run.id).status, IngestionRunStatus.PENDING)

    def test_list_and_prune(self) -> None:
        service = self._service(max_tracked_runs=2)

        first = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())
        second = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())
        third = service.trigger_ingestion(executor=InlineExecutor(), upload_file=_upload())

        self.assertEqual([run.id for run in service.list_runs()], [third.id, second.id])
        self.assertIsNone(service.get_run(first.id))


if __name__ == "__main__":
    unittest.main()
