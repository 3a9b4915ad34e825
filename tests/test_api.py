"""
tests/test_api.py

HTTP surface: ingestion runs, stored uploads and per-upload metrics.
"""

from __future__ import annotations

import unittest
import uuid

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from aggregation.channel import AggregationChannel
from app.config import MetricsSettings
from app.main import create_app
from app.services.dataset_service import UploadedDatasetService, get_dataset_service
from app.services.ingestion_run_service import IngestionRunService, get_ingestion_run_service
from app.services.ingestion_service import StreamingIngestor
from app.services.lookups import DeadlineTable, DriverDirectory
from db.base import Base
from db.models.uploaded_file import UploadedFile
from db.repositories.uploaded_file_repository import UploadedFileRepository
from db.session import build_session_factory

CSV_PAYLOAD = "\n".join(
    [
        "Serie/Numero CTRC;Codigo da Ultima Ocorrencia;Cidade de Entrega;UF de Entrega;"
        "Unidade Receptora;Placa de Entrega;Data da Ultima Ocorrencia",
        "A1;1;Blumenau;SC;BLU;ABC1D23;10/06/2024",
        "A2;26;Gaspar;SC;BLU;ABC1D23;10/06/2024",
        "A3;59;Curitiba;PR;CTB;XYZ9K88;11/06/2024",
        "A4;1;Blumenau;SC;BLU;XYZ9K88;11/06/2024",
    ]
).encode("utf-8")


class TrackingApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine, tables=[UploadedFile.__table__])
        repository = UploadedFileRepository(session_factory=build_session_factory(self.engine))

        run_service = IngestionRunService(
            ingestor=StreamingIngestor(
                batch_size=2,
                sample_size=10,
                channel_factory=lambda: AggregationChannel(executor_kind="thread", poll_interval=0.01),
            ),
            repository=repository,
        )
        dataset_service = UploadedDatasetService(
            repository=repository,
            deadlines=DeadlineTable(),
            drivers=DriverDirectory({("ABC1D23", "BLU"): "Joao Silva"}),
            settings=MetricsSettings(),
        )

        app = create_app(check_database=False)
        app.dependency_overrides[get_ingestion_run_service] = lambda: run_service
        app.dependency_overrides[get_dataset_service] = lambda: dataset_service
        self.client = TestClient(app)

    def tearDown(self) -> None:
        self.client.close()
        self.engine.dispose()

    def _ingest(self) -> dict:
        response = self.client.post(
            "/ingestions",
            files={"file": ("export.csv", CSV_PAYLOAD, "text/csv")},
        )
        self.assertEqual(response.status_code, 202)
        run_id = response.json()["run_id"]

        status_response = self.client.get(f"/ingestions/{run_id}")
        self.assertEqual(status_response.status_code, 200)
        return status_response.json()

    def _metrics(self, upload_id: str, path: str, **params) -> dict:
        response = self.client.get(f"/uploads/{upload_id}/metrics/{path}", params=params)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.json(), {"status": "ok"})

    def test_ingestion_run_completes(self) -> None:
        run = self._ingest()

        self.assertEqual(run["status"], "completed")
        self.assertEqual(run["progress"], 100)
        self.assertEqual(run["row_count"], 4)
        self.assertIsNotNone(run["upload_id"])

        listing = self.client.get("/ingestions").json()
        self.assertEqual([item["run_id"] for item in listing["runs"]], [run["run_id"]])

    def test_rejects_unsupported_extension(self) -> None:
        response = self.client.post(
            "/ingestions",
            files={"file": ("report.pdf", b"%PDF-1.4", "application/pdf")},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["title"], "Formato inválido")

    def test_failed_run_reports_title_and_message(self) -> None:
        response = self.client.post(
            "/ingestions",
            files={"file": ("export.csv", b"", "text/csv")},
        )
        run = self.client.get(f"/ingestions/{response.json()['run_id']}").json()

        self.assertEqual(run["status"], "failed")
        self.assertEqual(run["error_message"], "Arquivo vazio")

    def test_unknown_run(self) -> None:
        missing = uuid.uuid4()
        self.assertEqual(self.client.get(f"/ingestions/{missing}").status_code, 404)
        self.assertEqual(self.client.post(f"/ingestions/{missing}/cancel").status_code, 404)

    def test_cancel_finished_run_is_a_no_op(self) -> None:
        run = self._ingest()
        response = self.client.post(f"/ingestions/{run['run_id']}/cancel")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "completed")

    def test_upload_detail_and_listing(self) -> None:
        upload_id = self._ingest()["upload_id"]

        detail = self.client.get(f"/uploads/{upload_id}").json()
        self.assertEqual(detail["frequency_map"], {"1": 2, "26": 1, "59": 1})
        self.assertEqual(detail["uf_list"], ["PR", "SC"])
        self.assertEqual(detail["sample"][0]["Serie/Numero CTRC"], "A1")
        self.assertEqual(detail["resolved_columns"]["plate"]["key"], "Placa de Entrega")

        listing = self.client.get("/uploads", params={"limit": 5}).json()
        self.assertEqual([item["upload_id"] for item in listing["uploads"]], [upload_id])

    def test_delete_upload(self) -> None:
        upload_id = self._ingest()["upload_id"]
        self._metrics(upload_id, "codes")

        self.assertEqual(self.client.delete(f"/uploads/{upload_id}").status_code, 204)
        self.assertEqual(self.client.get(f"/uploads/{upload_id}").status_code, 404)
        self.assertEqual(self.client.get(f"/uploads/{upload_id}/metrics/codes").status_code, 404)
        self.assertEqual(self.client.delete(f"/uploads/{upload_id}").status_code, 404)

    def test_codes_and_summary(self) -> None:
        upload_id = self._ingest()["upload_id"]

        codes = self._metrics(upload_id, "codes")
        self.assertEqual(codes["selected_codes"], ["1", "26", "59"])
        self.assertEqual(codes["frequencies"][0], {"code": "1", "count": 2, "percentage": 50.0})

        summary = self._metrics(upload_id, "summary", uf="SC")
        self.assertEqual(summary["rows_in_scope"], 3)
        self.assertEqual(summary["failures"]["count"], 1)
        self.assertEqual(summary["units"], ["BLU"])
        self.assertEqual(summary["late"]["count"], 0)

    def test_code_selection_from_query(self) -> None:
        upload_id = self._ingest()["upload_id"]

        codes = self._metrics(upload_id, "codes", codes="1,59")
        self.assertEqual(codes["selected_codes"], ["1", "59"])
        renormalized = {item["code"]: item["percentage"] for item in codes["renormalized"]}
        self.assertAlmostEqual(renormalized["1"], 200 / 3)
        self.assertEqual(renormalized["26"], 0.0)

    def test_vehicles_and_units(self) -> None:
        upload_id = self._ingest()["upload_id"]

        vehicles = self._metrics(upload_id, "vehicles", uf="SC")["vehicles"]
        self.assertEqual([item["plate"] for item in vehicles], ["ABC1D23", "XYZ9K88"])
        self.assertEqual(vehicles[0]["failed"], 1)

        units = self._metrics(upload_id, "units", kind="failures")["units"]
        self.assertEqual([(item["unit"], item["count"], item["total"]) for item in units], [("BLU", 1, 3), ("CTB", 0, 1)])

        filtered = self._metrics(upload_id, "units", kind="failures", units=["CTB"])["units"]
        self.assertEqual([item["unit"] for item in filtered], ["CTB"])

    def test_invalid_unit_metric(self) -> None:
        upload_id = self._ingest()["upload_id"]

        response = self.client.get(f"/uploads/{upload_id}/metrics/units", params={"kind": "weather"})
        self.assertEqual(response.status_code, 400)

    def test_offenders(self) -> None:
        upload_id = self._ingest()["upload_id"]

        ranking = self._metrics(upload_id, "offenders")
        self.assertEqual(ranking["by_code"][0]["key"], "26")
        self.assertEqual(ranking["by_driver"][0]["driver"], "Joao Silva")
        self.assertEqual(ranking["total_rows"], 4)
        self.assertEqual(ranking["total_failures"], 1)

        selected = self._metrics(upload_id, "offenders", codes="1,59")
        self.assertEqual([item["key"] for item in selected["by_code"]], ["1", "59"])
        self.assertEqual(selected["total_failures"], 3)

    def test_drilldown(self) -> None:
        upload_id = self._ingest()["upload_id"]

        result = self._metrics(upload_id, "drilldown", code="1")
        self.assertEqual(
            [(item["dimension_a"], item["dimension_b"]) for item in result["records"]],
            [("Blumenau", "10/06/2024"), ("Blumenau", "11/06/2024")],
        )
        self.assertEqual(result["unit_by_city"], {"Blumenau": "BLU"})

        failures = self._metrics(upload_id, "drilldown", view="code_date")
        self.assertEqual(failures["records"][0]["tracking_ids"], ["A2"])

        response = self.client.get(f"/uploads/{upload_id}/metrics/drilldown", params={"view": "map"})
        self.assertEqual(response.status_code, 400)

    def test_metrics_for_unknown_upload(self) -> None:
        response = self.client.get(f"/uploads/{uuid.uuid4()}/metrics/summary")
        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":
    unittest.main()
