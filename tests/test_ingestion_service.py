"""
tests/test_ingestion_service.py

Streaming ingestion of csv, sswweb and xlsx tracking exports.
"""

from __future__ import annotations

import io
import os
import tempfile
import unittest
from datetime import datetime

import pandas as pd
import pytest

from aggregation.channel import AggregationChannel, CancellationToken
from app.domain.tracking import TARGET_COLUMN_NAME
from app.mappers.column_resolver import STRATEGY_PATTERN, STRATEGY_POSITION
from app.parsing.errors import FileStructureError, ParseError, UnsupportedFileTypeError
from app.services.ingestion_service import (
    MESSAGE_CANCELLED,
    ProgressTracker,
    StreamingIngestor,
    dedupe_headers,
    detect_file_type,
    resolve_target_column,
)
from db.repositories.compression import compress_rows, decompress_rows

WIDE_HEADERS = {
    1: "Serie/Numero CTRC",
    32: "Codigo da Ultima Ocorrencia",
    49: "Cidade de Entrega",
    50: "UF de Entrega",
    52: "Unidade Receptora",
    85: "Data do Ultimo Manifesto",
    90: "Placa de Entrega",
    93: "Data da Ultima Ocorrencia",
    97: "Previsao de Entrega",
}

SHIPMENTS = [
    {1: "A-001", 32: "1", 49: "Blumenau", 50: "SC", 52: "BLU", 90: "ABC1D23", 93: "10/06/2024"},
    {1: "A-002", 32: "59", 49: "Gaspar", 50: "SC", 52: "BLU", 90: "ABC1D23", 93: "10/06/2024"},
    {1: "A-003", 32: "26", 49: "Joinville", 50: "SC", 52: "JCA", 90: "XYZ9K88", 93: "11/06/2024"},
    {1: "A-004", 32: "1", 49: "Curitiba", 50: "PR", 52: "CTB", 90: "QWE4R56", 93: "11/06/2024"},
    {1: "A-005", 32: "", 49: "Londrina", 50: "PR", 52: "LDB", 90: "", 93: ""},
]


def _wide_csv(shipments: list[dict[int, str]], *, delimiter: str = ";", width: int = 100) -> bytes:
    header = [WIDE_HEADERS.get(index, f"Coluna {index}") for index in range(width)]
    lines = [delimiter.join(header)]
    for shipment in shipments:
        lines.append(delimiter.join(shipment.get(index, "") for index in range(width)))
    return ("\n".join(lines) + "\n").encode("utf-8")


def _ingestor(*, batch_size: int = 2, sample_size: int = 2) -> StreamingIngestor:
    return StreamingIngestor(
        batch_size=batch_size,
        sample_size=sample_size,
        channel_factory=lambda: AggregationChannel(executor_kind="thread", poll_interval=0.01),
    )


def _ingest(payload: bytes, file_name: str = "export.csv", **kwargs):
    return _ingestor(**kwargs).ingest(io.BytesIO(payload), file_name=file_name)


class TestHelpers:
    @pytest.mark.parametrize(
        "file_name,expected",
        [("export.csv", "csv"), ("EXPORT.XLSX", "xlsx"), ("relatorio.sswweb", "sswweb")],
    )
    def test_detect_file_type(self, file_name: str, expected: str) -> None:
        assert detect_file_type(file_name) == expected

    @pytest.mark.parametrize("file_name", ["report.pdf", "noextension", ""])
    def test_detect_file_type_rejects_others(self, file_name: str) -> None:
        with pytest.raises(UnsupportedFileTypeError):
            detect_file_type(file_name)

    def test_dedupe_headers_keeps_positions(self) -> None:
        assert dedupe_headers(["A", "B", "A", "A", "A_1"]) == ("A", "B", "A_2", "A_3", "A_1")

    def test_target_column_by_substring(self) -> None:
        headers = ["CTRC", f"{TARGET_COLUMN_NAME} (SSW)", "UF"]
        assert resolve_target_column(headers) == f"{TARGET_COLUMN_NAME} (SSW)"

    def test_target_column_by_position(self) -> None:
        headers = [f"Coluna {index}" for index in range(40)]
        assert resolve_target_column(headers) == "Coluna 32"

    def test_target_column_too_narrow(self) -> None:
        with pytest.raises(FileStructureError) as excinfo:
            resolve_target_column([f"Coluna {index}" for index in range(10)])
        assert str(excinfo.value) == "Arquivo tem apenas 10 colunas. É necessário ter pelo menos 33 colunas."


class TestProgressTracker:
    def test_never_moves_backwards_and_caps_before_completion(self) -> None:
        seen: list[int] = []
        tracker = ProgressTracker(lambda percent, message: seen.append(percent))

        tracker.advance(40)
        tracker.advance(20)
        tracker.advance(150)
        tracker.complete()

        assert seen == [40, 40, 95, 100]

    def test_reset(self) -> None:
        tracker = ProgressTracker()
        tracker.advance(60, "x")
        tracker.reset("stopped")
        assert (tracker.percent, tracker.message) == (0, "stopped")


class TestCsvIngestion:
    def test_wide_export_is_aggregated(self) -> None:
        dataset = _ingest(_wide_csv(SHIPMENTS))

        assert dataset is not None
        meta = dataset.meta
        assert meta.column_name == "Codigo da Ultima Ocorrencia"
        assert meta.row_count == 5
        assert meta.frequency_map == {"1": 2, "59": 1, "26": 1}
        assert meta.uf_list == ["PR", "SC"]
        assert meta.uf_to_units == {"SC": ["BLU", "JCA"], "PR": ["CTB", "LDB"]}
        assert meta.city_by_code["1"] == {"Blumenau": 1, "Curitiba": 1}
        assert meta.resolved_columns["plate"]["key"] == "Placa de Entrega"
        assert meta.resolved_columns["occurrence_code"]["index"] == 32
        assert len(dataset.sample) == 2
        assert dataset.full[0]["Serie/Numero CTRC"] == "A-001"

    @pytest.mark.parametrize("batch_size", [1, 2, 3, 1000])
    def test_batch_size_does_not_change_result(self, batch_size: int) -> None:
        baseline = _ingest(_wide_csv(SHIPMENTS), batch_size=1000)
        dataset = _ingest(_wide_csv(SHIPMENTS), batch_size=batch_size)

        assert dataset.meta == baseline.meta
        assert list(dataset.full) == list(baseline.full)

    def test_comma_delimited(self) -> None:
        dataset = _ingest(_wide_csv(SHIPMENTS, delimiter=","))
        assert dataset.meta.frequency_map == {"1": 2, "59": 1, "26": 1}

    def test_blank_rows_are_skipped_and_short_rows_padded(self) -> None:
        payload = f"CTRC;{TARGET_COLUMN_NAME};UF\nA1;1;SC\n;;\n\nA2;59\n".encode("utf-8")
        dataset = _ingest(payload)

        assert dataset.meta.row_count == 2
        assert dataset.full[1] == {"CTRC": "A2", TARGET_COLUMN_NAME: "59", "UF": ""}

    def test_utf8_bom_is_ignored(self) -> None:
        payload = f"\ufeff{TARGET_COLUMN_NAME};UF\n1;SC\n".encode("utf-8")
        dataset = _ingest(payload)
        assert dataset.meta.column_name == TARGET_COLUMN_NAME

    def test_positional_target_column(self) -> None:
        header = ";".join(f"Coluna {index}" for index in range(40))
        row = ";".join("7" if index == 32 else "x" for index in range(40))
        dataset = _ingest(f"{header}\n{row}\n".encode("utf-8"))

        assert dataset.meta.column_name == "Coluna 32"
        assert dataset.meta.frequency_map == {"7": 1}
        assert dataset.meta.resolved_columns["occurrence_code"]["strategy"] == STRATEGY_POSITION

    def test_substring_target_column_is_resolved_by_pattern(self) -> None:
        payload = f"CTRC;{TARGET_COLUMN_NAME} (SSW);UF\nA1;26;SC\n".encode("utf-8")
        dataset = _ingest(payload)

        column = dataset.meta.resolved_columns["occurrence_code"]
        assert column["key"] == f"{TARGET_COLUMN_NAME} (SSW)"
        assert column["strategy"] == STRATEGY_PATTERN


class TestInputErrors:
    def test_narrow_file(self) -> None:
        header = ";".join(f"Coluna {index}" for index in range(10))
        with pytest.raises(FileStructureError) as excinfo:
            _ingest(f"{header}\n{header}\n".encode("utf-8"))
        assert str(excinfo.value) == "Arquivo tem apenas 10 colunas. É necessário ter pelo menos 33 colunas."

    @pytest.mark.parametrize("payload", [b"", f"{TARGET_COLUMN_NAME};UF\n".encode("utf-8"), b"\n\n"])
    def test_empty_file(self, payload: bytes) -> None:
        with pytest.raises(FileStructureError, match="Arquivo vazio"):
            _ingest(payload)

    def test_unsupported_extension(self) -> None:
        with pytest.raises(UnsupportedFileTypeError) as excinfo:
            _ingest(b"irrelevant", file_name="report.pdf")
        assert excinfo.value.title == "Formato inválido"

    def test_invalid_utf8(self) -> None:
        payload = f"{TARGET_COLUMN_NAME};Cidade\n1;".encode("utf-8") + b"S\xe3o Paulo\n"
        with pytest.raises(ParseError):
            _ingest(payload)

    def test_sswweb_with_single_line(self) -> None:
        with pytest.raises(FileStructureError):
            _ingest(b"Relatorio SSW", file_name="export.sswweb")


class TestSswwebIngestion:
    def test_metadata_line_is_dropped(self) -> None:
        payload = (
            "Relatorio SSW, gerado em 10/06/2024\n"
            f"CTRC;{TARGET_COLUMN_NAME};UF;Unidade\n"
            "A1;1;SC;BLU\n"
            "A2;26;SC;JCA\n"
        ).encode("utf-8")
        dataset = _ingest(payload, file_name="export.sswweb")

        assert dataset.meta.file_type == "sswweb"
        assert dataset.meta.frequency_map == {"1": 1, "26": 1}
        assert dataset.meta.uf_to_units == {"SC": ["BLU", "JCA"]}
        assert dataset.full[0]["CTRC"] == "A1"


class TestXlsxIngestion:
    def test_first_sheet_is_read(self) -> None:
        frame = pd.DataFrame(
            [
                {"CTRC": "A1", TARGET_COLUMN_NAME: 1, "UF": "SC", "Unidade": "BLU"},
                {"CTRC": "A2", TARGET_COLUMN_NAME: 59, "UF": "SC", "Unidade": None},
            ]
        )
        buffer = io.BytesIO()
        frame.to_excel(buffer, index=False, engine="openpyxl")

        dataset = _ingest(buffer.getvalue(), file_name="export.xlsx")

        assert dataset.meta.file_type == "xlsx"
        assert dataset.meta.frequency_map == {"1": 1, "59": 1}
        assert dataset.meta.uf_to_units == {"SC": ["BLU"]}

    def test_date_cells_are_stored_as_day_first_text(self) -> None:
        frame = pd.DataFrame(
            [
                {"CTRC": "A1", TARGET_COLUMN_NAME: 1, "Data da Ultima Ocorrencia": datetime(2024, 12, 31)},
                {"CTRC": "A2", TARGET_COLUMN_NAME: 59, "Data da Ultima Ocorrencia": datetime(2024, 6, 10, 14, 30)},
            ]
        )
        buffer = io.BytesIO()
        frame.to_excel(buffer, index=False, engine="openpyxl")

        dataset = _ingest(buffer.getvalue(), file_name="export.xlsx")

        dates = [row["Data da Ultima Ocorrencia"] for row in dataset.full]
        assert dates == ["31/12/2024", "10/06/2024 14:30:00"]
        assert decompress_rows(compress_rows(dataset.full)) == dataset.full

    def test_corrupt_workbook(self) -> None:
        with pytest.raises(ParseError):
            _ingest(b"not a zip archive", file_name="export.xlsx")


class TestProgressAndCancellation(unittest.TestCase):
    def test_progress_is_monotonic_and_ends_at_100(self) -> None:
        seen: list[int] = []
        tracker = ProgressTracker(lambda percent, message: seen.append(percent))

        dataset = _ingestor(batch_size=1).ingest(
            io.BytesIO(_wide_csv(SHIPMENTS)),
            file_name="export.csv",
            progress=tracker,
        )

        self.assertIsNotNone(dataset)
        self.assertEqual(seen, sorted(seen))
        self.assertEqual(seen[-1], 100)
        self.assertTrue(all(percent < 100 for percent in seen[:-1]))

    def test_cancel_mid_run_returns_none_and_resets_progress(self) -> None:
        token = CancellationToken()
        seen: list[tuple[int, str]] = []

        def listener(percent: int, message: str) -> None:
            seen.append((percent, message))
            if percent > 15:
                token.cancel()

        tracker = ProgressTracker(listener)
        dataset = _ingestor(batch_size=1).ingest(
            io.BytesIO(_wide_csv(SHIPMENTS)),
            file_name="export.csv",
            token=token,
            progress=tracker,
        )

        self.assertIsNone(dataset)
        self.assertEqual(tracker.percent, 0)
        self.assertEqual(seen[-1], (0, MESSAGE_CANCELLED))

    def test_pre_cancelled_token(self) -> None:
        token = CancellationToken()
        token.cancel()

        dataset = _ingestor().ingest(io.BytesIO(_wide_csv(SHIPMENTS)), file_name="export.csv", token=token)

        self.assertIsNone(dataset)

    def test_ingest_path(self) -> None:
        with tempfile.NamedTemporaryFile(suffix=".csv", delete=False) as handle:
            handle.write(_wide_csv(SHIPMENTS))
            path = handle.name
        try:
            dataset = _ingestor().ingest_path(path)
        finally:
            os.remove(path)

        self.assertEqual(dataset.meta.file_name, os.path.basename(path))
        self.assertEqual(dataset.meta.row_count, 5)


if __name__ == "__main__":
    unittest.main()
