"""
app/services/ingestion_service.py

Streaming ingestion of shipment tracking exports.

Rows are read lazily from the source file, buffered into fixed-size
batches, and each full batch is handed to the aggregation channel before
the next row is read. Because the reader is pulled row by row, the
parser is naturally paused while a batch is being aggregated; at most one
batch of rows is ever buffered ahead of aggregation.

Three input kinds are supported:

    csv     delimited text with a header row (delimiter sniffed)
    sswweb  SSW export: first line is metadata, header on line two
    xlsx    first worksheet, read whole (not cancellable mid-read)
"""

from __future__ import annotations

import csv
import io
import itertools
import logging
import os
import threading
import time
import zipfile
from dataclasses import dataclass
from datetime import date, datetime, time as clock_time
from functools import lru_cache
from typing import Any, BinaryIO, Callable, Iterator, Sequence

import pandas as pd

from aggregation.channel import AggregationChannel, CancellationToken, IngestionCancelledError
from aggregation.reducer import BatchRequest
from aggregation.result import AggregationResult
from app.config import get_ingestion_settings
from app.domain.tracking import (
    FILE_TYPE_CSV,
    FILE_TYPE_SSWWEB,
    FILE_TYPE_XLSX,
    SUPPORTED_FILE_TYPES,
    TARGET_COLUMN_NAME,
    TARGET_COLUMN_POSITION,
    DatasetMeta,
    ProcessedDataset,
    Row,
)
from app.mappers.column_resolver import STRATEGY_PATTERN, STRATEGY_POSITION, ColumnResolver, ResolvedColumns
from app.parsing.delimiter import SAMPLE_LINE_COUNT, detect_delimiter, preprocess_sswweb, split_header
from app.parsing.errors import FileStructureError, ParseError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

PROGRESS_STARTED = 10
PROGRESS_HEADERS_READ = 15
PROGRESS_STREAMING_CEILING = 95
PROGRESS_DONE = 100

MESSAGE_READING = "Lendo arquivo..."
MESSAGE_PROCESSING = "Processando registros..."
MESSAGE_DONE = "Processamento concluído"
MESSAGE_CANCELLED = "Processamento cancelado"

ProgressListener = Callable[[int, str], None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def detect_file_type(file_name: str) -> str:
    """
    Map a file name to one of the supported input kinds by extension.
    """

    _, extension = os.path.splitext((file_name or "").strip().lower())
    file_type = extension.lstrip(".")
    if file_type not in SUPPORTED_FILE_TYPES:
        raise UnsupportedFileTypeError(
            "Por favor, selecione um arquivo CSV, XLSX ou SSWWEB."
        )
    return file_type


def dedupe_headers(headers: Sequence[str]) -> tuple[str, ...]:
    """
    Make header names unique by suffixing repeats with ``_1``, ``_2``...

    Keeping every column distinct keeps positional indices aligned with the
    file layout when rows are turned into mappings.
    """

    seen: dict[str, int] = {}
    unique: list[str] = []
    taken = set(headers)
    for header in headers:
        if header not in seen:
            seen[header] = 0
            unique.append(header)
            continue
        count = seen[header]
        candidate = header
        while candidate in taken:
            count += 1
            candidate = f"{header}_{count}"
        seen[header] = count
        taken.add(candidate)
        unique.append(candidate)
    return tuple(unique)


def resolve_target_column(headers: Sequence[str]) -> str:
    """
    Pick the occurrence-code column by name, falling back to the 33rd column.
    """

    for header in headers:
        if header == TARGET_COLUMN_NAME:
            return header
    for header in headers:
        if TARGET_COLUMN_NAME in header:
            return header
    if len(headers) > TARGET_COLUMN_POSITION:
        return headers[TARGET_COLUMN_POSITION]
    raise FileStructureError(
        f"Arquivo tem apenas {len(headers)} colunas. "
        f"É necessário ter pelo menos {TARGET_COLUMN_POSITION + 1} colunas."
    )


def _align_code_column(
    columns: ResolvedColumns,
    headers: Sequence[str],
    target_column: str,
) -> ResolvedColumns:
    """
    Point the resolved occurrence-code field at the column being aggregated.
    """

    if columns.key("occurrence_code") == target_column:
        return columns
    strategy = STRATEGY_PATTERN if TARGET_COLUMN_NAME in target_column else STRATEGY_POSITION
    return columns.with_column("occurrence_code", target_column, list(headers).index(target_column), strategy)


def _is_blank(cells: Sequence[str]) -> bool:
    return all(not cell.strip() for cell in cells)


def _rows_from_cells(
    headers: tuple[str, ...],
    cells_iter: Iterator[list[str]],
) -> Iterator[dict[str, Any]]:
    width = len(headers)
    for cells in cells_iter:
        if not cells or _is_blank(cells):
            continue
        if len(cells) < width:
            cells = cells + [""] * (width - len(cells))
        yield dict(zip(headers, cells))


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class ProgressTracker:
    """
    Monotonic percentage progress that only reaches 100 on completion.
    """

    def __init__(self, listener: ProgressListener | None = None) -> None:
        self._listener = listener
        self._lock = threading.Lock()
        self.percent = 0
        self.message = ""

    def advance(self, percent: float, message: str | None = None) -> None:
        with self._lock:
            capped = min(int(percent), PROGRESS_STREAMING_CEILING)
            self.percent = max(self.percent, capped)
            if message is not None:
                self.message = message
            snapshot = (self.percent, self.message)
        self._notify(*snapshot)

    def complete(self, message: str = MESSAGE_DONE) -> None:
        with self._lock:
            self.percent = PROGRESS_DONE
            self.message = message
        self._notify(PROGRESS_DONE, message)

    def reset(self, message: str = "") -> None:
        with self._lock:
            self.percent = 0
            self.message = message
        self._notify(0, message)

    def _notify(self, percent: int, message: str) -> None:
        if self._listener is not None:
            self._listener(percent, message)


# ---------------------------------------------------------------------------
# Row sources
# ---------------------------------------------------------------------------


@dataclass
class _RowSource:
    file_type: str
    headers: tuple[str, ...]
    rows: Iterator[dict[str, Any]]
    fraction_done: Callable[[], float]
    close: Callable[[], None]


def _byte_fraction(raw_file: BinaryIO, total_bytes: int | None) -> Callable[[], float]:
    def fraction() -> float:
        if not total_bytes:
            return 0.0
        try:
            return min(1.0, raw_file.tell() / total_bytes)
        except (OSError, ValueError):
            return 0.0

    return fraction


def _stream_size(raw_file: BinaryIO) -> int | None:
    try:
        current = raw_file.tell()
        raw_file.seek(0, io.SEEK_END)
        size = raw_file.tell()
        raw_file.seek(current)
        return size
    except (OSError, ValueError):
        return None


def _open_csv(raw_file: BinaryIO) -> _RowSource:
    total_bytes = _stream_size(raw_file)
    text_stream = io.TextIOWrapper(raw_file, encoding="utf-8-sig", newline="")

    def close() -> None:
        try:
            text_stream.detach()
        except ValueError:
            pass

    try:
        head_lines: list[str] = []
        for _ in range(SAMPLE_LINE_COUNT):
            line = text_stream.readline()
            if not line:
                break
            head_lines.append(line)

        delimiter = detect_delimiter("".join(head_lines))
        reader = csv.reader(itertools.chain(head_lines, text_stream), delimiter=delimiter)
        header_cells = next(reader, None)
    except Exception:
        close()
        raise

    if header_cells is None or _is_blank(header_cells):
        close()
        raise FileStructureError("Arquivo vazio")

    headers = dedupe_headers([cell.strip() for cell in header_cells])
    logger.debug("CSV source opened delimiter=%r columns=%d", delimiter, len(headers))
    return _RowSource(
        file_type=FILE_TYPE_CSV,
        headers=headers,
        rows=_rows_from_cells(headers, reader),
        fraction_done=_byte_fraction(raw_file, total_bytes),
        close=close,
    )


def _open_sswweb(raw_file: BinaryIO) -> _RowSource:
    text = raw_file.read().decode("utf-8-sig")
    preprocessed = preprocess_sswweb(text)
    headers = dedupe_headers(list(preprocessed.headers))

    body = io.StringIO(preprocessed.content, newline="")
    reader = csv.reader(body, delimiter=preprocessed.delimiter)
    next(reader, None)
    total_chars = max(1, len(preprocessed.content))

    logger.debug(
        "SSWWEB source opened delimiter=%r columns=%d",
        preprocessed.delimiter,
        len(headers),
    )
    return _RowSource(
        file_type=FILE_TYPE_SSWWEB,
        headers=headers,
        rows=_rows_from_cells(headers, reader),
        fraction_done=lambda: min(1.0, body.tell() / total_chars),
        close=body.close,
    )


def _xlsx_cell(value: Any) -> Any:
    """
    JSON-stable cell value; dates become ``dd/mm/yyyy[ hh:mm:ss]`` text.
    """

    if isinstance(value, datetime):
        if pd.isna(value):
            return ""
        if value.time() == clock_time.min:
            return value.strftime("%d/%m/%Y")
        return value.strftime("%d/%m/%Y %H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, clock_time):
        return value.strftime("%H:%M:%S")
    return value


def _open_xlsx(raw_file: BinaryIO) -> _RowSource:
    try:
        frame = pd.read_excel(raw_file, sheet_name=0, dtype=object, engine="openpyxl")
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as exc:
        raise ParseError(f"Não foi possível ler a planilha: {exc}") from exc

    frame = frame.fillna("")
    headers = tuple(str(column).strip() for column in frame.columns)
    frame.columns = list(headers)
    records: list[dict[str, Any]] = [
        {key: _xlsx_cell(value) for key, value in record.items()}
        for record in frame.to_dict(orient="records")
    ]
    total = max(1, len(records))
    consumed = 0

    def rows() -> Iterator[dict[str, Any]]:
        nonlocal consumed
        for record in records:
            consumed += 1
            yield record

    def fraction() -> float:
        return min(1.0, consumed / total)

    return _RowSource(
        file_type=FILE_TYPE_XLSX,
        headers=headers,
        rows=rows(),
        fraction_done=fraction,
        close=lambda: None,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class StreamingIngestor:
    """
    Coordinates reading, batching, aggregation and cancellation for one file.
    """

    def __init__(
        self,
        *,
        batch_size: int,
        sample_size: int,
        channel_factory: Callable[[], AggregationChannel],
        resolver: ColumnResolver | None = None,
    ) -> None:
        self._batch_size = max(1, batch_size)
        self._sample_size = max(0, sample_size)
        self._channel_factory = channel_factory
        self._resolver = resolver or ColumnResolver()

    def ingest_path(
        self,
        path: str,
        *,
        file_name: str | None = None,
        token: CancellationToken | None = None,
        progress: ProgressTracker | None = None,
    ) -> ProcessedDataset | None:
        with open(path, "rb") as raw_file:
            return self.ingest(
                raw_file,
                file_name=file_name or os.path.basename(path),
                token=token,
                progress=progress,
            )

    def ingest(
        self,
        raw_file: BinaryIO,
        *,
        file_name: str,
        token: CancellationToken | None = None,
        progress: ProgressTracker | None = None,
    ) -> ProcessedDataset | None:
        """
        Ingest one file and return the processed dataset.

        Returns None when the run was cancelled through ``token``; progress is
        then reset to 0. Input problems raise IngestionInputError subclasses.
        """

        file_type = detect_file_type(file_name)
        tracker = progress or ProgressTracker()
        token = token or CancellationToken()
        started = time.perf_counter()

        tracker.advance(PROGRESS_STARTED, MESSAGE_READING)
        raw_file.seek(0)
        logger.info("Ingestion started file=%r type=%s", file_name, file_type)

        try:
            dataset = self._run(raw_file, file_name=file_name, file_type=file_type, token=token, tracker=tracker)
        except IngestionCancelledError:
            tracker.reset(MESSAGE_CANCELLED)
            logger.info(
                "Ingestion cancelled file=%r after %.2fs",
                file_name,
                time.perf_counter() - started,
            )
            return None

        tracker.complete(MESSAGE_DONE)
        logger.info(
            "Ingestion finished file=%r rows=%d codes=%d duration=%.2fs",
            file_name,
            dataset.row_count,
            len(dataset.meta.frequency_map),
            time.perf_counter() - started,
        )
        return dataset

    def _open_source(self, file_type: str, raw_file: BinaryIO) -> _RowSource:
        if file_type == FILE_TYPE_SSWWEB:
            return _open_sswweb(raw_file)
        if file_type == FILE_TYPE_XLSX:
            return _open_xlsx(raw_file)
        return _open_csv(raw_file)

    def _run(
        self,
        raw_file: BinaryIO,
        *,
        file_name: str,
        file_type: str,
        token: CancellationToken,
        tracker: ProgressTracker,
    ) -> ProcessedDataset:
        try:
            source = self._open_source(file_type, raw_file)
        except UnicodeDecodeError as exc:
            raise ParseError("O arquivo deve estar codificado em UTF-8.") from exc
        except csv.Error as exc:
            raise ParseError(f"Formato de arquivo inválido: {exc}") from exc

        try:
            tracker.advance(PROGRESS_HEADERS_READ, MESSAGE_PROCESSING)
            target_column = resolve_target_column(source.headers)
            columns = _align_code_column(self._resolver.resolve(source.headers), source.headers, target_column)
            full, aggregated = self._consume(source, target_column, columns, token, tracker)
        except UnicodeDecodeError as exc:
            raise ParseError("O arquivo deve estar codificado em UTF-8.") from exc
        except csv.Error as exc:
            raise ParseError(f"Formato de arquivo inválido: {exc}") from exc
        finally:
            source.close()

        if not full:
            raise FileStructureError("Arquivo vazio")

        meta = DatasetMeta(
            file_name=file_name,
            file_type=file_type,
            column_name=target_column,
            row_count=len(full),
            frequency_map=dict(aggregated.frequency_map),
            uf_list=list(aggregated.uf_list),
            uf_to_units={uf: sorted(units) for uf, units in aggregated.uf_to_units.items()},
            city_by_code={code: dict(cities) for code, cities in aggregated.city_by_code.items()},
            resolved_columns=columns.to_dict(),
        )
        rows = tuple(full)
        return ProcessedDataset(sample=rows[: self._sample_size], full=rows, meta=meta)

    def _consume(
        self,
        source: _RowSource,
        target_column: str,
        columns: ResolvedColumns,
        token: CancellationToken,
        tracker: ProgressTracker,
    ) -> tuple[list[Row], AggregationResult]:
        full: list[Row] = []
        batch: list[Row] = []
        aggregated = AggregationResult.empty()

        def dispatch(rows: list[Row]) -> AggregationResult:
            return channel.request(
                BatchRequest(
                    rows=tuple(rows),
                    target_column=target_column,
                    uf_key=columns.key("uf"),
                    unit_key=columns.key("unit"),
                    city_key=columns.key("city"),
                ),
                token=token,
            )

        with self._channel_factory() as channel:
            for row in source.rows:
                token.raise_if_cancelled()
                batch.append(row)
                if len(batch) >= self._batch_size:
                    aggregated = aggregated.merge(dispatch(batch))
                    full.extend(batch)
                    batch = []
                    self._report(tracker, source)

            token.raise_if_cancelled()
            if batch:
                aggregated = aggregated.merge(dispatch(batch))
                full.extend(batch)
                self._report(tracker, source)

        return full, aggregated

    def _report(self, tracker: ProgressTracker, source: _RowSource) -> None:
        span = PROGRESS_STREAMING_CEILING - PROGRESS_HEADERS_READ
        tracker.advance(PROGRESS_HEADERS_READ + span * source.fraction_done())


@lru_cache(maxsize=1)
def get_ingestion_service() -> StreamingIngestor:
    settings = get_ingestion_settings()
    return StreamingIngestor(
        batch_size=settings.batch_size,
        sample_size=settings.sample_size,
        channel_factory=lambda: AggregationChannel(
            executor_kind=settings.executor_kind,
            poll_interval=settings.cancel_poll_seconds,
        ),
    )
