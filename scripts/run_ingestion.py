"""
Ingest a tracking file from CLI and print its summary.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from app.parsing.errors import IngestionInputError
from app.services.ingestion_service import get_ingestion_service
from app.services.lookups import get_deadline_lookup, get_driver_lookup
from metrics.engine import MetricsEngine
from metrics.filters import FilterSelection


def main() -> int:
    parser = argparse.ArgumentParser(description="Ingest a CSV, XLSX or SSWWEB tracking export.")
    parser.add_argument("path", help="Path to the tracking file.")
    parser.add_argument(
        "--uf",
        dest="uf",
        default=None,
        help="Optional UF used to scope the printed summary.",
    )
    parser.add_argument(
        "--store",
        action="store_true",
        help="Persist the processed dataset in the uploads table.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    try:
        dataset = get_ingestion_service().ingest_path(args.path)
    except IngestionInputError as exc:
        print(json.dumps(exc.to_dict(), ensure_ascii=False), file=sys.stderr)
        return 2
    if dataset is None:
        return 1

    engine = MetricsEngine.from_dataset(
        dataset.full,
        dataset.meta.to_dict(),
        deadlines=get_deadline_lookup(),
        drivers=get_driver_lookup(),
    )
    summary = engine.summary(FilterSelection.build(uf=args.uf))
    payload = {
        "file_name": dataset.meta.file_name,
        "column_name": dataset.meta.column_name,
        "row_count": dataset.row_count,
        "uf_list": summary.uf_list,
        "rows_in_scope": summary.rows_in_scope,
        "indicators": {
            name: {"count": item.count, "percentage": round(item.percentage, 2), "level": item.level}
            for name, item in summary.indicators.items()
        },
        "failures": {"count": summary.failures.count, "percentage": round(summary.failures.percentage, 2)},
        "late": {"count": summary.late.count, "percentage": round(summary.late.percentage, 2)},
        "missing_columns": list(summary.missing_columns),
    }

    if args.store:
        from db.repositories.uploaded_file_repository import get_uploaded_file_repository

        record = get_uploaded_file_repository().save_dataset(dataset)
        payload["upload_id"] = str(record.id)

    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
