"""
aggregation/reducer.py

Per-batch reduction of tracking rows into an AggregationResult.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import reduce
from typing import Iterable

from aggregation.result import AggregationResult
from app.domain.tracking import Row, row_value


@dataclass(frozen=True)
class BatchRequest:
    """
    Inbound message for the aggregation worker.

    ``uf_key``, ``unit_key`` and ``city_key`` are the resolved column keys of
    the dataset; any of them may be None when the column is unresolved.
    """

    rows: tuple[Row, ...]
    target_column: str
    uf_key: str | None = None
    unit_key: str | None = None
    city_key: str | None = None


@dataclass
class _Accumulator:
    frequency_map: dict[str, int] = field(default_factory=dict)
    uf_to_units: dict[str, set[str]] = field(default_factory=dict)
    city_by_code: dict[str, dict[str, int]] = field(default_factory=dict)
    processed: int = 0

    def freeze(self) -> AggregationResult:
        return AggregationResult(
            frequency_map=dict(self.frequency_map),
            uf_list=tuple(sorted(self.uf_to_units)),
            uf_to_units={uf: frozenset(units) for uf, units in self.uf_to_units.items()},
            city_by_code={code: dict(cities) for code, cities in self.city_by_code.items()},
            total_processed=self.processed,
        )


def _fold_row(request: BatchRequest):
    def step(acc: _Accumulator, row: Row) -> _Accumulator:
        acc.processed += 1

        uf = row_value(row, request.uf_key)
        if uf:
            units = acc.uf_to_units.setdefault(uf, set())
            unit = row_value(row, request.unit_key)
            if unit:
                units.add(unit)

        code = row_value(row, request.target_column)
        if not code:
            return acc
        acc.frequency_map[code] = acc.frequency_map.get(code, 0) + 1

        city = row_value(row, request.city_key)
        if city:
            cities = acc.city_by_code.setdefault(code, {})
            cities[city] = cities.get(city, 0) + 1
        return acc

    return step


def reduce_rows(
    rows: Iterable[Row],
    target_column: str,
    *,
    uf_key: str | None = None,
    unit_key: str | None = None,
    city_key: str | None = None,
) -> AggregationResult:
    """
    Reduce rows into code counts, UF -> units membership and code -> city counts.

    Rows without a code still contribute their UF and unit. Units are only
    recorded under a UF, so a row with a unit but no UF adds nothing to the
    membership map.
    """

    return reduce_batch(
        BatchRequest(
            rows=tuple(rows),
            target_column=target_column,
            uf_key=uf_key,
            unit_key=unit_key,
            city_key=city_key,
        )
    )


def reduce_batch(request: BatchRequest) -> AggregationResult:
    """
    Worker entry point: reduce one inbound batch message.
    """

    return reduce(_fold_row(request), request.rows, _Accumulator()).freeze()
