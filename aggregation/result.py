"""
aggregation/result.py

Aggregation result value and its merge operation.

Merging is plain integer addition for counts and set union for UF/unit
membership, so any partition of a dataset into batches, merged in any
order or grouping, yields the same final result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import reduce
from typing import Any, Iterable


@dataclass(frozen=True)
class AggregationResult:
    """
    Code frequencies, UF/unit membership and city counts for a set of rows.

    Instances are never mutated after construction; :func:`merge` always
    builds a new value.
    """

    frequency_map: dict[str, int] = field(default_factory=dict)
    uf_list: tuple[str, ...] = ()
    uf_to_units: dict[str, frozenset[str]] = field(default_factory=dict)
    city_by_code: dict[str, dict[str, int]] = field(default_factory=dict)
    total_processed: int = 0

    @classmethod
    def empty(cls) -> AggregationResult:
        return cls()

    def merge(self, other: AggregationResult) -> AggregationResult:
        return merge(self, other)

    def units_for(self, uf: str | None = None) -> list[str]:
        """
        Sorted units for one UF, or across every UF when ``uf`` is None.
        """

        if uf is None:
            collected: set[str] = set()
            for units in self.uf_to_units.values():
                collected |= units
            return sorted(collected)
        return sorted(self.uf_to_units.get(uf, frozenset()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency_map": dict(self.frequency_map),
            "uf_list": list(self.uf_list),
            "uf_to_units": {uf: sorted(units) for uf, units in sorted(self.uf_to_units.items())},
            "city_by_code": {code: dict(cities) for code, cities in self.city_by_code.items()},
            "total_processed": self.total_processed,
        }


def _add_counts(left: dict[str, int], right: dict[str, int]) -> dict[str, int]:
    combined = dict(left)
    for key, count in right.items():
        combined[key] = combined.get(key, 0) + count
    return combined


def merge(left: AggregationResult, right: AggregationResult) -> AggregationResult:
    """
    Combine two partial results into a new one.
    """

    uf_to_units: dict[str, frozenset[str]] = dict(left.uf_to_units)
    for uf, units in right.uf_to_units.items():
        uf_to_units[uf] = uf_to_units.get(uf, frozenset()) | units

    city_by_code: dict[str, dict[str, int]] = {code: dict(cities) for code, cities in left.city_by_code.items()}
    for code, cities in right.city_by_code.items():
        city_by_code[code] = _add_counts(city_by_code.get(code, {}), cities)

    return AggregationResult(
        frequency_map=_add_counts(left.frequency_map, right.frequency_map),
        uf_list=tuple(sorted(set(left.uf_list) | set(right.uf_list))),
        uf_to_units=uf_to_units,
        city_by_code=city_by_code,
        total_processed=left.total_processed + right.total_processed,
    )


def merge_all(results: Iterable[AggregationResult]) -> AggregationResult:
    return reduce(merge, results, AggregationResult.empty())
