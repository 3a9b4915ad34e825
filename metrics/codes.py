"""
metrics/codes.py

Occurrence-code frequency table, selection renormalization and the
headline status indicators derived from it.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from typing import Collection, Sequence

from app.domain.tracking import Row, row_value
from app.mappers.column_resolver import ResolvedColumns
from app.occurrence_codes import AT_FLOOR, DELIVERED, IN_TRANSIT, PROJECTION_CODES
from metrics.filters import FilterSelection, filter_rows


@dataclass(frozen=True)
class CodeFrequency:
    code: str
    count: int
    percentage: float


@dataclass(frozen=True)
class StatusIndicator:
    name: str
    count: int
    percentage: float


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def code_frequency(
    rows: Sequence[Row],
    columns: ResolvedColumns,
    selection: FilterSelection,
) -> list[CodeFrequency]:
    """
    Count codes among rows in the UF/unit scope, most frequent first.

    Percentages are relative to the rows in scope that carry a code.
    """

    code_key = columns.key("occurrence_code")
    if code_key is None:
        return []

    scoped = filter_rows(rows, columns, selection)
    counts = Counter(code for code in (row_value(row, code_key) for row in scoped) if code)
    total = sum(counts.values())
    return [
        CodeFrequency(code=code, count=count, percentage=_percent(count, total))
        for code, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]


def frequencies_from_map(frequency_map: dict[str, int]) -> list[CodeFrequency]:
    total = sum(frequency_map.values())
    return [
        CodeFrequency(code=code, count=count, percentage=_percent(count, total))
        for code, count in sorted(frequency_map.items(), key=lambda item: (-item[1], item[0]))
    ]


def renormalize(
    frequencies: Sequence[CodeFrequency],
    selected_codes: Collection[str],
) -> list[CodeFrequency]:
    """
    Re-express percentages relative to the selected codes only.

    Selected codes sum to 100 (when any selected code has a count);
    unselected codes get 0.
    """

    selected = set(selected_codes)
    selected_total = sum(item.count for item in frequencies if item.code in selected)
    return [
        replace(
            item,
            percentage=_percent(item.count, selected_total) if item.code in selected else 0.0,
        )
        for item in frequencies
    ]


def default_code_selection(
    frequencies: Sequence[CodeFrequency],
    default_codes: Sequence[str],
) -> list[str]:
    """
    Default codes present in the data; the first code when none of them is.
    """

    available = [item.code for item in frequencies]
    present = [code for code in default_codes if code in available]
    if present:
        return present
    return available[:1]


def status_indicators(
    frequencies: Sequence[CodeFrequency],
    selected_codes: Collection[str] | None = None,
) -> dict[str, StatusIndicator]:
    """
    Delivered, in-transit, at-floor and delivery-projection indicators.

    When only part of the codes is selected, percentages follow the
    renormalized table; otherwise the plain percentages are used.
    """

    selected = set(selected_codes) if selected_codes is not None else {item.code for item in frequencies}
    partial = len(selected) < len(frequencies)
    table = renormalize(frequencies, selected) if partial else list(frequencies)
    by_code = {item.code: item for item in table}
    counts = {item.code: item.count for item in frequencies}

    def indicator(name: str, codes: Sequence[str]) -> StatusIndicator:
        return StatusIndicator(
            name=name,
            count=sum(counts.get(code, 0) for code in codes),
            percentage=sum(by_code[code].percentage for code in codes if code in by_code),
        )

    return {
        "delivered": indicator("delivered", (DELIVERED,)),
        "in_transit": indicator("in_transit", (IN_TRANSIT,)),
        "at_floor": indicator("at_floor", (AT_FLOOR,)),
        "projection": indicator("projection", PROJECTION_CODES),
    }
