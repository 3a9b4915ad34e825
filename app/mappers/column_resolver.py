"""
app/mappers/column_resolver.py

Semantic column resolution for shipment tracking exports.

Tracking exports come from one schema family whose header labels drift
(accents, "Cidade de Entrega" vs "Cidade do Destinatario", truncated
labels) while column order stays stable. Each semantic field is resolved
by fragment matching first and by fixed position second.
"""

from __future__ import annotations

import unicodedata
from dataclasses import asdict, dataclass, fields, replace
from typing import Mapping, Sequence

# Fragment tuples per field, most specific first. A header matches a tuple
# when its normalized form contains every fragment.
DEFAULT_FIELD_PATTERNS: dict[str, tuple[tuple[str, ...], ...]] = {
    "city": (
        ("cidade", "entrega"),
        ("cidade", "destinatario"),
        ("cidade",),
    ),
    "unit": (
        ("unidade", "receptora"),
        ("unidade",),
    ),
    "uf": (
        ("uf", "entrega"),
        ("uf", "destinatario"),
        ("uf",),
    ),
    "occurrence_code": (
        ("codigo", "ultima", "ocorrencia"),
        ("codigo", "ocorrencia"),
    ),
    "forecast_date": (
        ("previsao", "entrega"),
        ("previsao",),
    ),
    "last_manifest_date": (
        ("data", "ultimo", "manifesto"),
        ("ultimo", "manifesto"),
    ),
    "tracking_id": (
        ("serie", "numero", "ctrc"),
        ("numero", "ctrc"),
        ("ctrc",),
    ),
    "plate": (
        ("placa",),
    ),
    "last_occurrence_date": (
        ("data", "ultima", "ocorrencia"),
    ),
}

# Zero-based column offsets of the reference export layout. They only apply
# when no header matches and the file is wide enough.
COLUMN_POSITIONS: dict[str, int] = {
    "tracking_id": 1,
    "occurrence_code": 32,
    "city": 49,
    "uf": 50,
    "unit": 52,
    "last_manifest_date": 85,
    "plate": 90,
    "last_occurrence_date": 93,
    "forecast_date": 97,
}

STRATEGY_PATTERN = "pattern"
STRATEGY_POSITION = "position"


def normalize_label(label: str) -> str:
    """
    Lowercase a label and strip combining accents (``Previsão`` -> ``previsao``).
    """

    decomposed = unicodedata.normalize("NFD", label.strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


@dataclass(frozen=True)
class ResolvedColumn:
    """
    Concrete column backing one semantic field.
    """

    key: str
    index: int
    strategy: str


@dataclass(frozen=True)
class ResolvedColumns:
    """
    Per-dataset snapshot of semantic field -> column. ``None`` means unresolved.
    """

    city: ResolvedColumn | None = None
    unit: ResolvedColumn | None = None
    uf: ResolvedColumn | None = None
    occurrence_code: ResolvedColumn | None = None
    forecast_date: ResolvedColumn | None = None
    last_manifest_date: ResolvedColumn | None = None
    tracking_id: ResolvedColumn | None = None
    plate: ResolvedColumn | None = None
    last_occurrence_date: ResolvedColumn | None = None

    def key(self, field_name: str) -> str | None:
        column = getattr(self, field_name)
        return column.key if column is not None else None

    def keys(self) -> dict[str, str | None]:
        return {item.name: self.key(item.name) for item in fields(self)}

    def missing(self) -> tuple[str, ...]:
        return tuple(item.name for item in fields(self) if getattr(self, item.name) is None)

    def to_dict(self) -> dict[str, dict[str, object] | None]:
        return {
            item.name: asdict(column) if (column := getattr(self, item.name)) is not None else None
            for item in fields(self)
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Mapping[str, object] | None]) -> ResolvedColumns:
        """
        Rebuild a snapshot stored with ``to_dict``; unknown fields are ignored.
        """

        resolved: dict[str, ResolvedColumn | None] = {}
        for item in fields(cls):
            column = payload.get(item.name)
            if not column or not column.get("key"):
                resolved[item.name] = None
                continue
            resolved[item.name] = ResolvedColumn(
                key=str(column["key"]),
                index=int(column.get("index", -1)),
                strategy=str(column.get("strategy", STRATEGY_PATTERN)),
            )
        return cls(**resolved)

    def with_column(self, field_name: str, key: str, index: int, strategy: str) -> ResolvedColumns:
        return replace(self, **{field_name: ResolvedColumn(key=key, index=index, strategy=strategy)})


class ColumnResolver:
    """
    Resolves semantic tracking columns from observed header keys.
    """

    def __init__(
        self,
        *,
        patterns: Mapping[str, Sequence[Sequence[str]]] | None = None,
        positions: Mapping[str, int] | None = None,
    ) -> None:
        source_patterns = patterns or DEFAULT_FIELD_PATTERNS
        self._patterns: dict[str, tuple[tuple[str, ...], ...]] = {
            field_name: tuple(
                tuple(normalize_label(fragment) for fragment in group)
                for group in groups
            )
            for field_name, groups in source_patterns.items()
        }
        self._positions = dict(COLUMN_POSITIONS if positions is None else positions)

    def resolve(self, header_keys: Sequence[str]) -> ResolvedColumns:
        headers = [str(key) if key is not None else "" for key in header_keys]
        normalized = [normalize_label(header) for header in headers]

        resolved: dict[str, ResolvedColumn | None] = {}
        for item in fields(ResolvedColumns):
            resolved[item.name] = self._resolve_field(item.name, headers, normalized)
        return ResolvedColumns(**resolved)

    def _resolve_field(
        self,
        field_name: str,
        headers: Sequence[str],
        normalized: Sequence[str],
    ) -> ResolvedColumn | None:
        for group in self._patterns.get(field_name, ()):
            for index, label in enumerate(normalized):
                if label and all(fragment in label for fragment in group):
                    return ResolvedColumn(key=headers[index], index=index, strategy=STRATEGY_PATTERN)

        position = self._positions.get(field_name)
        if position is not None and 0 <= position < len(headers) and headers[position]:
            return ResolvedColumn(key=headers[position], index=position, strategy=STRATEGY_POSITION)
        return None


def resolve_columns(header_keys: Sequence[str]) -> ResolvedColumns:
    return ColumnResolver().resolve(header_keys)


def resolve_columns_from_rows(rows: Sequence[Mapping[str, object]]) -> ResolvedColumns:
    """
    Resolve columns from the key order of the first row; empty input resolves nothing.
    """

    if not rows:
        return ResolvedColumns()
    return resolve_columns(list(rows[0].keys()))
