"""
Input-side exceptions for tracking file ingestion.

Each error carries a short user-facing ``title`` next to its message so API
responses never need to echo raw exception text.
"""

from __future__ import annotations


class IngestionInputError(ValueError):
    """Base exception for files that cannot be ingested."""

    title = "Erro ao processar arquivo"

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "message": str(self)}


class UnsupportedFileTypeError(IngestionInputError):
    """Raised when the file extension is not csv, xlsx or sswweb."""

    title = "Formato inválido"


class FileStructureError(IngestionInputError):
    """Raised when a file lacks the lines, columns or rows required to parse it."""

    title = "Estrutura de arquivo inválida"


class ParseError(IngestionInputError):
    """Raised when the underlying reader fails on structurally corrupt input."""

    title = "Erro de leitura"
