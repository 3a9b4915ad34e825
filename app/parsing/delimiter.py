"""
app/parsing/delimiter.py

Delimiter sniffing and SSW export preprocessing.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.parsing.errors import FileStructureError

DELIMITER_CANDIDATES: tuple[str, ...] = (";", ",", "\t", "|")
DEFAULT_DELIMITER = ";"
SAMPLE_LINE_COUNT = 5


@dataclass(frozen=True)
class PreprocessedText:
    """
    Text payload ready for the delimited reader.
    """

    content: str
    delimiter: str
    headers: tuple[str, ...]


def detect_delimiter(text: str) -> str:
    """
    Pick the delimiter whose per-line count is most consistent across the sample.

    A candidate qualifies when its mean count over the first five lines is
    positive and every line deviates from that mean by at most one. The
    qualifying candidate with the highest mean wins; ``;`` otherwise.
    """

    lines = text.splitlines()[:SAMPLE_LINE_COUNT]
    if not lines:
        return DEFAULT_DELIMITER

    best_delimiter = DEFAULT_DELIMITER
    best_average = 0.0
    for candidate in DELIMITER_CANDIDATES:
        counts = [line.count(candidate) for line in lines]
        average = sum(counts) / len(counts)
        if average <= 0:
            continue
        if any(abs(count - average) > 1 for count in counts):
            continue
        if average > best_average:
            best_average = average
            best_delimiter = candidate
    return best_delimiter


def split_header(line: str, delimiter: str) -> tuple[str, ...]:
    return tuple(cell.strip() for cell in line.split(delimiter))


def preprocess_sswweb(text: str) -> PreprocessedText:
    """
    Strip the leading metadata line of an SSW export and sniff its delimiter.

    The first line is always discarded; the second line becomes the header
    row. Delimiter detection runs on what remains after the metadata line.
    """

    lines = text.splitlines()
    if len(lines) < 2:
        raise FileStructureError(
            "Arquivo SSWWEB inválido: são necessárias ao menos 2 linhas "
            "(linha de metadados e cabeçalho)."
        )

    content = "\n".join(lines[1:])
    delimiter = detect_delimiter(content)
    return PreprocessedText(
        content=content,
        delimiter=delimiter,
        headers=split_header(lines[1], delimiter),
    )
