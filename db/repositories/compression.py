"""
Row-array compression for the uploads store.

Rows are serialized to JSON, gzip-compressed and base64-encoded. Encoding
walks the compressed bytes in 32 KB windows aligned to 3-byte boundaries,
so the concatenated output is identical to encoding the whole buffer at
once and a reader never needs to know the window size.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
import zlib
from typing import Any

CHUNK_SIZE = 32 * 1024
# Largest multiple of 3 not above CHUNK_SIZE; base64 maps 3 bytes to 4 chars.
_ALIGNED_CHUNK = CHUNK_SIZE - (CHUNK_SIZE % 3)


class DatasetDecompressionError(ValueError):
    """Raised when a stored row payload cannot be decoded back to rows."""


def chunked_b64encode(payload: bytes, chunk_size: int = _ALIGNED_CHUNK) -> str:
    if chunk_size <= 0 or chunk_size % 3:
        raise ValueError("chunk_size must be a positive multiple of 3.")
    parts = [
        base64.b64encode(payload[offset:offset + chunk_size]).decode("ascii")
        for offset in range(0, len(payload), chunk_size)
    ]
    return "".join(parts)


def compress_rows(rows: list[dict[str, Any]]) -> str:
    serialized = json.dumps(rows, ensure_ascii=False, default=str).encode("utf-8")
    return chunked_b64encode(gzip.compress(serialized))


def decompress_rows(payload: str) -> list[dict[str, Any]]:
    try:
        compressed = base64.b64decode(payload, validate=True)
        serialized = gzip.decompress(compressed)
        rows = json.loads(serialized.decode("utf-8"))
    except (binascii.Error, OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as exc:
        raise DatasetDecompressionError("Os dados compartilhados estão corrompidos.") from exc

    if not isinstance(rows, list):
        raise DatasetDecompressionError("Os dados compartilhados estão corrompidos.")
    return rows
