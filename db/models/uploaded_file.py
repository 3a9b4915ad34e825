"""
db/models/uploaded_file.py

Uploaded tracking file stored for later reload and sharing.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, CreatedAtMixin, JSONDocument


class UploadedFile(Base, CreatedAtMixin):
    __tablename__ = "uploaded_files"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    file_name: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
    )
    file_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="csv, xlsx, sswweb",
    )
    column_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Occurrence-code column used for aggregation",
    )
    row_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    file_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSONDocument,
        nullable=True,
        comment="Aggregation summary; 'compressed' flags the raw_data encoding",
    )
    raw_data: Mapped[Any] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Row array, or base64 gzip text when metadata.compressed is true",
    )

    __table_args__ = (
        Index("ix_uploaded_files_created_at", "created_at"),
    )
