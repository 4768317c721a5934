"""SQLAlchemy table definitions for the upload queue."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
)

from tracklift.models import UploadStatus

metadata = MetaData()

upload_items = Table(
    "upload_items",
    metadata,
    Column("item_id", Text, primary_key=True),
    Column(
        "status",
        Enum(
            UploadStatus,
            native_enum=False,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=UploadStatus.PENDING,
    ),
    Column("progress", Float, nullable=False, default=0.0),
    Column("status_text", Text, nullable=False, default=""),
    Column("error", Text, nullable=True, default=None),
    Column("file_name", Text, nullable=False),
    Column("file_size", Integer, nullable=False),
    Column("content_type", Text, nullable=False),
    Column("last_modified", DateTime(timezone=False), nullable=False),
    Column("file_path", Text, nullable=False),
    Column("added_at", DateTime(timezone=False), nullable=False),
    Column("started_at", DateTime(timezone=False), nullable=True, default=None),
    Column("completed_at", DateTime(timezone=False), nullable=True, default=None),
)

Index("idx_upload_items_status", upload_items.c.status)
Index("idx_upload_items_added_at", upload_items.c.added_at)
