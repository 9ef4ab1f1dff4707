"""
SQLAlchemy tables for the recycle bin.

``deleted_records`` holds one snapshot per deleted row and
``deletion_manifests`` one row per cascade deletion. Both live in the same
database as the entities they protect.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..audit_trail.storage import Base as AuditBase


class RecycleBinBase(DeclarativeBase):
    """Declarative base for the recycle bin's own tables."""


class DeletedRecord(RecycleBinBase):
    """Snapshot of one hard-deleted row."""

    __tablename__ = "deleted_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    table_name: Mapped[str] = mapped_column(String(200), nullable=False)
    values: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    @property
    def original_id(self) -> Any:
        """Primary key value captured in the snapshot, when it is named ``id``."""
        return self.values.get("id")

    def __repr__(self) -> str:
        return f"<DeletedRecord {self.entity_type} key={self.key[:8]}...>"


class DeletionManifest(RecycleBinBase):
    """Durable handle to one completed cascade deletion."""

    __tablename__ = "deletion_manifests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deletion_key: Mapped[str] = mapped_column(
        String(128), unique=True, nullable=False, index=True
    )
    root_entity_type: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    root_id: Mapped[str] = mapped_column(String(100), nullable=False)
    # "module:QualName" of the root's mapped class
    root_model: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    root_display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    snapshot_keys: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    table_order: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    deleted_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, index=True
    )

    @property
    def snapshot_count(self) -> int:
        """Number of snapshots, root included."""
        return len(self.snapshot_keys or [])

    @property
    def child_count(self) -> int:
        """Number of dependent records deleted with the root."""
        return max(self.snapshot_count - 1, 0)

    def is_expired(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        """Check whether the manifest is older than ``max_age``."""
        return self.created_at < (now or datetime.utcnow()) - max_age

    def __repr__(self) -> str:
        return (
            f"<DeletionManifest {self.root_entity_type}#{self.root_id} "
            f"snapshots={self.snapshot_count}>"
        )


def create_recycle_bin_tables(engine: Engine) -> None:
    """Create the snapshot, manifest and audit tables if they do not exist."""
    RecycleBinBase.metadata.create_all(bind=engine)
    AuditBase.metadata.create_all(bind=engine)
