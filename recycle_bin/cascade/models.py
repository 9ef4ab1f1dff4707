"""
Result models for recycle bin operations.

Bulk operations report per-item outcomes instead of raising, and listing
operations return plain summaries detached from the session.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BulkDeleteSuccess(BaseModel):
    """One entity deleted by a bulk delete."""

    id: Any = Field(..., description="Primary key of the deleted root")
    deletion_key: str = Field(..., description="Key to restore the deletion")
    display_name: str = Field(..., description="Label captured at deletion time")
    snapshot_count: int = Field(..., description="Records snapshotted, root included")


class BulkDeleteFailure(BaseModel):
    """One entity a bulk delete could not remove."""

    id: Any = Field(..., description="Primary key that was requested")
    reasons: List[str] = Field(..., description="Blocker reasons or the error message")


class BulkDeleteResult(BaseModel):
    """Outcome of a bulk delete, in input order."""

    deleted: List[BulkDeleteSuccess] = Field(default_factory=list)
    failed: List[BulkDeleteFailure] = Field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class BulkRestoreSuccess(BaseModel):
    """One deletion restored by a bulk restore."""

    deletion_key: str
    entity_type: str
    restored_id: Any


class BulkRestoreFailure(BaseModel):
    """One deletion a bulk restore could not reverse."""

    deletion_key: str
    error: str


class BulkRestoreResult(BaseModel):
    """Outcome of a bulk restore, in input order."""

    restored: List[BulkRestoreSuccess] = Field(default_factory=list)
    failed: List[BulkRestoreFailure] = Field(default_factory=list)

    @property
    def restored_count(self) -> int:
        return len(self.restored)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class ManifestSummary(BaseModel):
    """Listing view of a deletion manifest."""

    model_config = ConfigDict(from_attributes=True)

    deletion_key: str
    root_entity_type: str
    root_id: str
    root_display_name: str
    snapshot_count: int
    child_count: int
    table_order: List[str]
    deleted_by: Optional[str] = None
    deleted_by_name: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime


class RecycleBinStats(BaseModel):
    """Aggregate figures about the recycle bin contents."""

    total_manifests: int = 0
    total_snapshots: int = 0
    by_entity_type: Dict[str, int] = Field(default_factory=dict)
    oldest_deletion: Optional[datetime] = None
    newest_deletion: Optional[datetime] = None
    expired_manifests: int = Field(
        0, description="Manifests older than the retention window"
    )
    retention_days: int
