"""
Cascade Module - reversible hard deletion of entity graphs.

Provides the registry of per-type cascade configurations, the snapshot and
manifest tables, and the service that deletes and restores root entities
together with their dependents.
"""

from .exceptions import (
    DeletionBlocked,
    EntityNotFound,
    ManifestNotFound,
    RecycleBinError,
    SchemaMismatch,
    UnknownEntityType,
)
from .identity import insert_with_identity, register_identity_insert
from .models import (
    BulkDeleteFailure,
    BulkDeleteResult,
    BulkDeleteSuccess,
    BulkRestoreFailure,
    BulkRestoreResult,
    BulkRestoreSuccess,
    ManifestSummary,
    RecycleBinStats,
)
from .registry import (
    CascadeConfig,
    CascadeRegistry,
    DependentSelector,
    by_foreign_key,
    by_parent,
    count_blocker,
)
from .service import RecycleBinService
from .tables import (
    DeletedRecord,
    DeletionManifest,
    RecycleBinBase,
    create_recycle_bin_tables,
)

__all__ = [
    # Services
    "RecycleBinService",
    # Registry
    "CascadeRegistry",
    "CascadeConfig",
    "DependentSelector",
    "by_foreign_key",
    "by_parent",
    "count_blocker",
    # Tables
    "RecycleBinBase",
    "DeletedRecord",
    "DeletionManifest",
    "create_recycle_bin_tables",
    # Identity
    "insert_with_identity",
    "register_identity_insert",
    # Models
    "BulkDeleteSuccess",
    "BulkDeleteFailure",
    "BulkDeleteResult",
    "BulkRestoreSuccess",
    "BulkRestoreFailure",
    "BulkRestoreResult",
    "ManifestSummary",
    "RecycleBinStats",
    # Exceptions
    "RecycleBinError",
    "DeletionBlocked",
    "ManifestNotFound",
    "EntityNotFound",
    "UnknownEntityType",
    "SchemaMismatch",
]
