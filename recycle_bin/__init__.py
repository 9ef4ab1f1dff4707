"""
Recycle Bin - reversible cascading deletes for SQLAlchemy applications.

Deleting a record that other records depend on usually means either
refusing the delete or losing the dependents for good. The recycle bin
hard-deletes a root entity together with its configured dependents, keeps a
snapshot of every row it removed, and can put all of them back later with
their original primary keys.

Key Features
------------
* **Cascade registry**: per-type blockers and deepest-first dependent selectors
* **Snapshots**: every deleted row captured before it is removed
* **Manifests**: one deletion key per cascade deletion
* **Restore**: identity-preserving reinsertion, root first
* **Bulk and retention**: independent per-item transactions, age-based purge
* **Audit trail**: checksummed events for every delete, restore and purge

Quick Start
-----------
>>> from recycle_bin import CascadeConfig, CascadeRegistry, RecycleBinService
>>> from recycle_bin.cascade import by_foreign_key, count_blocker, DependentSelector
>>>
>>> registry = CascadeRegistry()
>>> registry.register(
...     Employee,
...     CascadeConfig(
...         blockers=[count_blocker(Payroll, "employee_id", "{count} payroll record(s) exist")],
...         snapshot_order=[
...             DependentSelector(LeaveRequest, by_foreign_key(LeaveRequest, "employee_id")),
...         ],
...     ),
... )
>>> service = RecycleBinService(session, registry)
>>> manifest = service.delete(employee, reason="Created in error")
>>> service.restore(manifest.deletion_key)
"""

__version__ = "1.0.0"

from .audit_trail import AuditLogger, set_audit_context
from .cascade import (
    CascadeConfig,
    CascadeRegistry,
    DeletionBlocked,
    DeletionManifest,
    ManifestNotFound,
    RecycleBinError,
    RecycleBinService,
    create_recycle_bin_tables,
)
from .config import RecycleBinConfig, configure, get_config

__all__ = [
    # Cascade
    "RecycleBinService",
    "CascadeRegistry",
    "CascadeConfig",
    "DeletionManifest",
    "create_recycle_bin_tables",
    # Exceptions
    "RecycleBinError",
    "DeletionBlocked",
    "ManifestNotFound",
    # Audit Trail
    "AuditLogger",
    "set_audit_context",
    # Configuration
    "RecycleBinConfig",
    "configure",
    "get_config",
]
