"""
Audit Trail Module - audit events for the recycle bin.

Every delete, restore and purge emits a checksummed AuditEntry to a
pluggable storage backend.
"""

from .logger import (
    AuditLogger,
    create_audit_logger,
    current_user,
    get_audit_logger,
    set_audit_context,
    set_audit_logger,
)
from .models import AuditAction, AuditEntry, AuditQuery
from .storage import (
    AuditEntryDB,
    AuditStorage,
    FileAuditStorage,
    MemoryAuditStorage,
    SQLAuditStorage,
    get_audit_storage,
)

__all__ = [
    # Logger
    "AuditLogger",
    "create_audit_logger",
    "get_audit_logger",
    "set_audit_logger",
    "set_audit_context",
    "current_user",
    # Models
    "AuditEntry",
    "AuditAction",
    "AuditQuery",
    # Storage
    "AuditEntryDB",
    "AuditStorage",
    "SQLAuditStorage",
    "FileAuditStorage",
    "MemoryAuditStorage",
    "get_audit_storage",
]
