"""
Core audit logger implementation.

Provides the AuditLogger class that records delete, restore and purge
events of the recycle bin.
"""

import logging
import uuid
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..config import AuditStorageBackend, RecycleBinConfig, get_config
from .models import AuditAction, AuditEntry, AuditQuery
from .storage import AuditStorage, get_audit_storage

logger = logging.getLogger(__name__)

# Context variables for audit context
current_user: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "current_user", default=None
)


def set_audit_context(user: Optional[Dict[str, Any]]) -> None:
    """
    Set the acting user for the current execution context.

    Args:
        user: User information with at least an ``id`` key (``name`` optional),
            or None to clear it
    """
    current_user.set(user)


class AuditLogger:
    """Audit logger for recycle bin operations.

    Entries are checksummed and handed to an ``AuditStorage``. When the
    caller passes its ``Session`` and the storage is SQL based, the entry is
    written inside that transaction.

    Example:
        >>> audit = AuditLogger(storage=MemoryAuditStorage())
        >>> set_audit_context({"id": "u-17", "name": "HR Admin"})
        >>> audit.log_activity(
        ...     AuditAction.SAFE_DELETE,
        ...     entity_type="Employee",
        ...     entity_id="7",
        ...     details={"child_records": 3},
        ... )
    """

    def __init__(
        self,
        storage: Optional[AuditStorage] = None,
        application_name: Optional[str] = None,
        config: Optional[RecycleBinConfig] = None,
    ):
        """Initialize the audit logger.

        Args:
            storage: Storage backend for audit entries. If None, the backend
                configured in RecycleBinConfig is created on first use.
            application_name: Name recorded on every entry.
            config: Configuration to use instead of the global one.
        """
        self.config = config or get_config()
        self.storage = storage
        self.application_name = application_name or self.config.application_name
        self.enabled = self.config.audit_enabled

    def _ensure_storage(self) -> AuditStorage:
        """Ensure storage is initialized."""
        if self.storage is None:
            self.storage = get_audit_storage(
                backend=self.config.audit_storage_backend.value,
                connection_string=self.config.database_url,
                storage_path=self.config.audit_file_path,
            )
        return self.storage

    def resolve_actor(self, user_override: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Return the acting user: override, then context, then system actor."""
        user = user_override or current_user.get()
        if not user:
            return {"id": self.config.system_actor, "name": None}
        return user

    def log_activity(
        self,
        action: Union[str, AuditAction],
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        deletion_key: Optional[str] = None,
        reason: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_override: Optional[Dict[str, Any]] = None,
        session: Optional[Session] = None,
    ) -> Optional[str]:
        """
        Log an audit trail entry.

        Args:
            action: Action performed
            entity_type: Type of root entity
            entity_id: ID of root entity
            deletion_key: Deletion key of the manifest involved
            reason: Reason for the action
            success: Whether action succeeded
            error_message: Error if action failed
            details: Additional context (counts, tables)
            user_override: Override context user
            session: Session of the audited operation

        Returns:
            ID of the audit entry, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        storage = self._ensure_storage()
        user = self.resolve_actor(user_override)

        entry = AuditEntry(
            id=str(uuid.uuid4()),
            timestamp=datetime.utcnow(),
            user_id=str(user.get("id", self.config.system_actor)),
            user_name=user.get("name"),
            action=action if isinstance(action, AuditAction) else AuditAction(action),
            entity_type=entity_type,
            entity_id=entity_id,
            deletion_key=deletion_key,
            reason=reason,
            application=self.application_name,
            details=details,
            success=success,
            error_message=error_message,
        )
        entry.checksum = entry.calculate_checksum()

        storage.store(entry, session=session)
        logger.debug(entry.to_log_format())

        return entry.id

    def query(self, query: AuditQuery) -> List[AuditEntry]:
        """
        Query audit entries.

        Args:
            query: Query parameters

        Returns:
            List of matching entries
        """
        return self._ensure_storage().query(query)

    def get_entity_history(self, entity_type: str, entity_id: str) -> List[AuditEntry]:
        """Get every recorded event for a root entity, oldest first."""
        return self.query(
            AuditQuery(
                entity_types=[entity_type],
                entity_ids=[entity_id],
                sort_desc=False,
                limit=1000,
            )
        )

    def verify_integrity(self) -> Dict[str, Any]:
        """Verify the checksums of all stored entries."""
        return self._ensure_storage().verify_integrity()


# Global audit logger instance
_global_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get the global audit logger instance."""
    global _global_logger

    if _global_logger is None:
        _global_logger = AuditLogger()

    return _global_logger


def set_audit_logger(audit_logger: Optional[AuditLogger]) -> None:
    """Set the global audit logger instance."""
    global _global_logger
    _global_logger = audit_logger


def create_audit_logger(
    config: Optional[RecycleBinConfig] = None, engine: Optional[Engine] = None
) -> AuditLogger:
    """
    Create an audit logger for the protected database behind ``engine``.

    With the SQL backend the storage reuses ``engine``, so entries written
    inside an operation's session are the ones ``query`` and
    ``verify_integrity`` read back. Other backends ignore the engine.
    """
    config = config or get_config()
    backend = config.audit_storage_backend

    if backend == AuditStorageBackend.SQL and engine is not None:
        storage = get_audit_storage("sql", engine=engine)
    elif backend == AuditStorageBackend.FILE:
        storage = get_audit_storage("file", storage_path=config.audit_file_path)
    elif backend == AuditStorageBackend.MEMORY:
        storage = get_audit_storage("memory")
    else:
        storage = get_audit_storage("sql", connection_string=config.database_url)

    return AuditLogger(storage=storage, config=config)
