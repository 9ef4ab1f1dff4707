"""Exceptions for cascade delete and restore operations."""

from typing import Any, List, Optional


class RecycleBinError(Exception):
    """Base exception for recycle bin operations."""

    def __init__(self, message: str, entity_id: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message)


class DeletionBlocked(RecycleBinError):
    """Raised when one or more blockers forbid deleting an entity."""

    def __init__(self, reasons: List[str], entity_id: Optional[str] = None):
        self.reasons = list(reasons)
        super().__init__(
            "Deletion blocked: " + "; ".join(self.reasons), entity_id=entity_id
        )


class ManifestNotFound(RecycleBinError):
    """Raised when a deletion key does not match any manifest."""

    def __init__(self, deletion_key: str):
        self.deletion_key = deletion_key
        super().__init__(f"No deletion manifest found for key {deletion_key}")


class EntityNotFound(RecycleBinError):
    """Raised when an entity to delete does not exist."""

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        super().__init__(
            f"{entity_type} with ID {entity_id} not found", entity_id=str(entity_id)
        )


class UnknownEntityType(RecycleBinError):
    """Raised when an entity type name cannot be resolved to a mapped class."""

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(
            f"Entity type {entity_type} is not registered with the recycle bin"
        )


class SchemaMismatch(UserWarning):
    """Warning issued when snapshot columns no longer exist in the live table."""

    def __init__(self, table_name: str, dropped_columns: List[str]):
        self.table_name = table_name
        self.dropped_columns = list(dropped_columns)
        super().__init__(
            f"Columns {', '.join(self.dropped_columns)} no longer exist in "
            f"{table_name} and were skipped on restore"
        )
