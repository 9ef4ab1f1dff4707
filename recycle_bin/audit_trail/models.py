"""
Data models for audit trail functionality.

These models define the structure of the audit events emitted by
delete, restore and purge operations.
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AuditAction(str, Enum):
    """Audit actions emitted by the recycle bin."""

    SAFE_DELETE = "SAFE_DELETE"
    RESTORE = "RESTORE"
    PURGE = "PURGE"


class AuditEntry(BaseModel):
    """
    Immutable audit trail entry.

    Each entry captures who acted, on which root entity, what the operation
    touched (counts and tables in ``details``) and why.
    """

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(..., description="Unique identifier for the audit entry")
    timestamp: datetime = Field(
        default_factory=datetime.utcnow, description="UTC timestamp of the action"
    )

    # Who
    user_id: str = Field(..., description="ID of user performing the action")
    user_name: Optional[str] = Field(None, description="Display name of user")

    # What
    action: AuditAction = Field(..., description="Type of action performed")
    entity_type: Optional[str] = Field(None, description="Type of root entity")
    entity_id: Optional[str] = Field(None, description="ID of root entity")
    deletion_key: Optional[str] = Field(
        None, description="Deletion key of the manifest involved"
    )

    # Why
    reason: Optional[str] = Field(None, description="Reason for the action")

    # Where
    application: str = Field(..., description="Application name")

    details: Optional[Dict[str, Any]] = Field(
        None, description="Counts, tables and other operation details"
    )

    success: bool = Field(True, description="Whether the action succeeded")
    error_message: Optional[str] = Field(
        None, description="Error message if action failed"
    )

    checksum: Optional[str] = Field(
        None, description="Checksum of the entry for integrity verification"
    )

    def calculate_checksum(self, algorithm: str = "sha256") -> str:
        """
        Calculate checksum for the audit entry.

        Args:
            algorithm: Hash algorithm to use

        Returns:
            Hex digest of the checksum
        """
        data = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "deletion_key": self.deletion_key,
            "details": self.details,
            "success": self.success,
        }

        json_str = json.dumps(data, sort_keys=True, default=str)

        if algorithm == "sha256":
            return hashlib.sha256(json_str.encode()).hexdigest()
        elif algorithm == "sha512":
            return hashlib.sha512(json_str.encode()).hexdigest()
        else:
            raise ValueError(f"Unsupported algorithm: {algorithm}")

    def verify_checksum(
        self, expected_checksum: str, algorithm: str = "sha256"
    ) -> bool:
        """Verify the integrity of the audit entry."""
        return self.calculate_checksum(algorithm) == expected_checksum

    @model_validator(mode="after")
    def validate_failure_message(self) -> "AuditEntry":
        """Failed actions must say what went wrong."""
        if not self.success and not self.error_message:
            raise ValueError("error_message is required for failed actions")
        return self

    def to_log_format(self) -> str:
        """
        Convert to a standardized log format string.

        Returns:
            Formatted log string
        """
        parts = [
            f"[{self.timestamp.isoformat()}]",
            f"USER={self.user_id}",
            f"ACTION={self.action}",
        ]

        if self.entity_type and self.entity_id:
            parts.append(f"ENTITY={self.entity_type}:{self.entity_id}")

        if self.deletion_key:
            parts.append(f"KEY={self.deletion_key}")

        if self.reason:
            parts.append(f"REASON='{self.reason}'")

        if not self.success:
            parts.append(f"ERROR='{self.error_message}'")

        return " ".join(parts)


class AuditQuery(BaseModel):
    """Query parameters for searching audit events."""

    start_date: Optional[datetime] = Field(None, description="Start of time range")
    end_date: Optional[datetime] = Field(None, description="End of time range")
    user_ids: Optional[List[str]] = Field(None, description="Filter by user IDs")
    actions: Optional[List[AuditAction]] = Field(None, description="Filter by action")
    entity_types: Optional[List[str]] = Field(
        None, description="Filter by entity types"
    )
    entity_ids: Optional[List[str]] = Field(None, description="Filter by entity IDs")
    deletion_key: Optional[str] = Field(None, description="Filter by deletion key")
    limit: int = Field(100, description="Maximum results", gt=0, le=10000)
    offset: int = Field(0, description="Pagination offset", ge=0)
    sort_desc: bool = Field(True, description="Newest first")

    def matches(self, entry: AuditEntry) -> bool:
        """Check an entry against every filter of this query."""
        if self.start_date and entry.timestamp < self.start_date:
            return False
        if self.end_date and entry.timestamp > self.end_date:
            return False
        if self.user_ids and entry.user_id not in self.user_ids:
            return False
        if self.actions and entry.action not in [
            AuditAction(a).value for a in self.actions
        ]:
            return False
        if self.entity_types and entry.entity_type not in self.entity_types:
            return False
        if self.entity_ids and entry.entity_id not in self.entity_ids:
            return False
        if self.deletion_key and entry.deletion_key != self.deletion_key:
            return False
        return True
