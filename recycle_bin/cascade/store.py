"""
Persistence of snapshots and deletion manifests.

Both stores work on the caller's session and never commit; the service
owns the transaction.
"""

import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Type

from sqlalchemy import Table, delete, func, select
from sqlalchemy.orm import Session

from ..config import RecycleBinConfig, get_config
from .exceptions import ManifestNotFound
from .snapshots import capture_rows
from .tables import DeletedRecord, DeletionManifest

# Keeps IN lists below the bound-parameter limits of SQLite and SQL Server
CHUNK_SIZE = 500

_KEY_ALPHABET = string.ascii_letters + string.digits


def generate_key(length: int = 40) -> str:
    """Generate an unguessable alphanumeric key."""
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(length))


def chunked(items: Sequence[Any], size: int = CHUNK_SIZE) -> List[Sequence[Any]]:
    """Split a sequence into consecutive slices of at most ``size`` items."""
    return [items[i : i + size] for i in range(0, len(items), size)]


class SnapshotStore:
    """Opaque-keyed storage of serialized records."""

    def __init__(self, session: Session, config: Optional[RecycleBinConfig] = None):
        self.session = session
        self.config = config or get_config()

    def new_key(self) -> str:
        return generate_key(self.config.deletion_key_length)

    def capture(self, values: Dict[str, Any], entity_type: str, table_name: str) -> str:
        """
        Store encoded row values under a fresh key.

        Args:
            values: Encoded column values keyed by column name
            entity_type: Entity type name of the row
            table_name: Table the row is deleted from

        Returns:
            Key of the new snapshot
        """
        key = self.new_key()
        self.session.add(
            DeletedRecord(
                key=key,
                entity_type=entity_type,
                table_name=table_name,
                values=values,
                captured_at=datetime.utcnow(),
            )
        )
        return key

    def capture_records(
        self,
        model: Type[Any],
        records: Sequence[Any],
        entity_type: str,
        live_table: Table,
    ) -> List[str]:
        """
        Snapshot live records of one model, in the order given.

        Returns:
            Keys of the new snapshots
        """
        keys = []
        for chunk in chunked(list(records)):
            for values in capture_rows(self.session, model, chunk, live_table):
                keys.append(self.capture(values, entity_type, live_table.name))
        return keys

    def load(self, keys: Sequence[str]) -> List[DeletedRecord]:
        """
        Load snapshots in the order of ``keys``.

        Keys without a stored snapshot are skipped.
        """
        found: Dict[str, DeletedRecord] = {}
        for chunk in chunked(list(keys)):
            stmt = select(DeletedRecord).where(DeletedRecord.key.in_(chunk))
            for record in self.session.scalars(stmt):
                found[record.key] = record
        return [found[key] for key in keys if key in found]

    def discard(self, keys: Sequence[str]) -> int:
        """Delete the snapshots stored under ``keys``; returns how many went."""
        removed = 0
        for chunk in chunked(list(keys)):
            result = self.session.execute(
                delete(DeletedRecord)
                .where(DeletedRecord.key.in_(chunk))
                .execution_options(synchronize_session=False)
            )
            removed += max(result.rowcount or 0, 0)
        return removed

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(DeletedRecord)) or 0


class ManifestStore:
    """Lookup and lifecycle of deletion manifests."""

    def __init__(self, session: Session, config: Optional[RecycleBinConfig] = None):
        self.session = session
        self.config = config or get_config()

    def find(self, deletion_key: str) -> Optional[DeletionManifest]:
        stmt = select(DeletionManifest).where(
            DeletionManifest.deletion_key == deletion_key
        )
        return self.session.scalars(stmt).first()

    def get(self, deletion_key: str) -> DeletionManifest:
        """
        Get a manifest by deletion key.

        Raises:
            ManifestNotFound: If no manifest carries the key
        """
        manifest = self.find(deletion_key)
        if manifest is None:
            raise ManifestNotFound(deletion_key)
        return manifest

    def create(self, **fields: Any) -> DeletionManifest:
        """Add a manifest with a fresh deletion key to the session."""
        manifest = DeletionManifest(
            deletion_key=generate_key(self.config.deletion_key_length),
            created_at=datetime.utcnow(),
            **fields,
        )
        self.session.add(manifest)
        return manifest

    def delete(self, manifest: DeletionManifest) -> None:
        self.session.delete(manifest)

    def older_than(self, cutoff: datetime) -> List[DeletionManifest]:
        """Manifests created before ``cutoff``, oldest first."""
        stmt = (
            select(DeletionManifest)
            .where(DeletionManifest.created_at < cutoff)
            .order_by(DeletionManifest.created_at, DeletionManifest.id)
        )
        return list(self.session.scalars(stmt).all())

    def list(
        self, entity_type: Optional[str] = None, limit: int = 100, offset: int = 0
    ) -> List[DeletionManifest]:
        """Manifests, newest first, optionally of one root entity type."""
        stmt = select(DeletionManifest)
        if entity_type:
            stmt = stmt.where(DeletionManifest.root_entity_type == entity_type)
        stmt = (
            stmt.order_by(DeletionManifest.created_at.desc(), DeletionManifest.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).all())

    def count_by_entity_type(self) -> Dict[str, int]:
        stmt = select(DeletionManifest.root_entity_type, func.count()).group_by(
            DeletionManifest.root_entity_type
        )
        return {entity_type: count for entity_type, count in self.session.execute(stmt)}

    def date_range(self) -> Any:
        """Oldest and newest ``created_at``; both None when the bin is empty."""
        stmt = select(
            func.min(DeletionManifest.created_at), func.max(DeletionManifest.created_at)
        )
        return self.session.execute(stmt).one()

    def count_older_than(self, cutoff: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(DeletionManifest)
            .where(DeletionManifest.created_at < cutoff)
        )
        return self.session.scalar(stmt) or 0
