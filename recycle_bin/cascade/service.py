"""
Service layer for cascade delete and restore operations.

Deletes a root entity together with its configured dependents after
snapshotting every row, and reverses such a deletion from its deletion key
with the original primary keys.
"""

import logging
import warnings
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy import MetaData, Table, and_, delete, select, tuple_, type_coerce
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from ..audit_trail import AuditAction, AuditLogger, create_audit_logger
from ..config import RecycleBinConfig, get_config
from .exceptions import (
    DeletionBlocked,
    EntityNotFound,
    RecycleBinError,
    SchemaMismatch,
)
from .identity import insert_with_identity
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
    entity_type_of,
    model_path_of,
    spans_several_tables,
    table_name_of,
)
from .snapshots import decode_row, encode_value, filter_to_columns
from .store import ManifestStore, SnapshotStore, chunked
from .tables import DeletedRecord, DeletionManifest

logger = logging.getLogger(__name__)

DISPLAY_NAME_LENGTH = 255


def entity_identity(entity: Any) -> str:
    """Identity string of a live mapped instance."""
    mapper = sa_inspect(entity).mapper
    key = mapper.primary_key_from_instance(entity)
    return ",".join(str(encode_value(value)) for value in key)


class RecycleBinService:
    """
    Service for reversible cascade deletion.

    Every public mutating operation runs in a single transaction on the
    given session: it commits on success and rolls back before re-raising
    on failure.

    Example:
        >>> service = RecycleBinService(session, registry)
        >>> reasons = service.validate_deletion(employee)
        >>> manifest = service.delete(employee, reason="Duplicate hire record")
        >>> restored = service.restore(manifest.deletion_key)
    """

    def __init__(
        self,
        session: Session,
        registry: CascadeRegistry,
        audit_logger: Optional[AuditLogger] = None,
        config: Optional[RecycleBinConfig] = None,
    ):
        """
        Initialize the recycle bin service.

        Args:
            session: SQLAlchemy session bound to the protected store
            registry: Cascade configurations of the entity types
            audit_logger: Audit logger; when omitted, one whose SQL storage
                shares the session's database
            config: Configuration; the global one when omitted
        """
        self.session = session
        self.registry = registry
        self.config = config or get_config()
        self.audit_logger = audit_logger or create_audit_logger(
            self.config, session.get_bind()
        )
        self.snapshots = SnapshotStore(session, self.config)
        self.manifests = ManifestStore(session, self.config)
        self._live_tables: Dict[str, Table] = {}

    # Validation

    def validate_deletion(self, entity: Any) -> List[str]:
        """
        Evaluate every blocker of the entity's type.

        Args:
            entity: Root entity to check

        Returns:
            Reasons preventing deletion, in blocker order; empty when clear
        """
        config = self.registry.get(entity)
        if config is None:
            return []

        reasons = []
        for blocker in config.blockers:
            reason = blocker(self.session, entity)
            if reason:
                reasons.append(reason)
        return reasons

    # Delete

    def delete(
        self,
        entity: Any,
        reason: Optional[str] = None,
        deleted_by: Optional[str] = None,
        deleted_by_name: Optional[str] = None,
    ) -> DeletionManifest:
        """
        Snapshot and hard-delete an entity and its dependents.

        Args:
            entity: Root entity to delete
            reason: Reason recorded on the manifest and the audit event
            deleted_by: Acting user ID; the audit context user when omitted
            deleted_by_name: Acting user display name

        Returns:
            The committed deletion manifest

        Raises:
            DeletionBlocked: If any blocker objects; nothing is changed
            RecycleBinError: If the entity's class spans several tables
        """
        model = type(entity)
        entity_type = entity_type_of(model)
        if spans_several_tables(model):
            raise RecycleBinError(
                f"{entity_type} is mapped to several tables; joined-table "
                "inheritance is not supported"
            )
        root_id = entity_identity(entity)

        reasons = self.validate_deletion(entity)
        if reasons:
            logger.warning(
                f"Deletion of {entity_type} {root_id} blocked: {'; '.join(reasons)}"
            )
            raise DeletionBlocked(reasons, entity_id=root_id)

        config = self.registry.get(entity) or CascadeConfig()
        root_table = table_name_of(model)
        display_name = self._display_name(entity, config, entity_type, root_id)

        if deleted_by:
            actor = {"id": deleted_by, "name": deleted_by_name}
        else:
            actor = self.audit_logger.resolve_actor()

        try:
            keys: List[str] = []
            table_order: List[str] = []
            tiers: List[Tuple[Type[Any], List[Any]]] = []
            seen = {(entity_type, root_id)}

            for dependent in config.snapshot_order:
                records = []
                for record in dependent.select(self.session, entity):
                    identity = (dependent.entity_type, entity_identity(record))
                    if identity in seen:
                        continue
                    seen.add(identity)
                    records.append(record)

                if not records:
                    continue

                keys.extend(
                    self.snapshots.capture_records(
                        dependent.model,
                        records,
                        dependent.entity_type,
                        self._live_table(dependent.table_name),
                    )
                )
                if dependent.table_name not in table_order:
                    table_order.append(dependent.table_name)
                tiers.append((dependent.model, records))
                logger.debug(
                    f"Snapshotted {len(records)} {dependent.entity_type} row(s) "
                    f"from {dependent.table_name}"
                )

            keys.extend(
                self.snapshots.capture_records(
                    model, [entity], entity_type, self._live_table(root_table)
                )
            )
            if root_table in table_order:
                table_order.remove(root_table)
            table_order.append(root_table)

            self.session.flush()

            for tier_model, records in tiers:
                self._delete_rows(tier_model, records)
            self._delete_rows(model, [entity])

            manifest = self.manifests.create(
                root_entity_type=entity_type,
                root_id=root_id,
                root_model=model_path_of(model),
                root_display_name=display_name,
                snapshot_keys=keys,
                table_order=table_order,
                deleted_by=str(actor.get("id")),
                deleted_by_name=actor.get("name"),
                reason=reason,
            )

            self.audit_logger.log_activity(
                AuditAction.SAFE_DELETE,
                entity_type=entity_type,
                entity_id=root_id,
                deletion_key=manifest.deletion_key,
                reason=reason,
                details={
                    "display_name": display_name,
                    "child_records": len(keys) - 1,
                    "snapshot_count": len(keys),
                    "tables": table_order,
                },
                user_override=actor,
                session=self.session,
            )

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"Deleted {entity_type} {root_id} with {len(keys) - 1} dependent "
            f"record(s) across {len(table_order)} table(s)"
        )
        return manifest

    def _delete_rows(self, model: Type[Any], records: List[Any]) -> None:
        """Delete already snapshotted rows of one tier with Core statements."""
        mapper = sa_inspect(model)
        table = mapper.local_table
        pk_columns = [table.c[column.name] for column in mapper.primary_key]
        identities = [mapper.primary_key_from_instance(record) for record in records]

        for chunk in chunked(identities):
            if len(pk_columns) == 1:
                condition = pk_columns[0].in_([identity[0] for identity in chunk])
            else:
                condition = tuple_(*pk_columns).in_([tuple(i) for i in chunk])

            result = self.session.execute(delete(table).where(condition))
            deleted = result.rowcount
            if deleted is not None and deleted >= 0 and deleted != len(chunk):
                raise RecycleBinError(
                    f"Expected to delete {len(chunk)} row(s) from {table.name}, "
                    f"deleted {deleted}"
                )

        for record in records:
            if record in self.session:
                self.session.expunge(record)

    def _display_name(
        self, entity: Any, config: CascadeConfig, entity_type: str, root_id: str
    ) -> str:
        name: Any = None
        if config.display_name is not None:
            name = config.display_name(entity)
        else:
            for attribute in ("display_name", "name", "title"):
                value = getattr(entity, attribute, None)
                if callable(value):
                    value = value()
                if value:
                    name = value
                    break

        if not name:
            name = f"{entity_type} #{root_id}"
        return str(name)[:DISPLAY_NAME_LENGTH]

    # Restore

    def restore(self, deletion_key: str) -> Any:
        """
        Reinsert every row of a deletion with its original primary key.

        Args:
            deletion_key: Key of the deletion manifest

        Returns:
            The restored root entity, loaded in this session

        Raises:
            ManifestNotFound: If the key is unknown
            UnknownEntityType: If the root type cannot be resolved
            RecycleBinError: If the snapshots are incomplete
        """
        manifest = self.manifests.get(deletion_key)
        entity_type = manifest.root_entity_type
        root_id = manifest.root_id
        model = self.registry.resolve_model(entity_type, manifest.root_model)

        try:
            records = self.snapshots.load(manifest.snapshot_keys)
            # The root is always captured last
            root = records[-1] if records else None
            if root is None or root.key != manifest.snapshot_keys[-1]:
                raise RecycleBinError(
                    f"Root snapshot of {entity_type} {root_id} is missing "
                    f"from deletion {deletion_key}",
                    entity_id=root_id,
                )

            self._reinsert(root)

            by_table: Dict[str, List[DeletedRecord]] = {}
            children = records[:-1]
            for record in children:
                by_table.setdefault(record.table_name, []).append(record)

            for table_name in reversed(manifest.table_order):
                for record in reversed(by_table.pop(table_name, [])):
                    self._reinsert(record)

            if by_table:
                raise RecycleBinError(
                    f"Deletion {deletion_key} holds snapshots for tables outside "
                    f"its table order: {', '.join(sorted(by_table))}",
                    entity_id=root_id,
                )

            restored = self._load_restored(model, root)

            self.snapshots.discard(manifest.snapshot_keys)
            table_order = list(manifest.table_order)
            self.manifests.delete(manifest)

            self.audit_logger.log_activity(
                AuditAction.RESTORE,
                entity_type=entity_type,
                entity_id=root_id,
                deletion_key=deletion_key,
                details={
                    "restored_children": len(children),
                    "tables": table_order,
                },
                session=self.session,
            )

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"Restored {entity_type} {root_id} with {len(children)} dependent record(s)"
        )
        return restored

    def _load_restored(self, model: Type[Any], root: DeletedRecord) -> Any:
        """Load the reinserted root through its mapped class."""
        table = self._live_table(root.table_name)
        values = decode_row(filter_to_columns(root.values, table)[0], table)
        mapper = sa_inspect(model)
        # Keys are compared in their stored form
        condition = and_(
            *(
                type_coerce(column, table.c[column.name].type) == values[column.name]
                for column in mapper.primary_key
            )
        )
        stmt = (
            select(model)
            .where(condition)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).one()

    def _reinsert(self, record: DeletedRecord) -> None:
        table = self._live_table(record.table_name)
        values, dropped = filter_to_columns(record.values, table)
        if dropped:
            warnings.warn(SchemaMismatch(record.table_name, dropped), stacklevel=3)
            logger.warning(
                f"Skipped columns {', '.join(dropped)} missing from "
                f"{record.table_name} while restoring {record.entity_type}"
            )
        insert_with_identity(self.session.connection(), table, decode_row(values, table))

    def _live_table(self, table_name: str) -> Table:
        """Reflect the current definition of a table, once per service."""
        if table_name not in self._live_tables:
            self._live_tables[table_name] = Table(
                table_name, MetaData(), autoload_with=self.session.connection()
            )
        return self._live_tables[table_name]

    # Bulk operations

    def bulk_delete(
        self,
        entity_type: Union[str, Type[Any]],
        ids: Iterable[Any],
        reason: Optional[str] = None,
    ) -> BulkDeleteResult:
        """
        Delete several entities of one type, each in its own transaction.

        Args:
            entity_type: Mapped class or registered entity type name
            ids: Primary keys to delete
            reason: Reason applied to every deletion

        Returns:
            Per-item successes and failures, in input order
        """
        model = (
            entity_type
            if isinstance(entity_type, type)
            else self.registry.resolve_model(entity_type)
        )
        result = BulkDeleteResult()

        for entity_id in ids:
            try:
                entity = self.session.get(model, entity_id)
                if entity is None:
                    raise EntityNotFound(entity_type_of(model), entity_id)
                manifest = self.delete(entity, reason=reason)
                result.deleted.append(
                    BulkDeleteSuccess(
                        id=entity_id,
                        deletion_key=manifest.deletion_key,
                        display_name=manifest.root_display_name,
                        snapshot_count=manifest.snapshot_count,
                    )
                )
            except DeletionBlocked as e:
                self.session.rollback()
                result.failed.append(BulkDeleteFailure(id=entity_id, reasons=e.reasons))
                logger.warning(f"Bulk delete skipped {entity_id}: {e}")
            except Exception as e:
                self.session.rollback()
                result.failed.append(BulkDeleteFailure(id=entity_id, reasons=[str(e)]))
                logger.warning(f"Bulk delete failed for {entity_id}: {e}")

        return result

    def bulk_restore(self, deletion_keys: Sequence[str]) -> BulkRestoreResult:
        """
        Restore several deletions, each in its own transaction.

        Args:
            deletion_keys: Keys of the deletion manifests

        Returns:
            Per-item successes and failures, in input order
        """
        result = BulkRestoreResult()

        for deletion_key in deletion_keys:
            try:
                manifest = self.manifests.get(deletion_key)
                entity_type = manifest.root_entity_type
                restored = self.restore(deletion_key)
                result.restored.append(
                    BulkRestoreSuccess(
                        deletion_key=deletion_key,
                        entity_type=entity_type,
                        restored_id=entity_identity(restored) if restored else None,
                    )
                )
            except Exception as e:
                self.session.rollback()
                result.failed.append(
                    BulkRestoreFailure(deletion_key=deletion_key, error=str(e))
                )
                logger.warning(f"Bulk restore failed for {deletion_key}: {e}")

        return result

    # Retention

    def purge_permanent(self, deletion_key: str) -> bool:
        """
        Permanently discard a deletion; it can no longer be restored.

        Raises:
            ManifestNotFound: If the key is unknown
        """
        manifest = self.manifests.get(deletion_key)

        try:
            self._purge(manifest, trigger="manual")
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Purged deletion {deletion_key[:8]}... permanently")
        return True

    def purge_expired(
        self, max_age: Optional[Union[timedelta, int, float]] = None
    ) -> int:
        """
        Purge every deletion older than ``max_age``.

        Args:
            max_age: Age as a timedelta or a number of days; defaults to the
                configured retention window

        Returns:
            Number of manifests purged
        """
        if max_age is None:
            max_age = timedelta(days=self.config.retention_days)
        elif not isinstance(max_age, timedelta):
            max_age = timedelta(days=max_age)
        if max_age < timedelta(0):
            raise ValueError("max_age must not be negative")

        cutoff = datetime.utcnow() - max_age

        try:
            expired = self.manifests.older_than(cutoff)
            for manifest in expired:
                self._purge(manifest, trigger="retention")
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Purged {len(expired)} deletion(s) older than {cutoff.isoformat()}")
        return len(expired)

    def _purge(self, manifest: DeletionManifest, trigger: str) -> None:
        removed = self.snapshots.discard(manifest.snapshot_keys)
        deletion_key = manifest.deletion_key
        entity_type = manifest.root_entity_type
        root_id = manifest.root_id
        self.manifests.delete(manifest)

        self.audit_logger.log_activity(
            AuditAction.PURGE,
            entity_type=entity_type,
            entity_id=root_id,
            deletion_key=deletion_key,
            details={"trigger": trigger, "snapshots_removed": removed},
            session=self.session,
        )

    # Listing and reporting

    def get_manifest(self, deletion_key: str) -> DeletionManifest:
        """Get a deletion manifest; raises ManifestNotFound if unknown."""
        return self.manifests.get(deletion_key)

    def list_manifests(
        self, entity_type: Optional[str] = None, limit: int = 100, offset: int = 0
    ) -> List[ManifestSummary]:
        """List deletions, newest first."""
        return [
            ManifestSummary.model_validate(manifest)
            for manifest in self.manifests.list(entity_type, limit=limit, offset=offset)
        ]

    def get_stats(self) -> RecycleBinStats:
        """Summarize what the recycle bin currently holds."""
        by_entity_type = self.manifests.count_by_entity_type()
        oldest, newest = self.manifests.date_range()
        cutoff = datetime.utcnow() - timedelta(days=self.config.retention_days)

        return RecycleBinStats(
            total_manifests=sum(by_entity_type.values()),
            total_snapshots=self.snapshots.count(),
            by_entity_type=by_entity_type,
            oldest_deletion=oldest,
            newest_deletion=newest,
            expired_manifests=self.manifests.count_older_than(cutoff),
            retention_days=self.config.retention_days,
        )
