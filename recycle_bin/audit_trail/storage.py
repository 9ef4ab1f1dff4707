"""
Storage backends for audit trail data.

Provides an abstract interface and implementations for the audit sink.
The SQL backend can join the caller's session so that an audit row commits
or rolls back together with the operation it describes.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text, asc, desc
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .models import AuditEntry, AuditQuery

Base = declarative_base()


class AuditEntryDB(Base):  # type: ignore[valid-type,misc]
    """SQLAlchemy model for audit entries."""

    __tablename__ = "audit_trail"

    id = Column(String(50), primary_key=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    user_id = Column(String(100), nullable=False, index=True)
    user_name = Column(String(200), nullable=True)

    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(100), nullable=True, index=True)
    entity_id = Column(String(100), nullable=True, index=True)
    deletion_key = Column(String(128), nullable=True, index=True)

    reason = Column(Text, nullable=True)
    application = Column(String(100), nullable=False)
    details = Column(JSON, nullable=True)

    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)

    checksum = Column(String(128), nullable=False)

    __table_args__ = (
        Index("idx_audit_timestamp_action", timestamp, action),
        Index("idx_audit_entity", entity_type, entity_id),
    )


class AuditStorage(ABC):
    """Abstract base class for audit trail storage backends."""

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the storage backend."""
        pass

    @abstractmethod
    def store(self, entry: AuditEntry, session: Optional[Session] = None) -> None:
        """
        Store an audit entry.

        Args:
            entry: Audit entry to store
            session: Session of the operation being audited, if any. Backends
                that live in the same database write through it.
        """
        pass

    @abstractmethod
    def query(self, query: AuditQuery) -> List[AuditEntry]:
        """
        Query audit entries.

        Args:
            query: Query parameters

        Returns:
            List of matching audit entries
        """
        pass

    @abstractmethod
    def get_by_id(self, entry_id: str) -> Optional[AuditEntry]:
        """Get a specific audit entry by ID, or None."""
        pass

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the checksum of every stored audit entry.

        Returns:
            Integrity verification results
        """
        results: Dict[str, Any] = {
            "total_checked": 0,
            "valid": 0,
            "invalid": 0,
            "invalid_entries": [],
        }

        for entry in self._all_entries():
            results["total_checked"] += 1
            if entry.checksum and entry.verify_checksum(entry.checksum):
                results["valid"] += 1
            else:
                results["invalid"] += 1
                results["invalid_entries"].append(
                    {
                        "id": entry.id,
                        "timestamp": entry.timestamp.isoformat(),
                        "stored_checksum": entry.checksum,
                        "calculated_checksum": entry.calculate_checksum(),
                    }
                )

        return results

    @abstractmethod
    def _all_entries(self) -> List[AuditEntry]:
        """Return every stored entry, oldest first."""
        pass


class SQLAuditStorage(AuditStorage):
    """SQL database storage backend for audit trails."""

    def __init__(
        self, connection_string: Optional[str] = None, engine: Optional[Engine] = None
    ):
        """
        Initialize SQL audit storage.

        Args:
            connection_string: Database connection string
            engine: Existing engine to reuse instead of creating one
        """
        if connection_string is None and engine is None:
            raise ValueError("connection_string or engine is required")
        self.connection_string = connection_string
        self.engine: Optional[Engine] = engine
        self.SessionLocal: Optional[sessionmaker] = None  # type: ignore[type-arg]

    def initialize(self) -> None:
        """Initialize the database."""
        if self.engine is None:
            assert self.connection_string is not None  # nosec B101
            self.engine = create_engine(self.connection_string, pool_pre_ping=True)

        Base.metadata.create_all(bind=self.engine)

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    def _entry_to_db(self, entry: AuditEntry) -> AuditEntryDB:
        """Convert AuditEntry to database model."""
        if not entry.checksum:
            entry.checksum = entry.calculate_checksum()

        return AuditEntryDB(
            id=entry.id,
            timestamp=entry.timestamp,
            user_id=entry.user_id,
            user_name=entry.user_name,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            deletion_key=entry.deletion_key,
            reason=entry.reason,
            application=entry.application,
            details=entry.details,
            success=entry.success,
            error_message=entry.error_message,
            checksum=entry.checksum,
        )

    def _db_to_entry(self, db_entry: AuditEntryDB) -> AuditEntry:
        """Convert database model to AuditEntry."""
        return AuditEntry(
            id=db_entry.id,
            timestamp=db_entry.timestamp,
            user_id=db_entry.user_id,
            user_name=db_entry.user_name,
            action=db_entry.action,
            entity_type=db_entry.entity_type,
            entity_id=db_entry.entity_id,
            deletion_key=db_entry.deletion_key,
            reason=db_entry.reason,
            application=db_entry.application,
            details=db_entry.details,
            success=db_entry.success,
            error_message=db_entry.error_message,
            checksum=db_entry.checksum,
        )

    def _session(self) -> Session:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self.SessionLocal()

    def store(self, entry: AuditEntry, session: Optional[Session] = None) -> None:
        """Store a single audit entry."""
        db_entry = self._entry_to_db(entry)

        if session is not None:
            # Committed or rolled back by the owner of the session
            session.add(db_entry)
            return

        with self._session() as own_session:
            own_session.add(db_entry)
            own_session.commit()

    def query(self, query: AuditQuery) -> List[AuditEntry]:
        """Query audit entries with filters."""
        with self._session() as session:
            q = session.query(AuditEntryDB)

            if query.start_date:
                q = q.filter(AuditEntryDB.timestamp >= query.start_date)
            if query.end_date:
                q = q.filter(AuditEntryDB.timestamp <= query.end_date)
            if query.user_ids:
                q = q.filter(AuditEntryDB.user_id.in_(query.user_ids))
            if query.actions:
                q = q.filter(
                    AuditEntryDB.action.in_([getattr(a, "value", a) for a in query.actions])
                )
            if query.entity_types:
                q = q.filter(AuditEntryDB.entity_type.in_(query.entity_types))
            if query.entity_ids:
                q = q.filter(AuditEntryDB.entity_id.in_(query.entity_ids))
            if query.deletion_key:
                q = q.filter(AuditEntryDB.deletion_key == query.deletion_key)

            if query.sort_desc:
                q = q.order_by(desc(AuditEntryDB.timestamp))
            else:
                q = q.order_by(asc(AuditEntryDB.timestamp))

            q = q.limit(query.limit).offset(query.offset)

            return [self._db_to_entry(r) for r in q.all()]

    def get_by_id(self, entry_id: str) -> Optional[AuditEntry]:
        """Get a specific audit entry."""
        with self._session() as session:
            db_entry = session.get(AuditEntryDB, entry_id)
            if db_entry:
                return self._db_to_entry(db_entry)
            return None

    def _all_entries(self) -> List[AuditEntry]:
        with self._session() as session:
            rows = session.query(AuditEntryDB).order_by(asc(AuditEntryDB.timestamp))
            return [self._db_to_entry(r) for r in rows.all()]


class FileAuditStorage(AuditStorage):
    """File-based storage backend writing one JSON document per line."""

    def __init__(self, storage_path: str):
        """
        Initialize file-based audit storage.

        Args:
            storage_path: Directory path for storing audit files
        """
        self.storage_path = Path(storage_path)
        self.file_lock = threading.Lock()

    def initialize(self) -> None:
        """Initialize the file storage."""
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def _get_current_file_path(self) -> Path:
        """Get path for current audit file."""
        date_str = datetime.utcnow().strftime("%Y%m%d")
        return self.storage_path / f"audit_{date_str}.jsonl"

    def store(self, entry: AuditEntry, session: Optional[Session] = None) -> None:
        """Append audit entry to today's file."""
        if not entry.checksum:
            entry.checksum = entry.calculate_checksum()

        with self.file_lock:
            with open(self._get_current_file_path(), "a", encoding="utf-8") as f:
                f.write(entry.model_dump_json() + "\n")

    def _all_entries(self) -> List[AuditEntry]:
        entries: List[AuditEntry] = []
        for file_path in sorted(self.storage_path.glob("audit_*.jsonl")):
            with open(file_path, encoding="utf-8") as f:
                for line in f:
                    if line.strip():
                        entries.append(AuditEntry.model_validate_json(line))
        entries.sort(key=lambda e: e.timestamp)
        return entries

    def query(self, query: AuditQuery) -> List[AuditEntry]:
        """Scan the audit files and apply the query filters."""
        results = [e for e in self._all_entries() if query.matches(e)]
        if query.sort_desc:
            results.reverse()
        return results[query.offset : query.offset + query.limit]

    def get_by_id(self, entry_id: str) -> Optional[AuditEntry]:
        """Get a specific audit entry."""
        return next((e for e in self._all_entries() if e.id == entry_id), None)


class MemoryAuditStorage(AuditStorage):
    """In-process storage, mainly for tests and dry runs."""

    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    def initialize(self) -> None:
        pass

    def store(self, entry: AuditEntry, session: Optional[Session] = None) -> None:
        if not entry.checksum:
            entry.checksum = entry.calculate_checksum()
        self.entries.append(entry)

    def _all_entries(self) -> List[AuditEntry]:
        return list(self.entries)

    def query(self, query: AuditQuery) -> List[AuditEntry]:
        results = [e for e in self.entries if query.matches(e)]
        if query.sort_desc:
            results.reverse()
        return results[query.offset : query.offset + query.limit]

    def get_by_id(self, entry_id: str) -> Optional[AuditEntry]:
        return next((e for e in self.entries if e.id == entry_id), None)


_storage_instances: Dict[str, AuditStorage] = {}


def get_audit_storage(backend: str = "sql", **kwargs: Any) -> AuditStorage:
    """
    Get or create an audit storage instance.

    Args:
        backend: Storage backend type ("sql", "file" or "memory")
        **kwargs: Backend-specific parameters (``connection_string``,
            ``engine`` or ``storage_path``)

    Returns:
        Initialized audit storage instance
    """
    if backend == "memory":
        storage: AuditStorage = MemoryAuditStorage()
        storage.initialize()
        return storage

    if "engine" in kwargs:
        # Engines are not hashable into a stable cache key
        storage = SQLAuditStorage(engine=kwargs["engine"])
        storage.initialize()
        return storage

    cache_key = f"{backend}:{json.dumps(kwargs, sort_keys=True, default=str)}"

    if cache_key not in _storage_instances:
        if backend == "sql":
            connection_string = kwargs.get("connection_string")
            if not connection_string:
                raise ValueError("connection_string is required for sql backend")
            storage = SQLAuditStorage(connection_string)
        elif backend == "file":
            storage_path = kwargs.get("storage_path")
            if not storage_path:
                raise ValueError("storage_path is required for file backend")
            storage = FileAuditStorage(storage_path)
        else:
            raise ValueError(f"Unknown storage backend: {backend}")

        storage.initialize()
        _storage_instances[cache_key] = storage

    return _storage_instances[cache_key]
