"""
Tests for the restoration executor, including the end-to-end HR scenario.
"""

import uuid
from datetime import date, timedelta
from unittest.mock import patch

import pytest
from hr_models import (
    PAYROLL_REASON,
    Contract,
    ContractStatus,
    Employee,
    LeaveRequest,
    LeaveRequestItem,
    Payroll,
)
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from recycle_bin.audit_trail import AuditAction
from recycle_bin.cascade import (
    CascadeRegistry,
    DeletedRecord,
    DeletionBlocked,
    DeletionManifest,
    ManifestNotFound,
    RecycleBinError,
    RecycleBinService,
    SchemaMismatch,
    UnknownEntityType,
)


def count(session, model):
    return session.scalar(select(func.count()).select_from(model))


def leave_rows(session):
    return [
        (r.id, r.employee_id, r.starts_on, r.days, r.status)
        for r in session.scalars(select(LeaveRequest).order_by(LeaveRequest.id))
    ]


@pytest.mark.scenario
class TestEmployeeScenario:
    """Employee 7 with three leave requests and a payroll record."""

    def test_full_lifecycle(self, service, db_session, audit_storage, employee_7):
        """Test blocked delete, delete after clearing payroll, and restore."""
        with pytest.raises(DeletionBlocked) as exc_info:
            service.delete(employee_7)
        assert exc_info.value.reasons == [PAYROLL_REASON.format(count=1)]
        assert "payroll" in exc_info.value.reasons[0]

        db_session.execute(delete(Payroll).where(Payroll.employee_id == 7))
        db_session.commit()

        before = leave_rows(db_session)
        manifest = service.delete(db_session.get(Employee, 7), reason="Created in error")
        deletion_key = manifest.deletion_key

        assert len(manifest.snapshot_keys) == 4
        assert manifest.table_order == ["leave_requests", "employees"]
        assert db_session.get(Employee, 7) is None
        assert count(db_session, LeaveRequest) == 0

        restored = service.restore(deletion_key)

        assert isinstance(restored, Employee)
        assert restored.id == 7
        assert restored.name == "Dana Whitfield"
        assert restored.hired_on == date(2019, 4, 1)
        assert restored.is_active is True
        assert leave_rows(db_session) == before
        assert [r.id for r in restored.leave_requests] == [101, 102, 103]

        assert count(db_session, DeletionManifest) == 0
        assert count(db_session, DeletedRecord) == 0
        with pytest.raises(ManifestNotFound):
            service.get_manifest(deletion_key)

        assert [e.action for e in audit_storage.entries] == [
            AuditAction.SAFE_DELETE,
            AuditAction.RESTORE,
        ]
        assert audit_storage.entries[1].details["restored_children"] == 3


class TestRestore:
    """Test restoring deletions."""

    def test_roundtrip_with_grandchildren(self, service, db_session, employee_with_items):
        """Test that every row comes back with its original key and values."""
        items_before = [
            (i.id, i.leave_request_id, i.day, i.hours)
            for i in db_session.scalars(select(LeaveRequestItem).order_by(LeaveRequestItem.id))
        ]
        leave_before = leave_rows(db_session)

        manifest = service.delete(employee_with_items)
        service.restore(manifest.deletion_key)

        items_after = [
            (i.id, i.leave_request_id, i.day, i.hours)
            for i in db_session.scalars(select(LeaveRequestItem).order_by(LeaveRequestItem.id))
        ]
        assert items_after == items_before
        assert leave_rows(db_session) == leave_before
        assert db_session.get(Employee, 8).name == "Sam Okafor"

    def test_unknown_key(self, service):
        """Test that an unknown deletion key raises."""
        with pytest.raises(ManifestNotFound) as exc_info:
            service.restore("not-a-real-key")

        assert exc_info.value.deletion_key == "not-a-real-key"

    def test_restore_twice_fails(self, service, employee_with_items):
        """Test that a restored deletion cannot be restored again."""
        manifest = service.delete(employee_with_items)
        key = manifest.deletion_key
        service.restore(key)

        with pytest.raises(ManifestNotFound):
            service.restore(key)

    def test_new_rows_do_not_collide(self, service, db_session, employee_with_items):
        """Test that rows created after restore get fresh keys."""
        manifest = service.delete(employee_with_items)
        service.restore(manifest.deletion_key)

        db_session.add(Employee(name="Newcomer"))
        db_session.commit()

        newcomer = db_session.scalars(
            select(Employee).where(Employee.name == "Newcomer")
        ).one()
        assert newcomer.id != 8

    def test_failure_keeps_deletion_restorable(
        self, service, db_session, employee_with_items
    ):
        """Test that a failed restore rolls back and can be retried."""
        manifest = service.delete(employee_with_items)
        key = manifest.deletion_key

        with patch.object(
            service.audit_logger, "log_activity", side_effect=RuntimeError("audit down")
        ):
            with pytest.raises(RuntimeError):
                service.restore(key)

        assert count(db_session, Employee) == 0
        assert count(db_session, LeaveRequestItem) == 0
        assert count(db_session, DeletedRecord) == 7
        assert service.get_manifest(key).snapshot_count == 7

        service.restore(key)
        assert count(db_session, LeaveRequestItem) == 4

    def test_missing_root_snapshot(self, service, db_session, employee_with_items):
        """Test that a manifest without its root snapshot cannot be restored."""
        manifest = service.delete(employee_with_items)
        key = manifest.deletion_key
        db_session.execute(
            delete(DeletedRecord).where(DeletedRecord.key == manifest.snapshot_keys[-1])
        )
        db_session.commit()

        with pytest.raises(RecycleBinError, match="Root snapshot"):
            service.restore(key)

        assert count(db_session, LeaveRequest) == 0
        assert service.get_manifest(key) is not None

    def test_restore_with_fresh_registry(
        self, engine, db_session, audit_logger, config, service, employee_7
    ):
        """Test restoring an unconfigured type from a new session and registry."""
        manifest = service.delete(db_session.get(Payroll, 501))
        key = manifest.deletion_key
        assert manifest.root_model == "hr_models:Payroll"

        with Session(engine) as session:
            fresh = RecycleBinService(session, CascadeRegistry(), audit_logger, config)
            restored = fresh.restore(key)

            assert isinstance(restored, Payroll)
            assert (restored.id, restored.period, restored.amount) == (501, "2024-06", 4200.0)

    def test_unknown_root_type(self, db_session, audit_logger, config, service, employee_7):
        """Test that a root class that no longer resolves cannot be restored."""
        manifest = service.delete(db_session.get(Payroll, 501))
        manifest.root_model = "hr_models:RetiredPayroll"
        db_session.commit()
        other = RecycleBinService(db_session, CascadeRegistry(), audit_logger, config)

        with pytest.raises(UnknownEntityType):
            other.restore(manifest.deletion_key)

        assert count(db_session, Payroll) == 0

    def test_unloadable_root_rolls_back(self, service, db_session, employee_with_items):
        """Test that failing to load the restored root keeps the deletion."""
        manifest = service.delete(employee_with_items)
        key = manifest.deletion_key

        with patch.object(service, "_load_restored", side_effect=LookupError("bad row")):
            with pytest.raises(LookupError):
                service.restore(key)

        assert count(db_session, Employee) == 0
        assert count(db_session, LeaveRequestItem) == 0
        assert service.get_manifest(key).snapshot_count == 7

    def test_restore_leave_request_alone(self, service, db_session, employee_with_items):
        """Test restoring a deletion rooted at a dependent type."""
        manifest = service.delete(db_session.get(LeaveRequest, 202))

        restored = service.restore(manifest.deletion_key)

        assert restored.id == 202
        assert sorted(i.id for i in restored.items) == [1003, 1004]


class TestSchemaMismatch:
    """Test restoring snapshots taken under an older schema."""

    def test_dropped_column_is_skipped(self, service, db_session, employee_with_items):
        """Test that a column missing from the live table only warns."""
        manifest = service.delete(employee_with_items)
        key = manifest.deletion_key
        root = db_session.scalars(
            select(DeletedRecord).where(DeletedRecord.key == manifest.snapshot_keys[-1])
        ).one()
        root.values = {**root.values, "legacy_badge": "B-113"}
        db_session.commit()

        with pytest.warns(SchemaMismatch) as record:
            restored = service.restore(key)

        assert restored.id == 8
        warning = next(
            w.message for w in record if isinstance(w.message, SchemaMismatch)
        )
        assert warning.table_name == "employees"
        assert warning.dropped_columns == ["legacy_badge"]


class TestStoredValues:
    """Test that column values come back exactly as they were stored."""

    def test_enum_interval_and_uuid_roundtrip(self, service, db_session):
        """Test restoring enum, interval and UUID columns."""
        token = uuid.uuid4()
        db_session.add(
            Contract(
                id=12,
                holder="Sam Okafor",
                status=ContractStatus.ON_LEAVE,
                probation=timedelta(days=90, hours=4),
                token=token,
            )
        )
        db_session.commit()

        manifest = service.delete(db_session.get(Contract, 12))
        root = db_session.scalars(
            select(DeletedRecord).where(DeletedRecord.key == manifest.snapshot_keys[-1])
        ).one()
        assert root.values["status"] == "ON_LEAVE"

        restored = service.restore(manifest.deletion_key)

        assert restored.status is ContractStatus.ON_LEAVE
        assert restored.probation == timedelta(days=90, hours=4)
        assert restored.token == token
        assert count(db_session, DeletionManifest) == 0

    def test_null_values_roundtrip(self, service, db_session):
        """Test that NULL interval and UUID columns stay NULL."""
        db_session.add(Contract(id=13, holder="Dana", status=ContractStatus.ACTIVE))
        db_session.commit()

        manifest = service.delete(db_session.get(Contract, 13))
        restored = service.restore(manifest.deletion_key)

        assert restored.status is ContractStatus.ACTIVE
        assert restored.probation is None
        assert restored.token is None
