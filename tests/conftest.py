"""Shared fixtures for the recycle bin test suite."""

from datetime import date

import pytest
from hr_models import Base, Employee, LeaveRequest, LeaveRequestItem, Payroll, build_registry
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from recycle_bin.audit_trail import (
    AuditLogger,
    MemoryAuditStorage,
    set_audit_context,
    set_audit_logger,
)
from recycle_bin.cascade import RecycleBinService, create_recycle_bin_tables
from recycle_bin.config import RecycleBinConfig, set_config


@pytest.fixture(autouse=True)
def reset_globals():
    """Isolate tests from global configuration and audit state."""
    set_config(None)
    set_audit_logger(None)
    set_audit_context(None)
    yield
    set_config(None)
    set_audit_logger(None)
    set_audit_context(None)


@pytest.fixture
def engine():
    """In-memory SQLite database with foreign keys enforced."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    create_recycle_bin_tables(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Session on the test database."""
    session = Session(engine)
    yield session
    session.close()


@pytest.fixture
def config():
    """Configuration used by the services under test."""
    return RecycleBinConfig(environment="test", audit_storage_backend="memory")


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def audit_storage():
    return MemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage, config):
    return AuditLogger(storage=audit_storage, config=config)


@pytest.fixture
def service(db_session, registry, audit_logger, config):
    """Recycle bin service with in-memory auditing."""
    return RecycleBinService(
        db_session, registry, audit_logger=audit_logger, config=config
    )


@pytest.fixture
def employee_7(db_session):
    """Employee 7 with three leave requests and one payroll record."""
    employee = Employee(
        id=7,
        name="Dana Whitfield",
        email="dana@example.com",
        hired_on=date(2019, 4, 1),
        is_active=True,
    )
    db_session.add(employee)
    db_session.add_all(
        [
            LeaveRequest(id=101, employee_id=7, starts_on=date(2024, 1, 8), days=2),
            LeaveRequest(id=102, employee_id=7, starts_on=date(2024, 3, 4), days=5),
            LeaveRequest(id=103, employee_id=7, starts_on=date(2024, 7, 15), days=10),
            Payroll(id=501, employee_id=7, period="2024-06", amount=4200.0),
        ]
    )
    db_session.commit()
    return employee


@pytest.fixture
def employee_with_items(db_session):
    """Employee 8 with two leave requests of two items each."""
    employee = Employee(id=8, name="Sam Okafor", hired_on=date(2021, 9, 13))
    db_session.add(employee)
    db_session.add_all(
        [
            LeaveRequest(id=201, employee_id=8, starts_on=date(2024, 5, 6), days=2),
            LeaveRequest(id=202, employee_id=8, starts_on=date(2024, 8, 19), days=2),
            LeaveRequestItem(id=1001, leave_request_id=201, day=date(2024, 5, 6)),
            LeaveRequestItem(id=1002, leave_request_id=201, day=date(2024, 5, 7), hours=4.0),
            LeaveRequestItem(id=1003, leave_request_id=202, day=date(2024, 8, 19)),
            LeaveRequestItem(id=1004, leave_request_id=202, day=date(2024, 8, 20)),
        ]
    )
    db_session.commit()
    return employee


@pytest.fixture
def make_employees(db_session):
    """Factory creating plain employees by ID."""

    def _make(*ids, with_payroll=()):
        for employee_id in ids:
            db_session.add(Employee(id=employee_id, name=f"Employee {employee_id}"))
        db_session.flush()
        for employee_id in with_payroll:
            db_session.add(
                Payroll(employee_id=employee_id, period="2024-01", amount=1000.0)
            )
        db_session.commit()

    return _make
