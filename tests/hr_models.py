"""
HR schema shared by the test suite.

Employees own leave requests, which own leave request items. Payroll
records block the deletion of an employee. Contracts have no cascade
configuration and carry enum, interval and UUID columns.
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Interval,
    String,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

from recycle_bin.cascade import (
    CascadeConfig,
    CascadeRegistry,
    DependentSelector,
    by_foreign_key,
    by_parent,
    count_blocker,
)

Base = declarative_base()

PAYROLL_REASON = "Cannot delete: {count} payroll record(s) exist for this employee."


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(200))
    hired_on = Column(Date)
    is_active = Column(Boolean, default=True)
    updated_at = Column(DateTime)

    leave_requests = relationship("LeaveRequest", back_populates="employee")


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False)
    starts_on = Column(Date, nullable=False)
    days = Column(Integer, nullable=False)
    status = Column(String(20), default="pending")

    employee = relationship("Employee", back_populates="leave_requests")
    items = relationship("LeaveRequestItem", back_populates="leave_request")


class LeaveRequestItem(Base):
    __tablename__ = "leave_request_items"

    id = Column(Integer, primary_key=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=False)
    day = Column(Date, nullable=False)
    hours = Column(Float, default=8.0)

    leave_request = relationship("LeaveRequest", back_populates="items")


class Payroll(Base):
    __tablename__ = "payrolls"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False)
    period = Column(String(7), nullable=False)
    amount = Column(Float, nullable=False)


class ContractStatus(enum.Enum):
    ACTIVE = "active"
    ON_LEAVE = "on_leave"


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True)
    holder = Column(String(100), nullable=False)
    status = Column(Enum(ContractStatus), nullable=False)
    probation = Column(Interval)
    token = Column(Uuid)


# Joined-table inheritance; never created in the test database
JoinedBase = declarative_base()


class Person(JoinedBase):
    __tablename__ = "people"

    id = Column(Integer, primary_key=True)
    kind = Column(String(20))

    __mapper_args__ = {"polymorphic_on": kind, "polymorphic_identity": "person"}


class Manager(Person):
    __tablename__ = "managers"

    id = Column(Integer, ForeignKey("people.id"), primary_key=True)
    team = Column(String(100))

    __mapper_args__ = {"polymorphic_identity": "manager"}


def build_registry() -> CascadeRegistry:
    """Cascade configuration of the HR schema."""
    registry = CascadeRegistry()
    registry.register(
        Employee,
        CascadeConfig(
            blockers=[count_blocker(Payroll, "employee_id", PAYROLL_REASON)],
            snapshot_order=[
                DependentSelector(
                    LeaveRequestItem,
                    by_parent(
                        LeaveRequestItem, "leave_request_id", LeaveRequest, "employee_id"
                    ),
                ),
                DependentSelector(LeaveRequest, by_foreign_key(LeaveRequest, "employee_id")),
            ],
        ),
    )
    registry.register(
        LeaveRequest,
        CascadeConfig(
            snapshot_order=[
                DependentSelector(
                    LeaveRequestItem, by_foreign_key(LeaveRequestItem, "leave_request_id")
                ),
            ],
            display_name=lambda request: f"Leave from {request.starts_on.isoformat()}",
        ),
    )
    registry.register_model(Payroll)
    return registry


registry = build_registry()
