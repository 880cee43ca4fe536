import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, UniqueConstraint, CheckConstraint, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from eapproval.database import Base, utcnow


class VacationBalance(Base):
    __tablename__ = "vacation_balances"

    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    remaining_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False, default=Decimal("0"))
    used_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (CheckConstraint("used_days >= 0", name="chk_balance_used_non_negative"),)


class LeaveDeduction(Base):
    """One row per approved leave request; the unique key blocks a second deduction."""

    __tablename__ = "leave_deductions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    days: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("request_id", name="uq_leave_deduction_request"),
        CheckConstraint("days >= 0", name="chk_leave_deduction_days"),
        Index("idx_leave_deductions_employee", "employee_id"),
    )
