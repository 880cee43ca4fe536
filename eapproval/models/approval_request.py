import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from eapproval.database import Base, JSONType, utcnow

STATUS_VALUES = (
    "stage1_pending",
    "stage2_pending",
    "stage3_pending",
    "approved",
    "rejected",
)
DOCUMENT_TYPES = (
    "vacation",
    "purchase",
    "sales",
    "outside_work",
    "outside_work_report",
    "internal_report",
)


def _in_list(column: str, values: tuple) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


class ApprovalRequest(Base):
    __tablename__ = "approval_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_type: Mapped[str] = mapped_column(String(30), nullable=False)
    requester_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    approver_first: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    approver_second: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    approver_third: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    status: Mapped[str] = mapped_column(String(30), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    shares: Mapped[list["ApprovalShare"]] = relationship(
        back_populates="request",
        order_by="ApprovalShare.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    history: Mapped[list["ApprovalHistory"]] = relationship(
        back_populates="request",
        order_by="ApprovalHistory.seq",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # UPDATE ... WHERE version = :seen; a lost race raises StaleDataError
    __mapper_args__ = {"version_id_col": version}

    @property
    def shared_ids(self) -> list[str]:
        return [str(s.user_id) for s in self.shares]

    __table_args__ = (
        CheckConstraint(_in_list("status", STATUS_VALUES), name="chk_approval_request_status"),
        CheckConstraint(_in_list("document_type", DOCUMENT_TYPES), name="chk_approval_request_doc_type"),
        Index("idx_approval_requests_requester", "requester_id", "status"),
        Index("idx_approval_requests_status", "status"),
        Index("idx_approval_requests_first", "approver_first", "status"),
        Index("idx_approval_requests_second", "approver_second", "status"),
        Index("idx_approval_requests_third", "approver_third", "status"),
    )


class ApprovalHistory(Base):
    """Insert-only decision log. Rows are never updated or deleted."""

    __tablename__ = "approval_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approval_requests.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    stage: Mapped[str] = mapped_column(String(30), nullable=False)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text)
    decided_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    request: Mapped[ApprovalRequest] = relationship(back_populates="history")

    __table_args__ = (
        CheckConstraint("decision IN ('approved', 'rejected')", name="chk_history_decision"),
        CheckConstraint("seq > 0", name="chk_history_seq_positive"),
        Index("idx_history_request", "request_id", "seq", unique=True),
        Index("idx_history_approver", "approver_id", "decided_at"),
    )


class ApprovalShare(Base):
    """cc/observer on a request; receives notices, never decides."""

    __tablename__ = "approval_shares"

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approval_requests.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    request: Mapped[ApprovalRequest] = relationship(back_populates="shares")

    __table_args__ = (Index("idx_approval_shares_user", "user_id"),)
