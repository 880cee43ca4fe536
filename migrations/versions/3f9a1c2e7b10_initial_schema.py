"""initial_schema

Revision ID: 3f9a1c2e7b10
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2e7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "employees",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("department", sa.String(100)),
        sa.Column("position", sa.String(100)),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("approval_lines", JSON),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("idx_employees_email", "employees", ["email"])

    op.create_table(
        "approval_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("document_type", sa.String(30), nullable=False),
        sa.Column("requester_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("payload", JSON, nullable=False),
        sa.Column("approver_first", sa.Uuid()),
        sa.Column("approver_second", sa.Uuid()),
        sa.Column("approver_third", sa.Uuid()),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("decided_at", sa.DateTime()),
        sa.CheckConstraint(
            "status IN ('stage1_pending', 'stage2_pending', 'stage3_pending', 'approved', 'rejected')",
            name="chk_approval_request_status",
        ),
        sa.CheckConstraint(
            "document_type IN ('vacation', 'purchase', 'sales', 'outside_work', "
            "'outside_work_report', 'internal_report')",
            name="chk_approval_request_doc_type",
        ),
    )
    op.create_index("idx_approval_requests_requester", "approval_requests", ["requester_id", "status"])
    op.create_index("idx_approval_requests_status", "approval_requests", ["status"])
    op.create_index("idx_approval_requests_first", "approval_requests", ["approver_first", "status"])
    op.create_index("idx_approval_requests_second", "approval_requests", ["approver_second", "status"])
    op.create_index("idx_approval_requests_third", "approval_requests", ["approver_third", "status"])

    op.create_table(
        "approval_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "request_id",
            sa.Uuid(),
            sa.ForeignKey("approval_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.Uuid(), nullable=False),
        sa.Column("stage", sa.String(30), nullable=False),
        sa.Column("decision", sa.String(10), nullable=False),
        sa.Column("comment", sa.Text()),
        sa.Column("decided_at", sa.DateTime()),
        sa.CheckConstraint("decision IN ('approved', 'rejected')", name="chk_history_decision"),
        sa.CheckConstraint("seq > 0", name="chk_history_seq_positive"),
    )
    op.create_index("idx_history_request", "approval_history", ["request_id", "seq"], unique=True)
    op.create_index("idx_history_approver", "approval_history", ["approver_id", "decided_at"])

    op.create_table(
        "approval_shares",
        sa.Column(
            "request_id",
            sa.Uuid(),
            sa.ForeignKey("approval_requests.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("idx_approval_shares_user", "approval_shares", ["user_id"])

    op.create_table(
        "vacation_balances",
        sa.Column("employee_id", sa.Uuid(), primary_key=True),
        sa.Column("remaining_days", sa.Numeric(5, 1), nullable=False, server_default="0"),
        sa.Column("used_days", sa.Numeric(5, 1), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime()),
        sa.CheckConstraint("used_days >= 0", name="chk_balance_used_non_negative"),
    )

    op.create_table(
        "leave_deductions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("days", sa.Numeric(5, 1), nullable=False),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint("request_id", name="uq_leave_deduction_request"),
        sa.CheckConstraint("days >= 0", name="chk_leave_deduction_days"),
    )
    op.create_index("idx_leave_deductions_employee", "leave_deductions", ["employee_id"])

    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("event", JSON, nullable=False),
        sa.Column("status", sa.String(20), server_default="PENDING"),
        sa.Column("attempts", sa.Integer(), server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("delivered_to", JSON),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("dispatched_at", sa.DateTime()),
        sa.CheckConstraint(
            "status IN ('PENDING', 'SENT', 'PARTIAL', 'FAILED')",
            name="chk_outbox_status",
        ),
    )
    op.create_index("idx_outbox_status", "notification_outbox", ["status", "created_at"])
    op.create_index("idx_outbox_request", "notification_outbox", ["request_id"])

    op.create_table(
        "app_notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid()),
        sa.Column("outbox_id", sa.Uuid()),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("link", sa.String(500)),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("idx_notifications_user", "app_notifications", ["user_id", "is_read"])
    op.create_index(
        "idx_notifications_outbox_user", "app_notifications", ["outbox_id", "user_id"], unique=True
    )


def downgrade() -> None:
    op.drop_table("app_notifications")
    op.drop_table("notification_outbox")
    op.drop_table("leave_deductions")
    op.drop_table("vacation_balances")
    op.drop_table("approval_shares")
    op.drop_table("approval_history")
    op.drop_table("approval_requests")
    op.drop_table("employees")
