"""outbox_claim

Revision ID: 8c41d7e2a905
Revises: 3f9a1c2e7b10
Create Date: 2026-10-18 15:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c41d7e2a905'
down_revision: Union[str, None] = '3f9a1c2e7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("notification_outbox") as batch:
        batch.add_column(sa.Column("claimed_at", sa.DateTime()))
        batch.drop_constraint("chk_outbox_status", type_="check")
        batch.create_check_constraint(
            "chk_outbox_status",
            "status IN ('PENDING', 'DISPATCHING', 'SENT', 'PARTIAL', 'FAILED')",
        )


def downgrade() -> None:
    op.execute("UPDATE notification_outbox SET status = 'PENDING' WHERE status = 'DISPATCHING'")
    with op.batch_alter_table("notification_outbox") as batch:
        batch.drop_constraint("chk_outbox_status", type_="check")
        batch.create_check_constraint(
            "chk_outbox_status",
            "status IN ('PENDING', 'SENT', 'PARTIAL', 'FAILED')",
        )
        batch.drop_column("claimed_at")
