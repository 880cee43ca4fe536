"""Central model registry — import all models so Alembic autodiscover works."""

from eapproval.database import Base  # noqa: F401

from eapproval.models.employee import Employee  # noqa: F401
from eapproval.models.approval_request import ApprovalRequest, ApprovalHistory, ApprovalShare  # noqa: F401
from eapproval.models.vacation_balance import VacationBalance, LeaveDeduction  # noqa: F401
from eapproval.models.notification import NotificationOutbox, AppNotification  # noqa: F401
