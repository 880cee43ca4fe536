"""FastAPI dependencies for the collaborators ``create_app`` stores on ``app.state``."""

from fastapi import Request

from eapproval.services.approval_service import ApprovalService
from eapproval.services.notification_service import NotificationDispatcher


def get_approval_service(request: Request) -> ApprovalService:
    return request.app.state.approval_service


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher
