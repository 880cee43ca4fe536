"""
Typed errors for the approval engine.

Every error carries a machine-readable ``code`` and an HTTP status so the
route layer can render the standard envelope:

    {"error": {"code": "...", "message": "...", ...details}}

    ApprovalError (base)
    +-- ValidationError      422  malformed or missing creation input
    +-- NotFound             404  request, chain, contact or balance absent
    +-- Unauthorized         403  actor is not in the tier the status points at
    +-- Conflict             409  status already advanced or terminal
    +-- NotificationFailure       per-recipient delivery failure, never raised
                                  past the dispatcher
"""

from typing import Any, Optional


class ApprovalError(Exception):
    code: str = "APPROVAL_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        body.update({k: v for k, v in self.details.items() if v is not None})
        return {"error": body}


class ValidationError(ApprovalError):
    code = "VALIDATION_ERROR"
    status_code = 422


class NotFound(ApprovalError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str, entity: Optional[str] = None, **details: Any):
        super().__init__(message, entity=entity, **details)
        self.entity = entity


class Unauthorized(ApprovalError):
    code = "APPROVAL_NOT_YOUR_TURN"
    status_code = 403


class Conflict(ApprovalError):
    code = "APPROVAL_CONFLICT"
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None, **details: Any):
        super().__init__(message, current_status=current_status, **details)
        self.current_status = current_status


class NotificationFailure(ApprovalError):
    code = "NOTIFICATION_FAILED"
    status_code = 502

    def __init__(self, message: str, user_id: Optional[str] = None, **details: Any):
        super().__init__(message, user_id=user_id, **details)
        self.user_id = user_id
