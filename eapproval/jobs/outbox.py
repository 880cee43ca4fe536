"""
Internal jobs triggered by a scheduler hitting the API.

Jobs:
  - dispatch-notifications: re-drive outbox rows that were not fully delivered
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
import structlog

from eapproval.config import settings
from eapproval.dependencies import get_dispatcher
from eapproval.schemas.notification import DrainResponse
from eapproval.services.notification_service import NotificationDispatcher

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """Validates X-Internal-Secret against INTERNAL_JOB_SECRET."""
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # DEBUG deployments may call internal jobs without a secret
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "JOB_AUTH_UNCONFIGURED", "message": "INTERNAL_JOB_SECRET is not configured"},
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "FORBIDDEN", "message": "Forbidden"},
        )


@router.post("/dispatch-notifications", response_model=DrainResponse)
async def dispatch_notifications(
    limit: int = Query(50, ge=1, le=500),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    _auth: None = Depends(_require_internal_auth),
):
    attempted = await dispatcher.drain(limit=limit)
    return DrainResponse(attempted=attempted)
