import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from eapproval.database import get_db
from eapproval.exceptions import NotFound
from eapproval.middleware.auth import get_current_user
from eapproval.models.notification import AppNotification
from eapproval.schemas.notification import NotificationResponse

logger = structlog.get_logger()
router = APIRouter()


def _to_response(row: AppNotification) -> NotificationResponse:
    return NotificationResponse(
        id=str(row.id),
        request_id=str(row.request_id) if row.request_id else None,
        title=row.title,
        body=row.body,
        link=row.link,
        is_read=row.is_read,
        created_at=row.created_at.isoformat() if row.created_at else "",
    )


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Fetch the 50 most recent in-app notices for the logged-in user."""
    result = await db.execute(
        select(AppNotification)
        .where(AppNotification.user_id == uuid.UUID(current_user["user_id"]))
        .order_by(AppNotification.created_at.desc())
        .limit(50)
    )
    return [_to_response(row) for row in result.scalars().all()]


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark a specific notification as read."""
    try:
        nid = uuid.UUID(notification_id)
    except ValueError:
        raise NotFound("Notification not found", entity="notification")

    result = await db.execute(
        select(AppNotification).where(
            AppNotification.id == nid,
            AppNotification.user_id == uuid.UUID(current_user["user_id"]),
        )
    )
    row = result.scalar_one_or_none()
    if not row:
        raise NotFound("Notification not found", entity="notification")

    row.is_read = True
    await db.flush()
    logger.info("notification_marked_read", notification_id=notification_id)
    return _to_response(row)
