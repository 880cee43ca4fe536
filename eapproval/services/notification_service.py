"""
Notification service — outbox events and post-commit fan-out.

Events are written to ``notification_outbox`` inside the same transaction as
the status change they describe, then dispatched after commit via
BackgroundTasks (fire-and-forget). Delivery failures are logged and recorded
on the outbox row; they never reach the caller of create/decide. A row is
claimed (status DISPATCHING) before delivery, so the background task and the
drain job never both send it.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from eapproval.config import settings
from eapproval.database import utcnow
from eapproval.exceptions import NotFound, NotificationFailure
from eapproval.models.notification import AppNotification, NotificationOutbox
from eapproval.services.directory_service import Directory
from eapproval.services.email_service import EmailSender
from eapproval.services.workflow import ApproverChain, Status, current_approver

logger = structlog.get_logger()

RETRYABLE_STATUSES = ("PENDING", "PARTIAL", "FAILED")

# ---------- Template registry ----------

TEMPLATES = {
    "approval_required": {
        "subject": "[eApproval] {title} — Your Approval Required",
        "html": (
            "<h2>Approval Required</h2>"
            "<p><strong>{title}</strong> from {requester_name} is waiting for your decision "
            "({status_label}).</p>"
            "<p><a href='{link}'>Open the request</a> to approve or reject it.</p>"
        ),
        "body": "{title} from {requester_name} is waiting for your decision.",
    },
    "approved": {
        "subject": "[eApproval] {title} — Approved",
        "html": (
            "<h2>Request Approved</h2>"
            "<p><strong>{title}</strong> has been "
            "<span style='color:green'>approved</span>.</p>"
            "<p><a href='{link}'>View the approval history</a></p>"
        ),
        "body": "{title} has been approved.",
    },
    "rejected": {
        "subject": "[eApproval] {title} — Rejected",
        "html": (
            "<h2>Request Rejected</h2>"
            "<p><strong>{title}</strong> has been "
            "<span style='color:red'>rejected</span>.</p>"
            "<p><strong>Comment:</strong> {comment}</p>"
            "<p><a href='{link}'>View the approval history</a></p>"
        ),
        "body": "{title} has been rejected.",
    },
}


@dataclass
class DeliveryResult:
    user_id: str
    success: bool = False
    email_sent: bool = False
    in_app_saved: bool = False
    error: Optional[str] = None


def notification_targets(
    new_status: Status, chain: ApproverChain, requester_id: str
) -> tuple[list[str], bool]:
    """Recipients for a status and whether they are expected to act."""
    new_status = Status(new_status)
    if new_status is Status.APPROVED:
        targets = [requester_id] + [u for u in chain.shared if u != requester_id]
        return targets, False
    if new_status is Status.REJECTED:
        return [requester_id], False
    approver = current_approver(new_status, chain)
    return ([approver] if approver else []), True


def build_event(
    request_id: str,
    title: str,
    requester_id: str,
    document_type: str,
    new_status: Status,
    chain: ApproverChain,
    actor_id: Optional[str] = None,
    comment: Optional[str] = None,
) -> dict:
    targets, action_required = notification_targets(new_status, chain, requester_id)
    return {
        "request_id": str(request_id),
        "title": title,
        "requester": str(requester_id),
        "document_type": document_type,
        "new_status": Status(new_status).value,
        "target_users": targets,
        "action_required": action_required,
        "actor": actor_id,
        "comment": comment,
    }


def enqueue_event(session: AsyncSession, event: dict) -> NotificationOutbox:
    """Stage an outbox row on the caller's session; commits with the transition."""
    row = NotificationOutbox(
        id=uuid.uuid4(),
        request_id=uuid.UUID(event["request_id"]),
        event=event,
        status="PENDING",
        attempts=0,
        delivered_to=[],
    )
    session.add(row)
    return row


def _link_for(event: dict, user_id: str) -> str:
    base = settings.APP_BASE_URL.rstrip("/")
    if event.get("action_required"):
        return f"{base}/approvals/pending"
    if user_id == event.get("requester"):
        return f"{base}/approvals/{event['request_id']}"
    return f"{base}/approvals/shared"


def render(event: dict, user_id: str, requester_name: str = "") -> tuple[str, str, str]:
    """Returns (subject, html, plain body) for one recipient."""
    if event.get("action_required"):
        template = TEMPLATES["approval_required"]
    else:
        template = TEMPLATES[event["new_status"]]
    context = {
        "title": event.get("title", ""),
        "requester_name": requester_name or event.get("requester", ""),
        "status_label": Status(event["new_status"]).label,
        "comment": event.get("comment") or "-",
        "link": _link_for(event, user_id),
    }
    return (
        template["subject"].format(**context),
        template["html"].format(**context),
        template["body"].format(**context),
    )


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        directory: Directory,
        email_sender: Optional[EmailSender] = None,
        max_attempts: Optional[int] = None,
        claim_lease_seconds: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._directory = directory
        self._email = email_sender or EmailSender()
        self.max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS
        self.claim_lease_seconds = claim_lease_seconds or settings.NOTIFICATION_CLAIM_LEASE_SECONDS

    async def _save_in_app(
        self, user_id: str, event: dict, outbox_id: Optional[uuid.UUID], title: str, body: str
    ) -> bool:
        uid = uuid.UUID(user_id)
        async with self._session_factory() as session:
            async with session.begin():
                if outbox_id is not None:
                    existing = await session.execute(
                        select(AppNotification.id).where(
                            AppNotification.outbox_id == outbox_id,
                            AppNotification.user_id == uid,
                        )
                    )
                    if existing.scalar_one_or_none() is not None:
                        return True
                session.add(
                    AppNotification(
                        user_id=uid,
                        request_id=uuid.UUID(event["request_id"]),
                        outbox_id=outbox_id,
                        title=title,
                        body=body,
                        link=_link_for(event, user_id),
                    )
                )
        return True

    async def _deliver(
        self, user_id: str, event: dict, outbox_id: Optional[uuid.UUID], requester_name: str
    ) -> DeliveryResult:
        result = DeliveryResult(user_id=user_id)
        try:
            contact = await self._directory.find_contact(user_id)
            subject, html, body = render(event, user_id, requester_name)
            result.in_app_saved = await self._save_in_app(user_id, event, outbox_id, subject, body)
            if self._email.enabled:
                result.email_sent = await self._email.send([contact.email], subject, html)
                if not result.email_sent:
                    raise NotificationFailure("Email was not accepted", user_id=user_id)
            result.success = True
        except (NotFound, NotificationFailure) as exc:
            result.error = exc.message
            logger.warning(
                "notification_delivery_failed",
                user_id=user_id,
                request_id=event.get("request_id"),
                error=exc.message,
            )
        except Exception as exc:
            result.error = str(exc) or exc.__class__.__name__
            logger.error(
                "notification_delivery_error",
                user_id=user_id,
                request_id=event.get("request_id"),
                error=result.error,
                exc_info=True,
            )
        return result

    async def _requester_name(self, event: dict) -> str:
        try:
            return (await self._directory.find_contact(event["requester"])).name
        except NotFound:
            return event.get("requester", "")

    async def notify(
        self,
        event: dict,
        outbox_id: Optional[uuid.UUID] = None,
        skip: Iterable[str] = (),
    ) -> list[DeliveryResult]:
        """
        Deliver ``event`` to each target concurrently. Never raises; the
        per-recipient outcome is in the returned list.
        """
        skipped = set(skip)
        targets = [u for u in event.get("target_users", []) if u and u not in skipped]
        if not targets:
            return []
        requester_name = await self._requester_name(event)
        results = await asyncio.gather(
            *(self._deliver(uid, event, outbox_id, requester_name) for uid in targets)
        )
        return list(results)

    def _claimable(self, now: datetime):
        stale = now - timedelta(seconds=self.claim_lease_seconds)
        return or_(
            NotificationOutbox.status.in_(RETRYABLE_STATUSES),
            and_(
                NotificationOutbox.status == "DISPATCHING",
                NotificationOutbox.claimed_at < stale,
            ),
        )

    async def _claim(self, row_id: uuid.UUID) -> Optional[tuple[dict, list, datetime]]:
        """
        Conditional UPDATE to DISPATCHING; only the caller whose update hits
        the row delivers it. Returns (event, delivered_to, claimed_at).
        """
        now = utcnow()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(NotificationOutbox)
                    .where(NotificationOutbox.id == row_id, self._claimable(now))
                    .values(status="DISPATCHING", claimed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                row = await session.get(NotificationOutbox, row_id)
                return dict(row.event), list(row.delivered_to or []), now

    async def _finish(
        self,
        row_id: uuid.UUID,
        claimed_at: datetime,
        delivered: list[str],
        failures: list[DeliveryResult],
    ) -> Optional[str]:
        if not failures:
            outcome = "SENT"
        elif delivered:
            outcome = "PARTIAL"
        else:
            outcome = "FAILED"

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(NotificationOutbox, row_id, with_for_update=True)
                if row is None or row.status != "DISPATCHING" or row.claimed_at != claimed_at:
                    # cancelled request, or the lease ran out and another dispatcher took over
                    logger.warning("notification_claim_lost", outbox_id=str(row_id))
                    return None
                row.attempts = (row.attempts or 0) + 1
                row.delivered_to = delivered
                row.status = outcome
                row.last_error = "; ".join(f"{r.user_id}: {r.error}" for r in failures) or None
                row.dispatched_at = utcnow()
        return outcome

    async def _run(self, outbox_id: Any) -> Optional[list[DeliveryResult]]:
        """Claim, deliver and record one row; None when the row was not claimable."""
        row_id = uuid.UUID(str(outbox_id))
        claimed = await self._claim(row_id)
        if claimed is None:
            return None
        event, delivered, claimed_at = claimed

        results = await self.notify(event, outbox_id=row_id, skip=delivered)
        delivered += [r.user_id for r in results if r.success]
        failures = [r for r in results if not r.success]
        outcome = await self._finish(row_id, claimed_at, delivered, failures)

        logger.info(
            "notification_dispatched",
            outbox_id=str(row_id),
            request_id=event.get("request_id"),
            status=outcome,
            delivered=len(delivered),
            failed=len(failures),
        )
        return results

    async def dispatch(self, outbox_id: Any) -> list[DeliveryResult]:
        """Deliver one outbox row and record the outcome on it. Never raises."""
        try:
            return await self._run(outbox_id) or []
        except Exception:
            logger.exception("notification_dispatch_failed", outbox_id=str(outbox_id))
            return []

    async def drain(self, limit: int = 50) -> int:
        """Re-drive undelivered or abandoned outbox rows; returns how many were claimed."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationOutbox.id)
                .where(
                    self._claimable(utcnow()),
                    NotificationOutbox.attempts < self.max_attempts,
                )
                .order_by(NotificationOutbox.created_at)
                .limit(limit)
            )
            ids = list(result.scalars().all())

        claimed = 0
        for row_id in ids:
            try:
                if await self._run(row_id) is not None:
                    claimed += 1
            except Exception:
                logger.exception("notification_dispatch_failed", outbox_id=str(row_id))
        logger.info("notification_outbox_drained", selected=len(ids), claimed=claimed)
        return claimed

    async def aclose(self) -> None:
        await self._email.aclose()
