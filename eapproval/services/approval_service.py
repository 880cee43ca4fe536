"""
Approval service — the only writer of request status and history.

Every state change runs the same discipline inside one transaction:
  1. SELECT ... FOR UPDATE the request (fresh read, never a cached copy)
  2. run the pure state machine (workflow.transition) on the locked status
  3. append history, write status, deduct leave on final approval and stage
     the outbox event
  4. commit; the version column turns a lost race into Conflict

Notification dispatch happens after commit and outside this module.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
import structlog

from eapproval.database import utcnow
from eapproval.exceptions import Conflict, NotFound, Unauthorized, ValidationError
from eapproval.models.approval_request import ApprovalHistory, ApprovalRequest, ApprovalShare
from eapproval.models.notification import NotificationOutbox
from eapproval.models.vacation_balance import VacationBalance
from eapproval.schemas.approval import ApprovalCreate, ApprovalUpdate
from eapproval.schemas.common import page_offset
from eapproval.services import balance_service
from eapproval.services.chain_resolver import normalize_user_id, resolve_chain
from eapproval.services.directory_service import Directory
from eapproval.services.notification_service import RETRYABLE_STATUSES, build_event, enqueue_event
from eapproval.services.workflow import (
    PENDING_STATUSES,
    ApproverChain,
    Decision,
    Status,
    initial_status,
    transition,
)

logger = structlog.get_logger()

LEAVE_BEARING_TYPES = frozenset({"vacation"})

DEFAULT_TITLES = {
    "vacation": "[Leave] {requester}",
    "purchase": "[Purchase] {customer_name}_{product}",
    "sales": "[Sales] {customer_name}_{product}",
    "outside_work": "[Outside work] {requester}",
    "outside_work_report": "[Outside work report] {requester}",
    "internal_report": "[Internal report] {requester}",
}


@dataclass
class CreateResult:
    id: str
    status: Status
    outbox_id: str


@dataclass
class DecisionResult:
    request_id: str
    previous_status: Status
    status: Status
    history_length: int
    outbox_id: str
    deducted_days: Optional[Decimal] = None


def chain_of(request: ApprovalRequest) -> ApproverChain:
    return ApproverChain(
        first=str(request.approver_first) if request.approver_first else None,
        second=str(request.approver_second) if request.approver_second else None,
        third=str(request.approver_third) if request.approver_third else None,
        shared=tuple(request.shared_ids),
    )


def _request_uuid(value: Any) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise NotFound("Approval request not found", entity="approval_request")


def _optional_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    return uuid.UUID(value) if value else None


class ApprovalService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        directory: Directory,
    ):
        self._session_factory = session_factory
        self._directory = directory

    # ---------- helpers ----------

    async def _load_for_update(self, session: AsyncSession, request_id: uuid.UUID) -> ApprovalRequest:
        result = await session.execute(
            select(ApprovalRequest)
            .where(ApprovalRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise NotFound("Approval request not found", entity="approval_request")
        return request

    async def _requester_name(self, requester_id: str) -> str:
        try:
            return (await self._directory.find_contact(requester_id)).name
        except NotFound:
            return requester_id

    async def _default_title(self, data: ApprovalCreate, requester_id: str) -> str:
        fields = data.payload.model_dump(mode="json")
        fields["requester"] = await self._requester_name(requester_id)
        return DEFAULT_TITLES[data.document_type].format(**fields)[:255]

    # ---------- create ----------

    async def create(self, data: Any, requester_id: str) -> CreateResult:
        if not isinstance(data, ApprovalCreate):
            try:
                data = ApprovalCreate.model_validate(data)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Invalid approval request",
                    errors=exc.errors(include_url=False, include_context=False),
                )

        requester = normalize_user_id(requester_id, "requester_id")
        chain = await resolve_chain(data.approvers, requester, data.document_type, self._directory)
        if requester in chain.decision_approvers:
            raise ValidationError("You cannot approve your own request", field="approvers")

        status = initial_status(chain)
        title = data.title or await self._default_title(data, requester)

        async with self._session_factory() as session:
            async with session.begin():
                request = ApprovalRequest(
                    id=uuid.uuid4(),
                    document_type=data.document_type,
                    requester_id=uuid.UUID(requester),
                    title=title,
                    payload=data.payload.model_dump(mode="json"),
                    approver_first=_optional_uuid(chain.first),
                    approver_second=_optional_uuid(chain.second),
                    approver_third=_optional_uuid(chain.third),
                    status=status.value,
                )
                request.shares = [
                    ApprovalShare(user_id=uuid.UUID(uid), position=idx)
                    for idx, uid in enumerate(chain.shared)
                ]
                session.add(request)
                outbox = enqueue_event(
                    session,
                    build_event(
                        request.id,
                        title,
                        requester,
                        data.document_type,
                        status,
                        chain,
                        actor_id=requester,
                    ),
                )

        logger.info(
            "approval_request_created",
            request_id=str(request.id),
            document_type=data.document_type,
            requester_id=requester,
            status=status.value,
        )
        return CreateResult(id=str(request.id), status=status, outbox_id=str(outbox.id))

    # ---------- decide ----------

    async def decide(
        self,
        request_id: Any,
        actor_id: str,
        decision: Any,
        comment: Optional[str] = None,
        expected_status: Optional[Any] = None,
    ) -> DecisionResult:
        """
        Approve or reject the tier the request is currently waiting on.

        Raises NotFound, Unauthorized or Conflict; on any error nothing is
        written and no notification is queued.
        """
        rid = _request_uuid(request_id)
        actor = normalize_user_id(actor_id, "actor_id")
        try:
            decision = Decision(decision)
            expected = Status(expected_status) if expected_status is not None else None
        except ValueError as exc:
            raise ValidationError(str(exc))

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    request = await self._load_for_update(session, rid)
                    previous = Status(request.status)
                    if expected is not None and expected is not previous:
                        raise Conflict(
                            f"Request is {previous.value}, not {expected.value}",
                            current_status=previous.value,
                        )

                    chain = chain_of(request)
                    step = transition(previous, actor, chain, decision)

                    now = utcnow()
                    request.history.append(
                        ApprovalHistory(
                            seq=len(request.history) + 1,
                            approver_id=uuid.UUID(actor),
                            stage=previous.value,
                            decision=decision.recorded_as,
                            comment=comment,
                            decided_at=now,
                        )
                    )
                    request.status = step.next.value
                    if step.next.is_terminal:
                        request.decided_at = now

                    deducted = None
                    # transition() refuses terminal input, so this runs once per request
                    if step.is_final_approval and request.document_type in LEAVE_BEARING_TYPES:
                        deducted = balance_service.compute_deduction(
                            (request.payload or {}).get("day_types", [])
                        )
                        await balance_service.apply_deduction(
                            session, request.requester_id, request.id, deducted
                        )

                    outbox = enqueue_event(
                        session,
                        build_event(
                            request.id,
                            request.title,
                            str(request.requester_id),
                            request.document_type,
                            step.next,
                            chain,
                            actor_id=actor,
                            comment=comment,
                        ),
                    )
                    await session.flush()
                    history_length = len(request.history)
        except StaleDataError:
            logger.warning("approval_decision_lost_race", request_id=str(rid), actor_id=actor)
            raise Conflict("Request was changed by a concurrent decision")
        except IntegrityError as exc:
            logger.warning(
                "approval_decision_integrity_conflict",
                request_id=str(rid),
                actor_id=actor,
                error=str(exc.orig),
            )
            raise Conflict("Request was changed by a concurrent decision")

        logger.info(
            "approval_decision_recorded",
            request_id=str(rid),
            actor_id=actor,
            decision=decision.value,
            previous_status=previous.value,
            status=step.next.value,
            deducted_days=str(deducted) if deducted is not None else None,
        )
        return DecisionResult(
            request_id=str(rid),
            previous_status=previous,
            status=step.next,
            history_length=history_length,
            outbox_id=str(outbox.id),
            deducted_days=deducted,
        )

    # ---------- update ----------

    async def update(self, request_id: Any, requester_id: str, data: Any) -> ApprovalRequest:
        """
        Requester edits the title or payload while no approver has decided.
        The document type is fixed at creation.
        """
        if not isinstance(data, ApprovalUpdate):
            try:
                data = ApprovalUpdate.model_validate(data)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Invalid approval update",
                    errors=exc.errors(include_url=False, include_context=False),
                )

        rid = _request_uuid(request_id)
        requester = normalize_user_id(requester_id, "requester_id")
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    request = await self._load_for_update(session, rid)
                    if str(request.requester_id) != requester:
                        raise Unauthorized("Only the requester can edit this request")
                    status = Status(request.status)
                    if request.history or status.is_terminal:
                        raise Conflict(
                            f"A request that is {status.value} can no longer be edited",
                            current_status=status.value,
                        )
                    if data.expected_status is not None and data.expected_status != status.value:
                        raise Conflict(
                            f"Request is {status.value}, not {data.expected_status}",
                            current_status=status.value,
                        )
                    if data.payload is not None:
                        if data.payload.document_type != request.document_type:
                            raise ValidationError(
                                "The document type of a request cannot be changed",
                                field="payload.document_type",
                            )
                        request.payload = data.payload.model_dump(mode="json")
                    if data.title is not None:
                        request.title = data.title
                    await session.flush()
        except StaleDataError:
            logger.warning("approval_update_lost_race", request_id=str(rid), requester_id=requester)
            raise Conflict("Request was changed by a concurrent decision")

        logger.info(
            "approval_request_updated",
            request_id=str(rid),
            requester_id=requester,
            fields=[f for f in ("title", "payload") if getattr(data, f) is not None],
        )
        return request

    # ---------- cancel ----------

    async def cancel(self, request_id: Any, requester_id: str) -> None:
        """Withdraw a request nobody has decided on yet."""
        rid = _request_uuid(request_id)
        requester = normalize_user_id(requester_id, "requester_id")
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    request = await self._load_for_update(session, rid)
                    if str(request.requester_id) != requester:
                        raise Unauthorized("Only the requester can cancel this request")
                    status = Status(request.status)
                    if request.history or status is not initial_status(chain_of(request)):
                        raise Conflict(
                            f"A request that is {status.value} can no longer be cancelled",
                            current_status=status.value,
                        )
                    await session.execute(
                        delete(NotificationOutbox).where(
                            NotificationOutbox.request_id == rid,
                            NotificationOutbox.status.in_(RETRYABLE_STATUSES + ("DISPATCHING",)),
                        )
                    )
                    await session.delete(request)
        except StaleDataError:
            raise Conflict("Request was changed by a concurrent decision")

        logger.info("approval_request_cancelled", request_id=str(rid), requester_id=requester)

    # ---------- reads ----------

    async def get(self, request_id: Any) -> ApprovalRequest:
        rid = _request_uuid(request_id)
        async with self._session_factory() as session:
            result = await session.execute(select(ApprovalRequest).where(ApprovalRequest.id == rid))
            request = result.scalar_one_or_none()
        if not request:
            raise NotFound("Approval request not found", entity="approval_request")
        return request

    async def _paginate(self, condition, page: int, limit: int) -> tuple[list[ApprovalRequest], int]:
        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count(ApprovalRequest.id)).where(condition))
            ).scalar() or 0
            result = await session.execute(
                select(ApprovalRequest)
                .where(condition)
                .order_by(ApprovalRequest.created_at.desc())
                .offset(page_offset(page, limit))
                .limit(limit)
            )
            return list(result.scalars().all()), total

    async def list_pending(self, approver_id: str, page: int = 1, limit: int = 20):
        """Requests whose current tier is held by ``approver_id``."""
        uid = uuid.UUID(normalize_user_id(approver_id, "approver_id"))
        condition = or_(
            and_(ApprovalRequest.status == Status.STAGE1_PENDING.value, ApprovalRequest.approver_first == uid),
            and_(ApprovalRequest.status == Status.STAGE2_PENDING.value, ApprovalRequest.approver_second == uid),
            and_(ApprovalRequest.status == Status.STAGE3_PENDING.value, ApprovalRequest.approver_third == uid),
        )
        return await self._paginate(condition, page, limit)

    async def list_shared(self, user_id: str, page: int = 1, limit: int = 20):
        uid = uuid.UUID(normalize_user_id(user_id, "user_id"))
        condition = and_(
            ApprovalRequest.status == Status.APPROVED.value,
            ApprovalRequest.shares.any(ApprovalShare.user_id == uid),
        )
        return await self._paginate(condition, page, limit)

    async def list_mine(
        self, requester_id: str, status: Optional[str] = None, page: int = 1, limit: int = 20
    ):
        uid = uuid.UUID(normalize_user_id(requester_id, "requester_id"))
        condition = ApprovalRequest.requester_id == uid
        if status:
            try:
                condition = and_(condition, ApprovalRequest.status == Status(status).value)
            except ValueError:
                raise ValidationError(f"Unknown status '{status}'", field="status")
        return await self._paginate(condition, page, limit)

    async def count_decided_today(self, approver_id: str, day: Optional[date] = None) -> int:
        """Distinct requests the approver decided on ``day`` (UTC)."""
        uid = uuid.UUID(normalize_user_id(approver_id, "approver_id"))
        start = datetime.combine(day or utcnow().date(), time.min)
        end = start + timedelta(days=1)
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(func.distinct(ApprovalHistory.request_id))).where(
                    ApprovalHistory.approver_id == uid,
                    ApprovalHistory.decided_at >= start,
                    ApprovalHistory.decided_at < end,
                )
            )
            return int(result.scalar() or 0)

    async def pending_count(self, requester_id: str) -> int:
        uid = uuid.UUID(normalize_user_id(requester_id, "requester_id"))
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(ApprovalRequest.id)).where(
                    ApprovalRequest.requester_id == uid,
                    ApprovalRequest.status.in_([s.value for s in PENDING_STATUSES]),
                )
            )
            return int(result.scalar() or 0)

    async def get_balance(self, employee_id: str) -> VacationBalance:
        async with self._session_factory() as session:
            return await balance_service.get_balance(
                session, normalize_user_id(employee_id, "employee_id")
            )
