"""
Approvals API routes — create a request, decide the current tier, edit or cancel,
and the approver/requester views over the request store.

Every mutating route schedules ``dispatch(outbox_id)`` as a background task;
the response never waits on notification delivery.
"""

from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status

from eapproval.dependencies import get_approval_service, get_dispatcher
from eapproval.exceptions import NotFound
from eapproval.middleware.auth import get_current_user
from eapproval.models.approval_request import ApprovalRequest
from eapproval.schemas.approval import (
    ApprovalActionBody,
    ApprovalCreate,
    ApprovalCreatedResponse,
    ApprovalResponse,
    ApprovalUpdate,
    CountResponse,
    DecisionBody,
    DecisionResponse,
    HistoryEntryResponse,
)
from eapproval.schemas.common import PaginatedResponse, build_pagination
from eapproval.services.approval_service import ApprovalService, chain_of
from eapproval.services.notification_service import NotificationDispatcher
from eapproval.services.workflow import Status

router = APIRouter()


def _serialize(request: ApprovalRequest) -> ApprovalResponse:
    return ApprovalResponse(
        id=str(request.id),
        document_type=request.document_type,
        requester_id=str(request.requester_id),
        title=request.title,
        payload=request.payload or {},
        approvers=chain_of(request).to_dict(),
        status=request.status,
        status_label=Status(request.status).label,
        history=[
            HistoryEntryResponse(
                approver_id=str(h.approver_id),
                stage=h.stage,
                decision=h.decision,
                comment=h.comment,
                decided_at=h.decided_at.isoformat() if h.decided_at else "",
            )
            for h in request.history
        ],
        created_at=request.created_at.isoformat() if request.created_at else "",
        updated_at=request.updated_at.isoformat() if request.updated_at else "",
        decided_at=request.decided_at.isoformat() if request.decided_at else None,
    )


def _is_participant(request: ApprovalRequest, user_id: str) -> bool:
    chain = chain_of(request)
    return (
        str(request.requester_id) == user_id
        or user_id in chain.decision_approvers
        or user_id in chain.shared
    )


@router.post("", response_model=ApprovalCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_approval(
    body: ApprovalCreate,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Submit a document; the first non-empty tier becomes the pending stage."""
    result = await service.create(body, current_user["user_id"])
    background_tasks.add_task(dispatcher.dispatch, result.outbox_id)
    return ApprovalCreatedResponse(id=result.id, status=result.status.value)


@router.get("", response_model=PaginatedResponse[ApprovalResponse])
async def list_approvals(
    scope: Literal["pending", "shared", "mine"] = Query("pending"),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """pending: waiting on me. shared: approved and cc'd to me. mine: my own requests."""
    user_id = current_user["user_id"]
    if scope == "pending":
        rows, total = await service.list_pending(user_id, page=page, limit=limit)
    elif scope == "shared":
        rows, total = await service.list_shared(user_id, page=page, limit=limit)
    else:
        rows, total = await service.list_mine(user_id, status=status_filter, page=page, limit=limit)

    return PaginatedResponse(
        data=[_serialize(r) for r in rows],
        pagination=build_pagination(page, limit, total),
    )


@router.get("/stats/decided-today", response_model=CountResponse)
async def decided_today(
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    return CountResponse(count=await service.count_decided_today(current_user["user_id"]))


@router.get("/stats/pending-count", response_model=CountResponse)
async def pending_count(
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    return CountResponse(count=await service.pending_count(current_user["user_id"]))


@router.get("/{request_id}", response_model=ApprovalResponse)
async def get_approval(
    request_id: str,
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    request = await service.get(request_id)
    if not _is_participant(request, current_user["user_id"]):
        # outsiders cannot tell a hidden request from a missing one
        raise NotFound("Approval request not found", entity="approval_request")
    return _serialize(request)


async def _decide(
    request_id: str,
    decision: str,
    comment: Optional[str],
    expected_status: Optional[str],
    current_user: dict,
    service: ApprovalService,
    dispatcher: NotificationDispatcher,
    background_tasks: BackgroundTasks,
) -> DecisionResponse:
    result = await service.decide(
        request_id,
        current_user["user_id"],
        decision,
        comment=comment,
        expected_status=expected_status,
    )
    background_tasks.add_task(dispatcher.dispatch, result.outbox_id)
    return DecisionResponse(
        id=result.request_id,
        previous_status=result.previous_status.value,
        status=result.status.value,
        history_length=result.history_length,
        deducted_days=result.deducted_days,
    )


@router.post("/{request_id}/decision", response_model=DecisionResponse)
async def decide_approval(
    request_id: str,
    body: DecisionBody,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Approve or reject the tier the request is waiting on."""
    return await _decide(
        request_id, body.decision, body.comment, body.expected_status,
        current_user, service, dispatcher, background_tasks,
    )


@router.post("/{request_id}/approve", response_model=DecisionResponse)
async def approve(
    request_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[ApprovalActionBody] = None,
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    body = body or ApprovalActionBody()
    return await _decide(
        request_id, "approve", body.comment, body.expected_status,
        current_user, service, dispatcher, background_tasks,
    )


@router.post("/{request_id}/reject", response_model=DecisionResponse)
async def reject(
    request_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[ApprovalActionBody] = None,
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    body = body or ApprovalActionBody()
    return await _decide(
        request_id, "reject", body.comment, body.expected_status,
        current_user, service, dispatcher, background_tasks,
    )


@router.patch("/{request_id}", response_model=ApprovalResponse)
async def update_approval(
    request_id: str,
    body: ApprovalUpdate,
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Edit the title or payload before anyone has decided on the request."""
    request = await service.update(request_id, current_user["user_id"], body)
    return _serialize(request)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_approval(
    request_id: str,
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Withdraw a request before anyone has decided on it."""
    await service.cancel(request_id, current_user["user_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)
