from fastapi import APIRouter, Depends

from eapproval.dependencies import get_approval_service
from eapproval.middleware.auth import get_current_user
from eapproval.schemas.balance import BalanceResponse
from eapproval.services.approval_service import ApprovalService

router = APIRouter()


@router.get("/me", response_model=BalanceResponse)
async def my_balance(
    current_user: dict = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Remaining and used leave days of the logged-in user."""
    balance = await service.get_balance(current_user["user_id"])
    return BalanceResponse(
        employee_id=str(balance.employee_id),
        remaining_days=balance.remaining_days,
        used_days=balance.used_days,
        updated_at=balance.updated_at.isoformat() if balance.updated_at else "",
    )
