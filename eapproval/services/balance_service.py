"""
Balance service — leave-day deduction on final approval.

All functions use the caller's session (no commit); the approval mutator owns
the transaction so the deduction commits or rolls back with the decision.
"""

import uuid
from collections.abc import Iterable
from decimal import Decimal
from enum import Enum
from typing import Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from eapproval.exceptions import Conflict, NotFound, ValidationError
from eapproval.models.vacation_balance import LeaveDeduction, VacationBalance

logger = structlog.get_logger()


class DayType(str, Enum):
    FULL = "full"
    HALF = "half"
    HALF_AM = "half_am"
    HALF_PM = "half_pm"
    SICK = "sick"
    OFFICIAL = "official"
    UNPAID = "unpaid"


DAY_WEIGHTS: dict[DayType, Decimal] = {
    DayType.FULL: Decimal("1"),
    DayType.HALF: Decimal("0.5"),
    DayType.HALF_AM: Decimal("0.5"),
    DayType.HALF_PM: Decimal("0.5"),
    DayType.SICK: Decimal("1"),
    DayType.OFFICIAL: Decimal("0"),
    DayType.UNPAID: Decimal("0"),
}

_ALIASES = {"zero-cost": DayType.OFFICIAL, "zero_cost": DayType.OFFICIAL}


def parse_day_type(tag: Union[str, DayType]) -> DayType:
    if isinstance(tag, DayType):
        return tag
    key = str(tag).strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return DayType(key)
    except ValueError:
        raise ValidationError(f"Unknown day type '{tag}'", field="day_types")


def compute_deduction(day_types: Iterable[Union[str, DayType]]) -> Decimal:
    """Sum of per-day weights: full=1, half=0.5, zero-cost=0."""
    return sum((DAY_WEIGHTS[parse_day_type(t)] for t in day_types), Decimal("0"))


async def get_balance(session: AsyncSession, employee_id: Union[str, uuid.UUID]) -> VacationBalance:
    result = await session.execute(
        select(VacationBalance).where(VacationBalance.employee_id == uuid.UUID(str(employee_id)))
    )
    balance = result.scalar_one_or_none()
    if not balance:
        raise NotFound("No vacation balance for employee", entity="vacation_balance")
    return balance


async def apply_deduction(
    session: AsyncSession,
    employee_id: uuid.UUID,
    request_id: uuid.UUID,
    days: Decimal,
) -> LeaveDeduction:
    """
    SELECT FOR UPDATE on the balance row, move ``days`` from remaining to used
    and record the deduction against ``request_id``.
    """
    result = await session.execute(
        select(VacationBalance)
        .where(VacationBalance.employee_id == employee_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    balance = result.scalar_one_or_none()
    if not balance:
        raise NotFound(
            "No vacation balance for employee",
            entity="vacation_balance",
            employee_id=str(employee_id),
        )

    existing = await session.execute(
        select(LeaveDeduction.id).where(LeaveDeduction.request_id == request_id)
    )
    if existing.scalar_one_or_none() is not None:
        raise Conflict("Leave balance was already deducted for this request")

    balance.remaining_days = Decimal(balance.remaining_days) - days
    balance.used_days = Decimal(balance.used_days) + days
    deduction = LeaveDeduction(request_id=request_id, employee_id=employee_id, days=days)
    session.add(deduction)
    await session.flush()

    if balance.remaining_days < 0:
        logger.warning(
            "leave_balance_overdrawn",
            employee_id=str(employee_id),
            remaining_days=str(balance.remaining_days),
        )
    logger.info(
        "leave_balance_deducted",
        employee_id=str(employee_id),
        request_id=str(request_id),
        days=str(days),
        remaining_days=str(balance.remaining_days),
    )
    return deduction
