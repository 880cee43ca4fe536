"""
Unit tests for eapproval/services/balance_service.py

Tests: per-day weights, alias handling, apply_deduction (success, missing
       balance row, already deducted, overdraw).
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from eapproval.exceptions import Conflict, NotFound, ValidationError
from eapproval.models.vacation_balance import LeaveDeduction
from eapproval.services.balance_service import (
    DayType,
    apply_deduction,
    compute_deduction,
    parse_day_type,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_balance(remaining: str = "10", used: str = "0"):
    b = MagicMock()
    b.remaining_days = Decimal(remaining)
    b.used_days = Decimal(used)
    return b


def _mock_session(balance, existing_deduction=None) -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()

    balance_result = MagicMock()
    balance_result.scalar_one_or_none.return_value = balance
    deduction_result = MagicMock()
    deduction_result.scalar_one_or_none.return_value = existing_deduction
    session.execute.side_effect = [balance_result, deduction_result]
    return session


# ---------------------------------------------------------------------------
# compute_deduction
# ---------------------------------------------------------------------------


def test_full_and_half_days():
    assert compute_deduction(["full", "full", "half_am"]) == Decimal("2.5")


def test_full_half_and_zero_cost_mix():
    assert compute_deduction(["full", "half", "zero-cost"]) == Decimal("1.5")


def test_zero_cost_days_are_free():
    assert compute_deduction(["official", "zero-cost", "unpaid"]) == Decimal("0")


def test_sick_counts_as_full_day():
    assert compute_deduction([DayType.SICK, DayType.HALF_PM]) == Decimal("1.5")


def test_empty_list_deducts_nothing():
    assert compute_deduction([]) == Decimal("0")


def test_unknown_day_type_is_validation_error():
    with pytest.raises(ValidationError):
        parse_day_type("weekend")


def test_day_type_parsing_is_case_insensitive():
    assert parse_day_type(" FULL ") is DayType.FULL


# ---------------------------------------------------------------------------
# apply_deduction
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_apply_deduction_moves_days_to_used():
    balance = _make_balance("10", "2")
    session = _mock_session(balance)
    employee_id, request_id = uuid.uuid4(), uuid.uuid4()

    deduction = await apply_deduction(session, employee_id, request_id, Decimal("2.5"))

    assert balance.remaining_days == Decimal("7.5")
    assert balance.used_days == Decimal("4.5")
    assert isinstance(deduction, LeaveDeduction)
    assert deduction.request_id == request_id
    session.add.assert_called_once_with(deduction)
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_apply_deduction_without_balance_row():
    session = _mock_session(None)
    with pytest.raises(NotFound):
        await apply_deduction(session, uuid.uuid4(), uuid.uuid4(), Decimal("1"))
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_apply_deduction_twice_for_same_request():
    balance = _make_balance("10")
    session = _mock_session(balance, existing_deduction=uuid.uuid4())

    with pytest.raises(Conflict):
        await apply_deduction(session, uuid.uuid4(), uuid.uuid4(), Decimal("1"))

    assert balance.remaining_days == Decimal("10")
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_apply_deduction_may_overdraw():
    balance = _make_balance("1")
    session = _mock_session(balance)

    await apply_deduction(session, uuid.uuid4(), uuid.uuid4(), Decimal("3"))

    assert balance.remaining_days == Decimal("-2")
    assert balance.used_days == Decimal("3")
