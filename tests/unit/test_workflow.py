"""
Unit tests for eapproval/services/workflow.py

Tests: initial status, tier skipping, approve/reject from every pending stage,
       terminal statuses, wrong-tier actors.
"""

import uuid

import pytest

from eapproval.exceptions import Conflict, Unauthorized, ValidationError
from eapproval.services.workflow import (
    ApproverChain,
    Decision,
    Status,
    current_approver,
    initial_status,
    next_pending,
    transition,
)

A, B, C, S = (str(uuid.uuid4()) for _ in range(4))
FULL = ApproverChain(first=A, second=B, third=C, shared=(S,))


# ---------------------------------------------------------------------------
# initial_status / next_pending
# ---------------------------------------------------------------------------


def test_initial_status_is_first_tier():
    assert initial_status(FULL) is Status.STAGE1_PENDING


def test_initial_status_skips_empty_leading_tiers():
    assert initial_status(ApproverChain(third=C)) is Status.STAGE3_PENDING
    assert initial_status(ApproverChain(second=B, third=C)) is Status.STAGE2_PENDING


def test_initial_status_without_decision_tier_fails():
    with pytest.raises(ValidationError):
        initial_status(ApproverChain(shared=(S,)))


def test_next_pending_after_last_tier_is_approved():
    assert next_pending(FULL, after="third") is Status.APPROVED
    assert next_pending(ApproverChain(first=A), after="first") is Status.APPROVED


def test_current_approver():
    assert current_approver(Status.STAGE2_PENDING, FULL) == B
    assert current_approver(Status.APPROVED, FULL) is None


# ---------------------------------------------------------------------------
# approve path
# ---------------------------------------------------------------------------


def test_full_chain_walks_every_stage():
    step1 = transition(Status.STAGE1_PENDING, A, FULL, Decision.APPROVE)
    step2 = transition(step1.next, B, FULL, Decision.APPROVE)
    step3 = transition(step2.next, C, FULL, Decision.APPROVE)

    assert [step1.next, step2.next, step3.next] == [
        Status.STAGE2_PENDING,
        Status.STAGE3_PENDING,
        Status.APPROVED,
    ]
    assert not step1.is_final_approval
    assert step3.is_final_approval


def test_empty_middle_tier_is_skipped():
    chain = ApproverChain(first=A, third=C)
    step = transition(Status.STAGE1_PENDING, A, chain, Decision.APPROVE)
    assert step.next is Status.STAGE3_PENDING


def test_single_tier_chain_approves_at_once():
    step = transition(Status.STAGE1_PENDING, A, ApproverChain(first=A), "approve")
    assert step.next is Status.APPROVED
    assert step.tier == "first"


# ---------------------------------------------------------------------------
# reject path
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "status,actor",
    [
        (Status.STAGE1_PENDING, A),
        (Status.STAGE2_PENDING, B),
        (Status.STAGE3_PENDING, C),
    ],
)
def test_reject_from_any_pending_stage_is_terminal(status, actor):
    step = transition(status, actor, FULL, Decision.REJECT)
    assert step.next is Status.REJECTED
    assert step.previous is status


# ---------------------------------------------------------------------------
# refusals
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("status", [Status.APPROVED, Status.REJECTED])
@pytest.mark.parametrize("decision", list(Decision))
def test_terminal_status_refuses_any_decision(status, decision):
    with pytest.raises(Conflict) as exc_info:
        transition(status, A, FULL, decision)
    assert exc_info.value.current_status == status.value


def test_later_tier_cannot_jump_the_queue():
    with pytest.raises(Unauthorized):
        transition(Status.STAGE1_PENDING, B, FULL, Decision.APPROVE)


def test_outsider_is_unauthorized():
    with pytest.raises(Unauthorized):
        transition(Status.STAGE2_PENDING, str(uuid.uuid4()), FULL, Decision.APPROVE)


def test_shared_user_cannot_decide():
    with pytest.raises(Unauthorized):
        transition(Status.STAGE1_PENDING, S, FULL, Decision.APPROVE)


def test_passed_tier_gets_conflict():
    """An approver whose tier already advanced sees the status moved on."""
    with pytest.raises(Conflict):
        transition(Status.STAGE2_PENDING, A, FULL, Decision.APPROVE)


def test_decision_history_value():
    assert Decision.APPROVE.recorded_as == "approved"
    assert Decision.REJECT.recorded_as == "rejected"
