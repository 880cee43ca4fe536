"""
Workflow state machine — pure transition function over the approver chain.

    stage1_pending ──approve──▶ next non-empty tier pending ──▶ ... ──▶ approved
          │                               │
          └──────────reject───────────────┴──────────────────────────▶ rejected

Empty tiers are skipped: a chain with only ``first`` and ``third`` moves
stage1_pending → stage3_pending on the first approval. ``approved`` and
``rejected`` are terminal.

Nothing in this module touches the database; the transactional mutator in
approval_service feeds it the freshly locked status.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from eapproval.exceptions import Conflict, Unauthorized, ValidationError

TIERS = ("first", "second", "third")


class Status(str, Enum):
    STAGE1_PENDING = "stage1_pending"
    STAGE2_PENDING = "stage2_pending"
    STAGE3_PENDING = "stage3_pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.APPROVED, Status.REJECTED)

    @property
    def tier(self) -> Optional[str]:
        return _TIER_BY_STATUS.get(self)

    @property
    def label(self) -> str:
        return _LABELS[self]


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def recorded_as(self) -> str:
        """Value written to the history ledger."""
        return "approved" if self is Decision.APPROVE else "rejected"


_PENDING_BY_TIER = {
    "first": Status.STAGE1_PENDING,
    "second": Status.STAGE2_PENDING,
    "third": Status.STAGE3_PENDING,
}
_TIER_BY_STATUS = {v: k for k, v in _PENDING_BY_TIER.items()}
_LABELS = {
    Status.STAGE1_PENDING: "Awaiting 1st approval",
    Status.STAGE2_PENDING: "Awaiting 2nd approval",
    Status.STAGE3_PENDING: "Awaiting 3rd approval",
    Status.APPROVED: "Approved",
    Status.REJECTED: "Rejected",
}
PENDING_STATUSES = tuple(_PENDING_BY_TIER.values())


@dataclass(frozen=True)
class ApproverChain:
    first: Optional[str] = None
    second: Optional[str] = None
    third: Optional[str] = None
    shared: tuple[str, ...] = field(default_factory=tuple)

    def approver(self, tier: str) -> Optional[str]:
        return getattr(self, tier)

    def tier_of(self, user_id: str) -> Optional[str]:
        for tier in TIERS:
            if self.approver(tier) == user_id:
                return tier
        return None

    @property
    def has_decision_tier(self) -> bool:
        return any(self.approver(t) for t in TIERS)

    @property
    def decision_approvers(self) -> list[str]:
        return [a for a in (self.first, self.second, self.third) if a]

    def to_dict(self) -> dict:
        """List-per-slot shape used on the wire and in the directory."""
        return {
            "first": [self.first] if self.first else [],
            "second": [self.second] if self.second else [],
            "third": [self.third] if self.third else [],
            "shared": list(self.shared),
        }


@dataclass(frozen=True)
class Transition:
    previous: Status
    next: Status
    decision: Decision
    tier: str

    @property
    def is_final_approval(self) -> bool:
        return self.next is Status.APPROVED


def next_pending(chain: ApproverChain, after: Optional[str] = None) -> Status:
    """First non-empty tier after ``after`` (or from the start), else approved."""
    start = 0 if after is None else TIERS.index(after) + 1
    for tier in TIERS[start:]:
        if chain.approver(tier):
            return _PENDING_BY_TIER[tier]
    return Status.APPROVED


def initial_status(chain: ApproverChain) -> Status:
    if not chain.has_decision_tier:
        raise ValidationError("Approver chain has no decision tier")
    return next_pending(chain)


def current_approver(status: Status, chain: ApproverChain) -> Optional[str]:
    tier = Status(status).tier
    return chain.approver(tier) if tier else None


def transition(
    status: Status,
    actor_id: str,
    chain: ApproverChain,
    decision: Decision,
) -> Transition:
    """
    Compute the next status for ``actor_id`` deciding on a request in ``status``.

    Raises Conflict if the request is terminal or the actor's tier has already
    been passed, Unauthorized if the actor is not the approver of the tier the
    status points at.
    """
    status = Status(status)
    decision = Decision(decision)

    if status.is_terminal:
        raise Conflict(
            f"Request is already {status.value}",
            current_status=status.value,
        )

    tier = status.tier
    if chain.approver(tier) != actor_id:
        actor_tier = chain.tier_of(actor_id)
        if actor_tier is not None and TIERS.index(actor_tier) < TIERS.index(tier):
            raise Conflict(
                f"Tier '{actor_tier}' has already been decided",
                current_status=status.value,
            )
        raise Unauthorized(
            "You are not the current approver for this request",
            current_status=status.value,
        )

    if decision is Decision.REJECT:
        nxt = Status.REJECTED
    else:
        nxt = next_pending(chain, after=tier)

    return Transition(previous=status, next=nxt, decision=decision, tier=tier)
