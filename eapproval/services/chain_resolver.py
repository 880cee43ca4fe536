"""
Approver chain resolver — turns whatever the client sent into one canonical
``ApproverChain``.

Accepted input:
  - flat list          ["A", "B", "C", ...]   index 0→first, 1→second, 2→third
  - structured mapping {"first": [...], "second": [...], "third": [...], "shared": [...]}
  - nothing            → the requester's default line from the directory

Each tier keeps only its first entry. An input that names no decision
approver counts as nothing and falls back to the directory.
"""

import uuid
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Optional

import structlog

from eapproval.exceptions import NotFound, ValidationError
from eapproval.services.workflow import TIERS, ApproverChain

if TYPE_CHECKING:
    from eapproval.services.directory_service import Directory

logger = structlog.get_logger()


def normalize_user_id(value: Any, field_name: str = "approver") -> str:
    try:
        return str(uuid.UUID(str(value).strip()))
    except (ValueError, TypeError, AttributeError):
        raise ValidationError(f"{field_name} must be a valid user id", field=field_name, value=str(value))


def _first_of(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        items = [value]
    elif isinstance(value, Sequence):
        items = list(value)
    else:
        raise ValidationError(f"'{field_name}' must be a user id or a list of user ids", field=field_name)
    items = [i for i in items if i is not None and str(i).strip()]
    if not items:
        return None
    if len(items) > 1:
        logger.info("approver_tier_truncated", tier=field_name, supplied=len(items))
    return normalize_user_id(items[0], field_name)


def _all_of(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Sequence):
        raise ValidationError(f"'{field_name}' must be a list of user ids", field=field_name)
    seen: list[str] = []
    for item in value:
        if item is None or not str(item).strip():
            continue
        uid = normalize_user_id(item, field_name)
        if uid not in seen:
            seen.append(uid)
    return tuple(seen)


def chain_from_list(items: Sequence[Any]) -> ApproverChain:
    slots: dict[str, Optional[str]] = {}
    for idx, tier in enumerate(TIERS):
        slots[tier] = _first_of(items[idx], tier) if idx < len(items) else None
    if len(items) > len(TIERS):
        logger.info("approver_list_truncated", supplied=len(items))
    return ApproverChain(**slots)


def chain_from_mapping(data: Mapping[str, Any]) -> ApproverChain:
    return ApproverChain(
        first=_first_of(data.get("first"), "first"),
        second=_first_of(data.get("second"), "second"),
        third=_first_of(data.get("third"), "third"),
        shared=_all_of(data.get("shared"), "shared"),
    )


def validate_chain(chain: ApproverChain) -> ApproverChain:
    """Reject a chain that names the same person in more than one slot."""
    slots = [(tier, chain.approver(tier)) for tier in TIERS if chain.approver(tier)]
    slots += [("shared", uid) for uid in chain.shared]
    seen: dict[str, str] = {}
    for slot, uid in slots:
        if uid in seen:
            raise ValidationError(
                "An approver may appear in only one slot of the chain",
                user_id=uid,
                slots=[seen[uid], slot],
            )
        seen[uid] = slot
    return chain


def parse_chain(raw: Any) -> Optional[ApproverChain]:
    """Normalize client input; None when nothing usable was supplied."""
    if raw is None:
        return None
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()
    if isinstance(raw, ApproverChain):
        chain = raw
    elif isinstance(raw, Mapping):
        chain = chain_from_mapping(raw)
    elif isinstance(raw, Sequence) and not isinstance(raw, str):
        chain = chain_from_list(raw)
    else:
        raise ValidationError("approvers must be a list or an object of tiers", field="approvers")
    return chain if chain.has_decision_tier else None


async def resolve_chain(
    raw: Any,
    requester_id: str,
    document_type: str,
    directory: "Directory",
) -> ApproverChain:
    chain = parse_chain(raw)
    source = "input"
    if chain is None:
        source = "directory"
        chain = await directory.find_approver_chain(requester_id, document_type)
        if chain is None or not chain.has_decision_tier:
            raise NotFound(
                "No approver chain could be resolved for this request",
                entity="approver_chain",
                document_type=document_type,
            )

    validate_chain(chain)
    logger.info(
        "approver_chain_resolved",
        source=source,
        requester_id=requester_id,
        document_type=document_type,
        tiers=len(chain.decision_approvers),
        shared=len(chain.shared),
    )
    return chain
