"""
Unit tests for eapproval/services/chain_resolver.py
"""

import uuid
from unittest.mock import AsyncMock

import pytest

from eapproval.exceptions import NotFound, ValidationError
from eapproval.schemas.approval import ApproverChainIn
from eapproval.services.chain_resolver import parse_chain, resolve_chain
from eapproval.services.workflow import ApproverChain

A, B, C, D, S = (str(uuid.uuid4()) for _ in range(5))
REQUESTER = str(uuid.uuid4())


def _directory(chain=None):
    d = AsyncMock()
    if chain is None:
        d.find_approver_chain.side_effect = NotFound("none", entity="approver_chain")
    else:
        d.find_approver_chain.return_value = chain
    return d


# ---------------------------------------------------------------------------
# parse_chain
# ---------------------------------------------------------------------------


def test_flat_list_maps_positionally():
    chain = parse_chain([A, B, C])
    assert (chain.first, chain.second, chain.third) == (A, B, C)
    assert chain.shared == ()


def test_flat_list_ignores_entries_past_third():
    chain = parse_chain([A, B, C, D])
    assert chain.third == C
    assert D not in chain.decision_approvers


def test_short_list_leaves_later_tiers_empty():
    chain = parse_chain([A])
    assert chain.second is None and chain.third is None


def test_mapping_keeps_first_entry_per_tier():
    chain = parse_chain({"first": [A, D], "second": [], "third": [C], "shared": [S, S]})
    assert chain.first == A
    assert chain.second is None
    assert chain.third == C
    assert chain.shared == (S,)


def test_pydantic_input_is_accepted():
    chain = parse_chain(ApproverChainIn(first=[A], second=[B], shared=[S]))
    assert chain == ApproverChain(first=A, second=B, shared=(S,))


def test_ids_are_canonicalized():
    chain = parse_chain([A.upper()])
    assert chain.first == A


def test_only_shared_counts_as_no_chain():
    assert parse_chain({"shared": [S]}) is None
    assert parse_chain([]) is None
    assert parse_chain(None) is None


def test_malformed_id_is_validation_error():
    with pytest.raises(ValidationError):
        parse_chain(["not-a-user-id"])


def test_scalar_input_is_validation_error():
    with pytest.raises(ValidationError):
        parse_chain(42)


# ---------------------------------------------------------------------------
# resolve_chain
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_supplied_chain_does_not_touch_directory():
    directory = _directory(ApproverChain(first=D))
    chain = await resolve_chain([A, B], REQUESTER, "purchase", directory)
    assert chain.first == A
    directory.find_approver_chain.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_chain_falls_back_to_directory():
    directory = _directory(ApproverChain(first=D, shared=(S,)))
    chain = await resolve_chain(None, REQUESTER, "vacation", directory)
    assert chain.first == D
    directory.find_approver_chain.assert_awaited_once_with(REQUESTER, "vacation")


@pytest.mark.asyncio
async def test_no_chain_anywhere_is_not_found():
    with pytest.raises(NotFound):
        await resolve_chain(None, REQUESTER, "vacation", _directory())


@pytest.mark.asyncio
async def test_directory_chain_without_tiers_is_not_found():
    with pytest.raises(NotFound):
        await resolve_chain({"shared": [S]}, REQUESTER, "vacation", _directory(ApproverChain()))


@pytest.mark.asyncio
async def test_same_person_in_two_slots_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        await resolve_chain({"first": [A], "third": [A]}, REQUESTER, "purchase", _directory())
    assert exc_info.value.details["slots"] == ["first", "third"]


@pytest.mark.asyncio
async def test_approver_also_shared_is_rejected():
    with pytest.raises(ValidationError):
        await resolve_chain({"first": [A], "shared": [A]}, REQUESTER, "purchase", _directory())
