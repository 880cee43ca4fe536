"""
Outbox dispatch against a SQLite database: in-app notices, delivery status
bookkeeping, partial delivery, drain re-drives and row claims.
"""

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from eapproval.database import utcnow
from eapproval.models.notification import AppNotification, NotificationOutbox


async def _notices(session_factory, user_id=None) -> list[AppNotification]:
    async with session_factory() as session:
        q = select(AppNotification)
        if user_id:
            q = q.where(AppNotification.user_id == uuid.UUID(user_id))
        return list((await session.execute(q)).scalars().all())


async def _outbox(session_factory, outbox_id) -> NotificationOutbox:
    async with session_factory() as session:
        return await session.get(NotificationOutbox, uuid.UUID(outbox_id))


def _chain(people) -> dict:
    return {
        "first": [people["first"]],
        "second": [people["second"]],
        "shared": [people["cc"]],
    }


def _purchase(approvers) -> dict:
    return {
        "approvers": approvers,
        "payload": {"document_type": "purchase", "customer_name": "Acme", "product": "Switch"},
    }


@pytest.mark.asyncio
async def test_dispatch_creation_notifies_first_tier(service, dispatcher, people, session_factory):
    created = await service.create(_purchase(_chain(people)), people["requester"])

    results = await dispatcher.dispatch(created.outbox_id)

    assert [r.user_id for r in results] == [people["first"]]
    notices = await _notices(session_factory)
    assert len(notices) == 1
    assert str(notices[0].user_id) == people["first"]
    assert "Approval Required" in notices[0].title

    row = await _outbox(session_factory, created.outbox_id)
    assert row.status == "SENT"
    assert row.attempts == 1
    assert row.delivered_to == [people["first"]]


@pytest.mark.asyncio
async def test_final_approval_notifies_requester_and_shared(service, dispatcher, people, session_factory):
    created = await service.create(_purchase(_chain(people)), people["requester"])
    await service.decide(created.id, people["first"], "approve")
    final = await service.decide(created.id, people["second"], "approve")

    await dispatcher.dispatch(final.outbox_id)

    assert len(await _notices(session_factory, people["requester"])) == 1
    assert len(await _notices(session_factory, people["cc"])) == 1
    assert await _notices(session_factory, people["second"]) == []


@pytest.mark.asyncio
async def test_dispatch_twice_does_not_duplicate(service, dispatcher, people, session_factory):
    created = await service.create(_purchase(_chain(people)), people["requester"])

    await dispatcher.dispatch(created.outbox_id)
    assert await dispatcher.dispatch(created.outbox_id) == []

    assert len(await _notices(session_factory)) == 1


@pytest.mark.asyncio
async def test_unknown_contact_leaves_row_partial_then_drain_completes(
    service, dispatcher, people, directory, session_factory
):
    created = await service.create(_purchase(_chain(people)), people["requester"])
    await service.decide(created.id, people["first"], "approve")
    final = await service.decide(created.id, people["second"], "approve")

    cc_contact = directory.contacts.pop(people["cc"])
    await dispatcher.dispatch(final.outbox_id)

    row = await _outbox(session_factory, final.outbox_id)
    assert row.status == "PARTIAL"
    assert row.delivered_to == [people["requester"]]
    assert people["cc"] in row.last_error

    directory.contacts[people["cc"]] = cc_contact
    attempted = await dispatcher.drain()

    # creation and first-decision rows were never dispatched, plus the partial one
    assert attempted == 3
    row = await _outbox(session_factory, final.outbox_id)
    assert row.status == "SENT"
    assert row.attempts == 2
    assert len(await _notices(session_factory, people["requester"])) == 1
    assert len(await _notices(session_factory, people["cc"])) == 1


@pytest.mark.asyncio
async def test_drain_stops_after_max_attempts(service, session_factory, directory, people):
    from eapproval.services.email_service import EmailSender
    from eapproval.services.notification_service import NotificationDispatcher

    dispatcher = NotificationDispatcher(
        session_factory, directory, email_sender=EmailSender(api_key=""), max_attempts=2
    )
    created = await service.create(_purchase(_chain(people)), people["requester"])
    directory.contacts.pop(people["first"])

    assert await dispatcher.drain() == 1
    assert await dispatcher.drain() == 1
    assert await dispatcher.drain() == 0

    row = await _outbox(session_factory, created.outbox_id)
    assert row.status == "FAILED"
    assert row.attempts == 2


@pytest.mark.asyncio
async def test_dispatch_unknown_row_is_noop(dispatcher):
    assert await dispatcher.dispatch(uuid.uuid4()) == []
    assert await dispatcher.dispatch("garbage") == []


# ---------------------------------------------------------------------------
# claims
# ---------------------------------------------------------------------------


def _counting_dispatcher(session_factory, directory, **kwargs):
    from eapproval.services.notification_service import NotificationDispatcher

    async def slow_send(to_emails, subject, html_content):
        # hold the claim across a yield so the other caller runs meanwhile
        await asyncio.sleep(0.05)
        return True

    email = MagicMock()
    email.enabled = True
    email.send = AsyncMock(side_effect=slow_send)
    email.aclose = AsyncMock()
    return NotificationDispatcher(session_factory, directory, email_sender=email, **kwargs), email


async def _set_claim(session_factory, outbox_id, claimed_at):
    async with session_factory() as session:
        async with session.begin():
            row = await session.get(NotificationOutbox, uuid.UUID(outbox_id))
            row.status = "DISPATCHING"
            row.claimed_at = claimed_at


@pytest.mark.asyncio
async def test_concurrent_dispatch_and_drain_send_once(service, people, directory, session_factory):
    dispatcher, email = _counting_dispatcher(session_factory, directory)
    created = await service.create(_purchase(_chain(people)), people["requester"])

    results, claimed = await asyncio.gather(dispatcher.dispatch(created.outbox_id), dispatcher.drain())

    assert email.send.await_count == 1
    assert len(results) + claimed == 1
    row = await _outbox(session_factory, created.outbox_id)
    assert row.status == "SENT"
    assert row.attempts == 1
    assert row.claimed_at is None
    assert len(await _notices(session_factory)) == 1


@pytest.mark.asyncio
async def test_two_concurrent_dispatches_send_once(service, people, directory, session_factory):
    dispatcher, email = _counting_dispatcher(session_factory, directory)
    created = await service.create(_purchase(_chain(people)), people["requester"])

    first, second = await asyncio.gather(
        dispatcher.dispatch(created.outbox_id), dispatcher.dispatch(created.outbox_id)
    )

    assert email.send.await_count == 1
    assert sorted([len(first), len(second)]) == [0, 1]


@pytest.mark.asyncio
async def test_fresh_claim_is_not_taken_over(service, people, directory, session_factory):
    dispatcher, email = _counting_dispatcher(session_factory, directory)
    created = await service.create(_purchase(_chain(people)), people["requester"])
    await _set_claim(session_factory, created.outbox_id, utcnow())

    assert await dispatcher.drain() == 0
    assert await dispatcher.dispatch(created.outbox_id) == []
    email.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_stale_claim_is_taken_over_by_drain(service, people, directory, session_factory):
    dispatcher, email = _counting_dispatcher(session_factory, directory, claim_lease_seconds=60)
    created = await service.create(_purchase(_chain(people)), people["requester"])
    await _set_claim(session_factory, created.outbox_id, utcnow() - timedelta(minutes=5))

    assert await dispatcher.drain() == 1

    assert email.send.await_count == 1
    row = await _outbox(session_factory, created.outbox_id)
    assert row.status == "SENT"
    assert row.claimed_at is None
