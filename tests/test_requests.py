"""
Test suite for money requests

Tests sending, approving and declining requests: only the target may
respond, a request is answered at most once, and approval moves money
through the same transfer rules as a direct transfer.
"""

import pytest
from decimal import Decimal

from bank_ledger.errors import (
    InsufficientFunds, RecipientNotFound, RequestForbidden, RequestNotFound,
    RequestNotPending, SelfTransfer
)
from bank_ledger.requests import RequestStatus
from bank_ledger.audit import AuditEventType


@pytest.fixture
def accounts(open_account):
    async def _accounts(alice_balance="0", bob_balance="1000"):
        alice = await open_account("alice", alice_balance if alice_balance != "0" else None)
        bob = await open_account("bob", bob_balance if bob_balance != "0" else None)
        return alice, bob
    return _accounts


class TestSendRequest:

    @pytest.mark.asyncio
    async def test_send_notifies_target(self, system, accounts):
        alice, bob = await accounts()

        request = await system.request_manager.send_request(alice.id, "bob", "300", "Lunch")

        assert request.status == RequestStatus.PENDING
        assert request.target_id == bob.id
        notifications = await system.notifications.for_user("bob")
        assert len(notifications) == 1
        assert notifications[0].title == "Money Request"
        assert notifications[0].meta["request_id"] == request.id

        assert [r.id for r in await system.request_manager.incoming_pending(bob.id)] == [request.id]
        assert [r.id for r in await system.request_manager.outgoing(alice.id)] == [request.id]

    @pytest.mark.asyncio
    async def test_send_validation(self, system, accounts):
        alice, _ = await accounts()
        with pytest.raises(SelfTransfer):
            await system.request_manager.send_request(alice.id, "alice", "10")
        with pytest.raises(RecipientNotFound):
            await system.request_manager.send_request(alice.id, "carol", "10")


class TestRespond:

    @pytest.mark.asyncio
    async def test_approve_moves_money(self, system, accounts):
        alice, bob = await accounts()
        request = await system.request_manager.send_request(alice.id, "bob", "300", "Lunch")

        result = await system.request_manager.approve(request.id, bob.id)

        assert result.account_id == bob.id
        assert result.counterparty_id == alice.id
        assert (await system.account_manager.require_account(bob.id)).balance.amount == Decimal("700.00")
        assert (await system.account_manager.require_account(alice.id)).balance.amount == Decimal("300.00")
        assert (await system.request_manager.get_request(request.id)).status == RequestStatus.APPROVED

        entry = await system.ledger.get_entry(result.entry_id)
        assert entry.category == "Request"
        assert entry.request_id == request.id

        responses = await system.notifications.for_user("alice")
        assert responses[0].title == "Request Response"
        assert "approved" in responses[0].message

    @pytest.mark.asyncio
    async def test_answered_once(self, system, accounts):
        alice, bob = await accounts()
        request = await system.request_manager.send_request(alice.id, "bob", "100")
        await system.request_manager.approve(request.id, bob.id)

        with pytest.raises(RequestNotPending):
            await system.request_manager.approve(request.id, bob.id)
        with pytest.raises(RequestNotPending):
            await system.request_manager.decline(request.id, bob.id)

        assert (await system.account_manager.require_account(bob.id)).balance.amount == Decimal("900.00")

    @pytest.mark.asyncio
    async def test_only_target_may_respond(self, system, accounts):
        alice, bob = await accounts()
        request = await system.request_manager.send_request(alice.id, "bob", "100")

        with pytest.raises(RequestForbidden):
            await system.request_manager.approve(request.id, alice.id)
        with pytest.raises(RequestForbidden):
            await system.request_manager.decline(request.id, alice.id)

    @pytest.mark.asyncio
    async def test_unknown_request(self, system, accounts):
        _, bob = await accounts()
        with pytest.raises(RequestNotFound):
            await system.request_manager.approve("missing", bob.id)

    @pytest.mark.asyncio
    async def test_failed_approval_stays_pending(self, system, accounts):
        alice, bob = await accounts(bob_balance="50")
        request = await system.request_manager.send_request(alice.id, "bob", "100")

        with pytest.raises(InsufficientFunds):
            await system.request_manager.approve(request.id, bob.id)

        assert (await system.request_manager.get_request(request.id)).status == RequestStatus.PENDING
        assert (await system.account_manager.require_account(bob.id)).balance.amount == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_decline(self, system, accounts):
        alice, bob = await accounts()
        request = await system.request_manager.send_request(alice.id, "bob", "100")

        declined = await system.request_manager.decline(request.id, bob.id)

        assert declined.status == RequestStatus.DECLINED
        assert (await system.request_manager.get_request(request.id)).status == RequestStatus.DECLINED
        assert (await system.account_manager.require_account(bob.id)).balance.amount == Decimal("1000.00")
        assert await system.request_manager.incoming_pending(bob.id) == []

        events = await system.audit_trail.get_events_by_type(AuditEventType.REQUEST_DECLINED)
        assert events[0].entity_id == request.id
