"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection and integrity
verification, plus the events the ledger writes after each commit.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from bank_ledger.audit import AuditTrail, AuditEvent, AuditEventType
from bank_ledger.store import InMemoryDocumentStore



class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_metadata_serialization(self):
        """Decimals and enums in metadata are stored as plain JSON values"""
        event = AuditEvent(
            id="AUDIT001",
            sequence=1,
            created_at=datetime.now(timezone.utc),
            event_type=AuditEventType.DEPOSIT,
            entity_type="account",
            entity_id="ACC001",
            previous_hash="",
            current_hash="",
            metadata={"amount": Decimal("250.00"), "type": AuditEventType.DEPOSIT, "nested": [Decimal("1.5")]}
        )

        assert event.metadata == {"amount": "250.00", "type": "deposit", "nested": ["1.5"]}

    def test_hash_round_trip(self):
        event = AuditEvent(
            id="AUDIT002",
            sequence=1,
            created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id="ACC001",
            previous_hash="",
            current_hash="",
        )
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())
        assert restored.verify_hash()
        assert len(restored.current_hash) == 64


class TestAuditTrail:
    """Test hash chaining and integrity checks"""

    @pytest.fixture
    def trail(self):
        return AuditTrail(InMemoryDocumentStore())

    @pytest.mark.asyncio
    async def test_chain_links_events(self, trail):
        first = await trail.log_event(AuditEventType.DEPOSIT, "account", "A1", {"amount": "10.00"})
        second = await trail.log_event(AuditEventType.WITHDRAWAL, "account", "A1", {"amount": "5.00"})

        assert first.sequence == 1
        assert first.previous_hash == ""
        assert second.sequence == 2
        assert second.previous_hash == first.current_hash

        result = await trail.verify_integrity()
        assert result["valid"] is True
        assert result["total_events"] == 2

    @pytest.mark.asyncio
    async def test_tampered_metadata_detected(self, trail):
        event = await trail.log_event(AuditEventType.DEPOSIT, "account", "A1", {"amount": "10.00"})
        await trail.storage.update(trail.collection, event.id, {"metadata": {"amount": "10000.00"}})

        result = await trail.verify_integrity()
        assert result["valid"] is False
        assert result["hash_errors"][0]["event_id"] == event.id

    @pytest.mark.asyncio
    async def test_deleted_event_breaks_chain(self, trail):
        await trail.log_event(AuditEventType.DEPOSIT, "account", "A1")
        middle = await trail.log_event(AuditEventType.DEPOSIT, "account", "A1")
        await trail.log_event(AuditEventType.DEPOSIT, "account", "A1")

        await trail.storage.delete(trail.collection, middle.id)

        result = await trail.verify_integrity()
        assert result["valid"] is False
        assert len(result["chain_breaks"]) == 1

    @pytest.mark.asyncio
    async def test_queries(self, trail):
        await trail.log_event(AuditEventType.DEPOSIT, "account", "A1")
        await trail.log_event(AuditEventType.DEPOSIT, "account", "A2")
        await trail.log_event(AuditEventType.TRANSFER, "account", "A1")

        assert len(await trail.get_events_for_entity("account", "A1")) == 2
        assert len(await trail.get_events_for_entity("account", "A1", limit=1)) == 1
        assert len(await trail.get_events_by_type(AuditEventType.DEPOSIT)) == 2
        assert await trail.count_events() == 3


class TestLedgerAuditing:
    """Committed operations are audited after commit"""

    @pytest.mark.asyncio
    async def test_money_movements_audited(self, system, open_account):
        alice = await open_account("alice", "1000")
        await open_account("bob")
        await system.engine.transfer(alice.id, "bob", "100")

        events = await system.audit_trail.get_events_for_entity("account", alice.id)
        types = [e.event_type for e in events]
        assert types == [AuditEventType.ACCOUNT_CREATED, AuditEventType.DEPOSIT, AuditEventType.TRANSFER]
        assert events[-1].metadata["amount"] == "100.00"
        assert events[-1].metadata["to"] == "bob"

    @pytest.mark.asyncio
    async def test_rejected_operation_not_audited(self, system, open_account):
        alice = await open_account("alice", "100")
        before = await system.audit_trail.count_events()

        with pytest.raises(ValueError):
            await system.engine.withdraw(alice.id, "500")

        assert await system.audit_trail.count_events() == before

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_operation(self, system, open_account, monkeypatch):
        alice = await open_account("alice", "100")

        async def broken(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(system.audit_trail, "log_event", broken)
        result = await system.engine.deposit(alice.id, "50")

        assert result.balance_after.amount == Decimal("150.00")
        assert (await system.account_manager.require_account(alice.id)).balance.amount == Decimal("150.00")
