"""
Test suite for scheduled transfers

Tests next-run arithmetic, due-item execution on sign-in, catch-up
behaviour for missed periods, and failure handling.
"""

import pytest
from datetime import date
from decimal import Decimal

from bank_ledger.scheduler import Frequency, advance_next_run
from bank_ledger.errors import RecipientNotFound, ScheduleNotFound, SelfTransfer, InvalidAmount
from bank_ledger.ledger import EntryType


class TestAdvanceNextRun:

    def test_daily_and_weekly(self):
        assert advance_next_run(Frequency.DAILY, date(2025, 12, 31)) == date(2026, 1, 1)
        assert advance_next_run(Frequency.WEEKLY, date(2025, 1, 1)) == date(2025, 1, 8)

    def test_monthly_keeps_day(self):
        assert advance_next_run(Frequency.MONTHLY, date(2025, 1, 15)) == date(2025, 2, 15)
        assert advance_next_run(Frequency.MONTHLY, date(2025, 12, 15)) == date(2026, 1, 15)

    def test_monthly_clamps_to_month_end(self):
        assert advance_next_run(Frequency.MONTHLY, date(2025, 1, 31)) == date(2025, 2, 28)
        assert advance_next_run(Frequency.MONTHLY, date(2024, 1, 31)) == date(2024, 2, 29)
        assert advance_next_run(Frequency.MONTHLY, date(2025, 3, 31)) == date(2025, 4, 30)


class TestScheduleManagement:

    @pytest.mark.asyncio
    async def test_create_and_list(self, system, open_account):
        alice = await open_account("alice", "1000")
        await open_account("bob")

        schedule = await system.scheduler.create_schedule(
            alice.id, "bob", "100", "weekly", date(2025, 4, 1), note="Allowance"
        )

        assert schedule.next_run == date(2025, 4, 1)
        assert schedule.amount.amount == Decimal("100.00")
        assert [s.id for s in await system.scheduler.list_for_payer(alice.id)] == [schedule.id]

    @pytest.mark.asyncio
    async def test_validation(self, system, open_account):
        alice = await open_account("alice", "1000")
        await open_account("bob")

        with pytest.raises(SelfTransfer):
            await system.scheduler.create_schedule(alice.id, "alice", "100", "daily", date(2025, 4, 1))
        with pytest.raises(RecipientNotFound):
            await system.scheduler.create_schedule(alice.id, "carol", "100", "daily", date(2025, 4, 1))
        with pytest.raises(InvalidAmount):
            await system.scheduler.create_schedule(alice.id, "bob", "-1", "daily", date(2025, 4, 1))
        with pytest.raises(ValueError):
            await system.scheduler.create_schedule(alice.id, "bob", "100", "yearly", date(2025, 4, 1))

    @pytest.mark.asyncio
    async def test_delete_only_by_payer(self, system, open_account):
        alice = await open_account("alice", "1000")
        bob = await open_account("bob")
        schedule = await system.scheduler.create_schedule(alice.id, "bob", "100", "daily", date(2025, 4, 1))

        with pytest.raises(ScheduleNotFound):
            await system.scheduler.delete_schedule(schedule.id, bob.id)

        await system.scheduler.delete_schedule(schedule.id, alice.id)
        assert await system.scheduler.list_for_payer(alice.id) == []


class TestRunDue:

    @pytest.mark.asyncio
    async def test_weekly_catch_up_one_run_per_sign_in(self, system, open_account, clock):
        """A missed weekly schedule advances from its previous date, one run at a time"""
        alice = await open_account("alice", "1000")
        bob = await open_account("bob")
        schedule = await system.scheduler.create_schedule(alice.id, "bob", "100", "weekly", date(2025, 1, 1))

        clock.set(2025, 1, 10)
        first = await system.on_sign_in(alice.id)
        assert first["scheduled"]["executed"] == [schedule.id]
        assert (await system.scheduler.get_schedule(schedule.id)).next_run == date(2025, 1, 8)

        second = await system.on_sign_in(alice.id)
        assert second["scheduled"]["executed"] == [schedule.id]
        assert (await system.scheduler.get_schedule(schedule.id)).next_run == date(2025, 1, 15)

        third = await system.on_sign_in(alice.id)
        assert third["scheduled"]["executed"] == []

        assert (await system.account_manager.require_account(alice.id)).balance.amount == Decimal("800.00")
        assert (await system.account_manager.require_account(bob.id)).balance.amount == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_scheduled_entry(self, system, open_account):
        alice = await open_account("alice", "1000")
        bob = await open_account("bob")
        schedule = await system.scheduler.create_schedule(alice.id, "bob", "250", "monthly", date(2025, 3, 15))

        report = await system.scheduler.run_due_for_account(alice.id, date(2025, 3, 15))

        assert report.attempted == 1
        entries = await system.ledger.history_for_account(bob.id)
        assert entries[0].type == EntryType.TRANSFER
        assert entries[0].category == "Scheduled"
        assert entries[0].schedule_id == schedule.id
        assert (await system.scheduler.get_schedule(schedule.id)).next_run == date(2025, 4, 15)

    @pytest.mark.asyncio
    async def test_not_yet_due(self, system, open_account):
        alice = await open_account("alice", "1000")
        await open_account("bob")
        await system.scheduler.create_schedule(alice.id, "bob", "100", "daily", date(2025, 3, 16))

        report = await system.scheduler.run_due_for_account(alice.id, date(2025, 3, 15))
        assert report.attempted == 0

    @pytest.mark.asyncio
    async def test_failed_run_stays_due(self, system, open_account):
        alice = await open_account("alice", "50")
        await open_account("bob")
        ok = await system.scheduler.create_schedule(alice.id, "bob", "20", "daily", date(2025, 3, 1))
        too_big = await system.scheduler.create_schedule(alice.id, "bob", "500", "daily", date(2025, 3, 2))

        report = await system.scheduler.run_due_for_account(alice.id, date(2025, 3, 15))

        assert report.executed == [ok.id]
        assert report.failures == [{
            "schedule_id": too_big.id, "code": "INSUFFICIENT_FUNDS", "message": "Insufficient funds"
        }]
        assert (await system.scheduler.get_schedule(too_big.id)).next_run == date(2025, 3, 2)

    @pytest.mark.asyncio
    async def test_deleted_payee_reported(self, system, open_account):
        alice = await open_account("alice", "1000")
        await open_account("bob")
        schedule = await system.scheduler.create_schedule(alice.id, "bob", "10", "daily", date(2025, 3, 1))
        await system.storage.delete("usernames", "bob")

        report = await system.scheduler.run_due_for_account(alice.id, date(2025, 3, 15))

        assert report.failures[0]["schedule_id"] == schedule.id
        assert report.failures[0]["code"] == "RECIPIENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_global_sweep_disabled_by_default(self, system):
        with pytest.raises(RuntimeError):
            await system.scheduler.sweep_all(date(2025, 3, 15))

    @pytest.mark.asyncio
    async def test_global_sweep(self, system, open_account):
        system.settings.scheduler_global_sweep_enabled = True
        alice = await open_account("alice", "1000")
        carol = await open_account("carol", "1000")
        await open_account("bob")
        await system.scheduler.create_schedule(alice.id, "bob", "10", "daily", date(2025, 3, 1))
        await system.scheduler.create_schedule(carol.id, "bob", "10", "daily", date(2025, 3, 1))

        report = await system.scheduler.sweep_all(date(2025, 3, 15))
        assert len(report.executed) == 2
