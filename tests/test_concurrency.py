"""
Test suite for concurrent writers

Runs operations against a store that yields after every read, so two
transactions read the same account before either commits and the loser
must retry against the winner's state.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from bank_ledger.errors import InsufficientFunds, ScheduleNotDue
from bank_ledger.ledger import EntryType
from bank_ledger.operations import OperationResult


async def open_racing_account(system, username, balance=None):
    account = await system.account_manager.create_account(username, username.title(), "Tester")
    if balance is not None:
        await system.engine.deposit(account.id, balance)
    return await system.account_manager.require_account(account.id)


async def balance_of(system, account_id) -> Decimal:
    return (await system.account_manager.require_account(account_id)).balance.amount


class TestRacingWithdrawals:

    @pytest.mark.asyncio
    async def test_one_of_two_withdrawals_fails(self, racing_system):
        """Both read 1000.00; the second to commit re-validates and is rejected"""
        alice = await open_racing_account(racing_system, "alice", "1000")

        outcomes = await asyncio.gather(
            racing_system.engine.withdraw(alice.id, "600"),
            racing_system.engine.withdraw(alice.id, "600"),
            return_exceptions=True
        )

        assert sorted(type(o).__name__ for o in outcomes) == ["InsufficientFunds", "OperationResult"]
        assert await balance_of(racing_system, alice.id) == Decimal("388.00")

        withdrawals = [e for e in await racing_system.ledger.history_for_account(alice.id)
                       if e.type == EntryType.WITHDRAWAL]
        assert len(withdrawals) == 1

    @pytest.mark.asyncio
    async def test_both_succeed_when_funds_allow(self, racing_system):
        alice = await open_racing_account(racing_system, "alice", "1000")

        outcomes = await asyncio.gather(
            racing_system.engine.withdraw(alice.id, "100"),
            racing_system.engine.withdraw(alice.id, "200"),
        )

        assert all(isinstance(o, OperationResult) for o in outcomes)
        assert await balance_of(racing_system, alice.id) == Decimal("694.00")

    @pytest.mark.asyncio
    async def test_daily_limit_counts_both_writers(self, racing_system):
        alice = await open_racing_account(racing_system, "alice", "30000")

        outcomes = await asyncio.gather(
            racing_system.engine.withdraw(alice.id, "6000"),
            racing_system.engine.withdraw(alice.id, "6000"),
            return_exceptions=True
        )

        assert sorted(type(o).__name__ for o in outcomes) == ["DailyLimitExceeded", "OperationResult"]
        account = await racing_system.account_manager.require_account(alice.id)
        assert account.limits_daily.withdraw_used == Decimal("6000")


class TestRacingTransfers:

    @pytest.mark.asyncio
    async def test_payer_never_goes_negative(self, racing_system):
        alice = await open_racing_account(racing_system, "alice", "1000")
        bob = await open_racing_account(racing_system, "bob")
        carol = await open_racing_account(racing_system, "carol")

        outcomes = await asyncio.gather(
            racing_system.engine.transfer(alice.id, "bob", "700"),
            racing_system.engine.transfer(alice.id, "carol", "700"),
            return_exceptions=True
        )

        assert sum(isinstance(o, InsufficientFunds) for o in outcomes) == 1
        balances = [await balance_of(racing_system, a.id) for a in (alice, bob, carol)]
        assert balances[0] == Decimal("300.00")
        assert sum(balances) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_opposing_transfers_conserve_money(self, racing_system):
        alice = await open_racing_account(racing_system, "alice", "500")
        bob = await open_racing_account(racing_system, "bob", "500")

        await asyncio.gather(
            racing_system.engine.transfer(alice.id, "bob", "200"),
            racing_system.engine.transfer(bob.id, "alice", "50"),
        )

        assert await balance_of(racing_system, alice.id) == Decimal("350.00")
        assert await balance_of(racing_system, bob.id) == Decimal("650.00")

    @pytest.mark.asyncio
    async def test_interest_reads_committed_deposit(self, racing_system):
        """Interest is computed from whichever balance was committed first, never a stale one"""
        alice = await open_racing_account(racing_system, "alice", "1000")

        await asyncio.gather(
            racing_system.engine.apply_interest(alice.id),
            racing_system.engine.deposit(alice.id, "500"),
        )

        assert await balance_of(racing_system, alice.id) in (Decimal("1515.00"), Decimal("1522.50"))


class TestRacingScheduledRuns:

    @pytest.mark.asyncio
    async def test_concurrent_sign_ins_run_schedule_once(self, racing_system):
        alice = await open_racing_account(racing_system, "alice", "1000")
        bob = await open_racing_account(racing_system, "bob")
        schedule = await racing_system.scheduler.create_schedule(
            alice.id, "bob", "100", "daily", date(2025, 3, 15)
        )

        first, second = await asyncio.gather(
            racing_system.on_sign_in(alice.id),
            racing_system.on_sign_in(alice.id),
        )

        executed = first["scheduled"]["executed"] + second["scheduled"]["executed"]
        assert executed == [schedule.id]
        assert first["scheduled"]["failures"] == second["scheduled"]["failures"] == []
        assert await balance_of(racing_system, bob.id) == Decimal("100.00")
        assert await balance_of(racing_system, alice.id) == Decimal("900.00")
        assert (await racing_system.scheduler.get_schedule(schedule.id)).next_run == date(2025, 3, 16)

    @pytest.mark.asyncio
    async def test_stale_due_date_rejected(self, racing_system):
        alice = await open_racing_account(racing_system, "alice", "1000")
        await open_racing_account(racing_system, "bob")
        schedule = await racing_system.scheduler.create_schedule(
            alice.id, "bob", "100", "daily", date(2025, 3, 15)
        )

        await racing_system.engine.run_scheduled_transfer(schedule.id, due_on=date(2025, 3, 15))

        with pytest.raises(ScheduleNotDue):
            await racing_system.engine.run_scheduled_transfer(schedule.id, due_on=date(2025, 3, 15))

    @pytest.mark.asyncio
    async def test_future_schedule_not_run_directly(self, racing_system):
        alice = await open_racing_account(racing_system, "alice", "1000")
        await open_racing_account(racing_system, "bob")
        schedule = await racing_system.scheduler.create_schedule(
            alice.id, "bob", "100", "daily", date(2025, 3, 20)
        )

        with pytest.raises(ScheduleNotDue):
            await racing_system.engine.run_scheduled_transfer(schedule.id)

        assert await balance_of(racing_system, alice.id) == Decimal("1000.00")
