"""
Test suite for the banking system facade

Tests birthday gift eligibility, the sign-in hook, the admin summary and
wiring to the SQLite backend.
"""

import pytest
from datetime import date
from decimal import Decimal

from bank_ledger.birthday import gift_available, is_birthday, year_key
from bank_ledger.config import LedgerConfig
from bank_ledger.errors import AlreadyClaimed
from bank_ledger.system import BankingSystem


class TestBirthday:

    def test_is_birthday(self):
        assert is_birthday(date(1990, 3, 15), date(2025, 3, 15))
        assert is_birthday("1990-03-15", date(2025, 3, 15))
        assert not is_birthday(date(1990, 3, 16), date(2025, 3, 15))
        assert not is_birthday(None, date(2025, 3, 15))
        assert not is_birthday("not a date", date(2025, 3, 15))

    def test_leap_day_birthday(self):
        assert is_birthday(date(2000, 2, 29), date(2025, 2, 28))
        assert not is_birthday(date(2000, 2, 29), date(2024, 2, 28))
        assert is_birthday(date(2000, 2, 29), date(2024, 2, 29))

    def test_year_key(self):
        assert year_key(date(2025, 3, 15)) == "2025"


class TestBirthdayGift:

    @pytest.mark.asyncio
    async def test_claim_on_birthday(self, system, open_account):
        alice = await open_account("alice", birthday=date(1990, 3, 15))

        status = await system.on_sign_in(alice.id)
        assert status["birthday_gift_available"] is True

        result = await system.claim_birthday_gift(alice.id)
        assert result.balance_after.amount == Decimal("500.00")

        refreshed = await system.account_manager.require_account(alice.id)
        assert refreshed.birthday_gifts_claimed == ["2025"]
        assert not gift_available(refreshed, date(2025, 3, 15))
        assert (await system.on_sign_in(alice.id))["birthday_gift_available"] is False

        with pytest.raises(AlreadyClaimed):
            await system.claim_birthday_gift(alice.id)

    @pytest.mark.asyncio
    async def test_not_birthday(self, system, open_account):
        alice = await open_account("alice", birthday=date(1990, 7, 1))
        assert (await system.on_sign_in(alice.id))["birthday_gift_available"] is False
        with pytest.raises(ValueError):
            await system.claim_birthday_gift(alice.id)

    @pytest.mark.asyncio
    async def test_next_year(self, system, open_account, clock):
        alice = await open_account("alice", birthday=date(1990, 3, 15))
        await system.claim_birthday_gift(alice.id)

        clock.set(2026, 3, 15)
        await system.claim_birthday_gift(alice.id)
        assert (await system.account_manager.require_account(alice.id)).balance.amount == Decimal("1000.00")


class TestAdminSummary:

    @pytest.mark.asyncio
    async def test_summary(self, system, open_account):
        alice = await open_account("alice", "5000")
        await open_account("bob", "1000")
        await system.engine.withdraw(alice.id, "1000")
        await system.engine.transfer(alice.id, "bob", "500")

        summary = await system.admin_summary()

        assert summary.user_count == 2
        assert summary.total_balance == Decimal("4980.00")
        assert summary.totals_by_type["DEPOSIT"] == Decimal("6000.00")
        assert summary.totals_by_type["WITHDRAWAL"] == Decimal("1000.00")
        assert summary.totals_by_type["TRANSFER"] == Decimal("500.00")
        assert summary.total_fees == Decimal("20.00")
        assert summary.to_dict()["total_fees"] == "20.00"


class TestSQLiteBackend:

    @pytest.mark.asyncio
    async def test_transfer_on_sqlite(self, tmp_path, clock):
        settings = LedgerConfig(database_path=str(tmp_path / "bank.db"))
        system = BankingSystem(settings=settings, clock=clock)
        try:
            alice = await system.account_manager.create_account("alice", "Alice", "Reyes")
            await system.account_manager.create_account("bob", "Bob", "Cruz")
            await system.engine.deposit(alice.id, "1000")
            result = await system.engine.transfer(alice.id, "bob", "250")

            assert result.balance_after.amount == Decimal("750.00")
            assert result.counterparty_balance_after.amount == Decimal("250.00")
            assert (await system.audit_trail.verify_integrity())["valid"] is True
        finally:
            await system.close()
