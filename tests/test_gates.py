"""
Test suite for submission gates

Tests the high-value OTP gate and the per-account duplicate submission
guard, directly and through the banking system's submit methods.
"""

import asyncio
import pytest
from decimal import Decimal

from bank_ledger.gates import OtpGate, SubmissionGuard
from bank_ledger.money import Money
from bank_ledger.errors import InvalidOtp, OperationInProgress, OtpRequired, InvalidBillerAccount


class TestOtpGate:

    @pytest.fixture
    def gate(self, settings, clock):
        return OtpGate(settings, ttl_seconds=60, clock=clock)

    def test_threshold_is_strict(self, gate):
        assert not gate.requires_otp(Money(Decimal("5000")))
        assert gate.requires_otp(Money(Decimal("5000.01")))

    def test_below_threshold_passes(self, gate):
        gate.ensure("A1", Money(Decimal("5000")))

    def test_missing_code(self, gate):
        with pytest.raises(OtpRequired):
            gate.ensure("A1", Money(Decimal("6000")))

    def test_valid_code_is_single_use(self, gate):
        amount = Money(Decimal("6000"))
        challenge = gate.issue_challenge("A1", amount)

        gate.ensure("A1", amount, challenge.id, challenge.code)

        with pytest.raises(InvalidOtp):
            gate.ensure("A1", amount, challenge.id, challenge.code)

    def test_wrong_code_keeps_challenge(self, gate):
        amount = Money(Decimal("6000"))
        challenge = gate.issue_challenge("A1", amount)
        wrong = "000000" if challenge.code != "000000" else "111111"

        with pytest.raises(InvalidOtp):
            gate.verify(challenge.id, wrong, "A1", amount)
        gate.verify(challenge.id, challenge.code, "A1", amount)

    def test_bound_to_account_and_amount(self, gate):
        amount = Money(Decimal("6000"))
        challenge = gate.issue_challenge("A1", amount)

        with pytest.raises(InvalidOtp):
            gate.verify(challenge.id, challenge.code, "A2", amount)
        with pytest.raises(InvalidOtp):
            gate.verify(challenge.id, challenge.code, "A1", Money(Decimal("6000.01")))

    def test_expiry(self, gate, clock):
        amount = Money(Decimal("6000"))
        challenge = gate.issue_challenge("A1", amount)
        clock.advance(seconds=61)

        with pytest.raises(InvalidOtp):
            gate.verify(challenge.id, challenge.code, "A1", amount)

    def test_cancel(self, gate):
        challenge = gate.issue_challenge("A1", Money(Decimal("6000")))
        assert gate.cancel(challenge.id) is True
        assert gate.cancel(challenge.id) is False

    def test_expired_challenges_purged_on_issue(self, gate, clock):
        """Abandoned challenges do not accumulate"""
        amount = Money(Decimal("6000"))
        stale = [gate.issue_challenge("A1", amount) for _ in range(3)]
        assert gate.open_challenges == 3

        clock.advance(seconds=61)
        fresh = gate.issue_challenge("A1", amount)

        assert gate.open_challenges == 1
        assert gate.cancel(stale[0].id) is False
        gate.verify(fresh.id, fresh.code, "A1", amount)
        assert gate.open_challenges == 0


class TestSubmissionGuard:

    @pytest.mark.asyncio
    async def test_rejects_concurrent_submission(self):
        guard = SubmissionGuard()

        async with guard.hold("A1", "withdraw"):
            assert guard.is_busy("A1", "withdraw")
            with pytest.raises(OperationInProgress):
                async with guard.hold("A1", "withdraw"):
                    pass
            # Other accounts and other operations are independent
            async with guard.hold("A2", "withdraw"):
                pass
            async with guard.hold("A1", "transfer"):
                pass

        assert not guard.is_busy("A1", "withdraw")

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        guard = SubmissionGuard()
        with pytest.raises(ValueError):
            async with guard.hold("A1", "withdraw"):
                raise ValueError("failed")
        assert not guard.is_busy("A1", "withdraw")


class TestGatedSubmissions:

    @pytest.mark.asyncio
    async def test_high_value_withdraw_needs_otp(self, system, open_account):
        alice = await open_account("alice", "9000")

        with pytest.raises(OtpRequired):
            await system.submit_withdraw(alice.id, "6000")
        assert (await system.account_manager.require_account(alice.id)).balance.amount == Decimal("9000.00")

        challenge = system.issue_otp_challenge(alice.id, "6000")
        result = await system.submit_withdraw(alice.id, "6000", challenge_id=challenge.id,
                                              otp_code=challenge.code)
        assert result.balance_after.amount == Decimal("2880.00")

    @pytest.mark.asyncio
    async def test_low_value_transfer_without_otp(self, system, open_account):
        alice = await open_account("alice", "9000")
        await open_account("bob")
        result = await system.submit_transfer(alice.id, "bob", "5000")
        assert result.balance_after.amount == Decimal("4000.00")

    @pytest.mark.asyncio
    async def test_biller_validated_before_otp(self, system, open_account):
        alice = await open_account("alice", "9000")
        challenge = system.issue_otp_challenge(alice.id, "6000")

        with pytest.raises(InvalidBillerAccount):
            await system.submit_bill_payment(alice.id, "6000", "electric", "123",
                                             challenge_id=challenge.id, otp_code=challenge.code)

        # The challenge was not consumed by the rejected attempt
        result = await system.submit_bill_payment(alice.id, "6000", "electric", "1234567890",
                                                  challenge_id=challenge.id, otp_code=challenge.code)
        assert result.balance_after.amount == Decimal("3000.00")

    @pytest.mark.asyncio
    async def test_duplicate_submission_rejected(self, system, open_account, monkeypatch):
        alice = await open_account("alice", "1000")
        release = asyncio.Event()
        original = system.engine.deposit

        async def slow_deposit(*args, **kwargs):
            await release.wait()
            return await original(*args, **kwargs)

        monkeypatch.setattr(system.engine, "deposit", slow_deposit)

        first = asyncio.ensure_future(system.submit_deposit(alice.id, "100"))
        await asyncio.sleep(0)
        with pytest.raises(OperationInProgress):
            await system.submit_deposit(alice.id, "100")

        release.set()
        await first
        assert (await system.account_manager.require_account(alice.id)).balance.amount == Decimal("1100.00")
