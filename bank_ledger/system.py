"""
Banking System

Composition root wiring the store, engine and collaborators together, plus
the user-facing flows that sit in front of the engine: the high-value OTP
gate, the duplicate-submission guard, and the sign-in hook that runs due
scheduled transfers and reports birthday gift availability.
"""

from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional

from .money import parse_amount
from .store import DocumentStore, InMemoryDocumentStore, SQLiteDocumentStore
from .audit import AuditTrail
from .accounts import AccountManager
from .ledger import TransactionLedger, SystemSummary
from .billers import BillerRegistry
from .goals import GoalManager
from .engine import LedgerEngine
from .scheduler import ScheduledTransferManager
from .requests import MoneyRequestManager
from .interest import InterestEngine
from .notifications import NotificationCenter
from .achievements import AchievementTracker
from .gates import OtpGate, SubmissionGuard
from .birthday import gift_available, is_birthday, year_key
from .config import LedgerConfig, get_config
from .operations import OperationResult
from .logging_config import get_logger, log_action


class BankingSystem:
    """Bank ledger with all components initialized"""

    def __init__(
        self,
        storage: Optional[DocumentStore] = None,
        settings: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.settings = settings or get_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        # Initialize storage
        if storage is None:
            if self.settings.database_path == ":memory:":
                storage = InMemoryDocumentStore()
            else:
                storage = SQLiteDocumentStore(self.settings.database_path)
        self.storage = storage

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage)
        self.account_manager = AccountManager(self.storage, self.audit_trail, self.settings)
        self.ledger = TransactionLedger(self.storage)
        self.billers = BillerRegistry(self.settings)
        self.goal_manager = GoalManager(self.storage)
        self.notifications = NotificationCenter(self.storage)
        self.achievements = AchievementTracker(
            self.storage, self.account_manager, self.ledger, self.goal_manager
        )
        self.engine = LedgerEngine(
            self.storage, self.audit_trail, self.achievements,
            settings=self.settings, billers=self.billers, clock=self.clock
        )
        self.scheduler = ScheduledTransferManager(
            self.storage, self.engine, self.account_manager, self.settings, self.clock
        )
        self.request_manager = MoneyRequestManager(
            self.storage, self.engine, self.account_manager,
            self.notifications, self.audit_trail, self.settings, self.clock
        )
        self.interest_engine = InterestEngine(
            self.engine, self.account_manager, self.audit_trail, self.settings
        )

        # Submission gates
        self.otp_gate = OtpGate(self.settings, clock=self.clock)
        self.submission_guard = SubmissionGuard()

        self.logger = get_logger("bank_ledger.system")

    def today(self) -> date:
        return self.clock().date()

    async def on_sign_in(self, account_id: str) -> Dict[str, Any]:
        """
        Run the payer's due scheduled transfers and check the birthday gift.

        Scheduled transfers only run here, so a schedule whose payer does not
        sign in stays due until they do.
        """
        account = await self.account_manager.require_account(account_id)
        today = self.today()
        report = await self.scheduler.run_due_for_account(account.id, today)

        log_action(self.logger, "info", "Sign-in hooks ran", account_id=account.id,
                   action="sign_in", extra={"scheduled_executed": len(report.executed),
                                            "scheduled_failed": len(report.failures)})

        refreshed = await self.account_manager.require_account(account.id)
        return {
            "scheduled": report.to_dict(),
            "birthday_gift_available": gift_available(refreshed, today),
        }

    # Gated submissions

    async def submit_withdraw(self, account_id: str, amount, note: str = "", category: str = "",
                              challenge_id: Optional[str] = None,
                              otp_code: Optional[str] = None) -> OperationResult:
        money = parse_amount(amount)
        self.otp_gate.ensure(account_id, money, challenge_id, otp_code)
        async with self.submission_guard.hold(account_id, "withdraw"):
            return await self.engine.withdraw(account_id, money, note, category)

    async def submit_deposit(self, account_id: str, amount, note: str = "",
                             category: str = "") -> OperationResult:
        money = parse_amount(amount)
        async with self.submission_guard.hold(account_id, "deposit"):
            return await self.engine.deposit(account_id, money, note, category)

    async def submit_transfer(self, account_id: str, payee_username: str, amount, note: str = "",
                              category: str = "", challenge_id: Optional[str] = None,
                              otp_code: Optional[str] = None) -> OperationResult:
        money = parse_amount(amount)
        self.otp_gate.ensure(account_id, money, challenge_id, otp_code)
        async with self.submission_guard.hold(account_id, "transfer"):
            return await self.engine.transfer(account_id, payee_username, money, note, category)

    async def submit_bill_payment(self, account_id: str, amount, biller_id: str,
                                  biller_account_number: str, note: str = "",
                                  challenge_id: Optional[str] = None,
                                  otp_code: Optional[str] = None) -> OperationResult:
        money = parse_amount(amount)
        # Biller validation runs before the OTP challenge is consumed
        self.billers.validate(biller_id, (biller_account_number or "").strip())
        self.otp_gate.ensure(account_id, money, challenge_id, otp_code)
        async with self.submission_guard.hold(account_id, "bill_payment"):
            return await self.engine.bill_payment(account_id, money, biller_id, biller_account_number, note)

    def issue_otp_challenge(self, account_id: str, amount):
        return self.otp_gate.issue_challenge(account_id, parse_amount(amount))

    async def claim_birthday_gift(self, account_id: str) -> OperationResult:
        account = await self.account_manager.require_account(account_id)
        today = self.today()
        if not is_birthday(account.birthday, today):
            raise ValueError("No birthday gift available today")
        async with self.submission_guard.hold(account_id, "birthday_gift"):
            return await self.engine.claim_birthday_gift(account_id, year_key(today))

    async def admin_summary(self) -> SystemSummary:
        balances = [account.balance for account in await self.account_manager.list_accounts()]
        return await self.ledger.system_summary(balances)

    async def close(self) -> None:
        await self.storage.close()
