"""
Ledger Engine

Single entry point for every balance mutation. ``execute(op)`` dispatches
over the closed set of operations in ``bank_ledger.operations``; each
handler runs one optimistic store transaction that:

1. reads the current documents it needs (never cached balances),
2. validates amounts, limits and funds against that fresh read,
3. buffers the balance update, limit windows, exactly one ledger entry and
   the ``last_transaction`` snapshot(s).

The store commits all buffered writes at once or re-runs the handler on a
conflicting write, so every check is re-made against current state. A rule
violation raises a typed ``LedgerError`` and nothing is written.

Audit events and achievement evaluation run only after commit; their
failures are logged and never undo or fail the committed operation.
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .money import Money
from .store import DocumentStore, StoreTransaction, SERVER_TIMESTAMP
from .accounts import Account, USERS, USERNAMES, load_account
from .ledger import EntryType, LedgerEntry, TRANSACTIONS, last_transaction_snapshot
from .limits import check_and_consume, month_key, roll_daily, roll_monthly
from .billers import BillerRegistry
from .goals import SavingsGoal, goals_collection
from .scheduler import SCHEDULED_TRANSFERS, SCHEDULED_CATEGORY, ScheduledTransfer, advance_next_run
from .requests import REQUESTS, REQUEST_CATEGORY, MoneyRequest, RequestStatus, check_respondable
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import (
    AlreadyClaimed, DailyLimitExceeded, GoalNotFound, InsufficientFunds,
    LedgerError, MonthlyLimitExceeded, RecipientNotFound, ScheduleNotDue, ScheduleNotFound,
    SelfTransfer
)
from .logging_config import get_logger, log_action, log_rejection
from .operations import (
    ApplyInterest, ApproveRequest, BillPayment, ClaimBirthdayGift, Deposit, FundGoal,
    Operation, OperationResult, RunScheduledTransfer, Transfer, Withdraw
)


class _Stamp:
    """Client date and time recorded on ledger entries for one operation"""

    def __init__(self, now: datetime):
        self.now = now
        self.today = now.date()
        self.date = self.today.isoformat()
        self.time = now.strftime("%H:%M:%S")


class LedgerEngine:
    """
    Executes ledger operations atomically against the document store.

    The engine holds no mutable state: every call reads what it needs from
    the store, so any number of callers may share one instance.
    """

    def __init__(
        self,
        storage: DocumentStore,
        audit_trail: Optional[AuditTrail] = None,
        achievements=None,
        settings: Optional[LedgerConfig] = None,
        billers: Optional[BillerRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.achievements = achievements
        self.settings = settings or get_config()
        self.billers = billers or BillerRegistry(self.settings)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("bank_ledger.engine")

        self._handlers: Dict[type, Callable[[Any], Awaitable[OperationResult]]] = {
            Withdraw: self._withdraw,
            Deposit: self._deposit,
            Transfer: self._transfer,
            BillPayment: self._bill_payment,
            FundGoal: self._fund_goal,
            ApplyInterest: self._apply_interest,
            ClaimBirthdayGift: self._claim_birthday_gift,
            RunScheduledTransfer: self._run_scheduled_transfer,
            ApproveRequest: self._approve_request,
        }

    async def execute(self, op: Operation) -> OperationResult:
        """
        Execute one operation

        Raises:
            TypeError: If ``op`` is not a known operation (before any store call)
            LedgerError: If a rule is violated; nothing is committed
        """
        handler = self._handlers.get(type(op))
        if handler is None:
            raise TypeError(f"Unsupported ledger operation: {type(op).__name__}")

        name = type(op).__name__
        try:
            result = await handler(op)
        except LedgerError as e:
            log_rejection(self.logger, name, e,
                          account_id=getattr(op, "account_id", None) or getattr(op, "payer_id", None))
            raise

        if result.skipped:
            log_action(self.logger, "info", f"{name} skipped",
                       account_id=result.account_id, action=name, resource="ledger")
        else:
            log_action(self.logger, "info", f"{name} committed",
                       account_id=result.account_id, action=name, resource="ledger",
                       entry_id=result.entry_id,
                       extra={"amount": result.amount.to_storage() if result.amount else None})
            await self._after_commit(op, result)
        return result

    # Convenience wrappers

    async def withdraw(self, account_id: str, amount, note: str = "", category: str = "") -> OperationResult:
        return await self.execute(Withdraw(account_id, amount, note, category))

    async def deposit(self, account_id: str, amount, note: str = "", category: str = "") -> OperationResult:
        return await self.execute(Deposit(account_id, amount, note, category))

    async def transfer(self, payer_id: str, payee_username: str, amount, note: str = "",
                       category: str = "") -> OperationResult:
        return await self.execute(Transfer(payer_id, payee_username, amount, note, category))

    async def bill_payment(self, account_id: str, amount, biller_id: str,
                           biller_account_number: str, note: str = "") -> OperationResult:
        return await self.execute(BillPayment(account_id, amount, biller_id, biller_account_number, note))

    async def fund_goal(self, account_id: str, goal_id: str, amount) -> OperationResult:
        return await self.execute(FundGoal(account_id, goal_id, amount))

    async def apply_interest(self, account_id: str) -> OperationResult:
        return await self.execute(ApplyInterest(account_id))

    async def claim_birthday_gift(self, account_id: str, year_key: str) -> OperationResult:
        return await self.execute(ClaimBirthdayGift(account_id, year_key))

    async def run_scheduled_transfer(self, schedule_id: str, due_on: Optional[date] = None) -> OperationResult:
        return await self.execute(RunScheduledTransfer(schedule_id, due_on))

    async def approve_request(self, request_id: str, approver_id: str) -> OperationResult:
        return await self.execute(ApproveRequest(request_id, approver_id))

    # Shared transaction steps

    def _stamp(self) -> _Stamp:
        return _Stamp(self._clock())

    @staticmethod
    def _as_account_currency(amount: Money, account: Account) -> Money:
        return Money(amount.amount, account.balance.currency)

    def _append_entry(self, txn: StoreTransaction, entry: LedgerEntry) -> str:
        return txn.add(TRANSACTIONS, entry.to_document())

    def _single_account_entry(self, txn: StoreTransaction, account: Account, entry_type: EntryType,
                              amount: Money, new_balance: Money, stamp: _Stamp,
                              fee: Optional[Money] = None, note: str = "", category: str = "",
                              extra_updates: Optional[Dict[str, Any]] = None,
                              **entry_fields) -> Tuple[str, LedgerEntry]:
        """Append one entry and buffer the account's balance and snapshot update"""
        entry = LedgerEntry(
            type=entry_type,
            account_id=account.id,
            username=account.username,
            amount=amount,
            fee=fee,
            date=stamp.date,
            time=stamp.time,
            note=note,
            category=category,
            balance_after=new_balance,
            **entry_fields
        )
        entry_id = self._append_entry(txn, entry)
        updates = {
            "balance": new_balance.to_storage(),
            "last_transaction": last_transaction_snapshot(entry, entry_id),
            "updated_at": SERVER_TIMESTAMP,
        }
        updates.update(extra_updates or {})
        txn.update(USERS, account.id, updates)
        return entry_id, entry

    async def _load_transfer_parties(self, txn: StoreTransaction, payer_id: str,
                                     payee_id: Optional[str] = None,
                                     payee_username: Optional[str] = None) -> Tuple[Account, Account]:
        """Read payer and payee inside the transaction (payee by id or username)"""
        payer = await load_account(txn, payer_id)

        if payee_id is None:
            if payee_username == payer.username:
                raise SelfTransfer()
            index = await txn.load(USERNAMES, payee_username)
            if index is None:
                raise RecipientNotFound(payee_username)
            payee_id = index["account_id"]

        if payee_id == payer.id:
            raise SelfTransfer()

        payee_data = await txn.load(USERS, payee_id)
        if payee_data is None:
            raise RecipientNotFound(payee_username or payee_id)
        return payer, Account.from_document(payee_data)

    def _apply_transfer(self, txn: StoreTransaction, payer: Account, payee: Account, amount: Money,
                        stamp: _Stamp, note: str, category: str, **entry_fields) -> OperationResult:
        """
        Check the payer's limits and funds, then buffer the transfer writes.

        Only the payer's daily and monthly transfer windows are consumed;
        inflow to the payee is not capped.
        """
        amount = self._as_account_currency(amount, payer)
        policy = payer.policy(self.settings)

        daily = roll_daily(payer.limits_daily, stamp.today)
        daily_decision = check_and_consume(daily.transfer_used, policy.transfer_limit, amount.amount)
        if not daily_decision.allowed:
            raise DailyLimitExceeded("transfer", daily.transfer_used, policy.transfer_limit, amount.amount)

        monthly = roll_monthly(payer.limits_monthly, month_key(stamp.today))
        monthly_decision = check_and_consume(monthly.transfer_used, policy.monthly_transfer_limit, amount.amount)
        if not monthly_decision.allowed:
            raise MonthlyLimitExceeded("transfer", monthly.transfer_used,
                                       policy.monthly_transfer_limit, amount.amount)

        if payer.balance < amount:
            raise InsufficientFunds(payer.balance.amount, amount.amount)

        payer_after = payer.balance - amount
        payee_after = payee.balance + Money(amount.amount, payee.balance.currency)

        entry = LedgerEntry(
            type=EntryType.TRANSFER,
            account_id=payer.id,
            username=payer.username,
            amount=amount,
            date=stamp.date,
            time=stamp.time,
            note=note,
            category=category,
            balance_after=payer_after,
            counterparty_id=payee.id,
            counterparty_username=payee.username,
            counterparty_balance_after=payee_after,
            **entry_fields
        )
        entry_id = self._append_entry(txn, entry)

        txn.update(USERS, payer.id, {
            "balance": payer_after.to_storage(),
            "limits_daily": replace(daily, transfer_used=daily_decision.new_used).to_dict(),
            "limits_monthly": replace(monthly, transfer_used=monthly_decision.new_used).to_dict(),
            "last_transaction": last_transaction_snapshot(entry, entry_id),
            "updated_at": SERVER_TIMESTAMP,
        })
        txn.update(USERS, payee.id, {
            "balance": payee_after.to_storage(),
            "last_transaction": last_transaction_snapshot(entry, entry_id, payee_side=True),
            "updated_at": SERVER_TIMESTAMP,
        })

        return OperationResult(
            operation="Transfer",
            account_id=payer.id,
            entry_id=entry_id,
            amount=amount,
            fee=Money.zero(amount.currency),
            balance_after=payer_after,
            counterparty_id=payee.id,
            counterparty_balance_after=payee_after,
            details={"payee_username": payee.username},
        )

    # Handlers

    async def _withdraw(self, op: Withdraw) -> OperationResult:
        stamp = self._stamp()

        async def _apply(txn: StoreTransaction) -> OperationResult:
            account = await load_account(txn, op.account_id)
            amount = self._as_account_currency(op.amount, account)
            fee = amount * self.settings.withdrawal_tax_rate
            debit = amount + fee

            if account.balance < debit:
                raise InsufficientFunds(account.balance.amount, debit.amount)

            policy = account.policy(self.settings)
            daily = roll_daily(account.limits_daily, stamp.today)
            decision = check_and_consume(daily.withdraw_used, policy.withdraw_limit, amount.amount)
            if not decision.allowed:
                raise DailyLimitExceeded("withdraw", daily.withdraw_used, policy.withdraw_limit, amount.amount)

            new_balance = account.balance - debit
            entry_id, _ = self._single_account_entry(
                txn, account, EntryType.WITHDRAWAL, amount, new_balance, stamp,
                fee=fee, note=op.note, category=op.category,
                extra_updates={"limits_daily": replace(daily, withdraw_used=decision.new_used).to_dict()}
            )
            return OperationResult("Withdraw", account.id, entry_id, amount, fee, new_balance)

        return await self.storage.run_atomic(_apply)

    async def _deposit(self, op: Deposit) -> OperationResult:
        stamp = self._stamp()

        async def _apply(txn: StoreTransaction) -> OperationResult:
            account = await load_account(txn, op.account_id)
            amount = self._as_account_currency(op.amount, account)
            new_balance = account.balance + amount
            entry_id, _ = self._single_account_entry(
                txn, account, EntryType.DEPOSIT, amount, new_balance, stamp,
                note=op.note, category=op.category
            )
            return OperationResult("Deposit", account.id, entry_id, amount,
                                   Money.zero(amount.currency), new_balance)

        return await self.storage.run_atomic(_apply)

    async def _transfer(self, op: Transfer) -> OperationResult:
        stamp = self._stamp()

        async def _apply(txn: StoreTransaction) -> OperationResult:
            payer, payee = await self._load_transfer_parties(txn, op.payer_id, payee_username=op.payee_username)
            return self._apply_transfer(txn, payer, payee, op.amount, stamp, op.note, op.category)

        return await self.storage.run_atomic(_apply)

    async def _bill_payment(self, op: BillPayment) -> OperationResult:
        # Biller and account number format are checked before touching the store
        biller = self.billers.validate(op.biller_id, op.biller_account_number)
        stamp = self._stamp()

        async def _apply(txn: StoreTransaction) -> OperationResult:
            account = await load_account(txn, op.account_id)
            amount = self._as_account_currency(op.amount, account)
            if account.balance < amount:
                raise InsufficientFunds(account.balance.amount, amount.amount)

            new_balance = account.balance - amount
            entry_id, _ = self._single_account_entry(
                txn, account, EntryType.BILL_PAYMENT, amount, new_balance, stamp,
                note=op.note, category=biller.name,
                biller_id=biller.id, biller_name=biller.name,
                biller_account_number=op.biller_account_number
            )
            return OperationResult("BillPayment", account.id, entry_id, amount,
                                   Money.zero(amount.currency), new_balance,
                                   details={"biller_id": biller.id, "biller_name": biller.name})

        return await self.storage.run_atomic(_apply)

    async def _fund_goal(self, op: FundGoal) -> OperationResult:
        stamp = self._stamp()
        collection = goals_collection(op.account_id)

        async def _apply(txn: StoreTransaction) -> OperationResult:
            account = await load_account(txn, op.account_id)
            goal_data = await txn.load(collection, op.goal_id)
            if goal_data is None:
                raise GoalNotFound(op.goal_id)
            goal = SavingsGoal.from_document(goal_data)

            amount = self._as_account_currency(op.amount, account)
            if account.balance < amount:
                raise InsufficientFunds(account.balance.amount, amount.amount)

            new_balance = account.balance - amount
            new_saved = goal.saved + Money(amount.amount, goal.saved.currency)
            txn.update(collection, goal.id, {"saved": new_saved.to_storage()})
            entry_id, _ = self._single_account_entry(
                txn, account, EntryType.GOAL_FUND, amount, new_balance, stamp,
                note=goal.name, category="Goal", goal_id=goal.id
            )
            return OperationResult("FundGoal", account.id, entry_id, amount,
                                   Money.zero(amount.currency), new_balance,
                                   details={"goal_id": goal.id, "saved": new_saved.to_storage(),
                                            "target": goal.target.to_storage()})

        return await self.storage.run_atomic(_apply)

    async def _apply_interest(self, op: ApplyInterest) -> OperationResult:
        stamp = self._stamp()

        async def _apply(txn: StoreTransaction) -> OperationResult:
            account = await load_account(txn, op.account_id)
            rate = account.policy(self.settings).interest_rate
            interest = account.balance * rate

            if not interest.is_positive():
                return OperationResult("ApplyInterest", account.id, balance_after=account.balance,
                                       amount=interest, skipped=True, details={"rate": str(rate)})

            new_balance = account.balance + interest
            entry_id, _ = self._single_account_entry(
                txn, account, EntryType.INTEREST, interest, new_balance, stamp,
                note=f"Interest at {rate}", category="Interest"
            )
            return OperationResult("ApplyInterest", account.id, entry_id, interest,
                                   Money.zero(interest.currency), new_balance,
                                   details={"rate": str(rate)})

        return await self.storage.run_atomic(_apply)

    async def _claim_birthday_gift(self, op: ClaimBirthdayGift) -> OperationResult:
        stamp = self._stamp()

        async def _apply(txn: StoreTransaction) -> OperationResult:
            account = await load_account(txn, op.account_id)
            if op.year_key in account.birthday_gifts_claimed:
                raise AlreadyClaimed(op.year_key)

            gift = Money(self.settings.birthday_gift_amount, account.balance.currency)
            new_balance = account.balance + gift
            entry_id, _ = self._single_account_entry(
                txn, account, EntryType.BDAY_GIFT, gift, new_balance, stamp,
                note="Birthday gift", category="Gift",
                extra_updates={"birthday_gifts_claimed": account.birthday_gifts_claimed + [op.year_key]}
            )
            return OperationResult("ClaimBirthdayGift", account.id, entry_id, gift,
                                   Money.zero(gift.currency), new_balance,
                                   details={"year_key": op.year_key})

        return await self.storage.run_atomic(_apply)

    async def _run_scheduled_transfer(self, op: RunScheduledTransfer) -> OperationResult:
        stamp = self._stamp()

        async def _apply(txn: StoreTransaction) -> OperationResult:
            data = await txn.load(SCHEDULED_TRANSFERS, op.schedule_id)
            if data is None:
                raise ScheduleNotFound(op.schedule_id)
            schedule = ScheduledTransfer.from_document(data)
            if op.due_on is not None:
                if schedule.next_run != op.due_on:
                    raise ScheduleNotDue(schedule.id, schedule.next_run.isoformat())
            elif not schedule.is_due(stamp.today):
                raise ScheduleNotDue(schedule.id, schedule.next_run.isoformat())

            payer, payee = await self._load_transfer_parties(
                txn, schedule.payer_id, payee_username=schedule.payee_username
            )
            result = self._apply_transfer(
                txn, payer, payee, schedule.amount, stamp,
                note=schedule.note or SCHEDULED_CATEGORY, category=SCHEDULED_CATEGORY,
                schedule_id=schedule.id
            )

            # Advance from the previous scheduled date, never from today
            next_run = advance_next_run(schedule.frequency, schedule.next_run)
            txn.update(SCHEDULED_TRANSFERS, schedule.id, {"next_run": next_run.isoformat()})

            result.operation = "RunScheduledTransfer"
            result.details.update({"schedule_id": schedule.id, "next_run": next_run.isoformat()})
            return result

        return await self.storage.run_atomic(_apply)

    async def _approve_request(self, op: ApproveRequest) -> OperationResult:
        stamp = self._stamp()

        async def _apply(txn: StoreTransaction) -> OperationResult:
            data = await txn.load(REQUESTS, op.request_id)
            request = check_respondable(
                MoneyRequest.from_document(data) if data else None, op.request_id, op.approver_id
            )

            payer, payee = await self._load_transfer_parties(
                txn, request.target_id, payee_id=request.requester_id
            )
            result = self._apply_transfer(
                txn, payer, payee, request.amount, stamp,
                note=request.reason or "Request approval", category=REQUEST_CATEGORY,
                request_id=request.id
            )
            txn.update(REQUESTS, request.id, {
                "status": RequestStatus.APPROVED.value,
                "responded_at": SERVER_TIMESTAMP,
            })

            result.operation = "ApproveRequest"
            result.details.update({"request_id": request.id})
            return result

        return await self.storage.run_atomic(_apply)

    # Post-commit collaborators

    _AUDITED = {
        Withdraw: AuditEventType.WITHDRAWAL,
        Deposit: AuditEventType.DEPOSIT,
        Transfer: AuditEventType.TRANSFER,
        BillPayment: AuditEventType.BILL_PAY,
        FundGoal: AuditEventType.GOAL_FUND,
        ApplyInterest: AuditEventType.INTEREST_POSTED,
        ClaimBirthdayGift: AuditEventType.BIRTHDAY_GIFT,
        RunScheduledTransfer: AuditEventType.SCHEDULED_TRANSFER_RUN,
        ApproveRequest: AuditEventType.REQUEST_APPROVED,
    }

    _EVALUATES_ACHIEVEMENTS = (Deposit, Transfer, FundGoal, RunScheduledTransfer, ApproveRequest)

    async def _after_commit(self, op: Operation, result: OperationResult) -> None:
        if self.audit_trail and self.settings.enable_audit_logging:
            metadata = {
                "amount": result.amount.amount if result.amount else None,
                "fee": result.fee.amount if result.fee else None,
                "entry_id": result.entry_id,
            }
            if result.counterparty_id:
                metadata["to"] = result.details.get("payee_username")
            metadata.update({k: v for k, v in result.details.items() if k != "payee_username"})
            try:
                await self.audit_trail.log_event(
                    event_type=self._AUDITED[type(op)],
                    entity_type="account",
                    entity_id=result.account_id,
                    metadata=metadata,
                    actor_id=getattr(op, "approver_id", None) or result.account_id
                )
            except Exception as e:
                log_action(self.logger, "error", f"Audit write failed: {e}",
                           account_id=result.account_id, action=type(op).__name__)

        if self.achievements and self.settings.enable_achievements \
                and isinstance(op, self._EVALUATES_ACHIEVEMENTS):
            try:
                await self.achievements.evaluate(result.account_id, self._clock().date())
            except Exception as e:
                log_action(self.logger, "error", f"Achievement evaluation failed: {e}",
                           account_id=result.account_id, action=type(op).__name__)
