"""
Scheduled Transfers Module

Recurring transfer definitions and the due-item runner. Each due schedule
is executed through the ledger engine as one ``RunScheduledTransfer``
operation, which moves the money and advances ``next_run`` atomically; a
failed run leaves ``next_run`` where it was so the item stays due.

Schedules run when their payer signs in (``run_due_for_account``). A global
sweep over every payer exists but is off unless
``scheduler_global_sweep_enabled`` is set.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .money import Money, money_from_storage, parse_amount
from .store import DocumentStore, SERVER_TIMESTAMP
from .accounts import AccountManager
from .config import LedgerConfig, get_config
from .errors import LedgerError, RecipientNotFound, ScheduleNotDue, ScheduleNotFound, SelfTransfer
from .logging_config import get_logger, log_action, log_rejection

if TYPE_CHECKING:
    from .engine import LedgerEngine


SCHEDULED_TRANSFERS = "scheduled_transfers"
SCHEDULED_CATEGORY = "Scheduled"


class Frequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def advance_next_run(frequency: Frequency, previous: date) -> date:
    """
    Next run date, one step after the previous scheduled date.

    Monthly steps keep the day of month, clamped to the last day of shorter
    months (Jan 31 -> Feb 28/29).
    """
    if frequency == Frequency.DAILY:
        return previous + timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        return previous + timedelta(days=7)

    year = previous.year + (1 if previous.month == 12 else 0)
    month = 1 if previous.month == 12 else previous.month + 1
    day = min(previous.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass
class ScheduledTransfer:
    id: str
    payer_id: str
    payer_username: str
    payee_username: str
    amount: Money
    frequency: Frequency
    next_run: date
    note: str = ""
    created_at: Optional[str] = None

    def is_due(self, today: date) -> bool:
        return self.next_run <= today

    def to_document(self) -> Dict[str, Any]:
        return {
            "payer_id": self.payer_id,
            "payer_username": self.payer_username,
            "payee_username": self.payee_username,
            "amount": self.amount.to_storage(),
            "frequency": self.frequency.value,
            "next_run": self.next_run.isoformat(),
            "note": self.note,
            "created_at": self.created_at or SERVER_TIMESTAMP,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'ScheduledTransfer':
        return cls(
            id=data["id"],
            payer_id=data["payer_id"],
            payer_username=data.get("payer_username", ""),
            payee_username=data["payee_username"],
            amount=money_from_storage(data["amount"]),
            frequency=Frequency(data["frequency"]),
            next_run=date.fromisoformat(data["next_run"]),
            note=data.get("note", ""),
            created_at=data.get("created_at"),
        )


@dataclass
class ScheduleRunReport:
    """Outcome of running the due schedules of one or more payers"""
    executed: List[str] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.executed) + len(self.failures)

    def merge(self, other: 'ScheduleRunReport') -> None:
        self.executed.extend(other.executed)
        self.failures.extend(other.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {"executed": list(self.executed), "failures": list(self.failures)}


class ScheduledTransferManager:
    """
    Manages scheduled transfer definitions and runs due items
    """

    def __init__(
        self,
        storage: DocumentStore,
        engine: 'LedgerEngine',
        accounts: AccountManager,
        settings: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.engine = engine
        self.accounts = accounts
        self.settings = settings or get_config()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("bank_ledger.scheduler")

    async def create_schedule(
        self,
        payer_id: str,
        payee_username: str,
        amount,
        frequency: str,
        start_date: date,
        note: str = ""
    ) -> ScheduledTransfer:
        """
        Create a recurring transfer whose first run is ``start_date``

        Raises:
            InvalidAmount: If the amount is not a positive number
            RecipientNotFound: If no account has the payee username
            SelfTransfer: If the payee is the payer
        """
        money = parse_amount(amount)
        try:
            freq = Frequency(frequency)
        except ValueError:
            raise ValueError(f"Unsupported frequency '{frequency}'")
        if start_date is None:
            raise ValueError("Start date is required")

        payer = await self.accounts.require_account(payer_id)
        payee_username = (payee_username or "").strip()
        if payee_username == payer.username:
            raise SelfTransfer()
        if await self.accounts.get_account_by_username(payee_username) is None:
            raise RecipientNotFound(payee_username)

        schedule = ScheduledTransfer(
            id="",
            payer_id=payer.id,
            payer_username=payer.username,
            payee_username=payee_username,
            amount=money,
            frequency=freq,
            next_run=start_date,
            note=note.strip(),
        )
        schedule.id = await self.storage.add(SCHEDULED_TRANSFERS, schedule.to_document())

        log_action(self.logger, "info", f"Scheduled transfer to {payee_username} created",
                   account_id=payer.id, action="create_schedule", resource="scheduled_transfer",
                   extra={"schedule_id": schedule.id, "frequency": freq.value,
                          "amount": money.to_storage()})
        return await self.get_schedule(schedule.id)

    async def get_schedule(self, schedule_id: str) -> ScheduledTransfer:
        data = await self.storage.load(SCHEDULED_TRANSFERS, schedule_id)
        if not data:
            raise ScheduleNotFound(schedule_id)
        return ScheduledTransfer.from_document(data)

    async def delete_schedule(self, schedule_id: str, payer_id: str) -> None:
        schedule = await self.get_schedule(schedule_id)
        if schedule.payer_id != payer_id:
            raise ScheduleNotFound(schedule_id)
        await self.storage.delete(SCHEDULED_TRANSFERS, schedule_id)
        log_action(self.logger, "info", "Scheduled transfer deleted",
                   account_id=payer_id, action="delete_schedule", resource="scheduled_transfer",
                   extra={"schedule_id": schedule_id})

    async def list_for_payer(self, payer_id: str) -> List[ScheduledTransfer]:
        schedules = [ScheduledTransfer.from_document(d)
                     for d in await self.storage.find(SCHEDULED_TRANSFERS, {"payer_id": payer_id})]
        schedules.sort(key=lambda s: s.next_run)
        return schedules

    async def run_due_for_account(self, account_id: str, today: Optional[date] = None) -> ScheduleRunReport:
        """
        Run every schedule of the payer with ``next_run <= today`` once.

        Failures are collected in the report and never stop the batch.
        """
        today = today or self._clock().date()
        report = ScheduleRunReport()

        for schedule in await self.list_for_payer(account_id):
            if not schedule.is_due(today):
                continue
            try:
                await self.engine.run_scheduled_transfer(schedule.id, due_on=schedule.next_run)
                report.executed.append(schedule.id)
            except ScheduleNotDue:
                # A concurrent run already advanced it
                log_action(self.logger, "info", "Scheduled transfer already ran",
                           account_id=account_id, action="run_scheduled_transfer",
                           resource="scheduled_transfer", extra={"schedule_id": schedule.id})
            except LedgerError as e:
                report.failures.append({"schedule_id": schedule.id, "code": e.code, "message": e.message})
                log_rejection(self.logger, "run_scheduled_transfer", e, account_id=account_id,
                              resource="scheduled_transfer", schedule_id=schedule.id)
            except Exception as e:
                report.failures.append({"schedule_id": schedule.id, "code": "INTERNAL_ERROR", "message": str(e)})
                self.logger.exception(f"Scheduled run {schedule.id} raised unexpectedly")

        return report

    async def sweep_all(self, today: Optional[date] = None) -> ScheduleRunReport:
        """
        Run due schedules for every payer.

        Raises:
            RuntimeError: If the global sweep is not enabled in configuration
        """
        if not self.settings.scheduler_global_sweep_enabled:
            raise RuntimeError("Global scheduled-transfer sweep is disabled")

        today = today or self._clock().date()
        payer_ids = []
        for data in await self.storage.load_all(SCHEDULED_TRANSFERS):
            if data["payer_id"] not in payer_ids:
                payer_ids.append(data["payer_id"])

        report = ScheduleRunReport()
        for payer_id in payer_ids:
            report.merge(await self.run_due_for_account(payer_id, today))

        log_action(self.logger, "info", "Global scheduled-transfer sweep finished",
                   action="sweep_all", resource="scheduled_transfer",
                   extra={"executed": len(report.executed), "failed": len(report.failures)})
        return report
