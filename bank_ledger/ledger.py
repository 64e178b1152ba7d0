"""
Transaction Ledger Module

Immutable ledger entries (one per successful operation), the denormalized
``last_transaction`` snapshot kept on each account, and read-side queries:
per-account history, the cross-account admin query by type and date, and
the admin system summary.
"""

from datetime import date
from decimal import Decimal
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .money import Money, money_from_storage
from .store import DocumentStore, SERVER_TIMESTAMP


TRANSACTIONS = "transactions"


class EntryType(Enum):
    """Ledger entry types"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    BILL_PAYMENT = "BILL_PAYMENT"
    GOAL_FUND = "GOAL_FUND"
    BDAY_GIFT = "BDAY_GIFT"
    INTEREST = "INTEREST"


# Snapshot kinds shown on the account; the payee of a transfer sees TRANSFER-IN
TRANSFER_IN = "TRANSFER-IN"
BILL_PAYMENT_DISPLAY = "BILL PAYMENT"


@dataclass
class LedgerEntry:
    """
    Immutable record of one successful balance mutation
    """
    type: EntryType
    account_id: str
    username: str
    amount: Money
    date: str
    time: str
    balance_after: Money
    fee: Optional[Money] = None
    note: str = ""
    category: str = ""
    counterparty_id: Optional[str] = None
    counterparty_username: Optional[str] = None
    counterparty_balance_after: Optional[Money] = None
    biller_id: Optional[str] = None
    biller_name: Optional[str] = None
    biller_account_number: Optional[str] = None
    goal_id: Optional[str] = None
    schedule_id: Optional[str] = None
    request_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Ledger entry amount must be positive")
        if self.fee is None:
            self.fee = Money.zero(self.amount.currency)
        if self.fee.is_negative():
            raise ValueError("Ledger entry fee cannot be negative")

    def to_document(self) -> Dict[str, Any]:
        document = {
            "type": self.type.value,
            "account_id": self.account_id,
            "username": self.username,
            "amount": self.amount.to_storage(),
            "fee": self.fee.to_storage(),
            "date": self.date,
            "time": self.time,
            "note": self.note,
            "category": self.category,
            "balance_after": self.balance_after.to_storage(),
            "counterparty_id": self.counterparty_id,
            "counterparty_username": self.counterparty_username,
            "counterparty_balance_after": (self.counterparty_balance_after.to_storage()
                                           if self.counterparty_balance_after else None),
            "created_at": self.created_at or SERVER_TIMESTAMP,
        }
        optional = {
            "biller_id": self.biller_id,
            "biller_name": self.biller_name,
            "biller_account_number": self.biller_account_number,
            "goal_id": self.goal_id,
            "schedule_id": self.schedule_id,
            "request_id": self.request_id,
        }
        document.update({k: v for k, v in optional.items() if v is not None})
        return document

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'LedgerEntry':
        counterparty_after = data.get("counterparty_balance_after")
        return cls(
            id=data.get("id"),
            type=EntryType(data["type"]),
            account_id=data["account_id"],
            username=data.get("username", ""),
            amount=money_from_storage(data["amount"]),
            fee=money_from_storage(data.get("fee")),
            date=data.get("date", ""),
            time=data.get("time", ""),
            note=data.get("note", ""),
            category=data.get("category", ""),
            balance_after=money_from_storage(data.get("balance_after")),
            counterparty_id=data.get("counterparty_id"),
            counterparty_username=data.get("counterparty_username"),
            counterparty_balance_after=(money_from_storage(counterparty_after)
                                        if counterparty_after is not None else None),
            biller_id=data.get("biller_id"),
            biller_name=data.get("biller_name"),
            biller_account_number=data.get("biller_account_number"),
            goal_id=data.get("goal_id"),
            schedule_id=data.get("schedule_id"),
            request_id=data.get("request_id"),
            created_at=data.get("created_at"),
        )


def last_transaction_snapshot(entry: LedgerEntry, entry_id: str, payee_side: bool = False) -> Dict[str, Any]:
    """
    Denormalized copy of an entry for the account's ``last_transaction`` field.

    The payee side of a transfer is shown as TRANSFER-IN with the payer as
    counterparty and the payee's post-balance.
    """
    if payee_side:
        kind = TRANSFER_IN
        counterparty = entry.username
        balance_after = entry.counterparty_balance_after
    else:
        if entry.type == EntryType.BILL_PAYMENT:
            kind = BILL_PAYMENT_DISPLAY
            counterparty = entry.biller_name
        else:
            kind = entry.type.value
            counterparty = entry.counterparty_username
        balance_after = entry.balance_after

    return {
        "kind": kind,
        "amount": entry.amount.to_storage(),
        "fee": entry.fee.to_storage(),
        "date": entry.date,
        "time": entry.time,
        "note": entry.note,
        "category": entry.biller_name if entry.type == EntryType.BILL_PAYMENT else entry.category,
        "counterparty": counterparty,
        "balance_after": balance_after.to_storage() if balance_after else None,
        "entry_id": entry_id,
    }


@dataclass
class SystemSummary:
    """Admin overview of the whole system"""
    user_count: int
    total_balance: Decimal
    totals_by_type: Dict[str, Decimal] = field(default_factory=dict)
    total_fees: Decimal = Decimal("0.00")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_count": self.user_count,
            "total_balance": str(self.total_balance),
            "totals_by_type": {k: str(v) for k, v in self.totals_by_type.items()},
            "total_fees": str(self.total_fees),
        }


class TransactionLedger:
    """Read access to the transactions collection"""

    def __init__(self, storage: DocumentStore):
        self.storage = storage

    async def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        data = await self.storage.load(TRANSACTIONS, entry_id)
        if data:
            return LedgerEntry.from_document(data)
        return None

    async def history_for_account(self, account_id: str, limit: Optional[int] = None) -> List[LedgerEntry]:
        """
        Entries where the account is either side, newest first

        Args:
            account_id: Account whose history to load
            limit: Maximum number of entries to return
        """
        outgoing = await self.storage.find(TRANSACTIONS, {"account_id": account_id})
        incoming = await self.storage.find(TRANSACTIONS, {"counterparty_id": account_id})

        seen = set()
        entries = []
        for data in outgoing + incoming:
            if data["id"] in seen:
                continue
            seen.add(data["id"])
            entries.append(LedgerEntry.from_document(data))

        entries.sort(key=lambda e: e.created_at or "", reverse=True)
        if limit:
            entries = entries[:limit]
        return entries

    async def entries_of_type(self, account_id: str, entry_type: EntryType) -> List[LedgerEntry]:
        """Entries initiated by the account with the given type"""
        data = await self.storage.find(TRANSACTIONS, {"account_id": account_id, "type": entry_type.value})
        return [LedgerEntry.from_document(d) for d in data]

    async def query(
        self,
        entry_type: Optional[EntryType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None
    ) -> List[LedgerEntry]:
        """
        Entries across all accounts, newest first

        Args:
            entry_type: Only entries of this type
            start_date: Earliest entry date, inclusive
            end_date: Latest entry date, inclusive
            limit: Maximum number of entries to return
        """
        if entry_type is not None:
            documents = await self.storage.find(TRANSACTIONS, {"type": entry_type.value})
        else:
            documents = await self.storage.load_all(TRANSACTIONS)

        entries = [LedgerEntry.from_document(d) for d in documents]
        if start_date:
            entries = [e for e in entries if e.date >= start_date.isoformat()]
        if end_date:
            entries = [e for e in entries if e.date <= end_date.isoformat()]

        entries.sort(key=lambda e: e.created_at or "", reverse=True)
        if limit:
            entries = entries[:limit]
        return entries

    async def all_entries(self) -> List[LedgerEntry]:
        return [LedgerEntry.from_document(d) for d in await self.storage.load_all(TRANSACTIONS)]

    async def system_summary(self, balances: List[Money]) -> SystemSummary:
        """Totals by entry type and fees collected, plus the given account balances"""
        totals: Dict[str, Decimal] = {t.value: Decimal("0.00") for t in EntryType}
        total_fees = Decimal("0.00")

        for entry in await self.all_entries():
            totals[entry.type.value] += entry.amount.amount
            total_fees += entry.fee.amount

        return SystemSummary(
            user_count=len(balances),
            total_balance=sum((b.amount for b in balances), Decimal("0.00")),
            totals_by_type=totals,
            total_fees=total_fees,
        )
