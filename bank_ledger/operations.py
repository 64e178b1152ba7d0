"""
Ledger Operations

The closed set of operations the ledger engine executes. Each variant
validates its own payload on construction, so an operation that exists is
well-formed; rule checks that need current state happen in the engine.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional, Union

from .money import Money, parse_amount
from .errors import InvalidAmount


def _coerce_amount(instance, name: str = "amount") -> None:
    value = getattr(instance, name)
    if isinstance(value, Money):
        if not value.is_positive():
            raise InvalidAmount(value.amount)
        return
    object.__setattr__(instance, name, parse_amount(value))


def _require(value: Optional[str], label: str) -> None:
    if not value or not str(value).strip():
        raise ValueError(f"{label} is required")


@dataclass(frozen=True)
class Withdraw:
    account_id: str
    amount: Money
    note: str = ""
    category: str = ""

    def __post_init__(self):
        _require(self.account_id, "Account")
        _coerce_amount(self)


@dataclass(frozen=True)
class Deposit:
    account_id: str
    amount: Money
    note: str = ""
    category: str = ""

    def __post_init__(self):
        _require(self.account_id, "Account")
        _coerce_amount(self)


@dataclass(frozen=True)
class Transfer:
    """Transfer from an account to another account identified by username"""
    payer_id: str
    payee_username: str
    amount: Money
    note: str = ""
    category: str = ""

    def __post_init__(self):
        _require(self.payer_id, "Account")
        _require(self.payee_username, "Recipient")
        object.__setattr__(self, "payee_username", self.payee_username.strip())
        _coerce_amount(self)


@dataclass(frozen=True)
class BillPayment:
    account_id: str
    amount: Money
    biller_id: str
    biller_account_number: str
    note: str = ""

    def __post_init__(self):
        _require(self.account_id, "Account")
        _coerce_amount(self)
        object.__setattr__(self, "biller_account_number", (self.biller_account_number or "").strip())


@dataclass(frozen=True)
class FundGoal:
    account_id: str
    goal_id: str
    amount: Money

    def __post_init__(self):
        _require(self.account_id, "Account")
        _require(self.goal_id, "Goal")
        _coerce_amount(self)


@dataclass(frozen=True)
class ApplyInterest:
    account_id: str

    def __post_init__(self):
        _require(self.account_id, "Account")


@dataclass(frozen=True)
class ClaimBirthdayGift:
    account_id: str
    year_key: str

    def __post_init__(self):
        _require(self.account_id, "Account")
        _require(self.year_key, "Year")


@dataclass(frozen=True)
class RunScheduledTransfer:
    schedule_id: str
    due_on: Optional[date] = None  # next_run seen when the caller judged it due

    def __post_init__(self):
        _require(self.schedule_id, "Schedule")


@dataclass(frozen=True)
class ApproveRequest:
    request_id: str
    approver_id: str

    def __post_init__(self):
        _require(self.request_id, "Request")
        _require(self.approver_id, "Approver")


Operation = Union[
    Withdraw, Deposit, Transfer, BillPayment, FundGoal, ApplyInterest,
    ClaimBirthdayGift, RunScheduledTransfer, ApproveRequest,
]


@dataclass
class OperationResult:
    """Outcome of one committed (or skipped) engine operation"""
    operation: str
    account_id: str
    entry_id: Optional[str] = None
    amount: Optional[Money] = None
    fee: Optional[Money] = None
    balance_after: Optional[Money] = None
    counterparty_id: Optional[str] = None
    counterparty_balance_after: Optional[Money] = None
    skipped: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        def money(value: Optional[Money]) -> Optional[str]:
            return value.to_storage() if value is not None else None

        return {
            "operation": self.operation,
            "account_id": self.account_id,
            "entry_id": self.entry_id,
            "amount": money(self.amount),
            "fee": money(self.fee),
            "balance_after": money(self.balance_after),
            "counterparty_id": self.counterparty_id,
            "counterparty_balance_after": money(self.counterparty_balance_after),
            "skipped": self.skipped,
            "details": self.details,
        }
