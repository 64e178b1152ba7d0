"""
Limit Tracker

Daily and monthly usage windows. Windows roll over lazily: a stored window
whose key (ISO date, or ``YYYY-M`` month key) differs from the current period
is treated as zeroed the next time it is read. Nothing here touches storage.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional


ZERO = Decimal("0.00")


def month_key(day: date) -> str:
    """Month key as ``YYYY-M`` (month not zero padded)"""
    return f"{day.year}-{day.month}"


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    return Decimal(str(value))


@dataclass(frozen=True)
class DailyWindow:
    date: str
    withdraw_used: Decimal = ZERO
    transfer_used: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'DailyWindow':
        data = data or {}
        return cls(
            date=data.get("date", ""),
            withdraw_used=_decimal(data.get("withdraw_used")),
            transfer_used=_decimal(data.get("transfer_used")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "date": self.date,
            "withdraw_used": str(self.withdraw_used),
            "transfer_used": str(self.transfer_used),
        }


@dataclass(frozen=True)
class MonthlyWindow:
    month: str
    transfer_used: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'MonthlyWindow':
        data = data or {}
        return cls(month=data.get("month", ""), transfer_used=_decimal(data.get("transfer_used")))

    def to_dict(self) -> Dict[str, str]:
        return {"month": self.month, "transfer_used": str(self.transfer_used)}


@dataclass(frozen=True)
class LimitDecision:
    """Outcome of a limit check; ``new_used`` is only meaningful when allowed"""
    allowed: bool
    used: Decimal
    cap: Decimal
    requested: Decimal
    new_used: Decimal


def roll_daily(window: Optional[DailyWindow], today: date) -> DailyWindow:
    key = today.isoformat()
    if window is None or window.date != key:
        return DailyWindow(date=key)
    return window


def roll_monthly(window: Optional[MonthlyWindow], key: str) -> MonthlyWindow:
    if window is None or window.month != key:
        return MonthlyWindow(month=key)
    return window


def check_and_consume(used: Decimal, cap: Decimal, amount: Decimal) -> LimitDecision:
    new_used = used + amount
    return LimitDecision(
        allowed=new_used <= cap,
        used=used,
        cap=cap,
        requested=amount,
        new_used=new_used if new_used <= cap else used,
    )
