"""
Ledger Error Taxonomy

Every rule a ledger operation can violate has its own exception type with a
stable ``code`` and a user-facing message naming the violated rule. All of
them derive from ``ValueError`` so callers that only care about "the
operation was refused" can catch that.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class LedgerError(ValueError):
    """Base class for recoverable, user-facing ledger errors"""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": {k: str(v) if isinstance(v, Decimal) else v
                        for k, v in self.context.items()}
        }


# Validation errors (raised before any store call)

class InvalidAmount(LedgerError):
    code = "INVALID_AMOUNT"

    def __init__(self, value: Any = None):
        super().__init__("Enter a valid amount", {"value": str(value)})


class SelfTransfer(LedgerError):
    code = "SELF_TRANSFER"

    def __init__(self):
        super().__init__("Cannot transfer to yourself")


class UnknownBiller(LedgerError):
    code = "UNKNOWN_BILLER"

    def __init__(self, biller_id: str):
        super().__init__(f"Unknown biller '{biller_id}'", {"biller_id": biller_id})


class InvalidBillerAccount(LedgerError):
    code = "INVALID_BILLER_ACCOUNT"

    def __init__(self, biller_id: str):
        super().__init__(
            "Invalid account number format for this biller",
            {"biller_id": biller_id}
        )


class DuplicateUsername(LedgerError):
    code = "DUPLICATE_USERNAME"

    def __init__(self, username: str):
        super().__init__(f"Username '{username}' is already taken", {"username": username})


# Not-found errors

class AccountNotFound(LedgerError):
    code = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        super().__init__("Account not found", {"account_id": account_id})


class RecipientNotFound(LedgerError):
    code = "RECIPIENT_NOT_FOUND"

    def __init__(self, recipient: str):
        super().__init__("Recipient not found", {"recipient": recipient})


class GoalNotFound(LedgerError):
    code = "GOAL_NOT_FOUND"

    def __init__(self, goal_id: str):
        super().__init__("Savings goal not found", {"goal_id": goal_id})


class ScheduleNotFound(LedgerError):
    code = "SCHEDULE_NOT_FOUND"

    def __init__(self, schedule_id: str):
        super().__init__("Scheduled transfer not found", {"schedule_id": schedule_id})


class RequestNotFound(LedgerError):
    code = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        super().__init__("Money request not found", {"request_id": request_id})


# Invariant violations

class InsufficientFunds(LedgerError):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, balance: Decimal, required: Decimal):
        super().__init__(
            "Insufficient funds",
            {"balance": balance, "required": required}
        )


class DailyLimitExceeded(LedgerError):
    code = "DAILY_LIMIT_EXCEEDED"

    def __init__(self, counter: str, used: Decimal, cap: Decimal, requested: Decimal):
        super().__init__(
            f"Daily {counter} limit exceeded",
            {"counter": counter, "used": used, "cap": cap, "requested": requested}
        )


class MonthlyLimitExceeded(LedgerError):
    code = "MONTHLY_LIMIT_EXCEEDED"

    def __init__(self, counter: str, used: Decimal, cap: Decimal, requested: Decimal):
        super().__init__(
            f"Monthly {counter} limit exceeded",
            {"counter": counter, "used": used, "cap": cap, "requested": requested}
        )


class AlreadyClaimed(LedgerError):
    code = "ALREADY_CLAIMED"

    def __init__(self, year_key: str):
        super().__init__(
            f"Birthday gift for {year_key} already claimed",
            {"year_key": year_key}
        )


class ScheduleNotDue(LedgerError):
    code = "SCHEDULE_NOT_DUE"

    def __init__(self, schedule_id: str, next_run: str):
        super().__init__(
            f"Scheduled transfer is not due until {next_run}",
            {"schedule_id": schedule_id, "next_run": next_run}
        )


class RequestNotPending(LedgerError):
    code = "REQUEST_NOT_PENDING"

    def __init__(self, request_id: str, status: str):
        super().__init__(
            f"Request is already {status}",
            {"request_id": request_id, "status": status}
        )


class RequestForbidden(LedgerError):
    code = "REQUEST_FORBIDDEN"

    def __init__(self, request_id: str):
        super().__init__(
            "Only the requested account can respond to this request",
            {"request_id": request_id}
        )


# Submission gates

class OtpRequired(LedgerError):
    code = "OTP_REQUIRED"

    def __init__(self, threshold: Decimal):
        super().__init__(
            "A one-time code is required for high-value operations",
            {"threshold": threshold}
        )


class InvalidOtp(LedgerError):
    code = "INVALID_OTP"

    def __init__(self):
        super().__init__("Invalid OTP. Please check the code and try again")


class OperationInProgress(LedgerError):
    code = "OPERATION_IN_PROGRESS"

    def __init__(self, account_id: str, operation: str):
        super().__init__(
            "This operation is already being processed",
            {"account_id": account_id, "operation": operation}
        )


# Transient store errors

class TransientStoreError(LedgerError):
    code = "TRY_AGAIN"

    def __init__(self, attempts: int):
        super().__init__(
            "The operation could not be completed, please try again",
            {"attempts": attempts}
        )
