"""
Pydantic schemas for API requests, plus serializers for responses
"""

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..accounts import Account
from ..ledger import LedgerEntry
from ..goals import SavingsGoal
from ..scheduler import ScheduledTransfer
from ..requests import MoneyRequest
from ..notifications import Notification


AMOUNT_DESCRIPTION = "Decimal amount as string"


# Account schemas
class CreateAccountRequest(BaseModel):
    username: str
    first_name: str
    last_name: str
    tier: Optional[str] = None
    birthday: Optional[date] = None


class AdminOverrideRequest(BaseModel):
    admin_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    balance: Optional[str] = Field(None, description=AMOUNT_DESCRIPTION)
    tier: Optional[str] = None


# Transaction schemas
class DepositRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description=AMOUNT_DESCRIPTION)
    note: str = ""
    category: str = ""


class OtpFields(BaseModel):
    challenge_id: Optional[str] = None
    otp_code: Optional[str] = None


class WithdrawRequest(OtpFields):
    account_id: str
    amount: str = Field(..., description=AMOUNT_DESCRIPTION)
    note: str = ""
    category: str = ""


class TransferRequest(OtpFields):
    account_id: str
    payee_username: str
    amount: str = Field(..., description=AMOUNT_DESCRIPTION)
    note: str = ""
    category: str = ""


class BillPaymentRequest(OtpFields):
    account_id: str
    amount: str = Field(..., description=AMOUNT_DESCRIPTION)
    biller_id: str
    biller_account_number: str
    note: str = ""


class OtpChallengeRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description=AMOUNT_DESCRIPTION)


# Goal schemas
class CreateGoalRequest(BaseModel):
    name: str
    target: str = Field(..., description=AMOUNT_DESCRIPTION)
    target_date: Optional[date] = None


class FundGoalRequest(BaseModel):
    amount: str = Field(..., description=AMOUNT_DESCRIPTION)


# Scheduled transfer schemas
class CreateScheduleRequest(BaseModel):
    payer_id: str
    payee_username: str
    amount: str = Field(..., description=AMOUNT_DESCRIPTION)
    frequency: str = Field(..., description="daily, weekly or monthly")
    start_date: date
    note: str = ""


# Money request schemas
class SendMoneyRequest(BaseModel):
    requester_id: str
    target_username: str
    amount: str = Field(..., description=AMOUNT_DESCRIPTION)
    reason: str = ""


class RespondToRequest(BaseModel):
    approver_id: str


# Admin schemas
class InterestRunRequest(BaseModel):
    admin_id: Optional[str] = None


# Response serializers

def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "account_id": account.id,
        "username": account.username,
        "first_name": account.first_name,
        "last_name": account.last_name,
        "full_name": account.full_name,
        "tier": account.tier,
        "balance": account.balance.to_storage(),
        "currency": account.balance.currency.code,
        "birthday": account.birthday.isoformat() if account.birthday else None,
        "limits_daily": account.limits_daily.to_dict() if account.limits_daily else None,
        "limits_monthly": account.limits_monthly.to_dict() if account.limits_monthly else None,
        "last_transaction": account.last_transaction,
        "created_at": account.created_at,
    }


def entry_to_dict(entry: LedgerEntry) -> Dict[str, Any]:
    data = entry.to_document()
    data["id"] = entry.id
    return data


def entries_to_list(entries: List[LedgerEntry]) -> List[Dict[str, Any]]:
    return [entry_to_dict(entry) for entry in entries]


def goal_to_dict(goal: SavingsGoal) -> Dict[str, Any]:
    return {
        "goal_id": goal.id,
        "name": goal.name,
        "target": goal.target.to_storage(),
        "saved": goal.saved.to_storage(),
        "remaining": goal.remaining.to_storage(),
        "progress_percent": goal.progress_percent,
        "complete": goal.complete,
        "target_date": goal.target_date,
        "created": goal.created,
    }


def schedule_to_dict(schedule: ScheduledTransfer) -> Dict[str, Any]:
    return {
        "schedule_id": schedule.id,
        "payer_id": schedule.payer_id,
        "payee_username": schedule.payee_username,
        "amount": schedule.amount.to_storage(),
        "frequency": schedule.frequency.value,
        "next_run": schedule.next_run.isoformat(),
        "note": schedule.note,
    }


def request_to_dict(request: MoneyRequest) -> Dict[str, Any]:
    return {
        "request_id": request.id,
        "requester_id": request.requester_id,
        "requester_username": request.requester_username,
        "target_id": request.target_id,
        "target_username": request.target_username,
        "amount": request.amount.to_storage(),
        "reason": request.reason,
        "status": request.status.value,
        "date": request.date,
    }


def notification_to_dict(notification: Notification) -> Dict[str, Any]:
    return {
        "notification_id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "meta": notification.meta,
        "read": notification.read,
        "created_at": notification.created_at,
    }
