"""
Account endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .deps import BankingSystem, get_banking_system, http_error
from .schemas import CreateAccountRequest, account_to_dict, entries_to_list, notification_to_dict
from ..achievements import ACHIEVEMENT_DEFINITIONS
from ..errors import AccountNotFound


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_account(
    request: CreateAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a new account with a zero balance"""
    try:
        account = await system.account_manager.create_account(
            username=request.username,
            first_name=request.first_name,
            last_name=request.last_name,
            tier=request.tier,
            birthday=request.birthday
        )
        return account_to_dict(account)
    except Exception as e:
        raise http_error(e)


@router.get("/by-username/{username}")
async def get_account_by_username(username: str, system: BankingSystem = Depends(get_banking_system)):
    account = await system.account_manager.get_account_by_username(username)
    if account is None:
        raise http_error(AccountNotFound(username))
    return account_to_dict(account)


@router.get("/{account_id}")
async def get_account(account_id: str, system: BankingSystem = Depends(get_banking_system)):
    """Get account details"""
    try:
        return account_to_dict(await system.account_manager.require_account(account_id))
    except Exception as e:
        raise http_error(e)


@router.get("/{account_id}/history")
async def get_history(
    account_id: str,
    limit: Optional[int] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    """Ledger entries where the account is payer or payee, newest first"""
    try:
        await system.account_manager.require_account(account_id)
        entries = await system.ledger.history_for_account(account_id, limit)
        return {"account_id": account_id, "entries": entries_to_list(entries)}
    except Exception as e:
        raise http_error(e)


@router.post("/{account_id}/sign-in")
async def sign_in(account_id: str, system: BankingSystem = Depends(get_banking_system)):
    """Run due scheduled transfers and report birthday gift availability"""
    try:
        return await system.on_sign_in(account_id)
    except Exception as e:
        raise http_error(e)


@router.post("/{account_id}/birthday-gift")
async def claim_birthday_gift(account_id: str, system: BankingSystem = Depends(get_banking_system)):
    try:
        result = await system.claim_birthday_gift(account_id)
        return result.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("/{account_id}/notifications")
async def get_notifications(
    account_id: str,
    unread_only: bool = False,
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        account = await system.account_manager.require_account(account_id)
        notifications = await system.notifications.for_user(account.username, unread_only)
        return {"notifications": [notification_to_dict(n) for n in notifications]}
    except Exception as e:
        raise http_error(e)


@router.post("/{account_id}/notifications/{notification_id}/read")
async def mark_notification_read(
    account_id: str,
    notification_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        account = await system.account_manager.require_account(account_id)
        marked = await system.notifications.mark_read(notification_id, account.username)
        return {"notification_id": notification_id, "read": marked}
    except Exception as e:
        raise http_error(e)


@router.get("/{account_id}/achievements")
async def get_achievements(account_id: str, system: BankingSystem = Depends(get_banking_system)):
    """All achievements with their unlocked state"""
    try:
        await system.account_manager.require_account(account_id)
        unlocked = await system.achievements.unlocked(account_id)
        return {
            "achievements": [
                {
                    "id": definition.id,
                    "title": definition.title,
                    "description": definition.description,
                    "unlocked": definition.id in unlocked,
                }
                for definition in ACHIEVEMENT_DEFINITIONS
            ]
        }
    except Exception as e:
        raise http_error(e)
