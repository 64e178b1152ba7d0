"""
Money request endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import BankingSystem, get_banking_system, http_error
from .schemas import SendMoneyRequest, RespondToRequest, request_to_dict


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_request(
    request: SendMoneyRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        money_request = await system.request_manager.send_request(
            requester_id=request.requester_id,
            target_username=request.target_username,
            amount=request.amount,
            reason=request.reason
        )
        return request_to_dict(money_request)
    except Exception as e:
        raise http_error(e)


@router.get("/incoming/{account_id}")
async def incoming_requests(account_id: str, system: BankingSystem = Depends(get_banking_system)):
    """Pending requests addressed to the account"""
    try:
        await system.account_manager.require_account(account_id)
        requests = await system.request_manager.incoming_pending(account_id)
        return {"requests": [request_to_dict(r) for r in requests]}
    except Exception as e:
        raise http_error(e)


@router.get("/outgoing/{account_id}")
async def outgoing_requests(account_id: str, system: BankingSystem = Depends(get_banking_system)):
    try:
        await system.account_manager.require_account(account_id)
        requests = await system.request_manager.outgoing(account_id)
        return {"requests": [request_to_dict(r) for r in requests]}
    except Exception as e:
        raise http_error(e)


@router.post("/{request_id}/approve")
async def approve_request(
    request_id: str,
    request: RespondToRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Pay a pending request; the approver is the payer"""
    try:
        result = await system.request_manager.approve(request_id, request.approver_id)
        return result.to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{request_id}/decline")
async def decline_request(
    request_id: str,
    request: RespondToRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        money_request = await system.request_manager.decline(request_id, request.approver_id)
        return request_to_dict(money_request)
    except Exception as e:
        raise http_error(e)
