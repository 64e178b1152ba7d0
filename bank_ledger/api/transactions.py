"""
Transaction endpoints
"""

from fastapi import APIRouter, Depends

from .deps import BankingSystem, get_banking_system, http_error
from .schemas import DepositRequest, WithdrawRequest, TransferRequest, BillPaymentRequest


router = APIRouter()


@router.post("/deposit")
async def deposit(
    request: DepositRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a deposit"""
    try:
        result = await system.submit_deposit(
            account_id=request.account_id,
            amount=request.amount,
            note=request.note,
            category=request.category
        )
        return result.to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/withdraw")
async def withdraw(
    request: WithdrawRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a withdrawal; the withdrawal tax is debited on top of the amount"""
    try:
        result = await system.submit_withdraw(
            account_id=request.account_id,
            amount=request.amount,
            note=request.note,
            category=request.category,
            challenge_id=request.challenge_id,
            otp_code=request.otp_code
        )
        return result.to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/transfer")
async def transfer(
    request: TransferRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Send money to another account by username"""
    try:
        result = await system.submit_transfer(
            account_id=request.account_id,
            payee_username=request.payee_username,
            amount=request.amount,
            note=request.note,
            category=request.category,
            challenge_id=request.challenge_id,
            otp_code=request.otp_code
        )
        return result.to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/bill-payment")
async def bill_payment(
    request: BillPaymentRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        result = await system.submit_bill_payment(
            account_id=request.account_id,
            amount=request.amount,
            biller_id=request.biller_id,
            biller_account_number=request.biller_account_number,
            note=request.note,
            challenge_id=request.challenge_id,
            otp_code=request.otp_code
        )
        return result.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("/billers")
async def list_billers(system: BankingSystem = Depends(get_banking_system)):
    return {
        "billers": [
            {"biller_id": biller.id, "name": biller.name}
            for biller in system.billers.list_billers()
        ]
    }


@router.get("/{entry_id}")
async def get_entry(entry_id: str, system: BankingSystem = Depends(get_banking_system)):
    entry = await system.ledger.get_entry(entry_id)
    if entry is None:
        raise http_error(LookupError(f"Transaction {entry_id} not found"))
    data = entry.to_document()
    data["id"] = entry.id
    return data
