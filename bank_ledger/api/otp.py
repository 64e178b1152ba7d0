"""
One-time code challenges for high-value operations
"""

from fastapi import APIRouter, Depends

from .deps import BankingSystem, get_banking_system, http_error
from .schemas import OtpChallengeRequest


router = APIRouter()


@router.post("/challenges")
async def issue_challenge(
    request: OtpChallengeRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """
    Issue a challenge for an account and amount.

    Delivery channels are not wired up, so the code is returned to the caller.
    """
    try:
        await system.account_manager.require_account(request.account_id)
        challenge = system.issue_otp_challenge(request.account_id, request.amount)
        return {
            **challenge.to_dict(include_code=True),
            "required": challenge.amount > system.otp_gate.threshold,
        }
    except Exception as e:
        raise http_error(e)


@router.delete("/challenges/{challenge_id}")
async def cancel_challenge(challenge_id: str, system: BankingSystem = Depends(get_banking_system)):
    return {"challenge_id": challenge_id, "cancelled": system.otp_gate.cancel(challenge_id)}
