"""
Scheduled transfer endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import BankingSystem, get_banking_system, http_error
from .schemas import CreateScheduleRequest, schedule_to_dict


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_schedule(
    request: CreateScheduleRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a recurring transfer; the first run happens on or after the start date"""
    try:
        schedule = await system.scheduler.create_schedule(
            payer_id=request.payer_id,
            payee_username=request.payee_username,
            amount=request.amount,
            frequency=request.frequency,
            start_date=request.start_date,
            note=request.note
        )
        return schedule_to_dict(schedule)
    except Exception as e:
        raise http_error(e)


@router.get("/payer/{payer_id}")
async def list_schedules(payer_id: str, system: BankingSystem = Depends(get_banking_system)):
    try:
        await system.account_manager.require_account(payer_id)
        schedules = await system.scheduler.list_for_payer(payer_id)
        return {"schedules": [schedule_to_dict(s) for s in schedules]}
    except Exception as e:
        raise http_error(e)


@router.delete("/{schedule_id}")
async def delete_schedule(
    schedule_id: str,
    payer_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        await system.scheduler.delete_schedule(schedule_id, payer_id)
        return {"schedule_id": schedule_id, "deleted": True}
    except Exception as e:
        raise http_error(e)


@router.post("/payer/{payer_id}/run-due")
async def run_due(payer_id: str, system: BankingSystem = Depends(get_banking_system)):
    """Run the payer's due schedules, the same work sign-in does"""
    try:
        await system.account_manager.require_account(payer_id)
        report = await system.scheduler.run_due_for_account(payer_id, system.today())
        return report.to_dict()
    except Exception as e:
        raise http_error(e)
