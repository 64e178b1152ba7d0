"""
Savings goal endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import BankingSystem, get_banking_system, http_error
from .schemas import CreateGoalRequest, FundGoalRequest, goal_to_dict


router = APIRouter()


@router.post("/{account_id}", status_code=status.HTTP_201_CREATED)
async def create_goal(
    account_id: str,
    request: CreateGoalRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        await system.account_manager.require_account(account_id)
        goal = await system.goal_manager.create_goal(
            account_id, request.name, request.target,
            target_date=request.target_date, today=system.today()
        )
        return goal_to_dict(goal)
    except Exception as e:
        raise http_error(e)


@router.get("/{account_id}")
async def list_goals(account_id: str, system: BankingSystem = Depends(get_banking_system)):
    try:
        await system.account_manager.require_account(account_id)
        goals = await system.goal_manager.list_goals(account_id)
        return {"goals": [goal_to_dict(goal) for goal in goals]}
    except Exception as e:
        raise http_error(e)


@router.post("/{account_id}/{goal_id}/fund")
async def fund_goal(
    account_id: str,
    goal_id: str,
    request: FundGoalRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Move money from the account balance into a goal"""
    try:
        result = await system.engine.fund_goal(account_id, goal_id, request.amount)
        goal = await system.goal_manager.get_goal(account_id, goal_id)
        return {**result.to_dict(), "goal": goal_to_dict(goal)}
    except Exception as e:
        raise http_error(e)
