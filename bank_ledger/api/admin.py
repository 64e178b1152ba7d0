"""
Admin endpoints (interest runs, account overrides, ledger history, reporting)
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from .deps import BankingSystem, get_banking_system, http_error
from .schemas import AdminOverrideRequest, InterestRunRequest, account_to_dict, entries_to_list
from ..ledger import EntryType


router = APIRouter()


@router.post("/interest/run")
async def run_interest(
    request: InterestRunRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Apply tier interest to every account"""
    try:
        summary = await system.interest_engine.apply_to_all(admin_id=request.admin_id)
        return summary.to_dict()
    except Exception as e:
        raise http_error(e)


@router.put("/accounts/{account_id}")
async def override_account(
    account_id: str,
    request: AdminOverrideRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Overwrite name, balance or tier; audited with before and after values"""
    try:
        account = await system.account_manager.admin_override(
            account_id,
            admin_id=request.admin_id,
            first_name=request.first_name,
            last_name=request.last_name,
            balance=request.balance,
            tier=request.tier
        )
        return account_to_dict(account)
    except Exception as e:
        raise http_error(e)


@router.get("/summary")
async def system_summary(system: BankingSystem = Depends(get_banking_system)):
    summary = await system.admin_summary()
    return summary.to_dict()


@router.get("/transactions")
async def transaction_history(
    entry_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: Optional[int] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    """Ledger entries across all accounts, filtered by type and date range"""
    try:
        entries = await system.ledger.query(
            entry_type=EntryType(entry_type.upper()) if entry_type else None,
            start_date=start_date,
            end_date=end_date,
            limit=limit
        )
        return {"entries": entries_to_list(entries)}
    except Exception as e:
        raise http_error(e)


@router.post("/scheduled/sweep")
async def sweep_scheduled(system: BankingSystem = Depends(get_banking_system)):
    """Run due schedules for every payer when the global sweep is enabled"""
    try:
        report = await system.scheduler.sweep_all(system.today())
        return report.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("/audit/verify")
async def verify_audit_trail(system: BankingSystem = Depends(get_banking_system)):
    return await system.audit_trail.verify_integrity()
