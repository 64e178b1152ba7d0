"""
Interest Engine Module

Admin batch job that applies tier interest to every account. Each account
gets its own independent ``ApplyInterest`` operation, computed from the
balance read inside that operation's transaction, so a concurrent deposit
or withdrawal is never overwritten. Runs concurrently and collects
per-account failures instead of stopping the batch.
"""

import asyncio
from decimal import Decimal
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .accounts import AccountManager
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .engine import LedgerEngine
from .errors import LedgerError
from .logging_config import get_logger, log_action
from .operations import OperationResult


@dataclass
class InterestRunSummary:
    """Result of one interest batch"""
    credited: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)
    total_interest: Decimal = Decimal("0.00")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credited": list(self.credited),
            "skipped": list(self.skipped),
            "failures": list(self.failures),
            "total_interest": str(self.total_interest),
        }


class InterestEngine:
    """
    Applies interest to all accounts through the ledger engine
    """

    def __init__(
        self,
        engine: LedgerEngine,
        accounts: AccountManager,
        audit_trail: Optional[AuditTrail] = None,
        settings: Optional[LedgerConfig] = None
    ):
        self.engine = engine
        self.accounts = accounts
        self.audit_trail = audit_trail
        self.settings = settings or get_config()
        self.logger = get_logger("bank_ledger.interest")

    async def apply_to_all(self, admin_id: Optional[str] = None) -> InterestRunSummary:
        """
        Apply interest to every account

        Args:
            admin_id: Admin who started the run, recorded in the audit trail

        Returns:
            InterestRunSummary with credited, skipped and failed account ids
        """
        accounts = await self.accounts.list_accounts()
        outcomes = await asyncio.gather(
            *(self.engine.apply_interest(account.id) for account in accounts),
            return_exceptions=True
        )

        summary = InterestRunSummary()
        for account, outcome in zip(accounts, outcomes):
            if isinstance(outcome, OperationResult):
                if outcome.skipped:
                    summary.skipped.append(account.id)
                else:
                    summary.credited.append(account.id)
                    summary.total_interest += outcome.amount.amount
            elif isinstance(outcome, LedgerError):
                summary.failures.append({"account_id": account.id, "code": outcome.code,
                                         "message": outcome.message})
            elif isinstance(outcome, Exception):
                # Log error but continue processing other accounts
                summary.failures.append({"account_id": account.id, "code": "INTERNAL_ERROR",
                                         "message": str(outcome)})
                self.logger.error(f"Interest for account {account.id} failed unexpectedly",
                                  exc_info=outcome)
            else:
                raise outcome

        log_action(self.logger, "info", "Interest run finished", action="apply_interest_all",
                   resource="interest",
                   extra={"credited": len(summary.credited), "skipped": len(summary.skipped),
                          "failed": len(summary.failures), "total": str(summary.total_interest)})

        if self.audit_trail and self.settings.enable_audit_logging:
            try:
                await self.audit_trail.log_event(
                    event_type=AuditEventType.INTEREST_RUN,
                    entity_type="system",
                    entity_id="interest",
                    metadata=summary.to_dict(),
                    actor_id=admin_id
                )
            except Exception as e:
                log_action(self.logger, "error", f"Audit write failed: {e}", action="apply_interest_all")

        return summary
