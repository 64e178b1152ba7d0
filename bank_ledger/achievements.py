"""
Achievements Module

Milestones unlocked by account activity. Evaluation runs after deposits,
transfers and goal funding have committed; each achievement is unlocked at
most once per account.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Set

from .store import DocumentStore
from .accounts import AccountManager
from .goals import GoalManager
from .ledger import EntryType, TransactionLedger
from .logging_config import get_logger, log_action


ACHIEVEMENTS = "achievements"


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    title: str
    description: str


ACHIEVEMENT_DEFINITIONS: List[AchievementDefinition] = [
    AchievementDefinition("first_deposit", "First Deposit", "Complete your first deposit"),
    AchievementDefinition("deposit_5", "Deposit Enthusiast", "Make 5 deposits"),
    AchievementDefinition("transfer_5", "Helpful Sender", "Send 5 transfers"),
    AchievementDefinition("balance_10k", "5-Figure Club", "Reach a 10,000 balance"),
    AchievementDefinition("balance_50k", "Gold Saver", "Reach a 50,000 balance"),
    AchievementDefinition("goal_complete", "Goal Crusher", "Complete a savings goal"),
]


class AchievementTracker:
    """Evaluates and records unlocked achievements"""

    def __init__(self, storage: DocumentStore, accounts: AccountManager,
                 ledger: TransactionLedger, goals: GoalManager):
        self.storage = storage
        self.accounts = accounts
        self.ledger = ledger
        self.goals = goals
        self.logger = get_logger("bank_ledger.achievements")

    async def unlocked(self, account_id: str) -> Set[str]:
        return {d["achievement_id"] for d in await self.storage.find(ACHIEVEMENTS, {"account_id": account_id})}

    async def evaluate(self, account_id: str, today: Optional[date] = None) -> List[str]:
        """
        Unlock every achievement the account now qualifies for.

        Returns:
            Ids of the achievements unlocked by this call
        """
        account = await self.accounts.get_account(account_id)
        if account is None:
            return []

        deposits = len(await self.ledger.entries_of_type(account_id, EntryType.DEPOSIT))
        transfers = len(await self.ledger.entries_of_type(account_id, EntryType.TRANSFER))
        balance = account.balance.amount
        already = await self.unlocked(account_id)

        earned: Dict[str, bool] = {
            "first_deposit": deposits >= 1,
            "deposit_5": deposits >= 5,
            "transfer_5": transfers >= 5,
            "balance_10k": balance >= Decimal("10000"),
            "balance_50k": balance >= Decimal("50000"),
            "goal_complete": await self.goals.any_complete(account_id),
        }

        new_ids = [d.id for d in ACHIEVEMENT_DEFINITIONS if earned[d.id] and d.id not in already]
        for achievement_id in new_ids:
            await self.storage.add(ACHIEVEMENTS, {
                "account_id": account_id,
                "username": account.username,
                "achievement_id": achievement_id,
                "date": (today or date.today()).isoformat(),
            })
            log_action(self.logger, "info", f"Achievement {achievement_id} unlocked",
                       account_id=account_id, action="unlock_achievement", resource="achievement")
        return new_ids
