"""
Savings Goals Module

Goals live in a per-account subcollection (``users/<id>/goals``). Creating
and listing goals is plain document work; moving money into a goal is a
ledger engine operation (``FundGoal``).
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from .money import Money, money_from_storage, parse_amount
from .store import DocumentStore
from .errors import GoalNotFound
from .logging_config import get_logger, log_action


def goals_collection(account_id: str) -> str:
    return f"users/{account_id}/goals"


@dataclass
class SavingsGoal:
    id: str
    owner_id: str
    name: str
    target: Money
    saved: Money
    target_date: Optional[str] = None
    created: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.saved >= self.target

    @property
    def progress_percent(self) -> int:
        pct = (self.saved.amount / self.target.amount) * 100
        return min(100, int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))

    @property
    def remaining(self) -> Money:
        if self.complete:
            return Money.zero(self.target.currency)
        return self.target - self.saved

    def to_document(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "name": self.name,
            "target": self.target.to_storage(),
            "saved": self.saved.to_storage(),
            "target_date": self.target_date,
            "created": self.created,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'SavingsGoal':
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            name=data.get("name", ""),
            target=money_from_storage(data.get("target")),
            saved=money_from_storage(data.get("saved")),
            target_date=data.get("target_date"),
            created=data.get("created"),
        )


class GoalManager:
    """Creates and lists savings goals"""

    def __init__(self, storage: DocumentStore):
        self.storage = storage
        self.logger = get_logger("bank_ledger.goals")

    async def create_goal(self, account_id: str, name: str, target,
                          target_date: Optional[date] = None,
                          today: Optional[date] = None) -> SavingsGoal:
        name = (name or "").strip()
        if not name:
            raise ValueError("Goal name is required")
        target_money = parse_amount(target)

        goal = SavingsGoal(
            id="",
            owner_id=account_id,
            name=name,
            target=target_money,
            saved=Money.zero(target_money.currency),
            target_date=target_date.isoformat() if target_date else None,
            created=(today or date.today()).isoformat(),
        )
        goal.id = await self.storage.add(goals_collection(account_id), goal.to_document())

        log_action(self.logger, "info", f"Goal '{name}' created",
                   account_id=account_id, action="create_goal", resource="goal",
                   extra={"goal_id": goal.id, "target": str(target_money.amount)})
        return goal

    async def get_goal(self, account_id: str, goal_id: str) -> SavingsGoal:
        data = await self.storage.load(goals_collection(account_id), goal_id)
        if not data:
            raise GoalNotFound(goal_id)
        return SavingsGoal.from_document(data)

    async def list_goals(self, account_id: str) -> List[SavingsGoal]:
        return [SavingsGoal.from_document(d)
                for d in await self.storage.load_all(goals_collection(account_id))]

    async def any_complete(self, account_id: str) -> bool:
        return any(goal.complete for goal in await self.list_goals(account_id))
