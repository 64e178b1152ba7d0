"""
Test suite for achievements

Tests that milestones unlock once, after the operation that earns them.
"""

import pytest
from datetime import date

from bank_ledger.achievements import ACHIEVEMENT_DEFINITIONS


class TestAchievements:

    def test_definitions(self):
        assert [d.id for d in ACHIEVEMENT_DEFINITIONS] == [
            "first_deposit", "deposit_5", "transfer_5", "balance_10k", "balance_50k", "goal_complete"
        ]

    @pytest.mark.asyncio
    async def test_first_deposit_and_balance(self, system, open_account):
        alice = await open_account("alice", "12000")
        assert await system.achievements.unlocked(alice.id) == {"first_deposit", "balance_10k"}

    @pytest.mark.asyncio
    async def test_unlocked_once(self, system, open_account):
        alice = await open_account("alice", "10")
        for _ in range(5):
            await system.engine.deposit(alice.id, "10")

        assert await system.achievements.unlocked(alice.id) == {"first_deposit", "deposit_5"}
        assert await system.achievements.evaluate(alice.id) == []
        unlocks = await system.storage.find("achievements", {"account_id": alice.id})
        assert len(unlocks) == 2
        assert unlocks[0]["date"] == "2025-03-15"

    @pytest.mark.asyncio
    async def test_transfers_and_goals(self, system, open_account):
        alice = await open_account("alice", "1000")
        await open_account("bob")
        for _ in range(5):
            await system.engine.transfer(alice.id, "bob", "10")
        goal = await system.goal_manager.create_goal(alice.id, "Bike", "100", today=date(2025, 3, 15))
        await system.engine.fund_goal(alice.id, goal.id, "100")

        unlocked = await system.achievements.unlocked(alice.id)
        assert "transfer_5" in unlocked
        assert "goal_complete" in unlocked

    @pytest.mark.asyncio
    async def test_disabled(self, system, open_account):
        system.settings.enable_achievements = False
        alice = await open_account("alice", "1000")
        assert await system.achievements.unlocked(alice.id) == set()
