"""
Test suite for notifications

Tests deduplication, unread filtering and read marking.
"""

import pytest

from bank_ledger.notifications import dedupe_key


class TestDedupeKey:

    def test_key_format(self):
        assert dedupe_key("bob", "Hi", "Msg", {"request_id": "R1"}) == "bob::R1::Hi::Msg"
        assert dedupe_key("bob", "Hi", "Msg") == "bob::::Hi::Msg"

    def test_truncation(self):
        key = dedupe_key("bob", "T" * 300, "M" * 500)
        assert key == "bob::::" + "T" * 200 + "::" + "M" * 400


class TestNotificationCenter:

    @pytest.mark.asyncio
    async def test_duplicate_refreshes_existing(self, system):
        first = await system.notifications.create_notification("bob", "Hi", "Msg", {"request_id": "R1"})
        await system.notifications.mark_read(first)

        second = await system.notifications.create_notification("bob", "Hi", "Msg", {"request_id": "R1"})

        assert second == first
        notifications = await system.notifications.for_user("bob")
        assert len(notifications) == 1
        assert notifications[0].read is False

    @pytest.mark.asyncio
    async def test_unread_filter_and_ownership(self, system):
        first = await system.notifications.create_notification("bob", "One", "1")
        await system.notifications.create_notification("bob", "Two", "2")
        await system.notifications.create_notification("carol", "Three", "3")

        assert await system.notifications.mark_read(first, "carol") is False
        assert await system.notifications.mark_read(first, "bob") is True
        assert await system.notifications.mark_read("missing") is False

        unread = await system.notifications.for_user("bob", unread_only=True)
        assert [n.title for n in unread] == ["Two"]
        assert len(await system.notifications.for_user("bob")) == 2
