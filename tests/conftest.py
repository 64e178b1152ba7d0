"""
Shared fixtures: a controllable clock and a fully wired in-memory system
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from bank_ledger.config import LedgerConfig
from bank_ledger.store import InMemoryDocumentStore
from bank_ledger.system import BankingSystem


class FakeClock:
    """Callable clock that tests move forward explicitly"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set(self, year: int, month: int, day: int, hour: int = 10) -> None:
        self.now = datetime(year, month, day, hour, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 15, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return LedgerConfig()


@pytest.fixture
def store():
    return InMemoryDocumentStore(retry_base_delay=0)


class InterleavingStore(InMemoryDocumentStore):
    """Yields to the event loop after every read so concurrent transactions interleave"""

    async def _read_versioned(self, collection, doc_id):
        result = await super()._read_versioned(collection, doc_id)
        await asyncio.sleep(0)
        return result


@pytest_asyncio.fixture
async def system(store, settings, clock):
    banking_system = BankingSystem(storage=store, settings=settings, clock=clock)
    yield banking_system
    await banking_system.close()


@pytest_asyncio.fixture
async def racing_system(settings, clock):
    """System whose store lets two operations read the same documents before either commits"""
    banking_system = BankingSystem(storage=InterleavingStore(retry_base_delay=0), settings=settings, clock=clock)
    yield banking_system
    await banking_system.close()


@pytest.fixture
def open_account(system):
    """Create an account and optionally fund it with one deposit"""

    async def _open(username, balance=None, **kwargs):
        account = await system.account_manager.create_account(
            username, kwargs.pop("first_name", username.title()), kwargs.pop("last_name", "Tester"), **kwargs
        )
        if balance is not None:
            await system.engine.deposit(account.id, balance, note="Opening deposit")
        return await system.account_manager.require_account(account.id)

    return _open
