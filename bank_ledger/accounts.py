"""
Account Management Module

Account documents, tier policies and the account directory: creation with
unique usernames, lookups by id and username, and the audited admin
override. Balances are only ever changed here by the admin override; every
other balance mutation goes through the ledger engine.
"""

from decimal import Decimal, InvalidOperation
from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import uuid

from .money import Money, Currency, currency_from_code, money_from_storage
from .store import DocumentStore, StoreTransaction, SERVER_TIMESTAMP
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, TierPolicy, get_config
from .errors import AccountNotFound, DuplicateUsername, InvalidAmount
from .limits import DailyWindow, MonthlyWindow
from .logging_config import get_logger, log_action


USERS = "users"
USERNAMES = "usernames"  # username -> account id index, keeps usernames unique


@dataclass
class Account:
    """
    Customer account as persisted in the ``users`` collection
    """
    id: str
    username: str
    first_name: str
    last_name: str
    tier: str
    balance: Money
    birthday: Optional[date] = None
    limits_daily: Optional[DailyWindow] = None
    limits_monthly: Optional[MonthlyWindow] = None
    last_transaction: Optional[Dict[str, Any]] = None
    birthday_gifts_claimed: List[str] = field(default_factory=list)
    created_at: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def policy(self, settings: Optional[LedgerConfig] = None) -> TierPolicy:
        """Tier policy; unknown tiers fall back to the default tier"""
        return (settings or get_config()).tier_policy(self.tier)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "tier": self.tier,
            "balance": self.balance.to_storage(),
            "currency": self.balance.currency.code,
            "birthday": self.birthday.isoformat() if self.birthday else None,
            "limits_daily": self.limits_daily.to_dict() if self.limits_daily else None,
            "limits_monthly": self.limits_monthly.to_dict() if self.limits_monthly else None,
            "last_transaction": self.last_transaction,
            "birthday_gifts_claimed": list(self.birthday_gifts_claimed),
            "created_at": self.created_at,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'Account':
        currency = currency_from_code(data.get("currency") or get_config().currency)
        birthday = data.get("birthday")
        return cls(
            id=data["id"],
            username=data["username"],
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
            tier=data.get("tier") or get_config().default_tier,
            balance=money_from_storage(data.get("balance"), currency),
            birthday=date.fromisoformat(birthday) if birthday else None,
            limits_daily=DailyWindow.from_dict(data["limits_daily"]) if data.get("limits_daily") else None,
            limits_monthly=MonthlyWindow.from_dict(data["limits_monthly"]) if data.get("limits_monthly") else None,
            last_transaction=data.get("last_transaction"),
            birthday_gifts_claimed=list(data.get("birthday_gifts_claimed") or []),
            created_at=data.get("created_at"),
        )


async def load_account(txn: StoreTransaction, account_id: str) -> Account:
    """Read an account inside a transaction or raise AccountNotFound"""
    data = await txn.load(USERS, account_id)
    if data is None:
        raise AccountNotFound(account_id)
    return Account.from_document(data)


class AccountManager:
    """
    Manages account creation, lookup and admin changes
    """

    def __init__(self, storage: DocumentStore, audit_trail: Optional[AuditTrail] = None,
                 settings: Optional[LedgerConfig] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.settings = settings or get_config()
        self.logger = get_logger("bank_ledger.accounts")

    @property
    def currency(self) -> Currency:
        return currency_from_code(self.settings.currency)

    async def create_account(
        self,
        username: str,
        first_name: str,
        last_name: str,
        tier: Optional[str] = None,
        birthday: Optional[date] = None
    ) -> Account:
        """
        Create a new account with a zero balance

        Args:
            username: Unique, case-sensitive login name
            first_name: Given name
            last_name: Family name
            tier: savings, checking or premium (default tier when omitted)
            birthday: Date of birth, enables the birthday gift

        Returns:
            Created Account

        Raises:
            DuplicateUsername: If the username is already registered
        """
        username = username.strip()
        if not username:
            raise ValueError("Username is required")

        tier = tier or self.settings.default_tier
        if tier not in self.settings.tiers:
            raise ValueError(f"Unknown account tier '{tier}'")

        account = Account(
            id=str(uuid.uuid4()),
            username=username,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            tier=tier,
            balance=Money.zero(self.currency),
            birthday=birthday,
        )

        async def _create(txn: StoreTransaction) -> None:
            if await txn.load(USERNAMES, username) is not None:
                raise DuplicateUsername(username)
            document = account.to_document()
            document["created_at"] = SERVER_TIMESTAMP
            txn.save(USERS, account.id, document)
            txn.save(USERNAMES, username, {"account_id": account.id})

        await self.storage.run_atomic(_create)
        created = await self.require_account(account.id)

        log_action(self.logger, "info", f"Account created for {username}",
                   account_id=created.id, action="create_account", resource="account",
                   extra={"tier": tier})

        if self.audit_trail and self.settings.enable_audit_logging:
            try:
                await self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_CREATED,
                    entity_type="account",
                    entity_id=created.id,
                    metadata={"username": username, "tier": tier},
                    actor_id=created.id
                )
            except Exception as e:
                log_action(self.logger, "error", f"Audit write failed: {e}",
                           account_id=created.id, action="create_account")

        return created

    async def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = await self.storage.load(USERS, account_id)
        if data:
            return Account.from_document(data)
        return None

    async def require_account(self, account_id: str) -> Account:
        account = await self.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    async def get_account_by_username(self, username: str) -> Optional[Account]:
        """Get account by exact (case-sensitive) username"""
        index = await self.storage.load(USERNAMES, username)
        if not index:
            return None
        return await self.get_account(index["account_id"])

    async def list_accounts(self) -> List[Account]:
        return [Account.from_document(data) for data in await self.storage.load_all(USERS)]

    async def admin_override(
        self,
        account_id: str,
        admin_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        balance: Optional[Decimal] = None,
        tier: Optional[str] = None
    ) -> Account:
        """
        Overwrite name, balance and/or tier of an account.

        The change is atomic and audited with before and after snapshots.
        Balances set here bypass limits but may never be negative.
        """
        if balance is not None:
            if not isinstance(balance, Decimal):
                try:
                    balance = Decimal(str(balance).strip())
                except InvalidOperation:
                    raise InvalidAmount(balance)
            if not balance.is_finite() or balance < 0:
                raise InvalidAmount(balance)
            try:
                Money(balance)
            except InvalidOperation:
                raise InvalidAmount(balance)
        if tier is not None and tier not in self.settings.tiers:
            raise ValueError(f"Unknown account tier '{tier}'")

        async def _override(txn: StoreTransaction):
            account = await load_account(txn, account_id)
            before = {
                "first_name": account.first_name,
                "last_name": account.last_name,
                "balance": account.balance.to_storage(),
                "tier": account.tier,
            }
            updates: Dict[str, Any] = {}
            if first_name is not None:
                updates["first_name"] = first_name.strip()
            if last_name is not None:
                updates["last_name"] = last_name.strip()
            if balance is not None:
                updates["balance"] = Money(balance, account.balance.currency).to_storage()
            if tier is not None:
                updates["tier"] = tier
            if updates:
                txn.update(USERS, account_id, updates)
            return before, {**before, **updates}

        before, after = await self.storage.run_atomic(_override)

        log_action(self.logger, "info", "Account modified by admin",
                   account_id=account_id, action="admin_override", resource="account",
                   extra={"admin_id": admin_id})

        if self.audit_trail and self.settings.enable_audit_logging:
            try:
                await self.audit_trail.log_event(
                    event_type=AuditEventType.ADMIN_MODIFY_ACCOUNT,
                    entity_type="account",
                    entity_id=account_id,
                    metadata={"before": before, "after": after},
                    actor_id=admin_id
                )
            except Exception as e:
                log_action(self.logger, "error", f"Audit write failed: {e}",
                           account_id=account_id, action="admin_override")

        return await self.require_account(account_id)
