"""
Configuration Management Module

Provides centralized configuration using pydantic-settings. Tier policies,
the withdrawal tax, the OTP threshold and the biller registry are all
overridable from the environment (prefix ``LEDGER_``).
"""

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class TierPolicy(BaseModel):
    """Interest rate and usage caps for one account tier"""
    label: str
    interest_rate: Decimal
    withdraw_limit: Decimal
    transfer_limit: Decimal
    monthly_transfer_limit: Decimal


class BillerSpec(BaseModel):
    """A biller and the format its customer account numbers must match"""
    id: str
    name: str
    account_number_pattern: str


def _default_tiers() -> Dict[str, TierPolicy]:
    return {
        "savings": TierPolicy(
            label="Savings",
            interest_rate=Decimal("0.015"),
            withdraw_limit=Decimal("10000"),
            transfer_limit=Decimal("10000"),
            monthly_transfer_limit=Decimal("50000"),
        ),
        "checking": TierPolicy(
            label="Checking",
            interest_rate=Decimal("0.005"),
            withdraw_limit=Decimal("50000"),
            transfer_limit=Decimal("50000"),
            monthly_transfer_limit=Decimal("200000"),
        ),
        "premium": TierPolicy(
            label="Premium",
            interest_rate=Decimal("0.025"),
            withdraw_limit=Decimal("100000"),
            transfer_limit=Decimal("100000"),
            monthly_transfer_limit=Decimal("300000"),
        ),
    }


def _default_billers() -> List[BillerSpec]:
    return [
        BillerSpec(id="electric", name="Electric Company", account_number_pattern=r"^\d{10}$"),
        BillerSpec(id="water", name="Water District", account_number_pattern=r"^\d{8}$"),
        BillerSpec(id="internet", name="Internet Provider", account_number_pattern=r"^\d{12}$"),
        BillerSpec(id="phone", name="Phone Company", account_number_pattern=r"^\d{11}$"),
    ]


class LedgerConfig(BaseSettings):
    """Bank ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_path: str = ":memory:"  # SQLite path when the sqlite backend is used
    atomic_max_attempts: int = 5
    atomic_retry_base_delay: float = 0.01  # Seconds, doubled per attempt with jitter

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration
    currency: str = "PHP"
    withdrawal_tax_rate: Decimal = Decimal("0.02")
    otp_high_value_threshold: Decimal = Decimal("5000")
    birthday_gift_amount: Decimal = Decimal("500")
    default_tier: str = "savings"
    tiers: Dict[str, TierPolicy] = _default_tiers()
    billers: List[BillerSpec] = _default_billers()

    # Feature flags
    enable_audit_logging: bool = True
    enable_notifications: bool = True
    enable_achievements: bool = True
    scheduler_global_sweep_enabled: bool = False

    def tier_policy(self, tier: Optional[str]) -> TierPolicy:
        """Policy for a tier name, falling back to the default tier"""
        if tier and tier in self.tiers:
            return self.tiers[tier]
        return self.tiers[self.default_tier]


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
