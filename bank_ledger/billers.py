"""
Biller registry and customer account-number validation
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern

from .config import BillerSpec, LedgerConfig, get_config
from .errors import InvalidBillerAccount, UnknownBiller


@dataclass(frozen=True)
class Biller:
    id: str
    name: str
    pattern: Pattern

    def accepts(self, account_number: str) -> bool:
        return bool(account_number) and self.pattern.fullmatch(account_number) is not None

    @classmethod
    def from_spec(cls, spec: BillerSpec) -> 'Biller':
        return cls(id=spec.id, name=spec.name, pattern=re.compile(spec.account_number_pattern))


class BillerRegistry:
    """Billers known to the ledger, keyed by id"""

    def __init__(self, settings: Optional[LedgerConfig] = None):
        settings = settings or get_config()
        self._billers: Dict[str, Biller] = {
            spec.id: Biller.from_spec(spec) for spec in settings.billers
        }

    def list_billers(self) -> List[Biller]:
        return list(self._billers.values())

    def get(self, biller_id: str) -> Biller:
        biller = self._billers.get(biller_id)
        if biller is None:
            raise UnknownBiller(biller_id)
        return biller

    def validate(self, biller_id: str, account_number: str) -> Biller:
        """Resolve the biller and check the account number format"""
        biller = self.get(biller_id)
        if not biller.accepts(account_number):
            raise InvalidBillerAccount(biller_id)
        return biller
