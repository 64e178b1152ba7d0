"""
Submission Gates

Checks that run before an operation reaches the ledger engine:

* ``OtpGate``: amounts above the high-value threshold need a one-time code.
  A challenge is bound to the account and amount it was issued for, is
  single-use, expires, and can be cancelled.
* ``SubmissionGuard``: at most one in-flight submission per account and
  operation kind, so a double-clicked submit cannot run twice.
"""

import secrets
import threading
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional, Set, Tuple

from .money import Money
from .config import LedgerConfig, get_config
from .errors import InvalidOtp, OperationInProgress, OtpRequired
from .logging_config import get_logger, log_action


@dataclass
class OtpChallenge:
    id: str
    account_id: str
    amount: Decimal
    code: str
    expires_at: datetime

    def to_dict(self, include_code: bool = False):
        data = {
            "challenge_id": self.id,
            "account_id": self.account_id,
            "amount": str(self.amount),
            "expires_at": self.expires_at.isoformat(),
        }
        if include_code:
            data["code"] = self.code
        return data


class OtpGate:
    """
    High-value confirmation gate.

    Codes are six digits. Delivery is out of scope: the issued challenge
    carries the code so a caller can show or send it.
    """

    def __init__(self, settings: Optional[LedgerConfig] = None, ttl_seconds: int = 300,
                 clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings or get_config()
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._challenges: Dict[str, OtpChallenge] = {}
        self._lock = threading.Lock()
        self.logger = get_logger("bank_ledger.gates")

    @property
    def threshold(self) -> Decimal:
        return self.settings.otp_high_value_threshold

    def requires_otp(self, amount: Money) -> bool:
        return amount.amount > self.threshold

    def issue_challenge(self, account_id: str, amount: Money) -> OtpChallenge:
        now = self._clock()
        challenge = OtpChallenge(
            id=uuid.uuid4().hex,
            account_id=account_id,
            amount=amount.amount,
            code=str(100000 + secrets.randbelow(900000)),
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._purge_expired(now)
            self._challenges[challenge.id] = challenge
        log_action(self.logger, "info", "OTP challenge issued", account_id=account_id,
                   action="issue_otp", resource="otp", extra={"challenge_id": challenge.id})
        return challenge

    @property
    def open_challenges(self) -> int:
        with self._lock:
            return len(self._challenges)

    def _purge_expired(self, now: datetime) -> None:
        # Caller holds the lock
        expired = [cid for cid, c in self._challenges.items() if now > c.expires_at]
        for challenge_id in expired:
            del self._challenges[challenge_id]

    def cancel(self, challenge_id: str) -> bool:
        with self._lock:
            return self._challenges.pop(challenge_id, None) is not None

    def verify(self, challenge_id: str, code: str, account_id: str, amount: Money) -> None:
        """
        Consume a challenge.

        Raises:
            InvalidOtp: If the challenge is unknown, expired, issued for a
                different account or amount, or the code does not match.
                A wrong code leaves the challenge open for another try.
        """
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None:
                raise InvalidOtp()
            if self._clock() > challenge.expires_at:
                del self._challenges[challenge_id]
                raise InvalidOtp()
            if challenge.account_id != account_id or challenge.amount != amount.amount:
                raise InvalidOtp()
            if not secrets.compare_digest(challenge.code, (code or "").strip()):
                raise InvalidOtp()
            del self._challenges[challenge_id]

    def ensure(self, account_id: str, amount: Money, challenge_id: Optional[str] = None,
               code: Optional[str] = None) -> None:
        """Pass below the threshold; above it require and consume a valid code"""
        if not self.requires_otp(amount):
            return
        if not challenge_id or not code:
            raise OtpRequired(self.threshold)
        self.verify(challenge_id, code, account_id, amount)


class SubmissionGuard:
    """Rejects a second concurrent submission of the same kind for an account"""

    def __init__(self):
        self._in_flight: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def is_busy(self, account_id: str, operation: str) -> bool:
        with self._lock:
            return (account_id, operation) in self._in_flight

    @asynccontextmanager
    async def hold(self, account_id: str, operation: str):
        key = (account_id, operation)
        with self._lock:
            if key in self._in_flight:
                raise OperationInProgress(account_id, operation)
            self._in_flight.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(key)
