"""
Shared API dependencies
"""

from typing import Optional

from fastapi import HTTPException, status

from ..system import BankingSystem
from ..errors import (
    LedgerError, AccountNotFound, RecipientNotFound, GoalNotFound, ScheduleNotFound,
    RequestNotFound, RequestForbidden, InsufficientFunds, DailyLimitExceeded,
    MonthlyLimitExceeded, AlreadyClaimed, RequestNotPending, OperationInProgress, ScheduleNotDue,
    DuplicateUsername, OtpRequired, InvalidOtp, TransientStoreError
)
from ..logging_config import get_logger


logger = get_logger("bank_ledger.api")

# Global banking system instance, created on first use
banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    global banking_system
    if banking_system is None:
        banking_system = BankingSystem()
    return banking_system


_STATUS_BY_ERROR = [
    ((AccountNotFound, RecipientNotFound, GoalNotFound, ScheduleNotFound, RequestNotFound),
     status.HTTP_404_NOT_FOUND),
    ((RequestForbidden,), status.HTTP_403_FORBIDDEN),
    ((InvalidOtp,), status.HTTP_401_UNAUTHORIZED),
    ((OtpRequired,), status.HTTP_428_PRECONDITION_REQUIRED),
    ((InsufficientFunds, DailyLimitExceeded, MonthlyLimitExceeded, AlreadyClaimed,
      RequestNotPending, OperationInProgress, DuplicateUsername, ScheduleNotDue),
     status.HTTP_409_CONFLICT),
    ((TransientStoreError,), status.HTTP_503_SERVICE_UNAVAILABLE),
]


def http_error(error: Exception) -> HTTPException:
    """Translate a domain exception into an HTTPException"""
    if isinstance(error, LedgerError):
        for error_types, status_code in _STATUS_BY_ERROR:
            if isinstance(error, error_types):
                return HTTPException(status_code=status_code, detail=error.to_dict())
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.to_dict())
    if isinstance(error, LookupError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, RuntimeError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))

    logger.exception("Unhandled API error", exc_info=error)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
