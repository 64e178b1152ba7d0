"""
Money Requests Module

Peer-to-peer money requests. A request moves from ``pending`` to either
``approved`` or ``declined`` exactly once. Approval is a ledger engine
operation: the transfer and the status change commit together, so a request
is never marked approved without the money having moved.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .money import Money, money_from_storage, parse_amount
from .store import DocumentStore, StoreTransaction, SERVER_TIMESTAMP
from .accounts import AccountManager
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import (
    RecipientNotFound, RequestForbidden, RequestNotFound, RequestNotPending, SelfTransfer
)
from .logging_config import get_logger, log_action
from .operations import OperationResult

if TYPE_CHECKING:
    from .engine import LedgerEngine
    from .notifications import NotificationCenter


REQUESTS = "requests"
REQUEST_CATEGORY = "Request"


class RequestStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


@dataclass
class MoneyRequest:
    id: str
    requester_id: str
    requester_username: str
    target_id: str
    target_username: str
    amount: Money
    reason: str
    status: RequestStatus
    date: str
    created_at: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "requester_id": self.requester_id,
            "requester_username": self.requester_username,
            "target_id": self.target_id,
            "target_username": self.target_username,
            "amount": self.amount.to_storage(),
            "reason": self.reason,
            "status": self.status.value,
            "date": self.date,
            "created_at": self.created_at or SERVER_TIMESTAMP,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'MoneyRequest':
        return cls(
            id=data["id"],
            requester_id=data["requester_id"],
            requester_username=data.get("requester_username", ""),
            target_id=data["target_id"],
            target_username=data.get("target_username", ""),
            amount=money_from_storage(data["amount"]),
            reason=data.get("reason", ""),
            status=RequestStatus(data["status"]),
            date=data.get("date", ""),
            created_at=data.get("created_at"),
        )


def check_respondable(request: Optional[MoneyRequest], request_id: str, approver_id: str) -> MoneyRequest:
    """Shared preconditions for approving or declining a request"""
    if request is None:
        raise RequestNotFound(request_id)
    if request.status != RequestStatus.PENDING:
        raise RequestNotPending(request_id, request.status.value)
    if request.target_id != approver_id:
        raise RequestForbidden(request_id)
    return request


class MoneyRequestManager:
    """
    Sends, approves and declines money requests
    """

    def __init__(
        self,
        storage: DocumentStore,
        engine: 'LedgerEngine',
        accounts: AccountManager,
        notifications: Optional['NotificationCenter'] = None,
        audit_trail: Optional[AuditTrail] = None,
        settings: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.engine = engine
        self.accounts = accounts
        self.notifications = notifications
        self.audit_trail = audit_trail
        self.settings = settings or get_config()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("bank_ledger.requests")

    async def get_request(self, request_id: str) -> MoneyRequest:
        data = await self.storage.load(REQUESTS, request_id)
        if not data:
            raise RequestNotFound(request_id)
        return MoneyRequest.from_document(data)

    async def send_request(self, requester_id: str, target_username: str, amount,
                           reason: str = "") -> MoneyRequest:
        """
        Ask another account for money

        Raises:
            InvalidAmount: If the amount is not a positive number
            SelfTransfer: If the target is the requester
            RecipientNotFound: If no account has the target username
        """
        money = parse_amount(amount)
        requester = await self.accounts.require_account(requester_id)
        target_username = (target_username or "").strip()
        if target_username == requester.username:
            raise SelfTransfer()
        target = await self.accounts.get_account_by_username(target_username)
        if target is None:
            raise RecipientNotFound(target_username)

        request = MoneyRequest(
            id="",
            requester_id=requester.id,
            requester_username=requester.username,
            target_id=target.id,
            target_username=target.username,
            amount=money,
            reason=(reason or "").strip(),
            status=RequestStatus.PENDING,
            date=self._clock().date().isoformat(),
        )
        request.id = await self.storage.add(REQUESTS, request.to_document())

        log_action(self.logger, "info", f"Money request sent to {target.username}",
                   account_id=requester.id, action="send_request", resource="request",
                   extra={"request_id": request.id, "amount": money.to_storage()})

        await self._notify(
            target.username,
            "Money Request",
            f"{requester.username} requested {money.to_string()} from you.",
            {"type": "REQUEST", "request_from": requester.username,
             "amount": money.to_storage(), "request_id": request.id}
        )
        return await self.get_request(request.id)

    async def approve(self, request_id: str, approver_id: str) -> OperationResult:
        """
        Approve a pending request addressed to ``approver_id``.

        The transfer from approver to requester and the status change commit
        together; on any failure the request stays pending and the error
        propagates.
        """
        result = await self.engine.approve_request(request_id, approver_id)
        request = await self.get_request(request_id)
        await self._notify(
            request.requester_username,
            "Request Response",
            f"Your request to {request.target_username} for {request.amount.to_string()} was approved.",
            {"type": "REQUEST_RESPONSE", "request_id": request_id, "status": RequestStatus.APPROVED.value}
        )
        return result

    async def decline(self, request_id: str, approver_id: str) -> MoneyRequest:
        """Decline a pending request; no money moves"""

        async def _decline(txn: StoreTransaction) -> MoneyRequest:
            data = await txn.load(REQUESTS, request_id)
            request = check_respondable(
                MoneyRequest.from_document(data) if data else None, request_id, approver_id
            )
            txn.update(REQUESTS, request_id, {
                "status": RequestStatus.DECLINED.value,
                "responded_at": SERVER_TIMESTAMP,
            })
            return request

        request = await self.storage.run_atomic(_decline)
        request.status = RequestStatus.DECLINED

        log_action(self.logger, "info", "Money request declined",
                   account_id=approver_id, action="decline_request", resource="request",
                   extra={"request_id": request_id})

        if self.audit_trail and self.settings.enable_audit_logging:
            try:
                await self.audit_trail.log_event(
                    event_type=AuditEventType.REQUEST_DECLINED,
                    entity_type="request",
                    entity_id=request_id,
                    metadata={"amount": request.amount.amount, "requester": request.requester_username},
                    actor_id=approver_id
                )
            except Exception as e:
                log_action(self.logger, "error", f"Audit write failed: {e}",
                           account_id=approver_id, action="decline_request")

        await self._notify(
            request.requester_username,
            "Request Response",
            f"Your request to {request.target_username} for {request.amount.to_string()} was declined.",
            {"type": "REQUEST_RESPONSE", "request_id": request_id, "status": RequestStatus.DECLINED.value}
        )
        return request

    async def incoming_pending(self, account_id: str) -> List[MoneyRequest]:
        data = await self.storage.find(REQUESTS, {"target_id": account_id,
                                                  "status": RequestStatus.PENDING.value})
        return self._newest_first(data)

    async def outgoing(self, account_id: str) -> List[MoneyRequest]:
        return self._newest_first(await self.storage.find(REQUESTS, {"requester_id": account_id}))

    @staticmethod
    def _newest_first(documents: List[Dict[str, Any]]) -> List[MoneyRequest]:
        requests = [MoneyRequest.from_document(d) for d in documents]
        requests.sort(key=lambda r: r.created_at or "", reverse=True)
        return requests

    async def _notify(self, to_username: str, title: str, message: str, meta: Dict[str, Any]) -> None:
        if not self.notifications or not self.settings.enable_notifications:
            return
        try:
            await self.notifications.create_notification(to_username, title, message, meta)
        except Exception as e:
            log_action(self.logger, "error", f"Notification write failed: {e}",
                       action="notify", resource="notification",
                       extra={"to": to_username, "request_id": meta.get("request_id")})
