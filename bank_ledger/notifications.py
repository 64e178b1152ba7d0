"""
Notifications Module

Persistent in-app notifications. Notifications are deduplicated by
``to::request_id::title::message``: writing the same notification twice
refreshes the existing document (unread, undelivered) instead of adding a
second one. Delivery to a UI is out of scope; readers poll the collection.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .store import DocumentStore, SERVER_TIMESTAMP
from .logging_config import get_logger, log_action


NOTIFICATIONS = "notifications"

MAX_TITLE_LENGTH = 200
MAX_MESSAGE_LENGTH = 400


def dedupe_key(to_username: str, title: str, message: str, meta: Optional[Dict[str, Any]] = None) -> str:
    request_id = str((meta or {}).get("request_id") or "")
    return f"{to_username}::{request_id}::{str(title)[:MAX_TITLE_LENGTH]}::{str(message)[:MAX_MESSAGE_LENGTH]}"


@dataclass
class Notification:
    id: str
    to: str
    title: str
    message: str
    dedupe_key: str
    meta: Dict[str, Any] = field(default_factory=dict)
    read: bool = False
    delivered: bool = False
    created_at: Optional[str] = None

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'Notification':
        return cls(
            id=data["id"],
            to=data["to"],
            title=data.get("title", ""),
            message=data.get("message", ""),
            dedupe_key=data.get("dedupe_key", ""),
            meta=data.get("meta") or {},
            read=bool(data.get("read")),
            delivered=bool(data.get("delivered")),
            created_at=data.get("created_at"),
        )


class NotificationCenter:
    """Writes and reads the notifications collection"""

    def __init__(self, storage: DocumentStore):
        self.storage = storage
        self.logger = get_logger("bank_ledger.notifications")

    async def create_notification(self, to_username: str, title: str, message: str,
                                  meta: Optional[Dict[str, Any]] = None) -> str:
        """Create or refresh a notification; returns its id"""
        meta = dict(meta or {})
        key = dedupe_key(to_username, title, message, meta)

        existing = await self.storage.find(NOTIFICATIONS, {"dedupe_key": key})
        if existing:
            doc = existing[0]
            await self.storage.update(NOTIFICATIONS, doc["id"], {
                "title": title,
                "message": message,
                "meta": {**(doc.get("meta") or {}), **meta},
                "dedupe_key": key,
                "created_at": SERVER_TIMESTAMP,
                "delivered": False,
                "read": False,
            })
            return doc["id"]

        notification_id = await self.storage.add(NOTIFICATIONS, {
            "to": to_username,
            "title": title,
            "message": message,
            "meta": meta,
            "dedupe_key": key,
            "created_at": SERVER_TIMESTAMP,
            "delivered": False,
            "read": False,
        })
        log_action(self.logger, "info", f"Notification '{title}' queued for {to_username}",
                   action="create_notification", resource="notification",
                   extra={"notification_id": notification_id})
        return notification_id

    async def for_user(self, username: str, unread_only: bool = False) -> List[Notification]:
        filters: Dict[str, Any] = {"to": username}
        if unread_only:
            filters["read"] = False
        notifications = [Notification.from_document(d) for d in await self.storage.find(NOTIFICATIONS, filters)]
        notifications.sort(key=lambda n: n.created_at or "", reverse=True)
        return notifications

    async def mark_read(self, notification_id: str, username: Optional[str] = None) -> bool:
        """Mark a notification read; False when it does not exist or belongs to someone else"""
        data = await self.storage.load(NOTIFICATIONS, notification_id)
        if data is None or (username is not None and data.get("to") != username):
            return False
        await self.storage.update(NOTIFICATIONS, notification_id, {"read": True})
        return True
