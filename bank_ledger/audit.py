"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Money movements and admin changes are logged here after they commit.
"""

import asyncio
import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .store import DocumentStore


class AuditEventType(Enum):
    """Types of audit events"""
    # Account events
    ACCOUNT_CREATED = "account_created"
    ADMIN_MODIFY_ACCOUNT = "admin_modify_account"

    # Money movement events
    WITHDRAWAL = "withdrawal"
    DEPOSIT = "deposit"
    TRANSFER = "transfer"
    BILL_PAY = "bill_pay"
    GOAL_FUND = "goal_fund"
    INTEREST_POSTED = "interest_posted"
    BIRTHDAY_GIFT = "birthday_gift"

    # Request and schedule events
    REQUEST_APPROVED = "request_approved"
    REQUEST_DECLINED = "request_declined"
    SCHEDULED_TRANSFER_RUN = "scheduled_transfer_run"

    # Batch events
    INTEREST_RUN = "interest_run"


def _convert_value(value):
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _convert_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_convert_value(v) for v in value]
    return value


@dataclass
class AuditEvent:
    """
    Immutable audit event with hash chaining for tamper detection
    """
    id: str
    sequence: int
    created_at: datetime
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[str] = None  # Account or admin that initiated the action

    def __post_init__(self):
        # Ensure metadata is JSON serializable
        self.metadata = {k: _convert_value(v) for k, v in (self.metadata or {}).items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'actor_id': self.actor_id,
            'metadata': self.metadata
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'current_hash': self.current_hash,
            'metadata': self.metadata,
            'actor_id': self.actor_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            id=data['id'],
            sequence=int(data['sequence']),
            created_at=datetime.fromisoformat(data['created_at']),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            previous_hash=data.get('previous_hash', ''),
            current_hash=data.get('current_hash', ''),
            metadata=data.get('metadata') or {},
            actor_id=data.get('actor_id'),
        )


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: DocumentStore, collection: str = "audit"):
        self.storage = storage
        self.collection = collection
        self._lock = asyncio.Lock()  # Serializes chaining across concurrent writers

    async def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in await self.storage.load_all(self.collection)]
        events.sort(key=lambda e: e.sequence)
        return events

    async def _last_event(self) -> Optional[AuditEvent]:
        events = await self._load_events()
        return events[-1] if events else None

    async def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited (account, request, ...)
            entity_id: ID of the entity
            metadata: Additional event-specific data
            actor_id: Account or admin who initiated the action

        Returns:
            Created AuditEvent
        """
        async with self._lock:
            last = await self._last_event()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                sequence=(last.sequence + 1) if last else 1,
                created_at=datetime.now(timezone.utc),
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=last.current_hash if last else "",
                current_hash="",  # Calculated below
                metadata=metadata or {},
                actor_id=actor_id
            )
            event.current_hash = event.calculate_hash()

            await self.storage.save(self.collection, event.id, event.to_dict())
            return event

    async def get_events_for_entity(self, entity_type: str, entity_id: str,
                                    limit: Optional[int] = None) -> List[AuditEvent]:
        """Events for one entity in chain order; ``limit`` keeps the most recent N"""
        data = await self.storage.find(self.collection, {'entity_type': entity_type, 'entity_id': entity_id})
        events = sorted((AuditEvent.from_dict(d) for d in data), key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events

    async def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in await self._load_events() if e.event_type == event_type]

    async def get_all_events(self) -> List[AuditEvent]:
        return await self._load_events()

    async def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': [],
        }

        events = await self._load_events()
        result['total_events'] = len(events)

        # Verify each event's hash
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })

        # Verify chain continuity
        previous_hash = ""
        for i, event in enumerate(events):
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    async def count_events(self) -> int:
        return await self.storage.count(self.collection)
