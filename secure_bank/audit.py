"""
Audit Trail Module

Append-only, SHA-256 hash-chained record of account mutations, logins and
authorization denials. Each event's hash covers its own content plus the
hash of the event before it, so editing or dropping any entry breaks the
chain and shows up in ``AuditTrail.verify_integrity``.
"""

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class AuditEventType(Enum):
    """Types of audit events"""
    # Account events
    ACCOUNT_CREATED = "account_created"
    FUNDS_DEPOSITED = "funds_deposited"
    FUNDS_WITHDRAWN = "funds_withdrawn"
    ACCOUNT_CLOSED = "account_closed"

    # Security events
    AUTHORIZATION_DENIED = "authorization_denied"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"

    # Service events
    SERVICE_STARTED = "service_started"
    SERVICE_STOPPED = "service_stopped"


def _plain(value: Any) -> Any:
    """Reduce metadata values to JSON types so hashing is stable"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class AuditEvent:
    """One link of the audit chain"""
    id: str
    sequence: int  # 1-based position in the chain
    created_at: datetime
    event_type: AuditEventType
    entity_type: str  # account, subject, service
    entity_id: str
    user_id: Optional[str]  # principal who initiated the action
    previous_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    current_hash: str = ""

    def calculate_hash(self) -> str:
        """SHA-256 over every field except ``current_hash``"""
        payload = json.dumps({
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'user_id': self.user_id,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata,
        }, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()


class AuditTrail:
    """
    In-memory hash chain of audit events.

    Appends are serialized by a lock; readers get snapshots of the chain.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._events: List[AuditEvent] = []

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Append an event to the chain

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Event-specific data; Decimal, datetime and Enum
                values are stored as strings
            user_id: Principal who initiated the action

        Returns:
            The sealed AuditEvent
        """
        with self._lock:
            unsealed = AuditEvent(
                id=str(uuid.uuid4()),
                sequence=len(self._events) + 1,
                created_at=datetime.now(timezone.utc),
                event_type=event_type,
                entity_type=entity_type,
                entity_id=str(entity_id),
                user_id=user_id,
                previous_hash=self.get_latest_hash(),
                metadata=_plain(metadata or {}),
            )
            event = replace(unsealed, current_hash=unsealed.calculate_hash())
            self._events.append(event)
            return event

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Events about one entity, oldest first; ``limit`` keeps the newest"""
        entity_id = str(entity_id)
        return self._select(
            lambda e: e.entity_type == entity_type and e.entity_id == entity_id, limit
        )

    def get_events_by_type(
        self,
        event_type: AuditEventType,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Events of one type, oldest first; ``limit`` keeps the newest"""
        return self._select(lambda e: e.event_type is event_type, limit)

    def get_all_events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)

    def count_events(self) -> int:
        return len(self._events)

    def get_latest_hash(self) -> str:
        """Hash of the newest event, or "" for an empty chain"""
        return self._events[-1].current_hash if self._events else ""

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Recompute every hash and check each link against its predecessor

        Returns:
            Dictionary with ``valid``, ``total_events``, ``hash_errors``
            and ``chain_breaks``
        """
        events = self.get_all_events()
        hash_errors = []
        chain_breaks = []

        expected_previous = ""
        for position, event in enumerate(events):
            actual = event.calculate_hash()
            if actual != event.current_hash:
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': actual,
                    'actual_hash': event.current_hash,
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': expected_previous,
                    'actual_previous_hash': event.previous_hash,
                })
            expected_previous = event.current_hash

        return {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(events),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks,
        }

    def _select(self, predicate, limit: Optional[int]) -> List[AuditEvent]:
        events = [e for e in self.get_all_events() if predicate(e)]
        if limit:
            events = events[-limit:]
        return events
