"""
Audit Trail Module

Append-only, SHA-256 hash-chained record of account, transfer and session
events. Each event stores the digest of its predecessor, so editing or
deleting any stored event breaks the chain from that point on.
"""

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    ACCOUNT_CREATED = "account_created"
    TRANSFER_COMPLETED = "transfer_completed"
    TRANSFER_REJECTED = "transfer_rejected"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    TOKEN_REFRESHED = "token_refreshed"
    TOKEN_REVOKED = "token_revoked"
    TOKENS_PURGED = "tokens_purged"


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """One link in the audit chain"""
    sequence: int
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        self.metadata = _json_safe(self.metadata or {})

    def digest(self) -> str:
        """SHA-256 over every field except ``current_hash`` and ``updated_at``"""
        payload = json.dumps({
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()

    def is_intact(self) -> bool:
        return self.current_hash == self.digest()

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['event_type'] = self.event_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        fields = {key: value for key, value in data.items() if key != 'version'}
        fields['event_type'] = AuditEventType(fields['event_type'])
        for key in ('created_at', 'updated_at'):
            fields[key] = datetime.fromisoformat(fields[key])
        return cls(**fields)


class AuditTrail:
    """
    Writer and verifier for the audit chain

    Appends are serialized with a lock so sequence numbers stay gap-free and
    every event links to the one logged just before it.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._append_lock = threading.Lock()

    def _chain(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        return sorted(events, key=lambda event: event.sequence)

    def _tail(self) -> Optional[Dict[str, Any]]:
        stored = self.storage.load_all(self.table_name)
        return max(stored, key=lambda data: data['sequence']) if stored else None

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
            event_type: What happened
            entity_type: Kind of record involved ("account", "transfer", ...)
            entity_id: ID of that record
            metadata: Free-form details; Decimals and datetimes are stringified
            user_id: Account that triggered the event, if any

        Returns:
            The stored AuditEvent
        """
        with self._append_lock:
            tail = self._tail()
            timestamp = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=timestamp,
                updated_at=timestamp,
                sequence=tail['sequence'] + 1 if tail else 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=tail['current_hash'] if tail else "",
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.digest()
            self.storage.save(self.table_name, event.id, event.to_dict())
        return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """Events about one record, oldest first"""
        matches = self.storage.find(
            self.table_name, {'entity_type': entity_type, 'entity_id': entity_id}
        )
        return sorted((AuditEvent.from_dict(data) for data in matches), key=lambda e: e.sequence)

    def get_events_by_type(self, event_type: AuditEventType,
                           limit: Optional[int] = None) -> List[AuditEvent]:
        """Events of one type, oldest first; ``limit`` keeps the newest N"""
        events = [event for event in self._chain() if event.event_type == event_type]
        return events[-limit:] if limit else events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the chain and report tampering

        Returns:
            Dict with ``valid``, ``total_events``, ``hash_errors`` (events whose
            stored digest no longer matches their content) and ``chain_breaks``
            (events whose ``previous_hash`` does not match their predecessor)
        """
        hash_errors = []
        chain_breaks = []
        expected_previous = ""

        chain = self._chain()
        for event in chain:
            if not event.is_intact():
                hash_errors.append({
                    'event_id': event.id,
                    'sequence': event.sequence,
                    'stored_hash': event.current_hash,
                    'computed_hash': event.digest()
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'sequence': event.sequence,
                    'expected_previous_hash': expected_previous,
                    'stored_previous_hash': event.previous_hash
                })
            expected_previous = event.current_hash

        return {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(chain),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks
        }

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
