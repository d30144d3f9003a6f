"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Events are chained per entity (one chain per account, one per loan) and are
written inside the same atomic unit as the change they describe, so a
rolled-back operation leaves no audit event behind.
"""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    USER_CREATED = "user_created"
    ACCOUNT_OPENED = "account_opened"
    BALANCE_CREDITED = "balance_credited"
    BALANCE_DEBITED = "balance_debited"
    LOAN_APPLIED = "loan_applied"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"


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
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        if self.metadata:
            self.metadata = {k: _convert_value(v) for k, v in self.metadata.items()}

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
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Per-entity hash-chained audit trail.

    Callers must hold the entity's keyed lock while logging so that no two
    units extend the same chain concurrently.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Append an audit event to the entity's chain

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action

        Returns:
            Created AuditEvent
        """
        chain = self.get_events_for_entity(entity_type, entity_id)
        now = datetime.now(timezone.utc)

        event = AuditEvent(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            sequence=self.storage.next_sequence(self.table_name),
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            previous_hash=chain[-1].current_hash if chain else "",
            current_hash="",
            metadata=metadata or {},
            user_id=user_id
        )
        event.current_hash = event.calculate_hash()

        self.storage.save(self.table_name, event.id, event.to_dict())
        return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """Entity's events in chain order"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda e: e.sequence)
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every entity chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        chains: Dict[tuple, List[AuditEvent]] = {}
        for data in self.storage.load_all(self.table_name):
            event = AuditEvent.from_dict(data)
            chains.setdefault((event.entity_type, event.entity_id), []).append(event)
            result['total_events'] += 1

        for events in chains.values():
            events.sort(key=lambda e: e.sequence)
            previous_hash = ""
            for position, event in enumerate(events):
                if not event.verify_hash():
                    result['valid'] = False
                    result['hash_errors'].append({
                        'event_id': event.id,
                        'position': position
                    })
                if event.previous_hash != previous_hash:
                    result['valid'] = False
                    result['chain_breaks'].append({
                        'event_id': event.id,
                        'position': position
                    })
                previous_hash = event.current_hash

        return result
