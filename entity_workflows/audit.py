"""
Audit Trail Module

Hash-chained, append-only log of every template and instance change made by
the engine. Each event stores the SHA-256 of its predecessor so tampering
with any stored event breaks the chain.
"""

import hashlib
import json
import threading
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, to_storable, parse_datetime
from .clock import Clock, SystemClock


class AuditEventType(Enum):
    """Types of audit events"""
    # Template events
    TEMPLATE_REGISTERED = "template_registered"
    TEMPLATE_ACTIVATED = "template_activated"
    TEMPLATE_DEACTIVATED = "template_deactivated"
    TEMPLATE_LOCKED = "template_locked"

    # Instance events
    INSTANCE_CREATED = "instance_created"
    INSTANCE_ASSIGNED = "instance_assigned"
    INSTANCE_STATUS_CHANGED = "instance_status_changed"
    INSTANCE_ESCALATED = "instance_escalated"
    INSTANCE_ANNOTATED = "instance_annotated"

    # Step events
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    STEP_FAILED = "step_failed"


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event with hash chaining for tamper detection"""
    event_type: AuditEventType
    entity_type: str  # workflow_template or workflow_instance
    entity_id: str
    sequence: int
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    actor: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.event_type, str):
            self.event_type = AuditEventType(self.event_type)
        self.metadata = to_storable(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'actor': self.actor,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = parse_datetime(data['created_at'])
        data['updated_at'] = parse_datetime(data['updated_at'])
        return cls(**data)


class AuditTrail:
    """Hash-chained audit trail"""

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 clock: Optional[Clock] = None):
        self.storage = storage
        self.table_name = table_name
        self.clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._last_hash = ""
        self._sequence = 0
        self._load_chain_head()

    def _load_chain_head(self) -> None:
        events = self.storage.load_all(self.table_name)
        if events:
            head = max(events, key=lambda e: e.get('sequence', 0))
            self._last_hash = head.get('current_hash', "")
            self._sequence = head.get('sequence', 0)

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> AuditEvent:
        """
        Append an event to the chain

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            actor: Who initiated the action

        Returns:
            The stored AuditEvent
        """
        with self._lock:
            now = self.clock.now()
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                sequence=self._sequence + 1,
                previous_hash=self._last_hash,
                current_hash="",
                metadata=metadata or {},
                actor=actor
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())

            self._last_hash = event.current_hash
            self._sequence = event.sequence
            return event

    def _all_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Events for one entity, oldest first; limit keeps the most recent N"""
        events = [
            AuditEvent.from_dict(data)
            for data in self.storage.find(self.table_name, {'entity_type': entity_type, 'entity_id': entity_id})
        ]
        events.sort(key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events

    def get_events_by_type(self, event_type: AuditEventType,
                           start_time: Optional[datetime] = None,
                           end_time: Optional[datetime] = None) -> List[AuditEvent]:
        events = [e for e in self._all_events() if e.event_type == event_type]
        if start_time:
            events = [e for e in events if e.created_at >= start_time]
        if end_time:
            events = [e for e in events if e.created_at <= end_time]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every hash and every chain link

        Returns:
            Dictionary with 'valid', 'total_events', 'hash_errors' and 'chain_breaks'
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
